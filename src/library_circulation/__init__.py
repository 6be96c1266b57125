"""
Library Circulation Service Package.

A library backend whose core is the loan lifecycle engine: borrowing and
returning books while keeping each book's availability flag, the loan ledger
and concurrent requests consistent through database transactions alone.

Key Components:
- models: Pydantic models for data validation and serialization
- database: SQLAlchemy schema, sessions and repositories
- config: Configuration management with pydantic-settings
- api: FastAPI application (REST surface)
- mcp_server: FastMCP tools and resources (agent surface)
- overdue: periodic overdue-loan scanner
"""

__version__ = "0.1.0"

# Make database module available at package level
from . import database

__all__ = [
    "__version__",
    "database",
]
