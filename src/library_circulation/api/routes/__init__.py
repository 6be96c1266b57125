"""HTTP routers, mounted under ``/api`` by the app factory."""

from . import books, export, health, loans, members

routers = [
    loans.router,
    books.router,
    members.router,
    export.router,
    health.router,
]

__all__ = ["routers"]
