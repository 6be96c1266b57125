"""Health check route."""

from fastapi import APIRouter, Request

from ...database.session import get_db_manager

router = APIRouter(tags=["health"])


@router.get("/health")
def health(request: Request) -> dict:
    database_ok = get_db_manager().verify_connection()
    scanner = getattr(request.app.state, "overdue_scanner", None)
    return {
        "status": "ok" if database_ok else "degraded",
        "database": "connected" if database_ok else "unavailable",
        "overdue_scanner": scanner.state.value if scanner and scanner.running else "stopped",
        **request.app.state.config.service_info,
    }
