"""
Health Service - dependency checks for the readiness probe

Two levels:
- liveness: the process is up (no dependency checks, served by /health)
- readiness: database reachable and the e-mail circuit not open
"""
from typing import Any

from sqlalchemy import text

from app.core.circuit_breaker import CircuitState, get_email_circuit_breaker
from app.core.logging import get_logger
from app.db.database import AsyncSessionLocal

logger = get_logger(__name__)

_STATUS_HEALTHY = "healthy"
_STATUS_DEGRADED = "degraded"

_CHECK_OK = "ok"

# filtered messages, no infrastructure details
_ERROR_DB = "error: db_unavailable"
_ERROR_EMAIL_CIRCUIT_OPEN = "error: email_circuit_open"


async def _check_db() -> str:
    """Run a trivial query against the database."""
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
        return _CHECK_OK
    except Exception as e:
        logger.warning("Database health check failed", extra_data={"error": str(e)})
        return _ERROR_DB


def _check_email() -> str:
    """E-mail is degraded while its circuit breaker is open."""
    if get_email_circuit_breaker().state == CircuitState.OPEN:
        return _ERROR_EMAIL_CIRCUIT_OPEN
    return _CHECK_OK


async def check_readiness() -> dict[str, Any]:
    """
    Readiness check over all dependencies.

    Returns a dict with the overall status ("healthy" or "degraded") and one
    "ok" / "error: ..." entry per dependency.
    """
    checks = {
        "db": await _check_db(),
        "email": _check_email(),
    }

    all_ok = all(v == _CHECK_OK for v in checks.values())
    overall_status = _STATUS_HEALTHY if all_ok else _STATUS_DEGRADED

    if not all_ok:
        logger.warning("Readiness check degraded", extra_data=checks)

    return {"status": overall_status, **checks}
