"""FastAPI dependencies shared by the routers."""

from fastapi import Header, HTTPException

from swaprelay.config import get_settings
from swaprelay.relay.engine import RelayEngine, get_relay_engine
from swaprelay.services.reconciliation import Reconciler


def get_engine() -> RelayEngine:
    try:
        return get_relay_engine()
    except RuntimeError as e:
        raise HTTPException(status_code=503, detail=str(e))


def get_reconciler() -> Reconciler:
    return Reconciler()


async def require_admin_token(x_admin_token: str = Header(None)) -> bool:
    """Verify admin token from header.

    If ADMIN_TOKEN is not set, allows access (dev mode) outside production.
    """
    settings = get_settings()

    if not settings.admin_token:
        if settings.is_production:
            raise HTTPException(status_code=403, detail="Admin API disabled: ADMIN_TOKEN not set")
        return True

    if x_admin_token != settings.admin_token:
        raise HTTPException(status_code=401, detail="Invalid admin token")

    return True
