"""Admin API endpoints (token-protected)."""

from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from swaprelay.api.dependencies import get_engine, get_reconciler, require_admin_token
from swaprelay.api.routers.relay import SwapResponse
from swaprelay.config import get_settings
from swaprelay.errors import IntentNotFoundError, RecoveryRefusedError, RelayError, RPCError
from swaprelay.ledger.models import IntentStatus, SwapIntent
from swaprelay.relay.engine import RelayEngine
from swaprelay.services.reconciliation import Reconciler
from swaprelay.utils.locks import LockTimeoutError

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin_token)])


class IntentSummary(BaseModel):
    """Operator view of an intent."""

    id: str
    user_id: str
    user_address: str
    status: str
    input_asset: str
    output_asset: str
    input_amount: str
    net_output_amount: Optional[str] = None
    refund_amount: Optional[str] = None
    refund_asset: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    pull_tx_hash: Optional[str] = None
    swap_tx_hash: Optional[str] = None
    disbursement_tx_hash: Optional[str] = None
    refund_tx_hash: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_intent(cls, intent: SwapIntent) -> "IntentSummary":
        def amount(value):
            return str(value) if value is not None else None

        return cls(
            id=intent.id,
            user_id=intent.user_id,
            user_address=intent.user_address,
            status=IntentStatus(intent.status).value,
            input_asset=intent.input_asset,
            output_asset=intent.output_asset,
            input_amount=str(intent.input_amount),
            net_output_amount=amount(intent.net_output_amount),
            refund_amount=amount(intent.refund_amount),
            refund_asset=intent.refund_asset,
            error_code=intent.error_code,
            error_message=intent.error_message,
            pull_tx_hash=intent.pull_tx_hash,
            swap_tx_hash=intent.swap_tx_hash,
            disbursement_tx_hash=intent.disbursement_tx_hash,
            refund_tx_hash=intent.refund_tx_hash,
            created_at=intent.created_at,
            updated_at=intent.updated_at,
        )


class IntentEventView(BaseModel):
    from_status: Optional[str] = None
    to_status: str
    detail: Optional[str] = None
    created_at: Optional[datetime] = None


class IntentDetail(IntentSummary):
    events: list[IntentEventView] = []


class RelayerStatus(BaseModel):
    """Relayer gas reserve."""

    address: str
    balance: str
    level: str
    warning_below: str
    critical_below: str
    native_symbol: str


@router.get("/intents", response_model=list[IntentSummary])
async def list_intents(
    status: Optional[IntentStatus] = None,
    limit: int = 50,
    offset: int = 0,
    engine: RelayEngine = Depends(get_engine),
) -> list[IntentSummary]:
    """List intents, newest first, optionally filtered by status."""
    intents = await engine.store.list_by_status(status, limit=min(limit, 500), offset=offset)
    return [IntentSummary.from_intent(intent) for intent in intents]


@router.get("/intents/{intent_id}", response_model=IntentDetail)
async def get_intent_detail(
    intent_id: str,
    engine: RelayEngine = Depends(get_engine),
) -> IntentDetail:
    intent = await engine.store.get(intent_id)
    if intent is None:
        raise HTTPException(status_code=404, detail="Intent not found")

    summary = IntentSummary.from_intent(intent)
    return IntentDetail(
        **summary.model_dump(),
        events=[
            IntentEventView(
                from_status=event.from_status,
                to_status=event.to_status,
                detail=event.detail,
                created_at=event.created_at,
            )
            for event in intent.events
        ],
    )


@router.post("/intents/{intent_id}/refund", response_model=SwapResponse)
async def refund_intent(
    intent_id: str,
    engine: RelayEngine = Depends(get_engine),
) -> SwapResponse:
    """Recover a stalled intent, refunding held funds where that is safe."""
    try:
        result = await engine.recover(intent_id)
    except IntentNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except RecoveryRefusedError as e:
        raise HTTPException(status_code=409, detail=e.message)
    except LockTimeoutError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except RelayError as e:
        raise HTTPException(status_code=500, detail=f"{e.code}: {e.message}")

    return SwapResponse.from_result(result)


@router.post("/reconcile")
async def reconcile(
    limit: int = 10,
    dry_run: bool = False,
    reconciler: Reconciler = Depends(get_reconciler),
) -> dict:
    """Replay pending reconciliation records."""
    report = await reconciler.run_once(limit=min(limit, 100), dry_run=dry_run)
    return report.to_dict()


@router.get("/stuck", response_model=list[IntentSummary])
async def stuck_intents(
    minutes: Optional[int] = None,
    reconciler: Reconciler = Depends(get_reconciler),
) -> list[IntentSummary]:
    """Non-terminal intents with no progress for ``minutes``."""
    minutes = minutes or get_settings().stuck_intent_minutes
    stuck = await reconciler.find_stuck_intents(timedelta(minutes=minutes))
    return [IntentSummary.from_intent(intent) for intent in stuck]


@router.get("/relayer", response_model=RelayerStatus)
async def relayer_status(
    engine: RelayEngine = Depends(get_engine),
) -> RelayerStatus:
    """Fresh relayer balance check."""
    monitor = engine.monitor
    try:
        snapshot = await monitor.check()
    except RPCError as e:
        raise HTTPException(status_code=503, detail=f"Balance unavailable: {e.message}")

    return RelayerStatus(
        address=snapshot.address,
        balance=str(snapshot.balance),
        level=snapshot.level.value,
        warning_below=str(monitor.warning_threshold),
        critical_below=str(monitor.critical_threshold),
        native_symbol=monitor.native_symbol,
    )
