"""Relay engine: runs one swap intent through its whole lifecycle.

Phases, each separated by a durable write:

    created -> validating -> funds_pulled -> swap_executing -> completed

Failures before the pull end in ``failed`` with nothing moved. Failures after
the pull are compensated (``refunded``) or, when a refund is not safe or not
possible, left in ``failed_needs_manual_refund``. On-ledger work that could not
be recorded ends in ``requires_reconciliation``.
"""

import logging
import uuid
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError

from swaprelay.chain.rpc import LedgerClient, TxReceipt
from swaprelay.chains import TokenConfig, get_token
from swaprelay.config import Settings, get_settings
from swaprelay.errors import (
    BookkeepingError,
    DataIntegrityError,
    DisbursementError,
    ExchangeTimeoutError,
    ExecutionError,
    InsufficientOutputError,
    IntentNotFoundError,
    NonceReusedError,
    PreconditionError,
    PullFailedError,
    RecoveryRefusedError,
    RelayError,
    RPCError,
)
from swaprelay.fees.margin import MarginCalculator
from swaprelay.fees.oracle import PriceOracle, create_oracle
from swaprelay.fees.splitter import FeeQuote, compute_fees
from swaprelay.ledger.models import IntentStatus, SwapIntent
from swaprelay.ledger.store import IntentStore
from swaprelay.monitoring.relayer_balance import RelayerBalanceMonitor
from swaprelay.notifications.telegram import AlertSink, get_alert_sink
from swaprelay.relay.bookkeeping import Bookkeeper
from swaprelay.relay.compensator import CompensationOutcome, Compensator
from swaprelay.relay.custody import CustodyPuller
from swaprelay.relay.disburser import Disburser
from swaprelay.relay.exchange import ExchangeExecutor, ExchangeOutcome
from swaprelay.relay.preflight import PreflightValidator
from swaprelay.relay.types import PreflightResult, RelayResult, SwapRequest
from swaprelay.routing.base import LiquidityVenue
from swaprelay.routing.factory import create_venue
from swaprelay.swap.signer import RelayerSigner
from swaprelay.utils.locks import IntentLock

logger = logging.getLogger(__name__)

TX_REF_FIELDS = (
    "pull_tx_hash",
    "approval_tx_hash",
    "swap_tx_hash",
    "platform_fee_tx_hash",
    "disbursement_tx_hash",
    "refund_tx_hash",
)


class _Trail:
    """Everything observed for one intent while it runs.

    Kept in memory so the caller gets its on-ledger references even when the
    store could not record them.
    """

    def __init__(self, intent_id: str, bookkeeper: Bookkeeper):
        self.intent_id = intent_id
        self.bookkeeper = bookkeeper
        self.fields: dict[str, Any] = {}

    async def checkpoint(self, **fields: Any) -> None:
        self.fields.update(fields)
        await self.bookkeeper.checkpoint(self.intent_id, **fields)

    async def on_pull_submitted(self, tx_hash: str) -> None:
        await self.checkpoint(pull_tx_hash=tx_hash)

    def result(
        self,
        success: bool,
        status: IntentStatus,
        error: Optional[RelayError] = None,
        **extra: Any,
    ) -> RelayResult:
        data = {**self.fields, **extra}
        return RelayResult(
            success=success,
            intent_id=self.intent_id,
            status=status,
            error_code=error.code if error else None,
            error=error.message if error else None,
            **{name: data.get(name) for name in TX_REF_FIELDS},
            gross_output_amount=data.get("gross_output_amount"),
            relay_fee_amount=data.get("relay_fee_amount"),
            platform_fee_amount=data.get("platform_fee_amount"),
            net_output_amount=data.get("net_output_amount"),
            refund_amount=data.get("refund_amount"),
            refund_asset=data.get("refund_asset"),
        )


class RelayEngine:
    """Orchestrates pre-flight, custody, exchange, disbursement and compensation."""

    def __init__(
        self,
        settings: Settings,
        store: IntentStore,
        client: LedgerClient,
        signer: RelayerSigner,
        venue: LiquidityVenue,
        oracle: PriceOracle,
        margin_calculator: MarginCalculator,
        monitor: RelayerBalanceMonitor,
        alerts: AlertSink,
    ):
        self.settings = settings
        self.store = store
        self.client = client
        self.signer = signer
        self.venue = venue
        self.monitor = monitor
        self.alerts = alerts

        self.bookkeeper = Bookkeeper(store, alerts)
        self.preflight = PreflightValidator(
            settings, client, venue, oracle, margin_calculator, monitor, signer.address
        )
        self.puller = CustodyPuller(
            client, signer, settings.gas_limit_pull, settings.pull_timeout_seconds
        )
        self.executor = ExchangeExecutor(settings, client, signer, venue)
        self.disburser = Disburser(settings, client, signer)
        self.compensator = Compensator(settings, client, signer, store, self.bookkeeper, alerts)

    @property
    def relayer_address(self) -> str:
        return self.signer.address

    # ======================
    # Submission
    # ======================

    async def submit(self, request: SwapRequest) -> RelayResult:
        """Run a swap request to a terminal state.

        Never raises for business failures; the returned ``RelayResult``
        carries the terminal status and every tx reference observed.
        """
        intent_id = uuid.uuid4().hex
        origin = self._origin(request)

        try:
            await self.store.create(intent_id, **origin)
        except IntegrityError:
            error = NonceReusedError("Authorization nonce already used")
            logger.warning(f"Rejected request from {request.user_address}: {error.message}")
            return RelayResult(success=False, error_code=error.code, error=error.message)
        except Exception as e:
            logger.error(f"Could not create intent: {e}")
            return RelayResult(
                success=False, error_code="store_unavailable", error="Service temporarily unavailable"
            )

        logger.info(
            f"Intent {intent_id} created: {request.input_amount} {request.input_asset} -> "
            f"{request.output_asset} for {request.user_address}"
        )
        self.bookkeeper.track(intent_id, origin)
        trail = _Trail(intent_id, self.bookkeeper)
        try:
            async with IntentLock(intent_id, timeout=None, operation="submit"):
                return await self._run(request, trail)
        finally:
            self.bookkeeper.release(intent_id)

    async def _run(self, request: SwapRequest, trail: _Trail) -> RelayResult:
        intent_id = trail.intent_id

        try:
            await self.bookkeeper.commit(intent_id, IntentStatus.VALIDATING)
        except BookkeepingError as e:
            return trail.result(False, IntentStatus.CREATED, e)

        try:
            preflight = await self.preflight.validate(request)
        except PreconditionError as e:
            return await self._reject(trail, e)
        except Exception as e:
            logger.exception(f"Pre-flight for intent {intent_id} failed unexpectedly")
            return await self._reject(trail, PreconditionError(f"Pre-flight failed: {e}"))

        await trail.checkpoint(
            min_output_amount=preflight.min_output_amount,
            expected_output_amount=preflight.quote.buy_amount,
            estimated_fee_usd=preflight.fees.relay_fee_usd,
            margin_tier=preflight.margin.tier.value,
            margin_multiplier=preflight.margin.multiplier,
            venue=preflight.quote.venue,
        )

        # Custody: the point of no return
        try:
            pull_receipt = await self.puller.pull(
                preflight.input_token,
                request.authorization,
                on_submitted=trail.on_pull_submitted,
            )
        except PullFailedError as e:
            return await self._pull_failed(trail, e)
        except Exception as e:
            logger.exception(f"Custody transfer for intent {intent_id} failed unexpectedly")
            pull_tx_hash = trail.fields.get("pull_tx_hash")
            return await self._pull_failed(
                trail,
                PullFailedError(
                    f"Custody transfer error: {e}",
                    tx_hash=pull_tx_hash,
                    outcome_unknown=pull_tx_hash is not None,
                ),
            )

        try:
            await self.bookkeeper.commit(
                intent_id,
                IntentStatus.FUNDS_PULLED,
                detail=f"pull {pull_receipt.tx_hash}",
                pull_tx_hash=pull_receipt.tx_hash,
                gas_cost_wei=pull_receipt.gas_cost_wei,
            )
            await self.bookkeeper.commit(intent_id, IntentStatus.SWAP_EXECUTING)
        except BookkeepingError as e:
            return await self._compensate(
                trail, request.user_address, preflight.input_token, request.input_amount, e
            )

        try:
            exchange = await self.executor.execute(
                preflight.input_token,
                preflight.output_token,
                request.input_amount,
                preflight.min_output_amount,
                request.slippage_bps,
                checkpoint=trail.checkpoint,
            )
        except InsufficientOutputError as e:
            if e.realized_output > 0:
                return await self._compensate(
                    trail, request.user_address, preflight.output_token, e.realized_output, e
                )
            return await self._manual(trail, e)
        except ExchangeTimeoutError as e:
            return await self._manual(trail, e)
        except ExecutionError as e:
            return await self._compensate(
                trail, request.user_address, preflight.input_token, request.input_amount, e
            )
        except Exception as e:
            logger.exception(f"Exchange for intent {intent_id} failed unexpectedly")
            error = ExecutionError(f"Exchange error: {e}", code="exchange_failed")
            if trail.fields.get("swap_tx_hash"):
                return await self._manual(trail, error)
            return await self._compensate(
                trail, request.user_address, preflight.input_token, request.input_amount, error
            )

        return await self._settle(request, trail, preflight, pull_receipt, exchange)

    async def _settle(
        self,
        request: SwapRequest,
        trail: _Trail,
        preflight: PreflightResult,
        pull_receipt: TxReceipt,
        exchange: ExchangeOutcome,
    ) -> RelayResult:
        intent_id = trail.intent_id
        fees = self.realized_fees(preflight, pull_receipt, exchange)
        await trail.checkpoint(
            gross_output_amount=fees.gross_amount,
            relay_fee_amount=fees.relay_fee_amount,
            platform_fee_amount=fees.platform_fee_amount,
            net_output_amount=fees.net_amount,
            gas_cost_wei=fees.cost_native_wei,
        )

        try:
            disbursement = await self.disburser.disburse(
                preflight.output_token, request.user_address, fees, trail.checkpoint
            )
        except DataIntegrityError as e:
            logger.critical(f"Intent {intent_id}: {e.message}")
            return await self._manual(trail, e)
        except DisbursementError as e:
            return await self._unsettled(trail, e)
        except Exception as e:
            logger.exception(f"Disbursement for intent {intent_id} failed unexpectedly")
            return await self._unsettled(trail, DisbursementError(f"Disbursement error: {e}"))

        status = await self.bookkeeper.finalize(
            intent_id,
            IntentStatus.COMPLETED,
            detail=f"disbursed {disbursement.disbursement_tx_hash}",
            **{name: trail.fields.get(name) for name in TX_REF_FIELDS if trail.fields.get(name)},
            gross_output_amount=fees.gross_amount,
            relay_fee_amount=fees.relay_fee_amount,
            platform_fee_amount=fees.platform_fee_amount,
            net_output_amount=fees.net_amount,
            gas_cost_wei=fees.cost_native_wei + disbursement.gas_cost_wei,
        )
        logger.info(
            f"Intent {intent_id} {status.value}: {fees.net_amount} {preflight.output_token.symbol} "
            f"to {request.user_address}"
        )
        return trail.result(True, status)

    def realized_fees(
        self,
        preflight: PreflightResult,
        pull_receipt: TxReceipt,
        exchange: ExchangeOutcome,
    ) -> FeeQuote:
        """Fees from realized output and realized gas, at the pre-flight margin tier.

        Disbursement gas is not known yet, so it is estimated from the swap's
        effective gas price and the transfer gas limit.
        """
        transfers = 2 if self.settings.platform_fee_bps > 0 else 1
        disbursement_estimate = (
            exchange.swap_receipt.effective_gas_price * self.settings.gas_limit_transfer * transfers
        )
        return compute_fees(
            gross_amount=exchange.realized_output,
            cost_native_wei=pull_receipt.gas_cost_wei + exchange.gas_cost_wei + disbursement_estimate,
            native_usd=preflight.native_usd,
            output_usd=preflight.output_usd,
            output_decimals=preflight.output_token.decimals,
            margin=preflight.margin,
            platform_fee_bps=self.settings.platform_fee_bps,
            is_estimate=False,
            max_relay_fee_usd=self.settings.relay_fee_ceiling_usd,
        )

    # ======================
    # Failure paths
    # ======================

    async def _reject(self, trail: _Trail, error: PreconditionError) -> RelayResult:
        logger.info(f"Intent {trail.intent_id} rejected: {error.code}: {error.message}")
        status = await self.bookkeeper.finalize(
            trail.intent_id,
            IntentStatus.FAILED,
            detail=error.code,
            error_code=error.code,
            error_message=error.message,
        )
        return trail.result(False, status, error)

    async def _pull_failed(self, trail: _Trail, error: PullFailedError) -> RelayResult:
        if error.outcome_unknown:
            logger.critical(f"Intent {trail.intent_id}: custody transfer outcome unknown: {error.message}")
            self.alerts.critical(
                "Custody transfer outcome unknown",
                {"intent_id": trail.intent_id, "pull_tx": error.tx_hash or "-", "error": error.message},
            )
        else:
            logger.warning(f"Intent {trail.intent_id}: {error.message}")

        updates = {"error_code": error.code, "error_message": error.message}
        if error.tx_hash:
            updates["pull_tx_hash"] = error.tx_hash
        status = await self.bookkeeper.finalize(
            trail.intent_id, IntentStatus.FAILED, detail=error.code, **updates
        )
        return trail.result(False, status, error, pull_tx_hash=error.tx_hash or trail.fields.get("pull_tx_hash"))

    async def _compensate(
        self,
        trail: _Trail,
        user_address: str,
        token: TokenConfig,
        amount: int,
        error: RelayError,
    ) -> RelayResult:
        logger.error(f"Intent {trail.intent_id} failed after custody: {error.code}: {error.message}")
        outcome = await self.compensator.refund(trail.intent_id, user_address, token, amount, error)
        return self._compensated(trail, outcome, error)

    def _compensated(
        self, trail: _Trail, outcome: CompensationOutcome, error: RelayError
    ) -> RelayResult:
        if outcome.refund_tx_hash:
            trail.fields["refund_tx_hash"] = outcome.refund_tx_hash
        trail.fields["refund_amount"] = outcome.refund_amount
        trail.fields["refund_asset"] = outcome.refund_asset
        return trail.result(False, outcome.status, error)

    async def _manual(self, trail: _Trail, error: RelayError) -> RelayResult:
        """Stop without a refund: the funds' location is not certain."""
        logger.critical(f"Intent {trail.intent_id} needs manual handling: {error.code}: {error.message}")
        self.alerts.critical(
            "Manual refund required",
            {
                "intent_id": trail.intent_id,
                "cause": error.code,
                "error": error.message,
                **{name: value for name, value in trail.fields.items() if name in TX_REF_FIELDS},
            },
        )
        status = await self.bookkeeper.finalize(
            trail.intent_id,
            IntentStatus.FAILED_NEEDS_MANUAL_REFUND,
            detail=error.code,
            error_code=error.code,
            error_message=error.message,
        )
        return trail.result(False, status, error)

    async def _unsettled(self, trail: _Trail, error: DisbursementError) -> RelayResult:
        """A disbursement transfer failed after the swap; never retried."""
        logger.critical(f"Intent {trail.intent_id} disbursement failed: {error.message}")
        try:
            await self.store.transition(
                trail.intent_id,
                IntentStatus.REQUIRES_RECONCILIATION,
                detail=error.code,
                error_code=error.code,
                error_message=error.message,
            )
        except Exception as e:
            logger.error(f"Intent {trail.intent_id}: could not record disbursement failure: {e}")

        status = await self.bookkeeper.flag(
            trail.intent_id,
            IntentStatus.REQUIRES_RECONCILIATION,
            error.message,
            detail=error.code,
            **{name: value for name, value in trail.fields.items() if value is not None},
        )
        return trail.result(False, status, error)

    # ======================
    # Queries and operator recovery
    # ======================

    async def get_intent(self, intent_id: str) -> Optional[RelayResult]:
        intent = await self.store.get(intent_id)
        if intent is None:
            return None
        return RelayResult.from_intent(intent)

    async def recover(self, intent_id: str) -> RelayResult:
        """Drive a stalled intent to a terminal state.

        ``funds_pulled`` is refunded. ``validating`` is resolved against the
        authorization state on the ledger. ``swap_executing`` is never
        recovered automatically.

        Raises:
            IntentNotFoundError: unknown intent
            RecoveryRefusedError: outcome on the ledger cannot be determined
        """
        async with IntentLock(intent_id, operation="recover"):
            intent = await self.store.get(intent_id)
            if intent is None:
                raise IntentNotFoundError(f"Intent {intent_id} not found")

            if intent.is_terminal:
                return RelayResult.from_intent(intent)

            status = IntentStatus(intent.status)
            logger.warning(f"Recovering intent {intent_id} from {status.value}")

            if status == IntentStatus.SWAP_EXECUTING:
                raise RecoveryRefusedError(
                    f"Intent {intent_id} was executing a swap; resolve it manually"
                )
            if await self.store.has_pending_reconciliation(intent_id):
                raise RecoveryRefusedError(
                    f"Intent {intent_id} has unreconciled records; run reconciliation first"
                )

            trail = _Trail(intent_id, self.bookkeeper)
            trail.fields.update(
                {name: getattr(intent, name) for name in TX_REF_FIELDS if getattr(intent, name)}
            )
            token = get_token(intent.chain_id, intent.input_asset)
            if token is None:
                raise RecoveryRefusedError(f"Intent {intent_id} input asset {intent.input_asset} unknown")

            if status == IntentStatus.CREATED:
                await self.bookkeeper.commit(intent_id, IntentStatus.VALIDATING, detail="recovery")
                status = IntentStatus.VALIDATING

            if status == IntentStatus.VALIDATING:
                if not await self._pull_landed(intent, token):
                    error = PreconditionError("Abandoned before custody transfer", code="abandoned")
                    return await self._reject(trail, error)
                await self.bookkeeper.commit(
                    intent_id, IntentStatus.FUNDS_PULLED, detail="recovery: pull found on ledger"
                )

            error = ExecutionError("Recovered by operator before swap", code="recovered")
            outcome = await self.compensator.refund(
                intent_id, intent.user_address, token, intent.input_amount, error
            )
            return self._compensated(trail, outcome, error)

    async def _pull_landed(self, intent: SwapIntent, token: TokenConfig) -> bool:
        """Whether the intent's authorization was consumed on the ledger."""
        try:
            used = await self.client.authorization_used(token.address, intent.user_address, intent.auth_nonce)
            if used:
                return True
            if intent.pull_tx_hash and await self.client.get_transaction(intent.pull_tx_hash) is not None:
                raise RecoveryRefusedError(
                    f"Custody transfer {intent.pull_tx_hash} for intent {intent.id} still pending"
                )
        except RPCError as e:
            raise RecoveryRefusedError(f"Could not read ledger state for intent {intent.id}: {e}")
        return False

    def _origin(self, request: SwapRequest) -> dict:
        auth = request.authorization
        settings = self.settings
        return {
            "user_id": request.user_id,
            "user_address": request.user_address,
            "chain_id": settings.chain_id,
            "input_asset": request.input_asset.upper(),
            "output_asset": request.output_asset.upper(),
            "input_amount": request.input_amount,
            "min_output_amount": request.min_output_amount,
            "slippage_bps": request.slippage_bps,
            "fee_floor_usd": settings.relay_fee_floor_usd,
            "fee_ceiling_usd": settings.relay_fee_ceiling_usd,
            "auth_nonce": auth.nonce.lower(),
            "auth_valid_after": auth.valid_after,
            "auth_valid_before": auth.valid_before,
        }


# Global engine instance
_engine: Optional[RelayEngine] = None


def build_relay_engine(
    settings: Optional[Settings] = None,
    store: Optional[IntentStore] = None,
    alerts: Optional[AlertSink] = None,
) -> RelayEngine:
    """Wire a relay engine from settings."""
    settings = settings or get_settings()
    if not settings.has_relayer_key:
        raise RuntimeError("RELAYER_PRIVATE_KEY is not configured")

    alerts = alerts or get_alert_sink()
    client = LedgerClient(settings.rpc_url, timeout=settings.rpc_timeout_seconds)
    signer = RelayerSigner(settings.relayer_private_key, client, settings.chain_id)
    monitor = RelayerBalanceMonitor(
        client,
        signer.address,
        warning_threshold=settings.relayer_warning_balance,
        critical_threshold=settings.relayer_critical_balance,
        alerts=alerts,
        native_symbol=settings.native_symbol,
    )
    return RelayEngine(
        settings=settings,
        store=store or IntentStore(),
        client=client,
        signer=signer,
        venue=create_venue(settings),
        oracle=create_oracle(settings),
        margin_calculator=MarginCalculator(client, sample_blocks=settings.margin_sample_blocks),
        monitor=monitor,
        alerts=alerts,
    )


def get_relay_engine() -> RelayEngine:
    """Get or create the global relay engine."""
    global _engine
    if _engine is None:
        _engine = build_relay_engine()
    return _engine


def reset_relay_engine() -> None:
    global _engine
    _engine = None
