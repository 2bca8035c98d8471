"""Failure compensation: refund funds held by the relayer.

A refund is submitted at most once per intent. Its tx hash is checkpointed
right after broadcast, and a later compensation attempt for the same intent
waits on that transaction instead of sending another one.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from swaprelay.chain import erc20
from swaprelay.chain.rpc import LedgerClient
from swaprelay.chains import TokenConfig
from swaprelay.config import Settings
from swaprelay.errors import RelayError, RPCError
from swaprelay.ledger.models import IntentStatus
from swaprelay.ledger.store import IntentStore
from swaprelay.notifications.telegram import AlertSink
from swaprelay.relay.bookkeeping import Bookkeeper
from swaprelay.swap.signer import RelayerSigner

logger = logging.getLogger(__name__)


@dataclass
class CompensationOutcome:
    status: IntentStatus
    refund_tx_hash: Optional[str] = None
    refund_amount: Optional[int] = None
    refund_asset: Optional[str] = None
    error: Optional[str] = None


class Compensator:
    """Returns relayer-held funds to the user after a failed phase."""

    def __init__(
        self,
        settings: Settings,
        client: LedgerClient,
        signer: RelayerSigner,
        store: IntentStore,
        bookkeeper: Bookkeeper,
        alerts: AlertSink,
    ):
        self.settings = settings
        self.client = client
        self.signer = signer
        self.store = store
        self.bookkeeper = bookkeeper
        self.alerts = alerts

    async def refund(
        self,
        intent_id: str,
        user_address: str,
        token: TokenConfig,
        amount: int,
        reason: RelayError,
    ) -> CompensationOutcome:
        """Refund ``amount`` of ``token`` to the user and record the outcome.

        Never raises: a failed refund ends in ``failed_needs_manual_refund``
        with a critical alert.
        """
        logger.warning(
            f"Compensating intent {intent_id}: refunding {amount} {token.symbol} ({reason.code})"
        )

        try:
            intent = await self.store.get(intent_id)
        except Exception as e:
            return await self._manual(
                intent_id, token, amount, reason, f"Refund state unreadable: {e}"
            )
        existing = intent.refund_tx_hash if intent is not None else None

        tx_hash = existing
        try:
            if existing:
                logger.warning(f"Intent {intent_id} already has refund {existing}, not resubmitting")
            else:
                tx_hash = await self.signer.submit(
                    token.address,
                    erc20.encode_transfer(user_address, amount),
                    gas=self.settings.gas_limit_transfer,
                )
                await self.bookkeeper.checkpoint(
                    intent_id,
                    refund_tx_hash=tx_hash,
                    refund_amount=amount,
                    refund_asset=token.symbol,
                )
            receipt = await self.client.wait_for_confirmation(
                tx_hash, timeout=self.settings.disbursement_timeout_seconds
            )
        except RPCError as e:
            return await self._manual(intent_id, token, amount, reason, f"Refund failed: {e}", tx_hash)

        if not receipt.succeeded:
            return await self._manual(
                intent_id, token, amount, reason, f"Refund {tx_hash} reverted", tx_hash
            )

        status = await self.bookkeeper.finalize(
            intent_id,
            IntentStatus.REFUNDED,
            detail=f"Refunded after {reason.code}",
            refund_tx_hash=tx_hash,
            refund_amount=amount,
            refund_asset=token.symbol,
            error_code=reason.code,
            error_message=reason.message,
        )
        logger.info(f"Intent {intent_id} refunded {amount} {token.symbol} ({tx_hash})")
        return CompensationOutcome(
            status=status,
            refund_tx_hash=tx_hash,
            refund_amount=amount,
            refund_asset=token.symbol,
        )

    async def _manual(
        self,
        intent_id: str,
        token: TokenConfig,
        amount: int,
        reason: RelayError,
        error: str,
        refund_tx_hash: Optional[str] = None,
    ) -> CompensationOutcome:
        logger.error(f"Intent {intent_id}: {error}")
        self.alerts.critical(
            "Manual refund required",
            {
                "intent_id": intent_id,
                "asset": token.symbol,
                "amount": amount,
                "cause": reason.code,
                "error": error,
                "refund_tx": refund_tx_hash or "-",
            },
        )
        status = await self.bookkeeper.finalize(
            intent_id,
            IntentStatus.FAILED_NEEDS_MANUAL_REFUND,
            detail=error,
            error_code=reason.code,
            error_message=f"{reason.message}; {error}",
        )
        return CompensationOutcome(
            status=status,
            refund_tx_hash=refund_tx_hash,
            refund_amount=amount,
            refund_asset=token.symbol,
            error=error,
        )
