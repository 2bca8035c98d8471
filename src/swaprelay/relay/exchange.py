"""Exchange execution with relayer-held funds.

Only ``ExecutionError`` subclasses leave ``ExchangeExecutor.execute``:

- anything that fails before the swap is broadcast is a definite failure
  (plain ``ExecutionError`` / ``ExchangeRevertedError``), safe to refund;
- once the swap is broadcast, an undeterminable outcome is reported as
  ``ExchangeTimeoutError`` and must not be refunded automatically.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from swaprelay.chain import erc20
from swaprelay.chain.rpc import LedgerClient, TxReceipt
from swaprelay.chains import TokenConfig
from swaprelay.config import Settings
from swaprelay.errors import (
    ConfirmationTimeoutError,
    ExchangeRevertedError,
    ExchangeTimeoutError,
    ExecutionError,
    InsufficientOutputError,
    RelayError,
    RPCError,
)
from swaprelay.routing.base import LiquidityVenue, SwapTransaction
from swaprelay.swap.signer import RelayerSigner

logger = logging.getLogger(__name__)

Checkpoint = Callable[..., Awaitable[None]]


@dataclass
class ExchangeOutcome:
    swap_tx_hash: str
    swap_receipt: TxReceipt
    realized_output: int
    approval_tx_hash: Optional[str] = None
    approval_receipt: Optional[TxReceipt] = None

    @property
    def gas_cost_wei(self) -> int:
        cost = self.swap_receipt.gas_cost_wei
        if self.approval_receipt is not None:
            cost += self.approval_receipt.gas_cost_wei
        return cost


class ExchangeExecutor:
    """Approves the venue (if needed) and performs the swap."""

    def __init__(
        self,
        settings: Settings,
        client: LedgerClient,
        signer: RelayerSigner,
        venue: LiquidityVenue,
    ):
        self.settings = settings
        self.client = client
        self.signer = signer
        self.venue = venue

    async def execute(
        self,
        input_token: TokenConfig,
        output_token: TokenConfig,
        input_amount: int,
        min_output_amount: int,
        slippage_bps: int,
        checkpoint: Optional[Checkpoint] = None,
    ) -> ExchangeOutcome:
        """Swap ``input_amount`` held by the relayer, never retried.

        Raises:
            ExecutionError: definite failure, funds still with the relayer
            InsufficientOutputError: swap landed below the minimum output
            ExchangeTimeoutError: swap broadcast, outcome unknown
        """
        checkpoint = checkpoint or _noop_checkpoint
        relayer = self.signer.address

        try:
            quote = await self.venue.get_swap_transaction(
                input_token, output_token, input_amount, relayer, slippage_bps
            )
        except RelayError as e:
            raise ExecutionError(f"Venue could not provide a swap: {e}", code="exchange_unavailable")

        if quote.min_buy_amount < min_output_amount:
            raise ExecutionError(
                f"Venue minimum {quote.min_buy_amount} below required {min_output_amount}",
                code="slippage_exceeded",
            )

        approval_tx_hash, approval_receipt = await self._ensure_allowance(
            input_token, quote.allowance_target, input_amount, checkpoint
        )

        tx = quote.transaction
        gas = tx.gas or await self._estimate_swap_gas(tx)
        try:
            swap_tx_hash = await self.signer.submit(tx.to, tx.data, gas=gas, value=tx.value)
        except RPCError as e:
            raise ExecutionError(f"Swap broadcast rejected: {e}", code="exchange_submit_failed")

        try:
            await checkpoint(swap_tx_hash=swap_tx_hash)
            receipt = await self._confirm_swap(swap_tx_hash)
        except ExecutionError:
            raise
        except Exception as e:
            logger.exception(f"Unexpected error after swap broadcast {swap_tx_hash}")
            raise ExchangeTimeoutError(f"Swap {swap_tx_hash} outcome unknown: {e}", tx_hash=swap_tx_hash)

        realized = erc20.sum_transfers_to(receipt.logs, output_token.address, relayer)
        if realized < min_output_amount:
            raise InsufficientOutputError(
                f"Swap delivered {realized} {output_token.symbol}, minimum {min_output_amount}",
                realized_output=realized,
                tx_hash=swap_tx_hash,
            )

        logger.info(
            f"Swap {swap_tx_hash}: {input_amount} {input_token.symbol} -> "
            f"{realized} {output_token.symbol}"
        )
        return ExchangeOutcome(
            swap_tx_hash=swap_tx_hash,
            swap_receipt=receipt,
            realized_output=realized,
            approval_tx_hash=approval_tx_hash,
            approval_receipt=approval_receipt,
        )

    async def _ensure_allowance(
        self,
        token: TokenConfig,
        spender: Optional[str],
        amount: int,
        checkpoint: Checkpoint,
    ) -> tuple[Optional[str], Optional[TxReceipt]]:
        if not spender:
            raise ExecutionError("Venue quote has no allowance target", code="exchange_unavailable")

        try:
            allowance = await self.client.get_allowance(token.address, self.signer.address, spender)
            if allowance >= amount:
                return None, None

            logger.info(f"Approving {spender} for {token.symbol}")
            tx_hash = await self.signer.submit(
                token.address,
                erc20.encode_approve(spender),
                gas=self.settings.gas_limit_approval,
            )
            await checkpoint(approval_tx_hash=tx_hash)
            receipt = await self.client.wait_for_confirmation(
                tx_hash, timeout=self.settings.pull_timeout_seconds
            )
        except RPCError as e:
            raise ExecutionError(f"Venue approval failed: {e}", code="approval_failed")

        if not receipt.succeeded:
            raise ExecutionError(f"Venue approval {tx_hash} reverted", code="approval_failed")
        return tx_hash, receipt

    async def _estimate_swap_gas(self, tx: SwapTransaction) -> int:
        """Node estimate plus 20% headroom, or the configured limit."""
        try:
            estimate = await self.client.estimate_gas(
                {"from": self.signer.address, "to": tx.to, "data": tx.data, "value": hex(tx.value)}
            )
        except RPCError as e:
            logger.warning(f"Swap gas estimate failed, using {self.settings.gas_limit_swap}: {e}")
            return self.settings.gas_limit_swap
        return estimate * 12 // 10

    async def _confirm_swap(self, tx_hash: str) -> TxReceipt:
        """Wait for the swap and classify the outcome.

        A timeout is resolved against the chain: a late receipt is used as
        normal, a transaction unknown to the node was dropped (definite
        failure), and a still-pending transaction is an unknown outcome.
        """
        try:
            receipt = await self.client.wait_for_confirmation(
                tx_hash, timeout=self.settings.exchange_timeout_seconds
            )
        except ConfirmationTimeoutError:
            receipt = await self._resolve_timeout(tx_hash)

        if not receipt.succeeded:
            raise ExchangeRevertedError(f"Swap {tx_hash} reverted", tx_hash=tx_hash)
        return receipt

    async def _resolve_timeout(self, tx_hash: str) -> TxReceipt:
        try:
            receipt = await self.client.get_receipt(tx_hash)
            if receipt is not None:
                return receipt
            tx = await self.client.get_transaction(tx_hash)
        except RPCError as e:
            raise ExchangeTimeoutError(
                f"Swap {tx_hash} unconfirmed and status lookup failed: {e}", tx_hash=tx_hash
            )

        if tx is None:
            raise ExchangeRevertedError(f"Swap {tx_hash} dropped by the network", tx_hash=tx_hash)

        raise ExchangeTimeoutError(
            f"Swap {tx_hash} still pending after {self.settings.exchange_timeout_seconds}s",
            tx_hash=tx_hash,
        )


async def _noop_checkpoint(**fields) -> None:
    return None
