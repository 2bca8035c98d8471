"""Disbursement of swap proceeds: platform fee, then net output to the user.

The relay fee is never transferred; it is simply the part of the gross
output the relayer keeps.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from swaprelay.chain import erc20
from swaprelay.chain.rpc import LedgerClient
from swaprelay.chains import TokenConfig
from swaprelay.config import Settings
from swaprelay.errors import DataIntegrityError, DisbursementError, RPCError
from swaprelay.fees.splitter import FeeQuote
from swaprelay.swap.signer import RelayerSigner

logger = logging.getLogger(__name__)

Checkpoint = Callable[..., Awaitable[None]]


@dataclass
class DisbursementOutcome:
    disbursement_tx_hash: str
    platform_fee_tx_hash: Optional[str] = None
    gas_cost_wei: int = 0


class Disburser:
    def __init__(self, settings: Settings, client: LedgerClient, signer: RelayerSigner):
        self.settings = settings
        self.client = client
        self.signer = signer

    async def disburse(
        self,
        token: TokenConfig,
        user_address: str,
        fees: FeeQuote,
        checkpoint: Checkpoint,
    ) -> DisbursementOutcome:
        """Send the platform fee and the net amount.

        Raises:
            DataIntegrityError: net amount is not positive; nothing sent
            DisbursementError: a transfer failed or could not be confirmed
        """
        net = fees.net_amount
        if net <= 0:
            raise DataIntegrityError(
                f"Net output {net} not positive (gross {fees.gross_amount}, "
                f"relay fee {fees.relay_fee_amount}, platform fee {fees.platform_fee_amount})"
            )

        gas_cost = 0
        platform_fee_tx_hash = None
        if fees.platform_fee_amount > 0:
            platform_fee_tx_hash, cost = await self._transfer(
                token, self.settings.platform_fee_recipient, fees.platform_fee_amount
            )
            gas_cost += cost
            await checkpoint(platform_fee_tx_hash=platform_fee_tx_hash)

        disbursement_tx_hash, cost = await self._transfer(token, user_address, net)
        gas_cost += cost
        await checkpoint(disbursement_tx_hash=disbursement_tx_hash)

        logger.info(f"Disbursed {net} {token.symbol} to {user_address} ({disbursement_tx_hash})")
        return DisbursementOutcome(
            disbursement_tx_hash=disbursement_tx_hash,
            platform_fee_tx_hash=platform_fee_tx_hash,
            gas_cost_wei=gas_cost,
        )

    async def _transfer(self, token: TokenConfig, to: str, amount: int) -> tuple[str, int]:
        tx_hash = None
        try:
            tx_hash = await self.signer.submit(
                token.address,
                erc20.encode_transfer(to, amount),
                gas=self.settings.gas_limit_transfer,
            )
            receipt = await self.client.wait_for_confirmation(
                tx_hash, timeout=self.settings.disbursement_timeout_seconds
            )
        except RPCError as e:
            raise DisbursementError(f"Transfer of {amount} {token.symbol} to {to} failed: {e} ({tx_hash or 'not sent'})")

        if not receipt.succeeded:
            raise DisbursementError(f"Transfer {tx_hash} of {amount} {token.symbol} to {to} reverted")
        return tx_hash, receipt.gas_cost_wei
