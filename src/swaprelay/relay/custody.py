"""Custody transfer: pull user funds to the relayer via EIP-3009."""

import logging
from typing import Awaitable, Callable, Optional

from swaprelay.chain import erc20
from swaprelay.chain.rpc import LedgerClient, TxReceipt
from swaprelay.chains import TokenConfig
from swaprelay.errors import ConfirmationTimeoutError, PullFailedError, RPCError
from swaprelay.swap.authorization import TransferAuthorization
from swaprelay.swap.signer import RelayerSigner

logger = logging.getLogger(__name__)

OnSubmitted = Callable[[str], Awaitable[None]]


class CustodyPuller:
    """Submits ``transferWithAuthorization`` and waits for it to land."""

    def __init__(self, client: LedgerClient, signer: RelayerSigner, gas_limit: int, timeout: float):
        self.client = client
        self.signer = signer
        self.gas_limit = gas_limit
        self.timeout = timeout

    async def pull(
        self,
        token: TokenConfig,
        authorization: TransferAuthorization,
        on_submitted: Optional[OnSubmitted] = None,
    ) -> TxReceipt:
        """Move the authorized amount from the user to the relayer.

        Raises:
            PullFailedError: broadcast rejected or transaction reverted (no
                funds moved), or ``outcome_unknown`` when no receipt could be
                obtained in time
        """
        v, r, s = authorization.vrs
        data = erc20.encode_transfer_with_authorization(
            from_address=authorization.from_address,
            to_address=authorization.to_address,
            value=authorization.value,
            valid_after=authorization.valid_after,
            valid_before=authorization.valid_before,
            nonce=authorization.nonce,
            v=v,
            r=r,
            s=s,
        )

        try:
            tx_hash = await self.signer.submit(token.address, data, gas=self.gas_limit)
        except RPCError as e:
            raise PullFailedError(f"Custody transfer rejected: {e}")

        if on_submitted is not None:
            await on_submitted(tx_hash)

        try:
            receipt = await self.client.wait_for_confirmation(tx_hash, timeout=self.timeout)
        except ConfirmationTimeoutError:
            receipt = await self._final_receipt(tx_hash)
            if receipt is None:
                raise PullFailedError(
                    f"Custody transfer {tx_hash} unconfirmed after {self.timeout}s",
                    tx_hash=tx_hash,
                    outcome_unknown=True,
                )

        if not receipt.succeeded:
            raise PullFailedError(f"Custody transfer {tx_hash} reverted", tx_hash=tx_hash)

        logger.info(
            f"Pulled {authorization.value} {token.symbol} from {authorization.from_address} ({tx_hash})"
        )
        return receipt

    async def _final_receipt(self, tx_hash: str) -> Optional[TxReceipt]:
        try:
            return await self.client.get_receipt(tx_hash)
        except RPCError as e:
            logger.error(f"Final receipt lookup for {tx_hash} failed: {e}")
            return None
