"""Relayer signing identity.

The relayer is a single hot account that pays gas for every relay step. All
transactions go through ``RelayerSigner.submit`` so nonces are allocated from
one cache guarded by an asyncio lock.
"""

import asyncio
import logging
from typing import Optional

from eth_account import Account
from eth_utils import to_checksum_address

from swaprelay.chain.rpc import LedgerClient
from swaprelay.errors import RPCError

logger = logging.getLogger(__name__)


class RelayerSigner:
    """Signs and broadcasts legacy-priced transactions from the relayer account."""

    def __init__(self, private_key: str, client: LedgerClient, chain_id: int):
        self._account = Account.from_key(private_key)
        self.client = client
        self.chain_id = chain_id
        self._next_nonce: Optional[int] = None
        self._nonce_lock = asyncio.Lock()

    @property
    def address(self) -> str:
        return self._account.address

    async def _allocate_nonce(self) -> int:
        """Return the next nonce, taking the max of chain and cached values."""
        chain_nonce = await self.client.get_nonce(self.address)
        if self._next_nonce is None or chain_nonce > self._next_nonce:
            self._next_nonce = chain_nonce
        nonce = self._next_nonce
        self._next_nonce += 1
        return nonce

    def reset_nonce_cache(self) -> None:
        self._next_nonce = None

    async def submit(
        self,
        to: str,
        data: str,
        gas: int,
        value: int = 0,
        gas_price: Optional[int] = None,
    ) -> str:
        """Sign and broadcast a transaction, returning its hash.

        A broadcast failure resets the nonce cache so the next submission
        re-reads the pending nonce from the node.
        """
        async with self._nonce_lock:
            if gas_price is None:
                gas_price = await self.client.get_gas_price()
            nonce = await self._allocate_nonce()

            tx = {
                "nonce": nonce,
                "gasPrice": gas_price,
                "gas": gas,
                "to": to_checksum_address(to),
                "value": value,
                "data": data,
                "chainId": self.chain_id,
            }

            signed = self._account.sign_transaction(tx)
            raw = getattr(signed, "raw_transaction", None) or signed.rawTransaction
            raw_hex = raw.hex()

            try:
                tx_hash = await self.client.send_raw_transaction(raw_hex)
            except RPCError:
                self.reset_nonce_cache()
                raise

        logger.info(f"Relayer tx broadcast: {tx_hash} (nonce={nonce}, to={to})")
        return tx_hash
