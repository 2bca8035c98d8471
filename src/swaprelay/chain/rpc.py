"""JSON-RPC client for the settlement ledger (EVM node).

Thin async wrapper over raw ``eth_*`` calls. Every call is bounded by the
client timeout; failures raise ``RPCError`` rather than returning defaults,
because the relay must never act on a guessed balance or receipt.
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from swaprelay.chain import erc20
from swaprelay.errors import ConfirmationTimeoutError, RPCError

logger = logging.getLogger(__name__)

_request_ids = itertools.count(1)


def _to_int(value: Optional[str], default: int = 0) -> int:
    if value is None:
        return default
    if isinstance(value, int):
        return value
    return int(value, 16)


@dataclass
class TxReceipt:
    """Subset of a transaction receipt the relay cares about."""

    tx_hash: str
    succeeded: bool
    block_number: int
    gas_used: int
    effective_gas_price: int
    logs: list[dict] = field(default_factory=list)

    @property
    def gas_cost_wei(self) -> int:
        return self.gas_used * self.effective_gas_price

    @classmethod
    def from_rpc(cls, data: dict) -> "TxReceipt":
        return cls(
            tx_hash=data.get("transactionHash", ""),
            succeeded=_to_int(data.get("status"), 0) == 1,
            block_number=_to_int(data.get("blockNumber"), 0),
            gas_used=_to_int(data.get("gasUsed"), 0),
            effective_gas_price=_to_int(data.get("effectiveGasPrice"), 0),
            logs=list(data.get("logs") or []),
        )


class LedgerClient:
    """Async JSON-RPC client for one EVM chain."""

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 15.0,
        poll_interval: float = 2.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._transport = transport

    async def _call(self, method: str, params: list) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": next(_request_ids),
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.rpc_url, json=payload)
        except httpx.HTTPError as e:
            logger.error(f"RPC {method} transport error: {e}")
            raise RPCError(f"{method} failed: {e}") from e

        if response.status_code != 200:
            logger.error(f"RPC {method} HTTP {response.status_code}")
            raise RPCError(f"{method} failed: HTTP {response.status_code}")

        data = response.json()
        if "error" in data and data["error"]:
            error = data["error"]
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            logger.error(f"RPC {method} error: {message}")
            raise RPCError(f"{method} failed: {message}")

        return data.get("result")

    # ======================
    # Reads
    # ======================

    async def eth_call(self, to: str, data: str) -> str:
        return await self._call("eth_call", [{"to": to, "data": data}, "latest"])

    async def get_native_balance(self, address: str) -> int:
        """Native currency balance in wei."""
        return _to_int(await self._call("eth_getBalance", [address, "latest"]))

    async def get_token_balance(self, token: str, owner: str) -> int:
        result = await self.eth_call(token, erc20.encode_balance_of(owner))
        return erc20.decode_uint(result)

    async def get_allowance(self, token: str, owner: str, spender: str) -> int:
        result = await self.eth_call(token, erc20.encode_allowance(owner, spender))
        return erc20.decode_uint(result)

    async def authorization_used(self, token: str, authorizer: str, nonce: str) -> bool:
        """Check EIP-3009 ``authorizationState`` for a nonce."""
        result = await self.eth_call(token, erc20.encode_authorization_state(authorizer, nonce))
        return erc20.decode_uint(result) != 0

    async def get_nonce(self, address: str) -> int:
        return _to_int(await self._call("eth_getTransactionCount", [address, "pending"]))

    async def get_gas_price(self) -> int:
        return _to_int(await self._call("eth_gasPrice", []))

    async def get_base_fee_history(self, block_count: int) -> list[int]:
        """Base fee per gas for the last ``block_count`` blocks, oldest first.

        ``eth_feeHistory`` returns one extra trailing entry (the next block's
        projected base fee), which is dropped.
        """
        result = await self._call("eth_feeHistory", [hex(block_count), "latest", []])
        fees = [_to_int(v) for v in (result or {}).get("baseFeePerGas", [])]
        return fees[:block_count]

    async def estimate_gas(self, tx: dict) -> int:
        return _to_int(await self._call("eth_estimateGas", [tx]))

    async def get_receipt(self, tx_hash: str) -> Optional[TxReceipt]:
        result = await self._call("eth_getTransactionReceipt", [tx_hash])
        if result is None:
            return None
        return TxReceipt.from_rpc(result)

    async def get_transaction(self, tx_hash: str) -> Optional[dict]:
        return await self._call("eth_getTransactionByHash", [tx_hash])

    # ======================
    # Writes
    # ======================

    async def send_raw_transaction(self, raw_tx_hex: str) -> str:
        if not raw_tx_hex.startswith("0x"):
            raw_tx_hex = f"0x{raw_tx_hex}"
        tx_hash = await self._call("eth_sendRawTransaction", [raw_tx_hex])
        if not tx_hash:
            raise RPCError("eth_sendRawTransaction returned no hash")
        return tx_hash

    async def wait_for_confirmation(self, tx_hash: str, timeout: float) -> TxReceipt:
        """Poll for a receipt until ``timeout`` seconds elapse.

        Returns the receipt whether the transaction succeeded or reverted;
        callers inspect ``receipt.succeeded``. Transient RPC errors while
        polling are logged and retried.

        Raises:
            ConfirmationTimeoutError: no receipt within ``timeout``
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            try:
                receipt = await self.get_receipt(tx_hash)
                if receipt is not None:
                    return receipt
            except RPCError as e:
                logger.warning(f"Receipt poll for {tx_hash} failed: {e}")

            if loop.time() >= deadline:
                raise ConfirmationTimeoutError(
                    f"Transaction {tx_hash} not confirmed after {timeout}s", tx_hash=tx_hash
                )
            await asyncio.sleep(self.poll_interval)
