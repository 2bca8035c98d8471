"""Pre-flight validation.

Every check that can run without moving funds runs here, before the custody
pull. Independent reads (balance, nonce state, venue quote, congestion,
prices, relayer reserve) run concurrently; the checks are then applied in a
fixed order so the reported error is deterministic.
"""

import asyncio
import logging
from typing import Any, Awaitable

from swaprelay.chain.rpc import LedgerClient
from swaprelay.chains import get_native_coingecko_id, get_token
from swaprelay.config import Settings
from swaprelay.errors import (
    FeeOutOfBoundsError,
    FeesExceedOutputError,
    InsufficientBalanceError,
    InvalidAuthorizationError,
    NonceReusedError,
    PreconditionError,
    RelayerReserveError,
    RPCError,
    SlippageExceededError,
    UnsupportedAssetError,
)
from swaprelay.fees.margin import MarginCalculator
from swaprelay.fees.oracle import PriceOracle
from swaprelay.fees.splitter import apply_slippage, compute_fees
from swaprelay.monitoring.relayer_balance import RelayerBalanceMonitor
from swaprelay.relay.types import PreflightResult, SwapRequest
from swaprelay.routing.base import LiquidityVenue

logger = logging.getLogger(__name__)


class PreflightValidator:
    """Validates a swap request before any funds move."""

    def __init__(
        self,
        settings: Settings,
        client: LedgerClient,
        venue: LiquidityVenue,
        oracle: PriceOracle,
        margin_calculator: MarginCalculator,
        monitor: RelayerBalanceMonitor,
        relayer_address: str,
    ):
        self.settings = settings
        self.client = client
        self.venue = venue
        self.oracle = oracle
        self.margin_calculator = margin_calculator
        self.monitor = monitor
        self.relayer_address = relayer_address

    async def _bounded(self, awaitable: Awaitable[Any], timeout: float, what: str) -> Any:
        try:
            return await asyncio.wait_for(awaitable, timeout=timeout)
        except asyncio.TimeoutError:
            raise PreconditionError(f"Timed out reading {what}", code="upstream_timeout")
        except RPCError as e:
            raise PreconditionError(f"Ledger unavailable while reading {what}: {e}", code="ledger_unavailable")

    def _check_request(self, request: SwapRequest):
        input_token = get_token(self.settings.chain_id, request.input_asset)
        output_token = get_token(self.settings.chain_id, request.output_asset)

        if input_token is None:
            raise UnsupportedAssetError(f"Unsupported input asset: {request.input_asset}")
        if output_token is None:
            raise UnsupportedAssetError(f"Unsupported output asset: {request.output_asset}")
        if input_token.symbol == output_token.symbol:
            raise UnsupportedAssetError("Input and output assets must differ")
        if not input_token.supports_authorization:
            raise UnsupportedAssetError(
                f"{input_token.symbol} does not support gasless authorization"
            )
        if request.input_amount <= 0:
            raise InsufficientBalanceError("Input amount must be positive")
        if not 0 <= request.slippage_bps <= self.settings.max_slippage_bps:
            raise SlippageExceededError(
                f"Slippage {request.slippage_bps} bps outside 0..{self.settings.max_slippage_bps}"
            )

        return input_token, output_token

    def _check_authorization(self, request: SwapRequest, input_token) -> None:
        auth = request.authorization

        if auth.from_address.lower() != request.user_address.lower():
            raise InvalidAuthorizationError("Authorization is not from the requesting user")
        if auth.to_address.lower() != self.relayer_address.lower():
            raise InvalidAuthorizationError("Authorization does not target the relayer")
        if auth.value != request.input_amount:
            raise InvalidAuthorizationError("Authorization amount does not match input amount")
        if not auth.is_live(margin_seconds=self.settings.authorization_expiry_margin_seconds):
            raise InvalidAuthorizationError("Authorization is expired or not yet valid")

        try:
            signer = auth.recover_signer(input_token, self.settings.chain_id)
        except Exception as e:
            raise InvalidAuthorizationError(f"Malformed authorization signature: {e}")
        if signer.lower() != request.user_address.lower():
            raise InvalidAuthorizationError("Authorization signature does not match user")

    async def validate(self, request: SwapRequest) -> PreflightResult:
        """Run all checks.

        Raises:
            PreconditionError: the first failing check, no funds moved
        """
        input_token, output_token = self._check_request(request)
        self._check_authorization(request, input_token)

        rpc_timeout = self.settings.rpc_timeout_seconds
        price_ids = [get_native_coingecko_id(self.settings.chain_id), output_token.coingecko_id]

        results = await asyncio.gather(
            self._bounded(
                self.client.get_token_balance(input_token.address, request.user_address),
                rpc_timeout,
                "user balance",
            ),
            self._bounded(
                self.client.authorization_used(
                    input_token.address, request.user_address, request.authorization.nonce
                ),
                rpc_timeout,
                "authorization state",
            ),
            self._bounded(self.monitor.is_above_floor(), rpc_timeout, "relayer balance"),
            self._bounded(
                self.venue.get_quote(
                    input_token,
                    output_token,
                    request.input_amount,
                    self.relayer_address,
                    request.slippage_bps,
                ),
                self.settings.quote_timeout_seconds,
                "venue quote",
            ),
            self._bounded(self.margin_calculator.calculate(), rpc_timeout, "fee history"),
            self._bounded(self.oracle.get_usd_prices(price_ids), rpc_timeout, "prices"),
            self._bounded(self.client.get_gas_price(), rpc_timeout, "gas price"),
            return_exceptions=True,
        )

        balance = results[0]
        if isinstance(balance, int) and balance < request.input_amount:
            raise InsufficientBalanceError(
                f"Balance {balance} below required {request.input_amount} {input_token.symbol}"
            )

        (
            balance,
            nonce_used_on_chain,
            relayer_ok,
            quote,
            margin,
            prices,
            gas_price,
        ) = self._unwrap(results)

        if nonce_used_on_chain:
            raise NonceReusedError("Authorization nonce already used")
        if not relayer_ok:
            raise RelayerReserveError("Relayer temporarily unavailable, try again later")

        if request.min_output_amount is not None:
            min_output = request.min_output_amount
        elif request.reference_output is not None:
            min_output = apply_slippage(request.reference_output, request.slippage_bps)
        else:
            min_output = apply_slippage(quote.buy_amount, request.slippage_bps)

        if quote.buy_amount < min_output:
            raise SlippageExceededError(
                f"Quoted output {quote.buy_amount} below minimum {min_output} {output_token.symbol}"
            )

        native_usd = prices[price_ids[0]]
        output_usd = prices[price_ids[1]]
        fees = compute_fees(
            gross_amount=quote.buy_amount,
            cost_native_wei=gas_price * self.estimated_gas(quote.estimated_gas),
            native_usd=native_usd,
            output_usd=output_usd,
            output_decimals=output_token.decimals,
            margin=margin,
            platform_fee_bps=self.settings.platform_fee_bps,
        )

        floor = self.settings.relay_fee_floor_usd
        ceiling = self.settings.relay_fee_ceiling_usd
        if not floor <= fees.relay_fee_usd <= ceiling:
            raise FeeOutOfBoundsError(
                f"Relay fee ${fees.relay_fee_usd:.4f} outside [${floor}, ${ceiling}]"
            )
        if fees.net_amount <= 0:
            raise FeesExceedOutputError("Fees would consume the entire output")

        logger.info(
            f"Pre-flight ok: {request.input_amount} {input_token.symbol} -> "
            f"{quote.buy_amount} {output_token.symbol} (min {min_output}, "
            f"relay fee ${fees.relay_fee_usd:.4f}, tier {margin.tier.value})"
        )

        return PreflightResult(
            input_token=input_token,
            output_token=output_token,
            quote=quote,
            margin=margin,
            fees=fees,
            min_output_amount=min_output,
            native_usd=native_usd,
            output_usd=output_usd,
            gas_price=gas_price,
        )

    def estimated_gas(self, swap_gas: int | None) -> int:
        """Gas for pull, approval, swap and the two disbursement transfers."""
        s = self.settings
        return (
            s.gas_limit_pull
            + s.gas_limit_approval
            + (swap_gas or s.gas_limit_swap)
            + 2 * s.gas_limit_transfer
        )

    @staticmethod
    def _unwrap(results: list) -> list:
        """Re-raise the first failure in gather order."""
        for result in results:
            if isinstance(result, BaseException):
                if isinstance(result, PreconditionError):
                    raise result
                raise PreconditionError(f"Pre-flight read failed: {result}") from result
        return results
