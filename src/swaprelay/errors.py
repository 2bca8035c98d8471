"""Error taxonomy for the relay.

Four families, each with its own handling:

1. ``PreconditionError``: detected before any funds move. The intent is
   marked ``failed`` and the error is surfaced to the caller verbatim.
2. ``ExecutionError``: detected after custody transfer. Triggers the
   compensator (refund), never swallowed.
3. ``CompensationError``: the refund itself failed. The intent is marked
   ``failed_needs_manual_refund`` and operators are alerted.
4. ``BookkeepingError``: on-ledger work succeeded but its durable record
   could not be written. The intent is flagged ``requires_reconciliation``.
"""

from typing import Optional


class RelayError(Exception):
    """Base class for all relay errors."""

    code = "relay_error"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


# ======================
# Preconditions (no funds moved)
# ======================


class PreconditionError(RelayError):
    """A pre-flight check failed."""

    code = "precondition_failed"


class UnsupportedAssetError(PreconditionError):
    code = "unsupported_asset"


class InsufficientBalanceError(PreconditionError):
    code = "insufficient_balance"


class NoRouteError(PreconditionError):
    """The venue has no liquidity path for the pair."""

    code = "no_route"


class QuoteUnavailableError(PreconditionError):
    """The venue could not be reached or returned an unusable quote."""

    code = "quote_unavailable"


class PriceUnavailableError(PreconditionError):
    """The price feed could not supply a required price."""

    code = "price_unavailable"


class SlippageExceededError(PreconditionError):
    code = "slippage_exceeded"


class FeeOutOfBoundsError(PreconditionError):
    code = "fee_out_of_bounds"


class FeesExceedOutputError(PreconditionError):
    code = "fees_exceed_output"


class InvalidAuthorizationError(PreconditionError):
    code = "invalid_authorization"


class NonceReusedError(PreconditionError):
    code = "nonce_reused"


class RelayerReserveError(PreconditionError):
    """Relayer native balance is below the hard floor."""

    code = "relayer_unavailable"


# ======================
# Execution (funds held by relayer)
# ======================


class ExecutionError(RelayError):
    """A step after custody transfer failed."""

    code = "execution_failed"


class PullFailedError(ExecutionError):
    """The custody transfer reverted or could not be confirmed."""

    code = "pull_failed"

    def __init__(self, message: str, tx_hash: Optional[str] = None, outcome_unknown: bool = False):
        super().__init__(message)
        self.tx_hash = tx_hash
        self.outcome_unknown = outcome_unknown


class ExchangeRevertedError(ExecutionError):
    code = "exchange_reverted"

    def __init__(self, message: str, tx_hash: Optional[str] = None):
        super().__init__(message)
        self.tx_hash = tx_hash


class ExchangeTimeoutError(ExecutionError):
    """The swap was submitted but its outcome could not be determined."""

    code = "exchange_timeout"

    def __init__(self, message: str, tx_hash: Optional[str] = None):
        super().__init__(message)
        self.tx_hash = tx_hash


class InsufficientOutputError(ExecutionError):
    """The swap executed but delivered less than the minimum output."""

    code = "insufficient_output"

    def __init__(self, message: str, realized_output: int = 0, tx_hash: Optional[str] = None):
        super().__init__(message)
        self.realized_output = realized_output
        self.tx_hash = tx_hash


class DisbursementError(ExecutionError):
    """A fee or net transfer after the swap failed."""

    code = "disbursement_failed"


class DataIntegrityError(RelayError):
    """Computed amounts violate an invariant (e.g. net output <= 0)."""

    code = "data_integrity"


# ======================
# Compensation / bookkeeping
# ======================


class CompensationError(RelayError):
    """The refund could not be completed."""

    code = "compensation_failed"


class BookkeepingError(RelayError):
    """A durable-store write failed after successful on-ledger work."""

    code = "bookkeeping_failed"


class InvalidTransitionError(RelayError):
    """Illegal intent lifecycle transition."""

    code = "invalid_transition"


class IntentNotFoundError(RelayError):
    code = "intent_not_found"


class RecoveryRefusedError(RelayError):
    """The intent cannot be recovered automatically; its outcome is unknown."""

    code = "manual_recovery_required"


# ======================
# Chain client
# ======================


class RPCError(RelayError):
    """JSON-RPC call failed or returned an error object."""

    code = "rpc_error"


class ConfirmationTimeoutError(RPCError):
    """No receipt within the confirmation window."""

    code = "confirmation_timeout"

    def __init__(self, message: str, tx_hash: Optional[str] = None):
        super().__init__(message)
        self.tx_hash = tx_hash
