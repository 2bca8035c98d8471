"""Request and result types for the relay engine."""

from dataclasses import asdict, dataclass, field
from decimal import Decimal
from typing import Optional

from swaprelay.chains import TokenConfig
from swaprelay.fees.margin import Margin
from swaprelay.fees.splitter import FeeQuote
from swaprelay.ledger.models import IntentStatus, SwapIntent
from swaprelay.routing.base import VenueQuote
from swaprelay.swap.authorization import TransferAuthorization

MANUAL_REFUND_MESSAGE = (
    "Your swap could not be completed and the refund needs review. "
    "Please contact support with your intent ID."
)


@dataclass
class SwapRequest:
    """A user's gasless swap request.

    The minimum acceptable output is taken from ``min_output_amount`` when
    given, otherwise from ``reference_output`` less slippage, otherwise from
    the venue's own quote less slippage.
    """

    user_id: str
    user_address: str
    input_asset: str
    output_asset: str
    input_amount: int
    authorization: TransferAuthorization
    slippage_bps: int = 50
    reference_output: Optional[int] = None
    min_output_amount: Optional[int] = None


@dataclass
class PreflightResult:
    """Everything pre-flight learned, reused by later phases."""

    input_token: TokenConfig
    output_token: TokenConfig
    quote: VenueQuote
    margin: Margin
    fees: FeeQuote
    min_output_amount: int
    native_usd: Decimal
    output_usd: Decimal
    gas_price: int


@dataclass
class RelayResult:
    """Outcome of a relay attempt, shaped for API responses."""

    success: bool
    intent_id: Optional[str] = None
    status: Optional[IntentStatus] = None
    error_code: Optional[str] = None
    error: Optional[str] = None
    pull_tx_hash: Optional[str] = None
    approval_tx_hash: Optional[str] = None
    swap_tx_hash: Optional[str] = None
    platform_fee_tx_hash: Optional[str] = None
    disbursement_tx_hash: Optional[str] = None
    refund_tx_hash: Optional[str] = None
    gross_output_amount: Optional[int] = None
    relay_fee_amount: Optional[int] = None
    platform_fee_amount: Optional[int] = None
    net_output_amount: Optional[int] = None
    refund_amount: Optional[int] = None
    refund_asset: Optional[str] = None
    tx_refs: dict = field(default_factory=dict)

    def __post_init__(self):
        # Internal failure detail stays in the ledger row and the operator alert
        if self.status == IntentStatus.FAILED_NEEDS_MANUAL_REFUND:
            self.error = MANUAL_REFUND_MESSAGE
        if not self.tx_refs:
            self.tx_refs = {
                name: value
                for name, value in (
                    ("pull", self.pull_tx_hash),
                    ("approval", self.approval_tx_hash),
                    ("swap", self.swap_tx_hash),
                    ("platform_fee", self.platform_fee_tx_hash),
                    ("disbursement", self.disbursement_tx_hash),
                    ("refund", self.refund_tx_hash),
                )
                if value
            }

    @property
    def requires_reconciliation(self) -> bool:
        return self.status == IntentStatus.REQUIRES_RECONCILIATION

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value if self.status else None
        for key in (
            "gross_output_amount",
            "relay_fee_amount",
            "platform_fee_amount",
            "net_output_amount",
            "refund_amount",
        ):
            if data[key] is not None:
                data[key] = str(data[key])
        return data

    @classmethod
    def from_intent(cls, intent: SwapIntent, success: Optional[bool] = None) -> "RelayResult":
        status = IntentStatus(intent.status)
        if success is None:
            success = status == IntentStatus.COMPLETED
        return cls(
            success=success,
            intent_id=intent.id,
            status=status,
            error_code=intent.error_code,
            error=intent.error_message,
            pull_tx_hash=intent.pull_tx_hash,
            approval_tx_hash=intent.approval_tx_hash,
            swap_tx_hash=intent.swap_tx_hash,
            platform_fee_tx_hash=intent.platform_fee_tx_hash,
            disbursement_tx_hash=intent.disbursement_tx_hash,
            refund_tx_hash=intent.refund_tx_hash,
            gross_output_amount=intent.gross_output_amount,
            relay_fee_amount=intent.relay_fee_amount,
            platform_fee_amount=intent.platform_fee_amount,
            net_output_amount=intent.net_output_amount,
            refund_amount=intent.refund_amount,
            refund_asset=intent.refund_asset,
        )
