"""SQLAlchemy models for the intent ledger."""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    TypeDecorator,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class BaseUnits(TypeDecorator):
    """Unbounded integer token amount stored as a decimal string.

    Token base units routinely exceed 64 bits (18-decimal tokens), so they are
    kept as text and converted back to ``int`` on load.
    """

    impl = String(80)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(int(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return int(value)


class IntentStatus(str, Enum):
    """Lifecycle of a swap intent."""

    CREATED = "created"
    VALIDATING = "validating"
    FUNDS_PULLED = "funds_pulled"          # Custody transfer confirmed (commit point)
    SWAP_EXECUTING = "swap_executing"
    COMPLETED = "completed"
    REFUNDED = "refunded"
    FAILED_NEEDS_MANUAL_REFUND = "failed_needs_manual_refund"
    REQUIRES_RECONCILIATION = "requires_reconciliation"
    FAILED = "failed"                      # Rejected before any funds moved


TERMINAL_STATUSES = frozenset(
    {
        IntentStatus.COMPLETED,
        IntentStatus.REFUNDED,
        IntentStatus.FAILED_NEEDS_MANUAL_REFUND,
        IntentStatus.REQUIRES_RECONCILIATION,
        IntentStatus.FAILED,
    }
)

ALLOWED_TRANSITIONS: dict[IntentStatus, frozenset[IntentStatus]] = {
    IntentStatus.CREATED: frozenset({IntentStatus.VALIDATING}),
    IntentStatus.VALIDATING: frozenset({IntentStatus.FUNDS_PULLED, IntentStatus.FAILED}),
    IntentStatus.FUNDS_PULLED: frozenset(
        {
            IntentStatus.SWAP_EXECUTING,
            IntentStatus.REFUNDED,
            IntentStatus.FAILED_NEEDS_MANUAL_REFUND,
        }
    ),
    IntentStatus.SWAP_EXECUTING: frozenset(
        {
            IntentStatus.COMPLETED,
            IntentStatus.REFUNDED,
            IntentStatus.FAILED_NEEDS_MANUAL_REFUND,
            IntentStatus.REQUIRES_RECONCILIATION,
        }
    ),
}


def is_terminal(status: IntentStatus) -> bool:
    return IntentStatus(status) in TERMINAL_STATUSES


def can_transition(current: IntentStatus, target: IntentStatus) -> bool:
    """Check whether ``current -> target`` is a legal lifecycle move."""
    return IntentStatus(target) in ALLOWED_TRANSITIONS.get(IntentStatus(current), frozenset())


class SwapIntent(Base):
    """A user's request to swap one custodied asset for another via the relayer."""

    __tablename__ = "swap_intents"
    __table_args__ = (Index("ix_swap_intents_status_updated", "status", "updated_at"),)

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    user_address: Mapped[str] = mapped_column(String(42), nullable=False)

    # Parameters
    chain_id: Mapped[int] = mapped_column(Integer, nullable=False)
    input_asset: Mapped[str] = mapped_column(String(20), nullable=False)
    output_asset: Mapped[str] = mapped_column(String(20), nullable=False)
    input_amount: Mapped[int] = mapped_column(BaseUnits, nullable=False)
    min_output_amount: Mapped[Optional[int]] = mapped_column(BaseUnits, nullable=True)
    slippage_bps: Mapped[int] = mapped_column(Integer, nullable=False)
    expected_output_amount: Mapped[Optional[int]] = mapped_column(BaseUnits, nullable=True)
    estimated_fee_usd: Mapped[Optional[Decimal]] = mapped_column(Numeric(36, 18), nullable=True)
    fee_floor_usd: Mapped[Decimal] = mapped_column(Numeric(36, 18), nullable=False)
    fee_ceiling_usd: Mapped[Decimal] = mapped_column(Numeric(36, 18), nullable=False)
    margin_tier: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    margin_multiplier: Mapped[Optional[Decimal]] = mapped_column(Numeric(8, 4), nullable=True)
    venue: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Authorization (EIP-3009)
    auth_nonce: Mapped[str] = mapped_column(String(66), unique=True, nullable=False)
    auth_valid_after: Mapped[int] = mapped_column(Integer, nullable=False)
    auth_valid_before: Mapped[int] = mapped_column(Integer, nullable=False)

    # Lifecycle
    status: Mapped[IntentStatus] = mapped_column(
        String(32), default=IntentStatus.CREATED, nullable=False, index=True
    )
    pull_tx_hash: Mapped[Optional[str]] = mapped_column(String(66), nullable=True, index=True)
    approval_tx_hash: Mapped[Optional[str]] = mapped_column(String(66), nullable=True)
    swap_tx_hash: Mapped[Optional[str]] = mapped_column(String(66), nullable=True, index=True)
    platform_fee_tx_hash: Mapped[Optional[str]] = mapped_column(String(66), nullable=True)
    disbursement_tx_hash: Mapped[Optional[str]] = mapped_column(String(66), nullable=True)
    refund_tx_hash: Mapped[Optional[str]] = mapped_column(String(66), nullable=True)
    gross_output_amount: Mapped[Optional[int]] = mapped_column(BaseUnits, nullable=True)
    relay_fee_amount: Mapped[Optional[int]] = mapped_column(BaseUnits, nullable=True)
    platform_fee_amount: Mapped[Optional[int]] = mapped_column(BaseUnits, nullable=True)
    net_output_amount: Mapped[Optional[int]] = mapped_column(BaseUnits, nullable=True)
    refund_amount: Mapped[Optional[int]] = mapped_column(BaseUnits, nullable=True)
    refund_asset: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    gas_cost_wei: Mapped[Optional[int]] = mapped_column(BaseUnits, nullable=True)
    error_code: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, server_default=func.now()
    )
    validated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    funds_pulled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    swap_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    failed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    reconciled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    events: Mapped[list["IntentEvent"]] = relationship(
        back_populates="intent", lazy="selectin", order_by="IntentEvent.id"
    )

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.status)


class IntentEvent(Base):
    """Append-only record of one lifecycle transition."""

    __tablename__ = "intent_events"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    intent_id: Mapped[str] = mapped_column(ForeignKey("swap_intents.id"), nullable=False, index=True)
    from_status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    to_status: Mapped[str] = mapped_column(String(32), nullable=False)
    detail: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    # Relationships
    intent: Mapped["SwapIntent"] = relationship(back_populates="events")


class ReconciliationRecord(Base):
    """Snapshot of on-ledger work whose durable record could not be written.

    Processed later by the reconciler, which applies the snapshot to the
    intent row exactly once.
    """

    __tablename__ = "reconciliation_records"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    intent_id: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    snapshot: Mapped[str] = mapped_column(Text, nullable=False)  # JSON
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reconciled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    reconciled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    reconcile_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )
