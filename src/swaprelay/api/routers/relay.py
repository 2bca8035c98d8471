"""Gasless swap endpoints.

Business failures (rejected pre-flight, refunded swaps) are normal outcomes
and come back as HTTP 200 with ``success: false`` and an error code.
"""

import re
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator

from swaprelay.api.dependencies import get_engine
from swaprelay.chains import get_supported_tokens
from swaprelay.config import get_settings
from swaprelay.relay.engine import RelayEngine
from swaprelay.relay.types import RelayResult, SwapRequest
from swaprelay.swap.authorization import TransferAuthorization

router = APIRouter()

ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
NONCE_RE = re.compile(r"^0x[a-fA-F0-9]{64}$")
SIGNATURE_RE = re.compile(r"^0x[a-fA-F0-9]{130}$")


def _address(v: str) -> str:
    v = v.strip()
    if not ADDRESS_RE.match(v):
        raise ValueError("Invalid address format")
    return v


def _base_units(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = v.strip()
    if not v.isdigit():
        raise ValueError("Amount must be a non-negative integer in base units")
    return v


class AuthorizationPayload(BaseModel):
    """Signed EIP-3009 ``TransferWithAuthorization``."""

    from_address: str = Field(..., description="Token holder (must equal user_address)")
    to_address: str = Field(..., description="Relayer address")
    value: str = Field(..., description="Authorized amount in base units")
    valid_after: int = Field(..., ge=0)
    valid_before: int = Field(..., gt=0)
    nonce: str = Field(..., description="0x-prefixed bytes32")
    signature: str = Field(..., description="0x-prefixed 65-byte signature")

    @field_validator("from_address", "to_address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        return _address(v)

    @field_validator("value")
    @classmethod
    def validate_value(cls, v: str) -> str:
        return _base_units(v)

    @field_validator("nonce")
    @classmethod
    def validate_nonce(cls, v: str) -> str:
        if not NONCE_RE.match(v):
            raise ValueError("Nonce must be 0x-prefixed 32 bytes")
        return v.lower()

    @field_validator("signature")
    @classmethod
    def validate_signature(cls, v: str) -> str:
        if not SIGNATURE_RE.match(v):
            raise ValueError("Signature must be 0x-prefixed 65 bytes")
        return v

    def to_authorization(self) -> TransferAuthorization:
        return TransferAuthorization(
            from_address=self.from_address,
            to_address=self.to_address,
            value=int(self.value),
            valid_after=self.valid_after,
            valid_before=self.valid_before,
            nonce=self.nonce,
            signature=self.signature,
        )


class SwapRequestPayload(BaseModel):
    """Request to swap ``input_amount`` of ``input_asset`` without paying gas."""

    user_id: str = Field(..., min_length=1, max_length=64)
    user_address: str
    input_asset: str = Field(..., min_length=2, max_length=20)
    output_asset: str = Field(..., min_length=2, max_length=20)
    input_amount: str = Field(..., description="Input amount in base units")
    slippage_bps: Optional[int] = Field(default=None, ge=0, le=10000)
    reference_output: Optional[str] = Field(
        default=None, description="Output the user was quoted, in base units"
    )
    min_output_amount: Optional[str] = Field(default=None, description="Explicit minimum output")
    authorization: AuthorizationPayload

    @field_validator("user_address")
    @classmethod
    def validate_user_address(cls, v: str) -> str:
        return _address(v)

    @field_validator("input_asset", "output_asset")
    @classmethod
    def normalize_asset(cls, v: str) -> str:
        return v.upper().strip()

    @field_validator("input_amount", "reference_output", "min_output_amount")
    @classmethod
    def validate_amounts(cls, v: Optional[str]) -> Optional[str]:
        return _base_units(v)

    def to_request(self, default_slippage_bps: int) -> SwapRequest:
        return SwapRequest(
            user_id=self.user_id,
            user_address=self.user_address,
            input_asset=self.input_asset,
            output_asset=self.output_asset,
            input_amount=int(self.input_amount),
            authorization=self.authorization.to_authorization(),
            slippage_bps=default_slippage_bps if self.slippage_bps is None else self.slippage_bps,
            reference_output=int(self.reference_output) if self.reference_output else None,
            min_output_amount=int(self.min_output_amount) if self.min_output_amount else None,
        )


class SwapResponse(BaseModel):
    """Outcome of a swap intent. Amounts are base-unit strings."""

    success: bool
    intent_id: Optional[str] = None
    status: Optional[str] = None
    error_code: Optional[str] = None
    error: Optional[str] = None
    tx_refs: dict[str, str] = Field(default_factory=dict)
    gross_output_amount: Optional[str] = None
    relay_fee_amount: Optional[str] = None
    platform_fee_amount: Optional[str] = None
    net_output_amount: Optional[str] = None
    refund_amount: Optional[str] = None
    refund_asset: Optional[str] = None
    requires_reconciliation: bool = False

    @classmethod
    def from_result(cls, result: RelayResult) -> "SwapResponse":
        data = result.to_dict()
        data["requires_reconciliation"] = result.requires_reconciliation
        return cls(**data)


class RelayerInfo(BaseModel):
    """What a wallet needs to build an authorization."""

    relayer_address: str
    chain_id: int
    supported_assets: list[str]
    platform_fee_bps: int
    default_slippage_bps: int
    max_slippage_bps: int


@router.post("/swaps", response_model=SwapResponse)
async def submit_swap(
    payload: SwapRequestPayload,
    engine: RelayEngine = Depends(get_engine),
) -> SwapResponse:
    """Execute a gasless swap to a terminal state."""
    settings = get_settings()
    result = await engine.submit(payload.to_request(settings.default_slippage_bps))
    return SwapResponse.from_result(result)


@router.get("/swaps/{intent_id}", response_model=SwapResponse)
async def get_swap(intent_id: str, engine: RelayEngine = Depends(get_engine)) -> SwapResponse:
    """Current state of a swap intent."""
    result = await engine.get_intent(intent_id)
    if result is None:
        raise HTTPException(status_code=404, detail="Intent not found")
    return SwapResponse.from_result(result)


@router.get("/relayer", response_model=RelayerInfo)
async def relayer_info(engine: RelayEngine = Depends(get_engine)) -> RelayerInfo:
    settings = get_settings()
    return RelayerInfo(
        relayer_address=engine.relayer_address,
        chain_id=settings.chain_id,
        supported_assets=get_supported_tokens(settings.chain_id),
        platform_fee_bps=settings.platform_fee_bps,
        default_slippage_bps=settings.default_slippage_bps,
        max_slippage_bps=settings.max_slippage_bps,
    )
