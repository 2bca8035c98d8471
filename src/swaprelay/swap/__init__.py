"""Relayer signing and user authorization handling.

Provides:
- RelayerSigner: signs and broadcasts relayer transactions
- TransferAuthorization: EIP-3009 user authorization and signature recovery
"""

from swaprelay.swap.authorization import (
    TransferAuthorization,
    sign_authorization,
    split_signature,
)
from swaprelay.swap.signer import RelayerSigner

__all__ = [
    "RelayerSigner",
    "TransferAuthorization",
    "sign_authorization",
    "split_signature",
]
