"""EIP-3009 transfer authorizations.

A user signs an EIP-712 ``TransferWithAuthorization`` message off-chain; the
relayer submits it to the token contract and pays the gas.
"""

import time
from dataclasses import dataclass
from typing import Optional

from eth_account import Account
from eth_account.messages import encode_typed_data

from swaprelay.chains import TokenConfig

TRANSFER_WITH_AUTHORIZATION_TYPES = {
    "EIP712Domain": [
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
        {"name": "chainId", "type": "uint256"},
        {"name": "verifyingContract", "type": "address"},
    ],
    "TransferWithAuthorization": [
        {"name": "from", "type": "address"},
        {"name": "to", "type": "address"},
        {"name": "value", "type": "uint256"},
        {"name": "validAfter", "type": "uint256"},
        {"name": "validBefore", "type": "uint256"},
        {"name": "nonce", "type": "bytes32"},
    ],
}


def split_signature(signature: str) -> tuple[int, str, str]:
    """Split a 65-byte hex signature into ``(v, r, s)``."""
    raw = signature.removeprefix("0x")
    if len(raw) != 130:
        raise ValueError("Signature must be 65 bytes")
    r = "0x" + raw[0:64]
    s = "0x" + raw[64:128]
    v = int(raw[128:130], 16)
    if v < 27:
        v += 27
    return v, r, s


@dataclass(frozen=True)
class TransferAuthorization:
    """A signed EIP-3009 authorization moving ``value`` from the user to the relayer."""

    from_address: str
    to_address: str
    value: int
    valid_after: int
    valid_before: int
    nonce: str  # 0x-prefixed bytes32
    signature: str

    def typed_data(self, token: TokenConfig, chain_id: int) -> dict:
        """Full EIP-712 message for this authorization."""
        return {
            "types": TRANSFER_WITH_AUTHORIZATION_TYPES,
            "primaryType": "TransferWithAuthorization",
            "domain": {
                "name": token.eip712_name,
                "version": token.eip712_version,
                "chainId": chain_id,
                "verifyingContract": token.address,
            },
            "message": {
                "from": self.from_address,
                "to": self.to_address,
                "value": self.value,
                "validAfter": self.valid_after,
                "validBefore": self.valid_before,
                "nonce": self.nonce,
            },
        }

    def recover_signer(self, token: TokenConfig, chain_id: int) -> str:
        signable = encode_typed_data(full_message=self.typed_data(token, chain_id))
        return Account.recover_message(signable, signature=self.signature)

    def is_live(self, now: Optional[int] = None, margin_seconds: int = 0) -> bool:
        """Check the validity window, treating the last ``margin_seconds`` as expired."""
        now = int(time.time()) if now is None else now
        return self.valid_after < now < self.valid_before - margin_seconds

    @property
    def vrs(self) -> tuple[int, str, str]:
        return split_signature(self.signature)


def sign_authorization(
    private_key: str,
    to_address: str,
    value: int,
    valid_after: int,
    valid_before: int,
    nonce: str,
    token: TokenConfig,
    chain_id: int,
) -> TransferAuthorization:
    """Produce a signed authorization (wallet-side helper, used by tools and tests)."""
    account = Account.from_key(private_key)
    unsigned = TransferAuthorization(
        from_address=account.address,
        to_address=to_address,
        value=value,
        valid_after=valid_after,
        valid_before=valid_before,
        nonce=nonce,
        signature="",
    )
    signable = encode_typed_data(full_message=unsigned.typed_data(token, chain_id))
    signed = account.sign_message(signable)
    signature = signed.signature.hex()
    if not signature.startswith("0x"):
        signature = "0x" + signature
    return TransferAuthorization(
        from_address=account.address,
        to_address=to_address,
        value=value,
        valid_after=valid_after,
        valid_before=valid_before,
        nonce=nonce,
        signature=signature,
    )
