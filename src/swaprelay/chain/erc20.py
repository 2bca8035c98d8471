"""ERC-20 / EIP-3009 calldata encoding and log decoding."""

from eth_utils import function_signature_to_4byte_selector, keccak, to_checksum_address

MAX_UINT256 = 2**256 - 1

# keccak("Transfer(address,address,uint256)")
TRANSFER_TOPIC = "0x" + keccak(text="Transfer(address,address,uint256)").hex().removeprefix("0x")


def _selector(signature: str) -> str:
    return "0x" + function_signature_to_4byte_selector(signature).hex().removeprefix("0x")


BALANCE_OF = _selector("balanceOf(address)")
ALLOWANCE = _selector("allowance(address,address)")
APPROVE = _selector("approve(address,uint256)")
TRANSFER = _selector("transfer(address,uint256)")
AUTHORIZATION_STATE = _selector("authorizationState(address,bytes32)")
TRANSFER_WITH_AUTHORIZATION = _selector(
    "transferWithAuthorization(address,address,uint256,uint256,uint256,bytes32,uint8,bytes32,bytes32)"
)


def _pad_address(address: str) -> str:
    return address.lower().removeprefix("0x").zfill(64)


def _pad_uint(value: int) -> str:
    if value < 0 or value > MAX_UINT256:
        raise ValueError(f"uint256 out of range: {value}")
    return format(value, "064x")


def _pad_bytes32(value: str) -> str:
    raw = value.lower().removeprefix("0x")
    if len(raw) != 64:
        raise ValueError(f"Expected 32-byte hex value, got {len(raw) // 2} bytes")
    return raw


def encode_balance_of(owner: str) -> str:
    return BALANCE_OF + _pad_address(owner)


def encode_allowance(owner: str, spender: str) -> str:
    return ALLOWANCE + _pad_address(owner) + _pad_address(spender)


def encode_approve(spender: str, amount: int = MAX_UINT256) -> str:
    return APPROVE + _pad_address(spender) + _pad_uint(amount)


def encode_transfer(to: str, amount: int) -> str:
    return TRANSFER + _pad_address(to) + _pad_uint(amount)


def encode_authorization_state(authorizer: str, nonce: str) -> str:
    return AUTHORIZATION_STATE + _pad_address(authorizer) + _pad_bytes32(nonce)


def encode_transfer_with_authorization(
    from_address: str,
    to_address: str,
    value: int,
    valid_after: int,
    valid_before: int,
    nonce: str,
    v: int,
    r: str,
    s: str,
) -> str:
    """Encode an EIP-3009 ``transferWithAuthorization`` call."""
    return (
        TRANSFER_WITH_AUTHORIZATION
        + _pad_address(from_address)
        + _pad_address(to_address)
        + _pad_uint(value)
        + _pad_uint(valid_after)
        + _pad_uint(valid_before)
        + _pad_bytes32(nonce)
        + _pad_uint(v)
        + _pad_bytes32(r)
        + _pad_bytes32(s)
    )


def decode_uint(result: str) -> int:
    """Decode a single uint256 ``eth_call`` result (``0x`` decodes to 0)."""
    if not result or result == "0x":
        return 0
    return int(result, 16)


def topic_to_address(topic: str) -> str:
    return to_checksum_address("0x" + topic.removeprefix("0x")[-40:])


def sum_transfers_to(logs: list[dict], token: str, recipient: str) -> int:
    """Sum ``Transfer`` amounts of ``token`` received by ``recipient`` in receipt logs."""
    total = 0
    token = token.lower()
    recipient = recipient.lower()

    for log in logs:
        if log.get("address", "").lower() != token:
            continue
        topics = log.get("topics") or []
        if len(topics) < 3 or topics[0].lower() != TRANSFER_TOPIC:
            continue
        if topic_to_address(topics[2]).lower() != recipient:
            continue
        total += decode_uint(log.get("data", "0x"))

    return total
