"""Token registry for supported relay chains.

Input assets must implement EIP-3009 ``transferWithAuthorization`` so the
relayer can pull them with a user signature. Output assets only need to be
standard ERC-20 tokens the venue can route to.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class TokenConfig:
    """Configuration for an ERC-20 token on a specific chain."""

    symbol: str
    address: str
    decimals: int
    coingecko_id: str

    # EIP-712 domain for EIP-3009 tokens (None = cannot be pulled gaslessly)
    eip712_name: Optional[str] = None
    eip712_version: Optional[str] = None

    @property
    def supports_authorization(self) -> bool:
        """Check if the token can be pulled via transferWithAuthorization."""
        return self.eip712_name is not None and self.eip712_version is not None


# ======================
# Token Registry (chain_id -> symbol -> token)
# ======================

TOKENS: dict[int, dict[str, TokenConfig]] = {
    # Ethereum mainnet
    1: {
        "USDC": TokenConfig(
            symbol="USDC",
            address="0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
            decimals=6,
            coingecko_id="usd-coin",
            eip712_name="USD Coin",
            eip712_version="2",
        ),
        "EURC": TokenConfig(
            symbol="EURC",
            address="0x1aBaEA1f7C830bD89Acc67eC4af516284b1bC33c",
            decimals=6,
            coingecko_id="euro-coin",
            eip712_name="EURC",
            eip712_version="2",
        ),
        "USDT": TokenConfig(
            symbol="USDT",
            address="0xdAC17F958D2ee523a2206206994597C13D831ec7",
            decimals=6,
            coingecko_id="tether",
        ),
        "WETH": TokenConfig(
            symbol="WETH",
            address="0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2",
            decimals=18,
            coingecko_id="weth",
        ),
        "DAI": TokenConfig(
            symbol="DAI",
            address="0x6B175474E89094C44Da98b954EedeAC495271d0F",
            decimals=18,
            coingecko_id="dai",
        ),
    },
    # Base
    8453: {
        "USDC": TokenConfig(
            symbol="USDC",
            address="0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
            decimals=6,
            coingecko_id="usd-coin",
            eip712_name="USD Coin",
            eip712_version="2",
        ),
        "WETH": TokenConfig(
            symbol="WETH",
            address="0x4200000000000000000000000000000000000006",
            decimals=18,
            coingecko_id="weth",
        ),
    },
}

# CoinGecko id of each chain's native fee currency
NATIVE_COINGECKO_IDS: dict[int, str] = {
    1: "ethereum",
    8453: "ethereum",
}


def get_token(chain_id: int, symbol: str) -> Optional[TokenConfig]:
    """Get token configuration by chain and symbol."""
    return TOKENS.get(chain_id, {}).get(symbol.upper())


def get_supported_tokens(chain_id: int) -> list[str]:
    """Get list of token symbols supported on a chain."""
    return list(TOKENS.get(chain_id, {}).keys())


def get_native_coingecko_id(chain_id: int) -> str:
    """Get the price-feed id of a chain's native currency."""
    return NATIVE_COINGECKO_IDS.get(chain_id, "ethereum")
