"""Pytest configuration and fixtures."""

import os
import secrets
import time
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from eth_account import Account
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["TELEGRAM_BOT_TOKEN"] = ""
os.environ["DEBUG"] = "true"
os.environ["DRY_RUN"] = "true"
os.environ["ADMIN_TOKEN"] = ""
os.environ["ADMIN_USER_IDS"] = ""

from swaprelay.chain import erc20
from swaprelay.chain.rpc import TxReceipt
from swaprelay.chains import get_token
from swaprelay.config import Settings
from swaprelay.errors import ConfirmationTimeoutError, RPCError
from swaprelay.fees.margin import MarginCalculator
from swaprelay.fees.oracle import DRY_RUN_PRICES, StaticPriceOracle
from swaprelay.ledger.models import Base, IntentStatus
from swaprelay.ledger.repository import IntentRepository
from swaprelay.ledger.store import IntentStore
from swaprelay.monitoring.relayer_balance import RelayerBalanceMonitor
from swaprelay.notifications.telegram import AlertLevel, AlertSink
from swaprelay.relay.engine import RelayEngine
from swaprelay.relay.types import SwapRequest
from swaprelay.routing.dry_run import SIMULATED_ALLOWANCE_TARGET, DryRunVenue
from swaprelay.swap.authorization import sign_authorization

RELAYER_KEY = "0x" + "22" * 32
USER_KEY = "0x" + "11" * 32
USER_ADDRESS = Account.from_key(USER_KEY).address
FEE_RECIPIENT = "0x" + "fe" * 20
GAS_USED = 50_000
GAS_PRICE = 10**9


def intent_fields(nonce_byte: str = "01", **overrides) -> dict:
    """Column values for a fresh intent row."""
    fields = {
        "user_id": "user-1",
        "user_address": "0x" + "11" * 20,
        "chain_id": 1,
        "input_asset": "USDC",
        "output_asset": "USDT",
        "input_amount": 100_000_000,
        "slippage_bps": 50,
        "fee_floor_usd": Decimal("0.05"),
        "fee_ceiling_usd": Decimal("50"),
        "auth_nonce": "0x" + nonce_byte * 32,
        "auth_valid_after": 0,
        "auth_valid_before": 2**31 - 1,
    }
    fields.update(overrides)
    return fields


async def create_intent(store, intent_id="a" * 32, status=None, **fields):
    """Create an intent for the test user and walk it to ``status``."""
    now = int(time.time())
    values = intent_fields(
        intent_id[:2],
        user_address=USER_ADDRESS,
        auth_valid_after=now - 60,
        auth_valid_before=now + 3600,
    )
    values.update(fields)
    await store.create(intent_id, **values)
    path = [IntentStatus.VALIDATING, IntentStatus.FUNDS_PULLED, IntentStatus.SWAP_EXECUTING]
    if status is not None and status != IntentStatus.CREATED:
        for step in path[: path.index(status) + 1]:
            await store.transition(intent_id, step)
    return await store.get(intent_id)


# ======================
# Ledger fakes
# ======================


class FakeChain:
    """In-memory EVM: balances, authorization nonces, allowances and receipts.

    Transactions are classified by kind (``pull``, ``approve``, ``transfer``,
    ``swap``). ``reject``, ``revert``, ``pending`` and ``dropped`` take kinds
    and control how the next transaction of that kind behaves.
    """

    def __init__(self):
        self.token_balances: dict[tuple[str, str], int] = {}
        self.allowances: dict[tuple[str, str], int] = {}
        self.used_nonces: set[str] = set()
        self.native_balance = 10**18
        self.gas_price = GAS_PRICE
        self.base_fees = [GAS_PRICE] * 5
        self.gas_estimate: Optional[int] = 200_000

        self.reject: set[str] = set()
        self.revert: set[str] = set()
        self.pending: set[str] = set()
        self.dropped: set[str] = set()

        self.swap_target = SIMULATED_ALLOWANCE_TARGET
        self.output_token: Optional[str] = None
        self.swap_output = 0
        self.relayer: Optional[str] = None

        self.sent: list[dict] = []
        self.receipts: dict[str, TxReceipt] = {}
        self._pending_hashes: set[str] = set()
        self._dropped_hashes: set[str] = set()

    def set_balance(self, token: str, owner: str, amount: int) -> None:
        self.token_balances[(token.lower(), owner.lower())] = amount

    def kind(self, to: str, data: str) -> str:
        if to.lower() == self.swap_target.lower():
            return "swap"
        selector = data[:10]
        if selector == erc20.TRANSFER_WITH_AUTHORIZATION:
            return "pull"
        if selector == erc20.APPROVE:
            return "approve"
        if selector == erc20.TRANSFER:
            return "transfer"
        return "other"

    def sent_of(self, kind: str) -> list[dict]:
        return [tx for tx in self.sent if tx["kind"] == kind]

    def transfers(self) -> list[tuple[str, str, int]]:
        """``(token, recipient, amount)`` of every ERC-20 transfer sent."""
        result = []
        for tx in self.sent_of("transfer"):
            body = tx["data"][10:]
            recipient = "0x" + body[24:64]
            amount = int(body[64:128], 16)
            result.append((tx["to"].lower(), recipient.lower(), amount))
        return result

    # LedgerClient surface

    async def get_token_balance(self, token: str, owner: str) -> int:
        return self.token_balances.get((token.lower(), owner.lower()), 0)

    async def get_native_balance(self, address: str) -> int:
        return self.native_balance

    async def authorization_used(self, token: str, authorizer: str, nonce: str) -> bool:
        return nonce.lower() in self.used_nonces

    async def get_gas_price(self) -> int:
        return self.gas_price

    async def get_base_fee_history(self, block_count: int) -> list[int]:
        return list(self.base_fees[:block_count])

    async def get_allowance(self, token: str, owner: str, spender: str) -> int:
        return self.allowances.get((token.lower(), spender.lower()), 0)

    async def estimate_gas(self, tx: dict) -> int:
        if self.gas_estimate is None:
            raise RPCError("execution reverted")
        return self.gas_estimate

    async def wait_for_confirmation(self, tx_hash: str, timeout: float) -> TxReceipt:
        if tx_hash in self._pending_hashes or tx_hash in self._dropped_hashes:
            raise ConfirmationTimeoutError(f"{tx_hash} not confirmed", tx_hash=tx_hash)
        return self.receipts[tx_hash]

    async def get_receipt(self, tx_hash: str) -> Optional[TxReceipt]:
        return self.receipts.get(tx_hash)

    async def get_transaction(self, tx_hash: str) -> Optional[dict]:
        if tx_hash in self._pending_hashes or tx_hash in self.receipts:
            return {"hash": tx_hash}
        return None

    # Relayer submission

    async def submit(self, to: str, data: str, gas: int, value: int = 0) -> str:
        kind = self.kind(to, data)
        if kind in self.reject:
            raise RPCError(f"{kind} rejected: nonce too low")

        tx_hash = "0x" + format(len(self.sent) + 1, "064x")
        self.sent.append({"hash": tx_hash, "kind": kind, "to": to, "data": data, "gas": gas})

        if kind in self.pending:
            self._pending_hashes.add(tx_hash)
            return tx_hash
        if kind in self.dropped:
            self._dropped_hashes.add(tx_hash)
            return tx_hash

        succeeded = kind not in self.revert
        logs = []
        if succeeded:
            logs = self._apply(kind, to, data)
        self.receipts[tx_hash] = TxReceipt(
            tx_hash=tx_hash,
            succeeded=succeeded,
            block_number=len(self.sent),
            gas_used=GAS_USED,
            effective_gas_price=self.gas_price,
            logs=logs,
        )
        return tx_hash

    def _apply(self, kind: str, to: str, data: str) -> list[dict]:
        body = data[10:]
        if kind == "pull":
            self.used_nonces.add("0x" + body[64 * 5 : 64 * 6])
        elif kind == "approve":
            spender = "0x" + body[24:64]
            self.allowances[(to.lower(), spender.lower())] = erc20.MAX_UINT256
        elif kind == "swap" and self.output_token and self.swap_output:
            return [
                {
                    "address": self.output_token,
                    "topics": [
                        erc20.TRANSFER_TOPIC,
                        "0x" + "00" * 12 + self.swap_target.lower().removeprefix("0x"),
                        "0x" + "00" * 12 + self.relayer.lower().removeprefix("0x"),
                    ],
                    "data": hex(self.swap_output),
                }
            ]
        return []


class FakeSigner:
    """Relayer signer submitting straight into a ``FakeChain``."""

    def __init__(self, chain: FakeChain, private_key: str = RELAYER_KEY):
        self.chain = chain
        self.address = Account.from_key(private_key).address
        chain.relayer = self.address

    async def submit(
        self, to: str, data: str, gas: int, value: int = 0, gas_price: Optional[int] = None
    ) -> str:
        return await self.chain.submit(to, data, gas, value)


class RecordingAlerts(AlertSink):
    """Alert sink that records instead of delivering."""

    def __init__(self):
        super().__init__(bot=None, chat_ids=[])
        self.records: list[tuple[AlertLevel, str, dict]] = []

    def alert(self, level: AlertLevel, title: str, details: Optional[dict] = None) -> None:
        self.records.append((level, title, details or {}))

    def titles(self, level: Optional[AlertLevel] = None) -> list[str]:
        return [title for lvl, title, _ in self.records if level is None or lvl == level]


# ======================
# Database
# ======================


@pytest_asyncio.fixture
async def db_engine():
    """Create in-memory database engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for testing."""
    session_factory = async_sessionmaker(
        bind=db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def intent_repo(db_session: AsyncSession) -> IntentRepository:
    return IntentRepository(db_session)


@pytest.fixture
def session_scope(db_engine):
    """Session-per-call scope over the test engine, committing like ``get_db``."""
    session_factory = async_sessionmaker(
        bind=db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    @asynccontextmanager
    async def scope():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    return scope


@pytest.fixture
def store(session_scope) -> IntentStore:
    return IntentStore(session_scope)


# ======================
# Relay wiring
# ======================


@pytest.fixture
def settings() -> Settings:
    return Settings(
        dry_run=True,
        chain_id=1,
        relayer_private_key=RELAYER_KEY,
        platform_fee_bps=80,
        platform_fee_recipient=FEE_RECIPIENT,
        relay_fee_floor_usd=Decimal("0.05"),
        relay_fee_ceiling_usd=Decimal("50"),
        default_slippage_bps=50,
        max_slippage_bps=500,
        authorization_expiry_margin_seconds=10,
    )


@pytest.fixture
def chain() -> FakeChain:
    chain = FakeChain()
    chain.output_token = get_token(1, "USDT").address
    chain.swap_output = 99_700_000
    return chain


@pytest.fixture
def signer(chain) -> FakeSigner:
    return FakeSigner(chain)


@pytest.fixture
def alerts() -> RecordingAlerts:
    return RecordingAlerts()


@pytest.fixture
def monitor(chain, signer, alerts) -> RelayerBalanceMonitor:
    return RelayerBalanceMonitor(
        chain,
        signer.address,
        warning_threshold=Decimal("0.05"),
        critical_threshold=Decimal("0.01"),
        alerts=alerts,
    )


@pytest.fixture
def engine(settings, store, chain, signer, monitor, alerts) -> RelayEngine:
    return RelayEngine(
        settings=settings,
        store=store,
        client=chain,
        signer=signer,
        venue=DryRunVenue(),
        oracle=StaticPriceOracle(DRY_RUN_PRICES),
        margin_calculator=MarginCalculator(chain, sample_blocks=5),
        monitor=monitor,
        alerts=alerts,
    )


@pytest.fixture
def make_request(chain, signer):
    """Build a signed request and fund the user's balance on the fake chain."""

    def factory(
        amount: int = 100_000_000,
        input_asset: str = "USDC",
        output_asset: str = "USDT",
        balance: Optional[int] = None,
        nonce: Optional[str] = None,
        valid_before: Optional[int] = None,
        to_address: Optional[str] = None,
        **kwargs,
    ) -> SwapRequest:
        token = get_token(1, input_asset)
        now = int(time.time())
        authorization = sign_authorization(
            USER_KEY,
            to_address or signer.address,
            amount,
            now - 60,
            valid_before if valid_before is not None else now + 3600,
            nonce or "0x" + secrets.token_hex(32),
            token,
            1,
        )
        chain.set_balance(token.address, USER_ADDRESS, amount if balance is None else balance)
        return SwapRequest(
            user_id="user-1",
            user_address=USER_ADDRESS,
            input_asset=input_asset,
            output_asset=output_asset,
            input_amount=amount,
            authorization=authorization,
            **kwargs,
        )

    return factory
