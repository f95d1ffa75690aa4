"""
Pytest configuration and shared fixtures.
"""

from types import SimpleNamespace
from typing import Optional, Union

import pytest

from web3flow.chain.sources import BlockSource
from web3flow.chain.transaction import ChainTransaction
from web3flow.data.prices import PriceFeedClient, TokenPrice
from web3flow.database.connection import Database
from web3flow.database.models import ActionParams, Integrations, NotificationPreferences, User, Workflow
from web3flow.database.repository import (
    NotificationRuleRepository,
    PortfolioAlertRepository,
    PortfolioRepository,
    UserRepository,
    WorkflowRepository,
)
from web3flow.engine import WorkflowEngine
from web3flow.notifiers.base import Notification, NotificationResult, Notifier, NotifierFactory
from web3flow.notifiers.dispatcher import NotificationDispatcher
from web3flow.publisher import LiveUpdatePublisher
from web3flow.recorder import ExecutionRecorder
from web3flow.rules.resolver import NotificationResolver

OWNER = "0x1111111111111111111111111111111111111111"
WATCHED = "0xAAA0000000000000000000000000000000000AAA"
DISCORD_URL = "https://discord.com/api/webhooks/123456789/abcdefghijklmnop"


class RecordingNotifier(Notifier):
    """Notifier double that records sends instead of calling out."""

    def __init__(self, channel: str, target: str, factory: "RecordingFactory"):
        self.channel = channel
        self.target = target
        self.factory = factory

    def send(self, notification: Notification) -> NotificationResult:
        self.factory.sent.append((self.channel, self.target, notification))
        if self.target in self.factory.fail_targets:
            return NotificationResult(
                success=False, channel=self.channel, error="HTTP 500: boom", target=self.target
            )
        return NotificationResult(success=True, channel=self.channel, target=self.target)


class RecordingFactory(NotifierFactory):
    """Builds RecordingNotifiers; targets in fail_targets report failure."""

    def __init__(self, fail_targets: tuple = ()):
        super().__init__()
        self.fail_targets = set(fail_targets)
        self.sent: list[tuple[str, str, Notification]] = []

    def create(self, channel: str, target: str) -> Notifier:
        if channel not in ("discord", "email", "webhook"):
            raise ValueError(f"Unknown notifier type: {channel}")
        return RecordingNotifier(channel, target, self)

    def channels(self) -> list[str]:
        return [channel for channel, _, _ in self.sent]


class FakeBlockSource(BlockSource):
    """Finite block stream; an Exception in place of transactions fails the fetch."""

    def __init__(self, blocks: dict[int, Union[list[ChainTransaction], Exception]]):
        self.blocks = blocks
        self._pending = list(blocks)
        self.connected = False
        self.closed = False
        self.fetched: list[int] = []

    async def connect(self) -> None:
        self.connected = True

    async def close(self) -> None:
        self.closed = True

    async def next_block(self) -> Optional[int]:
        if not self._pending:
            return None
        return self._pending.pop(0)

    async def fetch_transactions(self, block_number: int) -> list[ChainTransaction]:
        self.fetched.append(block_number)
        content = self.blocks[block_number]
        if isinstance(content, Exception):
            raise content
        return content


class FakePriceFeed(PriceFeedClient):
    """Serves fixed prices; unknown symbols raise like a real feed."""

    def __init__(self, prices: dict[str, float]):
        self.prices = prices
        self.calls: list[str] = []

    def get_price(self, symbol: str) -> TokenPrice:
        self.calls.append(symbol)
        if symbol not in self.prices:
            raise ValueError(f"Unsupported symbol: {symbol}")
        return TokenPrice(symbol=symbol, price=self.prices[symbol])


def make_tx(to: Optional[str] = WATCHED, value_wei: int = 10**18, tx_hash: str = "0xabc1") -> ChainTransaction:
    return ChainTransaction(
        hash=tx_hash,
        from_address="0x2222222222222222222222222222222222222222",
        to_address=to,
        value_wei=value_wei,
        block_number=1,
    )


@pytest.fixture
def db():
    """Fresh in-memory database with schema."""
    database = Database(":memory:")
    database.initialize()
    yield database
    database.close()


@pytest.fixture
def repos(db):
    return SimpleNamespace(
        users=UserRepository(db),
        rules=NotificationRuleRepository(db),
        workflows=WorkflowRepository(db),
        alerts=PortfolioAlertRepository(db),
        portfolio=PortfolioRepository(db),
    )


@pytest.fixture
def owner(repos) -> User:
    """User with Discord enabled and configured, email off."""
    user = User(
        address=OWNER,
        profile_name="Alice",
        notifications=NotificationPreferences(email=False, discord=True),
        integrations=Integrations(discord=DISCORD_URL),
    )
    return repos.users.upsert(user)


@pytest.fixture
def workflow(repos, owner) -> Workflow:
    """Active Discord workflow watching WATCHED."""
    return repos.workflows.create(
        Workflow(
            name="Treasury watch",
            source_address=WATCHED,
            user_address=owner.address,
            action_type="discord",
            action_params=ActionParams(discord_webhook=DISCORD_URL),
        )
    )


@pytest.fixture
def factory() -> RecordingFactory:
    return RecordingFactory()


@pytest.fixture
def pipeline(repos, factory):
    """Engine wired to in-memory repositories and a recording notifier factory."""
    publisher = LiveUpdatePublisher()
    resolver = NotificationResolver()
    dispatcher = NotificationDispatcher(factory, timeout=2)
    recorder = ExecutionRecorder(repos.workflows, repos.users, publisher)
    engine = WorkflowEngine(repos.users, repos.rules, resolver, dispatcher, recorder)
    return SimpleNamespace(
        publisher=publisher,
        resolver=resolver,
        dispatcher=dispatcher,
        recorder=recorder,
        engine=engine,
        factory=factory,
    )


@pytest.fixture
def sample_discord_webhook_url():
    """Sample Discord webhook URL for testing."""
    return DISCORD_URL


@pytest.fixture
def sample_smtp_config():
    """Sample SMTP configuration for testing."""
    return {
        "smtp_host": "smtp.sendgrid.net",
        "smtp_port": 587,
        "smtp_user": "apikey",
        "smtp_password": "test-api-key",
        "from_address": "alerts@web3flow.app",
        "to_addresses": ["recipient@example.com"],
    }
