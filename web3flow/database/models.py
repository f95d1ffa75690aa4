"""
Data models for Web3Flow.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class TriggerType(str, Enum):
    """What a workflow listens for."""

    ETH_TRANSFER = "eth_transfer"
    NFT_PURCHASE = "nft_purchase"
    CONTRACT_EVENT = "contract_event"
    PORTFOLIO_ALERT = "portfolio_alert"


class ActionType(str, Enum):
    """Notification channel kinds."""

    DISCORD = "discord"
    EMAIL = "email"
    WEBHOOK = "webhook"


class RuleTrigger(str, Enum):
    """Outcome a custom notification rule reacts to."""

    WORKFLOW_SUCCEEDS = "workflow_succeeds"
    WORKFLOW_FAILS = "workflow_fails"


class RuleAction(str, Enum):
    """Channel a custom notification rule sends on."""

    SEND_DISCORD = "send_discord"
    SEND_EMAIL = "send_email"


class AlertType(str, Enum):
    """Portfolio alert kinds."""

    PORTFOLIO_VALUE = "portfolio_value"
    PRICE_TARGET = "price_target"
    STOP_LOSS = "stop_loss"
    ALLOCATION_CHANGE = "allocation_change"
    DAILY_SUMMARY = "daily_summary"


class AlertStatus(str, Enum):
    """Portfolio alert status. There is no terminal "triggered" state."""

    ACTIVE = "active"
    PAUSED = "paused"


@dataclass
class ActionParams:
    """Channel-specific endpoints attached to a workflow or alert."""

    discord_webhook: Optional[str] = None
    email: Optional[str] = None
    webhook_url: Optional[str] = None

    def endpoint_for(self, channel: str) -> Optional[str]:
        """Return the endpoint configured for a channel, if any."""
        if channel == ActionType.DISCORD.value:
            return self.discord_webhook or None
        if channel == ActionType.EMAIL.value:
            return self.email or None
        if channel == ActionType.WEBHOOK.value:
            return self.webhook_url or None
        return None


@dataclass
class MessageTemplate:
    """Subject/body pair with {{path}} placeholders."""

    subject: str = ""
    body: str = ""


@dataclass
class NotificationPreferences:
    """Per-channel and per-category notification switches."""

    email: bool = True
    discord: bool = False
    webhook: bool = False
    execution_alerts: bool = True
    failure_alerts: bool = True
    weekly_reports: bool = False

    def is_channel_enabled(self, channel: str) -> bool:
        return bool(getattr(self, channel, False))


@dataclass
class Integrations:
    """User-level channel endpoints."""

    discord: str = ""
    email: str = ""
    webhook_url: str = ""

    def endpoint_for(self, channel: str) -> Optional[str]:
        if channel == ActionType.DISCORD.value:
            return self.discord or None
        if channel == ActionType.EMAIL.value:
            return self.email or None
        if channel == ActionType.WEBHOOK.value:
            return self.webhook_url or None
        return None


@dataclass
class UsageCounters:
    """Aggregate usage for a user."""

    executions: int = 0
    workflows: int = 0
    api_calls: int = 0


@dataclass
class User:
    """Wallet owner with notification settings."""

    address: str
    profile_name: Optional[str] = None
    notifications: NotificationPreferences = field(
        default_factory=NotificationPreferences
    )
    integrations: Integrations = field(default_factory=Integrations)
    usage: UsageCounters = field(default_factory=UsageCounters)
    created_at: Optional[datetime] = None

    def __post_init__(self):
        self.address = self.address.lower()

    @property
    def display_name(self) -> str:
        return self.profile_name or self.address or "User"


@dataclass
class NotificationRule:
    """User-defined override for the default notification policy."""

    user_address: str
    name: str
    trigger: RuleTrigger
    action: RuleAction
    message: str
    id: Optional[str] = None

    def __post_init__(self):
        self.user_address = self.user_address.lower()
        self.trigger = RuleTrigger(self.trigger)
        self.action = RuleAction(self.action)


@dataclass
class Workflow:
    """A watched address bound to a notification action."""

    name: str
    source_address: str
    user_address: Optional[str] = None
    description: str = ""
    trigger_type: TriggerType = TriggerType.ETH_TRANSFER
    action_type: ActionType = ActionType.DISCORD
    action_params: ActionParams = field(default_factory=ActionParams)
    message: Optional[MessageTemplate] = None
    notification_rule_id: Optional[str] = None
    is_active: bool = True
    execution_count: int = 0
    previous_execution_count: Optional[int] = None
    success_rate: float = 0.0
    response_times: list[float] = field(default_factory=list)
    execution_timestamps: list[datetime] = field(default_factory=list)
    last_triggered: Optional[datetime] = None
    portfolio_alert_id: Optional[str] = None
    id: Optional[str] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        self.trigger_type = TriggerType(self.trigger_type)
        self.action_type = ActionType(self.action_type)
        if self.user_address:
            self.user_address = self.user_address.lower()

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly view, used for templates and live updates."""
        data = asdict(self)
        data["trigger_type"] = self.trigger_type.value
        data["action_type"] = self.action_type.value
        data["execution_timestamps"] = [
            ts.isoformat() for ts in self.execution_timestamps
        ]
        data["last_triggered"] = (
            self.last_triggered.isoformat() if self.last_triggered else None
        )
        data["created_at"] = self.created_at.isoformat() if self.created_at else None
        return data


@dataclass
class PortfolioAlert:
    """Threshold watch on total portfolio value."""

    name: str
    threshold: str
    type: AlertType = AlertType.PORTFOLIO_VALUE
    description: str = ""
    initial_value: Optional[float] = None  # Baseline for % alerts
    status: AlertStatus = AlertStatus.ACTIVE
    action_type: ActionType = ActionType.DISCORD
    action_params: ActionParams = field(default_factory=ActionParams)
    user_address: Optional[str] = None
    last_triggered: Optional[datetime] = None
    id: Optional[str] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        self.type = AlertType(self.type)
        self.status = AlertStatus(self.status)
        self.action_type = ActionType(self.action_type)
        if self.user_address:
            self.user_address = self.user_address.lower()

    @property
    def is_percentage(self) -> bool:
        return "%" in self.threshold


@dataclass
class PortfolioAsset:
    """A holding valued by the alert evaluator."""

    symbol: str
    amount: float

    def __post_init__(self):
        self.symbol = self.symbol.upper()
