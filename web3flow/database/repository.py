"""
Repository classes for CRUD operations.
"""

import json
import secrets
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Optional

from .connection import Database
from .models import (
    ActionParams,
    AlertStatus,
    Integrations,
    MessageTemplate,
    NotificationPreferences,
    NotificationRule,
    PortfolioAlert,
    PortfolioAsset,
    UsageCounters,
    User,
    Workflow,
)


def new_id(nbytes: int = 8) -> str:
    """Generate a random hex identifier."""
    return secrets.token_hex(nbytes)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _from_iso(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


class UserRepository:
    """CRUD operations for users. Addresses are matched case-insensitively."""

    def __init__(self, db: Database):
        self.db = db

    def get(self, address: str) -> Optional[User]:
        """Get user by wallet address."""
        cursor = self.db.connection.cursor()
        cursor.execute("SELECT * FROM users WHERE address = ?", (address.lower(),))
        row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def find_or_create(self, address: str) -> User:
        """Get user by address, creating one with default settings if missing."""
        user = self.get(address)
        if user is None:
            user = self.upsert(User(address=address, created_at=utcnow()))
        return user

    def upsert(self, user: User) -> User:
        """Insert or replace a user record."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            INSERT INTO users (address, profile_name, notifications, integrations, usage, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(address) DO UPDATE SET
                profile_name = excluded.profile_name,
                notifications = excluded.notifications,
                integrations = excluded.integrations,
                usage = excluded.usage
            """,
            (
                user.address,
                user.profile_name,
                json.dumps(asdict(user.notifications)),
                json.dumps(asdict(user.integrations)),
                json.dumps(asdict(user.usage)),
                _to_iso(user.created_at or utcnow()),
            ),
        )
        self.db.connection.commit()
        return user

    def update_usage(self, address: str, **counters: int) -> User:
        """Overwrite selected usage counters for a user."""
        user = self.find_or_create(address)
        for name, value in counters.items():
            if not hasattr(user.usage, name):
                raise ValueError(f"Unknown usage counter: {name}")
            setattr(user.usage, name, value)
        return self.upsert(user)

    def delete(self, address: str) -> bool:
        """Delete user."""
        cursor = self.db.connection.cursor()
        cursor.execute("DELETE FROM users WHERE address = ?", (address.lower(),))
        self.db.connection.commit()
        return cursor.rowcount > 0

    def list_all(self) -> list[User]:
        """List all users."""
        cursor = self.db.connection.cursor()
        cursor.execute("SELECT * FROM users ORDER BY address")
        return [self._row_to_user(row) for row in cursor.fetchall()]

    def _row_to_user(self, row) -> User:
        """Convert database row to User."""
        return User(
            address=row["address"],
            profile_name=row["profile_name"],
            notifications=NotificationPreferences(**json.loads(row["notifications"])),
            integrations=Integrations(**json.loads(row["integrations"])),
            usage=UsageCounters(**json.loads(row["usage"])),
            created_at=_from_iso(row["created_at"]),
        )


class NotificationRuleRepository:
    """CRUD operations for custom notification rules."""

    def __init__(self, db: Database):
        self.db = db

    def create(self, rule: NotificationRule) -> NotificationRule:
        """Create a new rule, assigning an ID."""
        rule.id = rule.id or new_id()
        return self.upsert(rule)

    def upsert(self, rule: NotificationRule) -> NotificationRule:
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            INSERT INTO notification_rules (id, user_address, name, rule_trigger, rule_action, message)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                rule_trigger = excluded.rule_trigger,
                rule_action = excluded.rule_action,
                message = excluded.message
            """,
            (
                rule.id,
                rule.user_address,
                rule.name,
                rule.trigger.value,
                rule.action.value,
                rule.message,
            ),
        )
        self.db.connection.commit()
        return rule

    def get(self, rule_id: str) -> Optional[NotificationRule]:
        """Get rule by ID."""
        cursor = self.db.connection.cursor()
        cursor.execute("SELECT * FROM notification_rules WHERE id = ?", (rule_id,))
        row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_rule(row)

    def list_for_user(self, address: str) -> list[NotificationRule]:
        """Get all rules owned by a user."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            "SELECT * FROM notification_rules WHERE user_address = ? ORDER BY name",
            (address.lower(),),
        )
        return [self._row_to_rule(row) for row in cursor.fetchall()]

    def delete(self, rule_id: str) -> bool:
        """Delete rule."""
        cursor = self.db.connection.cursor()
        cursor.execute("DELETE FROM notification_rules WHERE id = ?", (rule_id,))
        self.db.connection.commit()
        return cursor.rowcount > 0

    def _row_to_rule(self, row) -> NotificationRule:
        return NotificationRule(
            id=row["id"],
            user_address=row["user_address"],
            name=row["name"],
            trigger=row["rule_trigger"],
            action=row["rule_action"],
            message=row["message"],
        )


class WorkflowRepository:
    """CRUD operations for workflows."""

    def __init__(self, db: Database):
        self.db = db

    def create(self, workflow: Workflow) -> Workflow:
        """Create a new workflow, assigning an ID and creation time."""
        workflow.id = workflow.id or new_id()
        workflow.created_at = workflow.created_at or utcnow()
        return self.upsert(workflow)

    def upsert(self, workflow: Workflow) -> Workflow:
        """Insert or fully replace a workflow record."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            INSERT OR REPLACE INTO workflows (
                id, user_address, name, description, trigger_type, source_address,
                action_type, action_params, message, notification_rule_id, is_active,
                execution_count, previous_execution_count, success_rate,
                response_times, execution_timestamps, last_triggered,
                portfolio_alert_id, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                workflow.id,
                workflow.user_address,
                workflow.name,
                workflow.description,
                workflow.trigger_type.value,
                workflow.source_address,
                workflow.action_type.value,
                json.dumps(asdict(workflow.action_params)),
                json.dumps(asdict(workflow.message)) if workflow.message else None,
                workflow.notification_rule_id,
                1 if workflow.is_active else 0,
                workflow.execution_count,
                workflow.previous_execution_count,
                workflow.success_rate,
                json.dumps(workflow.response_times),
                json.dumps([ts.isoformat() for ts in workflow.execution_timestamps]),
                _to_iso(workflow.last_triggered),
                workflow.portfolio_alert_id,
                _to_iso(workflow.created_at or utcnow()),
            ),
        )
        self.db.connection.commit()
        return workflow

    def get(self, workflow_id: str) -> Optional[Workflow]:
        """Get workflow by ID."""
        cursor = self.db.connection.cursor()
        cursor.execute("SELECT * FROM workflows WHERE id = ?", (workflow_id,))
        row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_workflow(row)

    def list_all(self) -> list[Workflow]:
        """List all workflows."""
        cursor = self.db.connection.cursor()
        cursor.execute("SELECT * FROM workflows ORDER BY created_at, id")
        return [self._row_to_workflow(row) for row in cursor.fetchall()]

    def list_active(self) -> list[Workflow]:
        """List workflows that are switched on."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            "SELECT * FROM workflows WHERE is_active = 1 ORDER BY created_at, id"
        )
        return [self._row_to_workflow(row) for row in cursor.fetchall()]

    def list_for_user(self, address: str) -> list[Workflow]:
        """List workflows owned by a user."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            "SELECT * FROM workflows WHERE user_address = ? ORDER BY created_at, id",
            (address.lower(),),
        )
        return [self._row_to_workflow(row) for row in cursor.fetchall()]

    def list_linked_to_alert(self, alert_id: str) -> list[Workflow]:
        """List workflows that respond to a portfolio alert."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            "SELECT * FROM workflows WHERE portfolio_alert_id = ? ORDER BY created_at, id",
            (alert_id,),
        )
        return [self._row_to_workflow(row) for row in cursor.fetchall()]

    def delete(self, workflow_id: str) -> Optional[Workflow]:
        """Delete workflow, returning the removed record."""
        workflow = self.get(workflow_id)
        if workflow is None:
            return None
        cursor = self.db.connection.cursor()
        cursor.execute("DELETE FROM workflows WHERE id = ?", (workflow_id,))
        self.db.connection.commit()
        return workflow

    def _row_to_workflow(self, row) -> Workflow:
        """Convert database row to Workflow."""
        message = json.loads(row["message"]) if row["message"] else None
        return Workflow(
            id=row["id"],
            user_address=row["user_address"],
            name=row["name"],
            description=row["description"],
            trigger_type=row["trigger_type"],
            source_address=row["source_address"],
            action_type=row["action_type"],
            action_params=ActionParams(**json.loads(row["action_params"])),
            message=MessageTemplate(**message) if message else None,
            notification_rule_id=row["notification_rule_id"],
            is_active=bool(row["is_active"]),
            execution_count=row["execution_count"],
            previous_execution_count=row["previous_execution_count"],
            success_rate=row["success_rate"],
            response_times=json.loads(row["response_times"]),
            execution_timestamps=[
                _from_iso(ts) for ts in json.loads(row["execution_timestamps"])
            ],
            last_triggered=_from_iso(row["last_triggered"]),
            portfolio_alert_id=row["portfolio_alert_id"],
            created_at=_from_iso(row["created_at"]),
        )


class PortfolioAlertRepository:
    """CRUD operations for portfolio alerts."""

    def __init__(self, db: Database):
        self.db = db

    def create(self, alert: PortfolioAlert) -> PortfolioAlert:
        """Create a new alert, assigning an ID and creation time."""
        alert.id = alert.id or new_id()
        alert.created_at = alert.created_at or utcnow()
        return self.upsert(alert)

    def upsert(self, alert: PortfolioAlert) -> PortfolioAlert:
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            INSERT OR REPLACE INTO portfolio_alerts (
                id, name, type, description, threshold, initial_value, status,
                action_type, action_params, user_address, last_triggered, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                alert.id,
                alert.name,
                alert.type.value,
                alert.description,
                alert.threshold,
                alert.initial_value,
                alert.status.value,
                alert.action_type.value,
                json.dumps(asdict(alert.action_params)),
                alert.user_address,
                _to_iso(alert.last_triggered),
                _to_iso(alert.created_at or utcnow()),
            ),
        )
        self.db.connection.commit()
        return alert

    def get(self, alert_id: str) -> Optional[PortfolioAlert]:
        """Get alert by ID."""
        cursor = self.db.connection.cursor()
        cursor.execute("SELECT * FROM portfolio_alerts WHERE id = ?", (alert_id,))
        row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_alert(row)

    def list_all(self) -> list[PortfolioAlert]:
        cursor = self.db.connection.cursor()
        cursor.execute("SELECT * FROM portfolio_alerts ORDER BY created_at, id")
        return [self._row_to_alert(row) for row in cursor.fetchall()]

    def list_active(self) -> list[PortfolioAlert]:
        cursor = self.db.connection.cursor()
        cursor.execute(
            "SELECT * FROM portfolio_alerts WHERE status = ? ORDER BY created_at, id",
            (AlertStatus.ACTIVE.value,),
        )
        return [self._row_to_alert(row) for row in cursor.fetchall()]

    def delete(self, alert_id: str) -> bool:
        cursor = self.db.connection.cursor()
        cursor.execute("DELETE FROM portfolio_alerts WHERE id = ?", (alert_id,))
        self.db.connection.commit()
        return cursor.rowcount > 0

    def _row_to_alert(self, row) -> PortfolioAlert:
        return PortfolioAlert(
            id=row["id"],
            name=row["name"],
            type=row["type"],
            description=row["description"],
            threshold=row["threshold"],
            initial_value=row["initial_value"],
            status=row["status"],
            action_type=row["action_type"],
            action_params=ActionParams(**json.loads(row["action_params"])),
            user_address=row["user_address"],
            last_triggered=_from_iso(row["last_triggered"]),
            created_at=_from_iso(row["created_at"]),
        )


class PortfolioRepository:
    """Holdings valued by the portfolio alert evaluator."""

    def __init__(self, db: Database):
        self.db = db

    def list_assets(self) -> list[PortfolioAsset]:
        cursor = self.db.connection.cursor()
        cursor.execute("SELECT * FROM portfolio_assets ORDER BY symbol")
        return [
            PortfolioAsset(symbol=row["symbol"], amount=row["amount"])
            for row in cursor.fetchall()
        ]

    def set_asset(self, symbol: str, amount: float) -> PortfolioAsset:
        """Set the held amount for a symbol, adding it if new."""
        asset = PortfolioAsset(symbol=symbol, amount=amount)
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            INSERT INTO portfolio_assets (symbol, amount) VALUES (?, ?)
            ON CONFLICT(symbol) DO UPDATE SET amount = excluded.amount
            """,
            (asset.symbol, asset.amount),
        )
        self.db.connection.commit()
        return asset

    def remove_asset(self, symbol: str) -> bool:
        cursor = self.db.connection.cursor()
        cursor.execute(
            "DELETE FROM portfolio_assets WHERE symbol = ?", (symbol.upper(),)
        )
        self.db.connection.commit()
        return cursor.rowcount > 0
