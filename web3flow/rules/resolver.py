"""
Decides which notification, if any, an execution outcome produces.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from web3flow.chain.transaction import ChainTransaction
from web3flow.database.models import (
    ActionType,
    NotificationRule,
    PortfolioAlert,
    RuleAction,
    RuleTrigger,
    TriggerType,
    User,
    Workflow,
)
from web3flow.notifiers.base import Delivery, Notification
from web3flow.notifiers.discord import DiscordNotifier, build_embed
from .template import render_template

logger = logging.getLogger(__name__)

TRIGGER_LABELS = {
    TriggerType.ETH_TRANSFER: "ETH Transfer",
    TriggerType.NFT_PURCHASE: "NFT Purchase",
    TriggerType.CONTRACT_EVENT: "Contract Event",
}

# Order in which default channels are attempted
DEFAULT_CHANNELS = (ActionType.DISCORD, ActionType.EMAIL, ActionType.WEBHOOK)


class Outcome(str, Enum):
    """Result of processing a matched workflow."""

    SUCCESS = "success"
    FAILURE = "failure"


RULE_TRIGGER_FOR_OUTCOME = {
    Outcome.SUCCESS: RuleTrigger.WORKFLOW_SUCCEEDS,
    Outcome.FAILURE: RuleTrigger.WORKFLOW_FAILS,
}

RULE_CHANNELS = {
    RuleAction.SEND_DISCORD: ActionType.DISCORD,
    RuleAction.SEND_EMAIL: ActionType.EMAIL,
}


@dataclass
class NotificationPlan:
    """What the resolver decided to send."""

    source: str  # "rule", "default" or "none"
    deliveries: list[Delivery] = field(default_factory=list)
    problems: list[str] = field(default_factory=list)
    rule: Optional[NotificationRule] = None


def build_context(
    workflow: Workflow,
    user: Optional[User],
    transaction: Optional[ChainTransaction] = None,
    error: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """
    Build the template context for a workflow execution.

    Args:
        workflow: Workflow that ran
        user: Owning user, if known
        transaction: Triggering transaction, if any
        error: Failure reason, for failure notifications
        now: Clock reading; defaults to the current UTC time

    Returns:
        Mapping usable by render_template
    """
    now = now or datetime.now(timezone.utc)
    tx = transaction.to_dict() if transaction else {}
    return {
        "user_name": user.display_name if user else "User",
        "trigger_data": TRIGGER_LABELS.get(workflow.trigger_type, ""),
        "timestamp": now.strftime("%Y-%m-%d %H:%M:%S"),
        "now": now,
        "workflow_name": workflow.name,
        "amount": tx.get("value", ""),
        "address": tx.get("to", ""),
        "tx_hash": tx.get("hash", ""),
        "workflow": workflow.to_dict(),
        "tx": tx,
        "error": error or "",
    }


class NotificationResolver:
    """
    Chooses between a user's custom rule and the default channel policy.

    Resolution only looks at its arguments; the clock comes in through the
    context's ``now`` entry.
    """

    def __init__(self, footer_text: str = "Powered by Web3Flow"):
        self.footer_text = footer_text

    def resolve(
        self,
        outcome: Outcome,
        workflow: Workflow,
        user: Optional[User],
        rules: list[NotificationRule],
        context: dict[str, Any],
    ) -> NotificationPlan:
        """
        Resolve the notification for a workflow outcome.

        Args:
            outcome: Success or failure of the execution
            workflow: The executed workflow
            user: Owning user, or None for ownerless workflows
            rules: The owner's notification rules
            context: Template context from build_context

        Returns:
            NotificationPlan; a rule plan never also carries default deliveries
        """
        outcome = Outcome(outcome)

        if workflow.notification_rule_id and user is not None:
            rule = next((r for r in rules if r.id == workflow.notification_rule_id), None)
            if rule is None:
                logger.warning(
                    f"Workflow {workflow.name!r} references notification rule "
                    f"{workflow.notification_rule_id!r}, which no longer exists for "
                    f"{user.address}. Using default notification."
                )
            elif rule.trigger == RULE_TRIGGER_FOR_OUTCOME[outcome]:
                return self._resolve_rule(rule, workflow, user, context)

        return self._resolve_default(outcome, workflow, user, context)

    def resolve_alert(
        self,
        alert: PortfolioAlert,
        user: Optional[User],
        context: dict[str, Any],
    ) -> NotificationPlan:
        """
        Resolve the notification for a triggered portfolio alert.

        The alert's own channel is used; its endpoint comes from the alert's
        parameters, falling back to the owner's integrations.
        """
        channel = alert.action_type.value
        endpoint = alert.action_params.endpoint_for(channel)
        if not endpoint and user is not None:
            endpoint = user.integrations.endpoint_for(channel)

        if not endpoint:
            problem = f"Portfolio alert {alert.name!r} has no {channel} endpoint configured"
            logger.error(problem)
            return NotificationPlan(source="none", problems=[problem])

        notification = self._alert_notification(alert, context)
        return NotificationPlan(
            source="default",
            deliveries=[Delivery(channel=channel, target=endpoint, notification=notification)],
        )

    def _resolve_rule(
        self,
        rule: NotificationRule,
        workflow: Workflow,
        user: User,
        context: dict[str, Any],
    ) -> NotificationPlan:
        logger.info(f"Using custom notification rule {rule.name!r} for {workflow.name!r}")
        channel = RULE_CHANNELS[rule.action].value
        endpoint = user.integrations.endpoint_for(channel) or workflow.action_params.endpoint_for(channel)
        if not endpoint:
            problem = (
                f"Custom notification for workflow {workflow.name!r} failed: "
                f"no {channel} endpoint in user settings or workflow parameters"
            )
            logger.error(problem)
            return NotificationPlan(source="rule", problems=[problem], rule=rule)

        body = render_template(rule.message, context)
        notification = Notification(
            subject=f"Notification for {workflow.name}",
            body=body,
            data={"workflowName": workflow.name, "message": body},
            created_at=context.get("now") or datetime.now(timezone.utc),
        )
        return NotificationPlan(
            source="rule",
            deliveries=[Delivery(channel=channel, target=endpoint, notification=notification)],
            rule=rule,
        )

    def _resolve_default(
        self,
        outcome: Outcome,
        workflow: Workflow,
        user: Optional[User],
        context: dict[str, Any],
    ) -> NotificationPlan:
        if user is None:
            return NotificationPlan(source="none", problems=["Workflow has no owner"])

        prefs = user.notifications
        if outcome == Outcome.FAILURE and not prefs.failure_alerts:
            logger.info(f"Failure alerts disabled for {user.address}")
            return NotificationPlan(source="none")
        if outcome == Outcome.SUCCESS and not prefs.execution_alerts:
            logger.info(f"Execution alerts disabled for {user.address}. Skipping notification.")
            return NotificationPlan(source="none")

        if outcome == Outcome.SUCCESS:
            notification = self._success_notification(workflow, context)
        else:
            notification = self._failure_notification(workflow, context)

        plan = NotificationPlan(source="default")
        for channel in DEFAULT_CHANNELS:
            if not prefs.is_channel_enabled(channel.value):
                continue
            endpoint = user.integrations.endpoint_for(channel.value)
            if not endpoint and channel == workflow.action_type:
                endpoint = workflow.action_params.endpoint_for(channel.value)
            if not endpoint:
                problem = f"{channel.value} notifications enabled for {user.address} but no endpoint configured"
                logger.error(problem)
                plan.problems.append(problem)
                continue
            plan.deliveries.append(
                Delivery(channel=channel.value, target=endpoint, notification=notification)
            )
        return plan

    def _success_notification(self, workflow: Workflow, context: dict[str, Any]) -> Notification:
        created_at = context.get("now") or datetime.now(timezone.utc)
        data = {
            "workflowName": workflow.name,
            "status": "success",
            "txHash": context.get("tx_hash", ""),
            "amount": context.get("amount", ""),
            "timestamp": created_at.isoformat(),
        }

        if workflow.message and workflow.message.body:
            subject = render_template(workflow.message.subject, context) or f"Workflow Executed: {workflow.name}"
            return Notification(
                subject=subject,
                body=render_template(workflow.message.body, context),
                data=data,
                created_at=created_at,
            )

        tx = context.get("tx") or {}
        embed = build_embed(
            title=f"🔔 Transfer Detected: {workflow.name}",
            color=DiscordNotifier.COLOR_SUCCESS,
            fields=[
                ("To", f"`{tx.get('to', '')}`", False),
                ("From", f"`{tx.get('from', '')}`", False),
                ("Amount", f"**{tx.get('value', '0')} ETH**", True),
                ("Transaction Hash", f"`{tx.get('hash', '')}`", False),
            ],
            footer_text=self.footer_text,
        )
        body = (
            f"Workflow \"{workflow.name}\" was triggered.\n"
            f"To: {tx.get('to', '')}\n"
            f"From: {tx.get('from', '')}\n"
            f"Amount: {tx.get('value', '0')} ETH\n"
            f"Transaction: {tx.get('hash', '')}"
        )
        return Notification(
            subject=f"Workflow Executed: {workflow.name}",
            body=body,
            embed=embed,
            data=data,
            created_at=created_at,
        )

    def _failure_notification(self, workflow: Workflow, context: dict[str, Any]) -> Notification:
        created_at = context.get("now") or datetime.now(timezone.utc)
        error = context.get("error") or "Unknown error"
        failure_message = f'Your workflow "{workflow.name}" failed to execute.'
        error_details = f"Error: {error}"
        embed = build_embed(
            title=f"🚨 Workflow Failure: {workflow.name}",
            color=DiscordNotifier.COLOR_FAILURE,
            fields=[
                ("Message", failure_message, False),
                ("Details", f"```{error_details}```", False),
            ],
            footer_text=self.footer_text,
        )
        return Notification(
            subject=f"Workflow Failure: {workflow.name}",
            body=f"{failure_message}\n{error_details}",
            embed=embed,
            data={
                "workflowName": workflow.name,
                "status": "failed",
                "error": error,
                "timestamp": created_at.isoformat(),
            },
            created_at=created_at,
        )

    def _alert_notification(self, alert: PortfolioAlert, context: dict[str, Any]) -> Notification:
        created_at = context.get("now") or datetime.now(timezone.utc)
        total = float(context.get("portfolio_value", 0.0))
        change = context.get("change_percent")

        fields = [
            ("Portfolio Value", f"${total:,.2f}", True),
            ("Threshold", alert.threshold, True),
        ]
        lines = [
            f'Portfolio alert "{alert.name}" triggered.',
            f"Portfolio value: ${total:,.2f}",
            f"Threshold: {alert.threshold}",
        ]
        if change is not None:
            fields.append(("Change", f"{change:+.2f}%", True))
            lines.append(f"Change since baseline: {change:+.2f}%")

        embed = build_embed(
            title=f"📈 Portfolio Alert: {alert.name}",
            color=DiscordNotifier.COLOR_ALERT,
            fields=fields,
            footer_text=self.footer_text,
            description=alert.description,
        )
        return Notification(
            subject=f"Portfolio Alert: {alert.name}",
            body="\n".join(lines),
            embed=embed,
            data={
                "alertId": alert.id,
                "alertName": alert.name,
                "status": "triggered",
                "portfolioValue": total,
                "threshold": alert.threshold,
                "changePercent": change,
                "timestamp": created_at.isoformat(),
            },
            created_at=created_at,
        )
