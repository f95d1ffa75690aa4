"""
CLI commands for Web3Flow.
"""

import argparse
import asyncio
import logging
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

from web3flow.alerts.evaluator import PortfolioValuation, parse_threshold, value_portfolio
from web3flow.chain.sources import ChainClient
from web3flow.config import AppConfig, build_config, load_config
from web3flow.data.prices import PriceFeedClient, create_price_feed
from web3flow.database.connection import Database
from web3flow.database.models import (
    ActionParams,
    ActionType,
    AlertType,
    MessageTemplate,
    NotificationRule,
    PortfolioAlert,
    RuleAction,
    RuleTrigger,
    TriggerType,
    User,
    Workflow,
)
from web3flow.database.repository import (
    NotificationRuleRepository,
    PortfolioAlertRepository,
    PortfolioRepository,
    UserRepository,
    WorkflowRepository,
)
from web3flow.publisher import LiveUpdatePublisher
from web3flow.workflows import WorkflowService


def add_user(
    db: Database,
    address: str,
    name: Optional[str] = None,
    discord_webhook: Optional[str] = None,
    email: Optional[str] = None,
    webhook_url: Optional[str] = None,
) -> User:
    """Add a user, or update the profile of an existing one."""
    repo = UserRepository(db)
    user = repo.find_or_create(address)
    if name:
        user.profile_name = name
    if discord_webhook:
        user.integrations.discord = discord_webhook
        user.notifications.discord = True
    if email:
        user.integrations.email = email
    if webhook_url:
        user.integrations.webhook_url = webhook_url
        user.notifications.webhook = True
    return repo.upsert(user)


def set_integration(
    db: Database,
    address: str,
    channel: str,
    endpoint: str,
    enabled: bool = True,
) -> User:
    """Set a user's endpoint for a channel and switch the channel on or off."""
    channel = ActionType(channel).value
    repo = UserRepository(db)
    user = repo.find_or_create(address)
    if channel == ActionType.WEBHOOK.value:
        user.integrations.webhook_url = endpoint
    else:
        setattr(user.integrations, channel, endpoint)
    setattr(user.notifications, channel, enabled)
    return repo.upsert(user)


def set_alert_preferences(
    db: Database,
    address: str,
    execution_alerts: Optional[bool] = None,
    failure_alerts: Optional[bool] = None,
) -> User:
    repo = UserRepository(db)
    user = repo.find_or_create(address)
    if execution_alerts is not None:
        user.notifications.execution_alerts = execution_alerts
    if failure_alerts is not None:
        user.notifications.failure_alerts = failure_alerts
    return repo.upsert(user)


def add_rule(
    db: Database,
    address: str,
    name: str,
    trigger: str,
    action: str,
    message: str,
) -> NotificationRule:
    """Add a custom notification rule for a user."""
    UserRepository(db).find_or_create(address)
    rule = NotificationRule(
        user_address=address,
        name=name,
        trigger=trigger,
        action=action,
        message=message,
    )
    return NotificationRuleRepository(db).create(rule)


def add_workflow(
    db: Database,
    name: str,
    source_address: str,
    user_address: Optional[str] = None,
    action_type: str = "discord",
    endpoint: Optional[str] = None,
    trigger_type: str = "eth_transfer",
    description: str = "",
    subject: str = "",
    body: str = "",
    rule_id: Optional[str] = None,
    alert_id: Optional[str] = None,
) -> Workflow:
    """Add a workflow watching an address."""
    action = ActionType(action_type)
    params = ActionParams()
    if endpoint:
        if action == ActionType.DISCORD:
            params.discord_webhook = endpoint
        elif action == ActionType.EMAIL:
            params.email = endpoint
        else:
            params.webhook_url = endpoint

    workflow = Workflow(
        name=name,
        source_address=source_address,
        user_address=user_address,
        description=description,
        trigger_type=trigger_type,
        action_type=action,
        action_params=params,
        message=MessageTemplate(subject=subject, body=body) if (subject or body) else None,
        notification_rule_id=rule_id,
        portfolio_alert_id=alert_id,
    )
    service = WorkflowService(WorkflowRepository(db), UserRepository(db), LiveUpdatePublisher())
    return service.create(workflow)


def toggle_workflow(db: Database, workflow_id: str) -> Workflow:
    """Switch a workflow on or off."""
    service = WorkflowService(WorkflowRepository(db), UserRepository(db), LiveUpdatePublisher())
    return asyncio.run(service.toggle(workflow_id))


def delete_workflow(db: Database, workflow_id: str) -> Workflow:
    service = WorkflowService(WorkflowRepository(db), UserRepository(db), LiveUpdatePublisher())
    return asyncio.run(service.delete(workflow_id))


def value_holdings(db: Database, price_feed: PriceFeedClient) -> PortfolioValuation:
    """Price the stored holdings."""
    assets = PortfolioRepository(db).list_assets()
    prices = price_feed.get_prices([a.symbol for a in assets])
    return value_portfolio(assets, prices)


def add_alert(
    db: Database,
    name: str,
    threshold: str,
    alert_type: str = "portfolio_value",
    action_type: str = "discord",
    endpoint: Optional[str] = None,
    user_address: Optional[str] = None,
    description: str = "",
    baseline: Optional[float] = None,
    price_feed: Optional[PriceFeedClient] = None,
) -> PortfolioAlert:
    """
    Add a portfolio alert.

    Percentage alerts need a baseline. When none is given it is taken from
    the current portfolio value using price_feed.

    Raises:
        ValueError: If the threshold is unreadable or no baseline is available
    """
    parsed = parse_threshold(threshold)
    if parsed is None:
        raise ValueError(f"Unreadable threshold: {threshold!r}")

    if parsed.is_percentage and baseline is None:
        if price_feed is None:
            raise ValueError("Percentage alerts need a baseline value")
        baseline = value_holdings(db, price_feed).total

    action = ActionType(action_type)
    params = ActionParams()
    if endpoint:
        if action == ActionType.DISCORD:
            params.discord_webhook = endpoint
        elif action == ActionType.EMAIL:
            params.email = endpoint
        else:
            params.webhook_url = endpoint

    if user_address:
        UserRepository(db).find_or_create(user_address)

    alert = PortfolioAlert(
        name=name,
        threshold=threshold,
        type=alert_type,
        description=description,
        initial_value=baseline,
        action_type=action,
        action_params=params,
        user_address=user_address,
    )
    return PortfolioAlertRepository(db).create(alert)


def _load_app_config(args: argparse.Namespace) -> AppConfig:
    config = load_config(args.config) if args.config else build_config()
    if args.db:
        config.database.path = args.db
    return config


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Web3Flow CLI")
    parser.add_argument("--config", help="Path to config file")
    parser.add_argument("--db", help="Database path (overrides the config file)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command")

    subparsers.add_parser("run", help="Run the chain watcher and alert evaluator")

    # User commands
    add_user_parser = subparsers.add_parser("add-user", help="Add or update a user")
    add_user_parser.add_argument("--address", required=True, help="Wallet address")
    add_user_parser.add_argument("--name", help="Profile name")
    add_user_parser.add_argument("--discord", help="Discord webhook URL")
    add_user_parser.add_argument("--email", help="Email address")
    add_user_parser.add_argument("--webhook", help="Generic webhook URL")

    integration_parser = subparsers.add_parser(
        "set-integration", help="Set a user's channel endpoint"
    )
    integration_parser.add_argument("--address", required=True, help="Wallet address")
    integration_parser.add_argument(
        "--channel", required=True, choices=[a.value for a in ActionType]
    )
    integration_parser.add_argument("--endpoint", required=True, help="URL or email address")
    integration_parser.add_argument(
        "--disable", action="store_true", help="Store the endpoint but keep the channel off"
    )

    prefs_parser = subparsers.add_parser("set-alerts", help="Set a user's alert categories")
    prefs_parser.add_argument("--address", required=True, help="Wallet address")
    prefs_parser.add_argument("--execution", choices=["on", "off"])
    prefs_parser.add_argument("--failure", choices=["on", "off"])

    # Rule commands
    add_rule_parser = subparsers.add_parser("add-rule", help="Add a custom notification rule")
    add_rule_parser.add_argument("--address", required=True, help="Owner wallet address")
    add_rule_parser.add_argument("--name", required=True, help="Rule name")
    add_rule_parser.add_argument(
        "--trigger", required=True, choices=[t.value for t in RuleTrigger]
    )
    add_rule_parser.add_argument(
        "--action", required=True, choices=[a.value for a in RuleAction]
    )
    add_rule_parser.add_argument("--message", required=True, help="Message template")

    # Workflow commands
    add_workflow_parser = subparsers.add_parser("add-workflow", help="Add a workflow")
    add_workflow_parser.add_argument("--name", required=True, help="Workflow name")
    add_workflow_parser.add_argument("--watch", required=True, help="Address to watch")
    add_workflow_parser.add_argument("--owner", help="Owner wallet address")
    add_workflow_parser.add_argument(
        "--trigger", default="eth_transfer", choices=[t.value for t in TriggerType]
    )
    add_workflow_parser.add_argument(
        "--action", default="discord", choices=[a.value for a in ActionType]
    )
    add_workflow_parser.add_argument("--endpoint", help="Action endpoint")
    add_workflow_parser.add_argument("--description", default="")
    add_workflow_parser.add_argument("--subject", default="", help="Message subject template")
    add_workflow_parser.add_argument("--body", default="", help="Message body template")
    add_workflow_parser.add_argument("--rule", help="Notification rule ID")
    add_workflow_parser.add_argument("--alert", help="Linked portfolio alert ID")

    subparsers.add_parser("list-workflows", help="List workflows")

    toggle_parser = subparsers.add_parser("toggle-workflow", help="Switch a workflow on or off")
    toggle_parser.add_argument("--id", required=True, help="Workflow ID")

    delete_parser = subparsers.add_parser("delete-workflow", help="Delete a workflow")
    delete_parser.add_argument("--id", required=True, help="Workflow ID")

    # Portfolio commands
    add_alert_parser = subparsers.add_parser("add-alert", help="Add a portfolio alert")
    add_alert_parser.add_argument("--name", required=True, help="Alert name")
    add_alert_parser.add_argument(
        "--threshold", required=True, help='Absolute value ("1500") or percentage ("10%%")'
    )
    add_alert_parser.add_argument(
        "--type", default="portfolio_value", choices=[t.value for t in AlertType]
    )
    add_alert_parser.add_argument(
        "--action", default="discord", choices=[a.value for a in ActionType]
    )
    add_alert_parser.add_argument("--endpoint", help="Action endpoint")
    add_alert_parser.add_argument("--owner", help="Owner wallet address")
    add_alert_parser.add_argument("--description", default="")
    add_alert_parser.add_argument(
        "--baseline", type=float, help="Baseline value; defaults to the current portfolio value"
    )

    holding_parser = subparsers.add_parser("set-holding", help="Set a portfolio holding")
    holding_parser.add_argument("--symbol", required=True, help="Symbol, e.g. ETH")
    holding_parser.add_argument("--amount", required=True, type=float, help="Amount held")

    remove_holding_parser = subparsers.add_parser("remove-holding", help="Remove a portfolio holding")
    remove_holding_parser.add_argument("--symbol", required=True, help="Symbol, e.g. ETH")

    subparsers.add_parser("portfolio", help="Show holdings at current prices")

    verify_parser = subparsers.add_parser("verify-tx", help="Verify a payment transaction")
    verify_parser.add_argument("--hash", required=True, help="Transaction hash")
    verify_parser.add_argument("--to", required=True, help="Expected recipient")
    verify_parser.add_argument("--value", required=True, help="Expected value in ETH")

    health_parser = subparsers.add_parser("healthcheck", help="Send a status report to Discord")
    health_parser.add_argument("--webhook", help="Discord webhook URL")

    args = parser.parse_args()

    config = _load_app_config(args)
    logging.basicConfig(
        level=logging.DEBUG if args.debug else getattr(logging, config.advanced.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return

    # Initialize database
    db = Database(config.database.path)
    db.initialize()

    try:
        if args.command == "run":
            from web3flow.main import Web3FlowApp

            app = Web3FlowApp(config=config, db=db)
            try:
                asyncio.run(app.run())
            except KeyboardInterrupt:
                print("Stopped")

        elif args.command == "add-user":
            user = add_user(
                db,
                args.address,
                name=args.name,
                discord_webhook=args.discord,
                email=args.email,
                webhook_url=args.webhook,
            )
            print(f"Saved user {user.address}")

        elif args.command == "set-integration":
            user = set_integration(
                db, args.address, args.channel, args.endpoint, enabled=not args.disable
            )
            print(f"Updated {args.channel} integration for {user.address}")

        elif args.command == "set-alerts":
            user = set_alert_preferences(
                db,
                args.address,
                execution_alerts=None if args.execution is None else args.execution == "on",
                failure_alerts=None if args.failure is None else args.failure == "on",
            )
            prefs = user.notifications
            print(
                f"Execution alerts: {prefs.execution_alerts}, "
                f"failure alerts: {prefs.failure_alerts}"
            )

        elif args.command == "add-rule":
            rule = add_rule(db, args.address, args.name, args.trigger, args.action, args.message)
            print(f"Created rule with ID: {rule.id}")

        elif args.command == "add-workflow":
            workflow = add_workflow(
                db,
                name=args.name,
                source_address=args.watch,
                user_address=args.owner,
                action_type=args.action,
                endpoint=args.endpoint,
                trigger_type=args.trigger,
                description=args.description,
                subject=args.subject,
                body=args.body,
                rule_id=args.rule,
                alert_id=args.alert,
            )
            print(f"Created workflow with ID: {workflow.id}")

        elif args.command == "list-workflows":
            for w in WorkflowRepository(db).list_all():
                state = "active" if w.is_active else "inactive"
                print(
                    f"{w.id}: {w.name} [{state}] watch={w.source_address} "
                    f"action={w.action_type.value} executions={w.execution_count}"
                )

        elif args.command == "toggle-workflow":
            workflow = toggle_workflow(db, args.id)
            print(f"{workflow.name} is now {'active' if workflow.is_active else 'inactive'}")

        elif args.command == "delete-workflow":
            workflow = delete_workflow(db, args.id)
            print(f"Deleted workflow {workflow.name}")

        elif args.command == "add-alert":
            feed = create_price_feed(
                config.price_feed.provider, timeout=config.price_feed.timeout_seconds
            )
            alert = add_alert(
                db,
                name=args.name,
                threshold=args.threshold,
                alert_type=args.type,
                action_type=args.action,
                endpoint=args.endpoint,
                user_address=args.owner,
                description=args.description,
                baseline=args.baseline,
                price_feed=feed,
            )
            print(f"Created alert with ID: {alert.id}")
            if alert.initial_value is not None:
                print(f"Baseline: ${alert.initial_value:,.2f}")

        elif args.command == "set-holding":
            asset = PortfolioRepository(db).set_asset(args.symbol, args.amount)
            print(f"{asset.symbol}: {asset.amount:g}")

        elif args.command == "remove-holding":
            if PortfolioRepository(db).remove_asset(args.symbol):
                print(f"Removed {args.symbol.upper()}")
            else:
                print(f"No holding for {args.symbol.upper()}")

        elif args.command == "portfolio":
            feed = create_price_feed(
                config.price_feed.provider, timeout=config.price_feed.timeout_seconds
            )
            valuation = value_holdings(db, feed)
            for h in valuation.holdings:
                print(f"{h.symbol}: {h.amount:g} x ${h.price:,.4f} = ${h.value:,.2f}")
            print(f"Total: ${valuation.total:,.2f}")

        elif args.command == "verify-tx":
            client = ChainClient.from_url(config.chain.rpc_url)
            verified = asyncio.run(client.verify_transaction(args.hash, args.to, args.value))
            print("Verified" if verified else "Not verified")

        elif args.command == "healthcheck":
            from web3flow.healthcheck import run_healthcheck

            feed = create_price_feed(
                config.price_feed.provider, timeout=config.price_feed.timeout_seconds
            )
            run_healthcheck(db, webhook_url=args.webhook, price_feed=feed)

    finally:
        db.close()


if __name__ == "__main__":
    main()
