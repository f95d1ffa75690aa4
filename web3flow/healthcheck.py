"""
Health check - sends a status message to Discord.
"""

import os
from datetime import datetime
from typing import Optional

from web3flow.alerts.evaluator import value_portfolio
from web3flow.data.prices import PriceFeedClient
from web3flow.database.connection import Database
from web3flow.database.repository import (
    PortfolioAlertRepository,
    PortfolioRepository,
    UserRepository,
    WorkflowRepository,
)
from web3flow.notifiers.base import Notification, NotificationResult
from web3flow.notifiers.discord import DiscordNotifier, build_embed


def build_status_notification(
    db: Database,
    price_feed: Optional[PriceFeedClient] = None,
    footer_text: str = "Powered by Web3Flow",
) -> Notification:
    """Summarise users, workflows, alerts and holdings as a Discord embed."""
    users = UserRepository(db).list_all()
    workflows = WorkflowRepository(db).list_active()
    alerts = PortfolioAlertRepository(db).list_active()
    assets = PortfolioRepository(db).list_assets()

    workflow_list = "\n".join(f"{w.name} ({w.source_address})" for w in workflows[:10]) or "None"
    if len(workflows) > 10:
        workflow_list += f"\n... and {len(workflows) - 10} more"
    alert_list = "\n".join(f"{a.name}: {a.threshold}" for a in alerts) or "None"

    if not assets:
        portfolio_line = "No holdings"
    elif price_feed is None:
        portfolio_line = ", ".join(f"{a.amount:g} {a.symbol}" for a in assets)
    else:
        prices = price_feed.get_prices([a.symbol for a in assets])
        portfolio_line = f"${value_portfolio(assets, prices).total:,.2f}"

    fields = [
        ("Users", str(len(users)), True),
        ("Active Workflows", str(len(workflows)), True),
        ("Active Alerts", str(len(alerts)), True),
        ("Portfolio", portfolio_line, False),
        ("Workflows", workflow_list, False),
        ("Alerts", alert_list, False),
    ]
    embed = build_embed(
        title="Web3Flow Health Check",
        color=DiscordNotifier.COLOR_STATUS,
        fields=fields,
        footer_text=footer_text,
        description="System is running normally.",
    )
    body = "\n".join(f"{name}: {value}" for name, value, _ in fields)
    return Notification(subject="Web3Flow Health Check", body=body, embed=embed)


def run_healthcheck(
    db: Database,
    webhook_url: Optional[str] = None,
    price_feed: Optional[PriceFeedClient] = None,
) -> Optional[NotificationResult]:
    """Run health check and send status to Discord.

    Args:
        db: Database instance (already initialized)
        webhook_url: Discord webhook; defaults to DISCORD_WEBHOOK_URL
        price_feed: Used to value the portfolio when given

    Returns:
        NotificationResult, or None when no webhook is configured
    """
    webhook_url = webhook_url or os.getenv("DISCORD_WEBHOOK_URL")
    if not webhook_url:
        print("DISCORD_WEBHOOK_URL not set")
        return None

    notification = build_status_notification(db, price_feed=price_feed)
    result = DiscordNotifier(webhook_url=webhook_url).send(notification)

    now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    status = "sent" if result.success else f"failed ({result.error})"
    print(f"{now} - Health check {status}")
    return result
