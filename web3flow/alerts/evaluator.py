"""
Periodic portfolio alert evaluation.
"""

import asyncio
import functools
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from web3flow.data.prices import PriceFeedClient, TokenPrice
from web3flow.database.models import AlertType, PortfolioAlert, PortfolioAsset
from web3flow.database.repository import (
    PortfolioAlertRepository,
    PortfolioRepository,
    UserRepository,
    WorkflowRepository,
)
from web3flow.notifiers.base import NotificationResult
from web3flow.notifiers.dispatcher import NotificationDispatcher
from web3flow.publisher import LiveUpdatePublisher, UpdateEvent, UpdateType
from web3flow.recorder import ExecutionRecorder
from web3flow.rules.resolver import NotificationResolver

logger = logging.getLogger(__name__)

DEFAULT_SYMBOLS = ["ETH", "BTC", "PEPE", "LINK"]


@dataclass
class Threshold:
    """Parsed alert threshold."""

    value: float
    is_percentage: bool


def parse_threshold(text: str) -> Optional[Threshold]:
    """
    Parse "1500", "$1,500", "10%", "±5 %" and the like.

    Returns:
        Threshold, or None when no number can be read
    """
    if text is None:
        return None
    raw = str(text).strip()
    cleaned = re.sub(r"[\s$,%+±]", "", raw)
    try:
        value = float(cleaned)
    except ValueError:
        return None
    return Threshold(value=value, is_percentage="%" in raw)


def percentage_change(total: float, baseline: float) -> float:
    """Change from baseline to total, in percent."""
    return (total - baseline) / baseline * 100


@dataclass
class HoldingValue:
    symbol: str
    amount: float
    price: float

    @property
    def value(self) -> float:
        return self.amount * self.price


@dataclass
class PortfolioValuation:
    """Total portfolio value at current prices."""

    holdings: list[HoldingValue]
    prices: dict[str, TokenPrice]

    @property
    def total(self) -> float:
        return sum(h.value for h in self.holdings)


def value_portfolio(assets: list[PortfolioAsset], prices: dict[str, TokenPrice]) -> PortfolioValuation:
    """Value each holding; symbols without a price count as zero."""
    holdings = []
    for asset in assets:
        price = prices.get(asset.symbol)
        holdings.append(
            HoldingValue(
                symbol=asset.symbol,
                amount=asset.amount,
                price=price.price if price else 0.0,
            )
        )
    return PortfolioValuation(holdings=holdings, prices=prices)


@dataclass
class AlertCheck:
    """Outcome of checking one alert against a valuation."""

    alert_id: str
    fired: bool
    portfolio_value: float
    change_percent: Optional[float] = None
    reason: Optional[str] = None
    results: list[NotificationResult] = field(default_factory=list)


def check_alert(alert: PortfolioAlert, total: float) -> AlertCheck:
    """
    Decide whether a portfolio_value alert fires for a total value.

    Percentage thresholds compare the absolute change from the baseline with
    the absolute threshold, so they fire in both directions. Absolute
    thresholds fire only when the total is at or above the threshold.
    """
    threshold = parse_threshold(alert.threshold)
    if threshold is None:
        logger.warning(f"Alert {alert.name!r} has unreadable threshold {alert.threshold!r}")
        return AlertCheck(alert.id, False, total, reason="unreadable threshold")

    if threshold.is_percentage:
        baseline = alert.initial_value
        if not baseline:
            logger.warning(f"Percentage alert {alert.name!r} has no baseline value")
            return AlertCheck(alert.id, False, total, reason="missing baseline")
        change = percentage_change(total, baseline)
        fired = abs(change) >= abs(threshold.value)
        return AlertCheck(alert.id, fired, total, change_percent=change)

    return AlertCheck(alert.id, total >= threshold.value, total)


class PortfolioAlertEvaluator:
    """Values the portfolio on a fixed period and fires crossing alerts."""

    def __init__(
        self,
        alerts: PortfolioAlertRepository,
        portfolio: PortfolioRepository,
        workflows: WorkflowRepository,
        users: UserRepository,
        price_feed: PriceFeedClient,
        resolver: NotificationResolver,
        dispatcher: NotificationDispatcher,
        recorder: ExecutionRecorder,
        publisher: LiveUpdatePublisher,
        symbols: Optional[list[str]] = None,
        interval_seconds: float = 60.0,
    ):
        self.alerts = alerts
        self.portfolio = portfolio
        self.workflows = workflows
        self.users = users
        self.price_feed = price_feed
        self.resolver = resolver
        self.dispatcher = dispatcher
        self.recorder = recorder
        self.publisher = publisher
        self.symbols = symbols or list(DEFAULT_SYMBOLS)
        self.interval_seconds = interval_seconds
        self.last_valuation: Optional[PortfolioValuation] = None

    async def fetch_prices(self) -> dict[str, TokenPrice]:
        loop = asyncio.get_running_loop()
        call = functools.partial(self.price_feed.get_prices, self.symbols)
        return await loop.run_in_executor(None, call)

    async def valuation(self) -> PortfolioValuation:
        """Price the current holdings."""
        prices = await self.fetch_prices()
        valuation = value_portfolio(self.portfolio.list_assets(), prices)
        self.last_valuation = valuation
        return valuation

    async def evaluate_once(self) -> list[AlertCheck]:
        """
        Run one evaluation tick.

        Returns:
            One AlertCheck per evaluated portfolio_value alert
        """
        active = self.alerts.list_active()
        if not active:
            return []

        valuation = await self.valuation()
        total = valuation.total
        logger.debug(f"Portfolio value: ${total:,.2f}")

        checks = []
        for alert in active:
            if alert.type != AlertType.PORTFOLIO_VALUE:
                logger.debug(f"No evaluator for {alert.type.value} alert {alert.name!r}")
                continue

            check = check_alert(alert, total)
            if check.fired:
                check.results = await self._fire(alert, check)
            checks.append(check)
        return checks

    async def _fire(self, alert: PortfolioAlert, check: AlertCheck) -> list[NotificationResult]:
        logger.info(
            f"Portfolio alert {alert.name!r} triggered at ${check.portfolio_value:,.2f}"
        )
        now = datetime.now(timezone.utc)
        user = self.users.get(alert.user_address) if alert.user_address else None
        context = {
            "now": now,
            "timestamp": now.strftime("%Y-%m-%d %H:%M:%S"),
            "portfolio_value": check.portfolio_value,
            "change_percent": check.change_percent,
            "alert": alert,
        }
        plan = self.resolver.resolve_alert(alert, user, context)
        results = await self.dispatcher.dispatch(plan.deliveries)

        # Status stays active; the alert re-arms for the next tick
        fresh = self.alerts.get(alert.id)
        if fresh is not None:
            fresh.last_triggered = now
            self.alerts.upsert(fresh)

        await self.publisher.publish(
            UpdateEvent(
                type=UpdateType.ALERT_TRIGGERED,
                payload={
                    "alertId": alert.id,
                    "lastTriggered": now.isoformat(),
                    "portfolioValue": check.portfolio_value,
                },
            )
        )

        for workflow in self.workflows.list_linked_to_alert(alert.id):
            await self.recorder.record(workflow.id)
        return results

    async def run(self) -> None:
        """Evaluate every interval until cancelled."""
        logger.info(f"Evaluating portfolio alerts every {self.interval_seconds}s")
        while True:
            try:
                await self.evaluate_once()
            except Exception:
                logger.exception("Portfolio alert evaluation failed")
            await asyncio.sleep(self.interval_seconds)
