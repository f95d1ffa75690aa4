"""
Main application entry point.
"""

import asyncio
import logging
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

from web3flow.alerts.evaluator import PortfolioAlertEvaluator
from web3flow.chain.sources import BlockSource, create_block_source
from web3flow.chain.watcher import ChainWatcher
from web3flow.config import AppConfig
from web3flow.data.prices import PriceFeedClient, create_price_feed
from web3flow.database.connection import Database
from web3flow.database.repository import (
    NotificationRuleRepository,
    PortfolioAlertRepository,
    PortfolioRepository,
    UserRepository,
    WorkflowRepository,
)
from web3flow.engine import WorkflowEngine
from web3flow.notifiers.base import NotifierFactory
from web3flow.notifiers.dispatcher import NotificationDispatcher
from web3flow.publisher import LiveUpdatePublisher
from web3flow.recorder import ExecutionRecorder
from web3flow.rules.resolver import NotificationResolver
from web3flow.workflows import WorkflowService

logger = logging.getLogger(__name__)


class Web3FlowApp:
    """Main Web3Flow application."""

    def __init__(
        self,
        config: AppConfig,
        db: Database,
        block_source: Optional[BlockSource] = None,
        price_feed: Optional[PriceFeedClient] = None,
        factory: Optional[NotifierFactory] = None,
    ):
        """
        Initialize Web3Flow app.

        Args:
            config: Application configuration
            db: Database instance (already initialized)
            block_source: Block stream; built from chain.rpc_url when omitted
            price_feed: Price client; built from price_feed.provider when omitted
            factory: Notifier factory; built from the notifications section when omitted
        """
        self.config = config
        self.db = db

        # Initialize repositories
        self.users = UserRepository(db)
        self.rules = NotificationRuleRepository(db)
        self.workflows = WorkflowRepository(db)
        self.alerts = PortfolioAlertRepository(db)
        self.portfolio = PortfolioRepository(db)

        # Initialize services
        self.publisher = LiveUpdatePublisher()
        self.resolver = NotificationResolver(
            footer_text=config.notifications.discord.footer_text
        )
        self.dispatcher = NotificationDispatcher(
            factory or NotifierFactory(config.notifications)
        )
        self.recorder = ExecutionRecorder(self.workflows, self.users, self.publisher)
        self.engine = WorkflowEngine(
            self.users, self.rules, self.resolver, self.dispatcher, self.recorder
        )
        self.workflow_service = WorkflowService(self.workflows, self.users, self.publisher)

        source = block_source or create_block_source(
            config.chain.rpc_url, poll_interval=config.chain.poll_interval_seconds
        )
        self.watcher = ChainWatcher(
            source,
            self.workflows,
            self.engine,
            retry_delay=config.chain.poll_interval_seconds,
        )

        feed = price_feed or create_price_feed(
            config.price_feed.provider, timeout=config.price_feed.timeout_seconds
        )
        self.evaluator = PortfolioAlertEvaluator(
            alerts=self.alerts,
            portfolio=self.portfolio,
            workflows=self.workflows,
            users=self.users,
            price_feed=feed,
            resolver=self.resolver,
            dispatcher=self.dispatcher,
            recorder=self.recorder,
            publisher=self.publisher,
            symbols=config.price_feed.symbols,
            interval_seconds=config.alerts.check_interval_seconds,
        )

    async def run(self) -> None:
        """
        Run the chain watcher and the alert evaluator until either one stops
        or the caller cancels. Both tasks are cancelled together on the way
        out; notifications still in flight are not waited for. A task that
        failed has its exception re-raised.
        """
        tasks = [
            asyncio.create_task(self.watcher.run(), name="chain-watcher"),
            asyncio.create_task(self.evaluator.run(), name="alert-evaluator"),
        ]
        logger.info(f"Web3Flow started (rpc: {self.config.chain.rpc_url})")
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Web3Flow stopped")

        for task in done:
            if task.cancelled():
                continue
            if task.exception() is not None:
                raise task.exception()
            logger.warning(f"{task.get_name()} finished unexpectedly; shutting down")


def main():
    """CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Web3Flow trigger service")
    parser.add_argument(
        "--config", default="config.yaml", help="Path to config file"
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug mode")

    args = parser.parse_args()

    # Load config
    from web3flow.config import load_config

    config = load_config(args.config)

    # Setup logging
    log_level = logging.DEBUG if args.debug else getattr(logging, config.advanced.log_level)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    # Initialize database
    db = Database(config.database.path)
    db.initialize()

    app = Web3FlowApp(config=config, db=db)
    try:
        asyncio.run(app.run())
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    finally:
        db.close()


if __name__ == "__main__":
    main()
