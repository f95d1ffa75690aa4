"""
Isolated, time-bounded delivery of planned notifications.
"""

import asyncio
import functools
import logging
from typing import Iterable, Optional

from .base import Delivery, NotificationResult, NotifierFactory

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Sends deliveries one by one; a failing channel never stops the others."""

    def __init__(self, factory: Optional[NotifierFactory] = None, timeout: Optional[float] = None):
        """
        Initialize dispatcher.

        Args:
            factory: Builds a notifier per channel endpoint
            timeout: Upper bound in seconds for a single send. Defaults to the
                factory's channel timeout.
        """
        self.factory = factory or NotifierFactory()
        self.timeout = timeout or self.factory.config.channel_timeout_seconds

    async def dispatch(self, deliveries: Iterable[Delivery]) -> list[NotificationResult]:
        """
        Send every delivery in order.

        Returns:
            One NotificationResult per delivery, failures included
        """
        results = []
        for delivery in deliveries:
            result = await self.send(delivery)
            if result.success:
                logger.info(f"Sent {delivery.channel} notification to {delivery.target}")
            else:
                logger.error(
                    f"Failed to send {delivery.channel} notification to "
                    f"{delivery.target}: {result.error}"
                )
            results.append(result)
        return results

    async def send(self, delivery: Delivery) -> NotificationResult:
        """Send a single delivery, converting every error into a failed result."""
        try:
            notifier = self.factory.create(delivery.channel, delivery.target)
        except ValueError as e:
            return NotificationResult(
                success=False, channel=delivery.channel, error=str(e), target=delivery.target
            )

        loop = asyncio.get_running_loop()
        call = functools.partial(notifier.send, delivery.notification)
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, call), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            return NotificationResult(
                success=False,
                channel=delivery.channel,
                error=f"Timed out after {self.timeout}s",
                target=delivery.target,
            )
        except Exception as e:
            logger.exception(f"Unexpected error from {delivery.channel} notifier")
            return NotificationResult(
                success=False, channel=delivery.channel, error=str(e), target=delivery.target
            )
