"""
Block streams backed by a web3 node.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Optional

from web3 import AsyncHTTPProvider, AsyncWeb3, WebSocketProvider

from .transaction import ChainTransaction

logger = logging.getLogger(__name__)


def _block_number(value: Any) -> int:
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    return int(value)


class BlockSource(ABC):
    """Pull-based stream of new blocks."""

    async def connect(self) -> None:
        """Open the underlying connection, if any."""
        pass

    async def close(self) -> None:
        """Release the underlying connection, if any."""
        pass

    @abstractmethod
    async def next_block(self) -> Optional[int]:
        """
        Wait for the next block.

        Returns:
            Block number, or None when the stream has ended
        """
        pass

    @abstractmethod
    async def fetch_transactions(self, block_number: int) -> list[ChainTransaction]:
        """
        Fetch a block and every transaction in it.

        Raises:
            Exception: Any node or transport error; the caller skips the block
        """
        pass


class Web3BlockSource(BlockSource):
    """Shared block and transaction fetching through AsyncWeb3."""

    def __init__(self, w3: AsyncWeb3):
        self.w3 = w3

    async def fetch_transactions(self, block_number: int) -> list[ChainTransaction]:
        block = await self.w3.eth.get_block(block_number)
        transactions = []
        for tx_hash in block.get("transactions", []):
            tx = await self.w3.eth.get_transaction(tx_hash)
            if tx is None:
                continue
            transactions.append(ChainTransaction.from_web3(tx))
        return transactions


class PollingBlockSource(Web3BlockSource):
    """Follows the chain head over HTTP JSON-RPC."""

    def __init__(self, w3: AsyncWeb3, poll_interval: float = 2.0):
        super().__init__(w3)
        self.poll_interval = poll_interval
        self._last_seen: Optional[int] = None

    @classmethod
    def from_url(cls, rpc_url: str, poll_interval: float = 2.0) -> "PollingBlockSource":
        return cls(AsyncWeb3(AsyncHTTPProvider(rpc_url)), poll_interval=poll_interval)

    async def next_block(self) -> Optional[int]:
        while True:
            try:
                latest = await self.w3.eth.block_number
            except Exception as e:
                logger.error(f"Error polling block number: {e}")
                await asyncio.sleep(self.poll_interval)
                continue

            if self._last_seen is None:
                # Start at the current head; no backfill
                self._last_seen = latest
                return latest
            if latest > self._last_seen:
                self._last_seen += 1
                return self._last_seen
            await asyncio.sleep(self.poll_interval)


class SubscriptionBlockSource(Web3BlockSource):
    """Receives new heads over a WebSocket eth_subscribe subscription."""

    def __init__(self, w3: AsyncWeb3):
        super().__init__(w3)
        self._stream = None

    @classmethod
    def from_url(cls, ws_url: str) -> "SubscriptionBlockSource":
        return cls(AsyncWeb3(WebSocketProvider(ws_url)))

    async def connect(self) -> None:
        await self.w3.provider.connect()
        subscription_id = await self.w3.eth.subscribe("newHeads")
        logger.info(f"Subscribed to newHeads ({subscription_id})")
        self._stream = self.w3.socket.process_subscriptions()

    async def close(self) -> None:
        self._stream = None
        await self.w3.provider.disconnect()

    async def next_block(self) -> Optional[int]:
        """
        Wait for the next head.

        A dropped connection is closed and re-raised; the following call
        reconnects and subscribes again.
        """
        if self._stream is None:
            await self.connect()
        try:
            message = await self._stream.__anext__()
        except StopAsyncIteration:
            return None
        except Exception as e:
            logger.warning(f"newHeads subscription lost: {e}")
            try:
                await self.close()
            except Exception as close_error:
                logger.debug(f"Error closing WebSocket: {close_error}")
            raise
        header = message["result"]
        return _block_number(header["number"])


def create_block_source(rpc_url: str, poll_interval: float = 2.0) -> BlockSource:
    """Pick a subscription source for ws(s):// URLs, polling otherwise."""
    if rpc_url.startswith(("ws://", "wss://")):
        return SubscriptionBlockSource.from_url(rpc_url)
    return PollingBlockSource.from_url(rpc_url, poll_interval=poll_interval)


class ChainClient:
    """One-off chain queries."""

    def __init__(self, w3: AsyncWeb3):
        self.w3 = w3

    @classmethod
    def from_url(cls, rpc_url: str) -> "ChainClient":
        return cls(AsyncWeb3(AsyncHTTPProvider(rpc_url)))

    async def verify_transaction(
        self, tx_hash: str, expected_to: str, expected_value_eth: str
    ) -> bool:
        """
        Check that a mined transaction paid the expected amount to an address.

        Returns:
            True only for a successful receipt with matching recipient and value
        """
        try:
            tx = await self.w3.eth.get_transaction(tx_hash)
            if not tx:
                logger.info(f"Transaction not found: {tx_hash}")
                return False

            receipt = await self.w3.eth.wait_for_transaction_receipt(tx_hash)
            if not receipt or receipt.get("status") != 1:
                logger.info(f"Transaction {tx_hash} failed or is still pending.")
                return False

            transaction = ChainTransaction.from_web3(tx)
            to_ok = (transaction.to_address or "").lower() == expected_to.lower()
            expected_wei = AsyncWeb3.to_wei(Decimal(expected_value_eth), "ether")
            value_ok = transaction.value_wei == expected_wei
            if to_ok and value_ok:
                logger.info(f"Transaction {tx_hash} successfully verified.")
                return True

            logger.info(
                f"Transaction {tx_hash} verification failed. To: {to_ok}, Value: {value_ok}"
            )
            return False
        except Exception as e:
            logger.error(f"Error verifying transaction {tx_hash}: {e}")
            return False
