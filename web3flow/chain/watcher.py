"""
Block-driven workflow triggering.
"""

import asyncio
import logging
from typing import Optional

from web3flow.database.repository import WorkflowRepository
from web3flow.engine import ExecutionReport, WorkflowEngine
from web3flow.rules.matcher import match_workflows
from .sources import BlockSource

logger = logging.getLogger(__name__)


class ChainWatcher:
    """
    Consumes a block stream and runs the engine for every matching workflow.

    Transactions in a block are handled one after another, and every match is
    processed to completion before the next one starts. A block whose
    contents cannot be fetched is logged and skipped, and a broken block
    stream is retried.
    """

    def __init__(
        self,
        source: BlockSource,
        workflows: WorkflowRepository,
        engine: WorkflowEngine,
        retry_delay: float = 2.0,
    ):
        self.source = source
        self.workflows = workflows
        self.engine = engine
        self.retry_delay = retry_delay
        self.last_block: Optional[int] = None
        self.blocks_processed = 0
        self.blocks_skipped = 0
        self.stream_errors = 0

    async def run(self) -> None:
        """
        Process blocks until the source ends or the task is cancelled.

        A failing next_block() is logged and retried after retry_delay; the
        source reconnects on the next call.
        """
        await self.source.connect()
        logger.info("Listening for new blocks")
        try:
            while True:
                try:
                    block_number = await self.source.next_block()
                except Exception as e:
                    logger.error(f"Error reading block stream: {e}")
                    self.stream_errors += 1
                    await asyncio.sleep(self.retry_delay)
                    continue
                if block_number is None:
                    logger.warning("Block stream ended")
                    break
                await self.process_block(block_number)
        finally:
            await self.source.close()

    async def process_block(self, block_number: int) -> list[ExecutionReport]:
        """
        Match every transaction in a block against the active workflows.

        Returns:
            Reports for the workflows that ran, in processing order
        """
        logger.debug(f"[Block: {block_number}] New block received from node.")
        self.last_block = block_number

        if not self.workflows.list_active():
            return []

        try:
            transactions = await self.source.fetch_transactions(block_number)
        except Exception as e:
            logger.error(f"Error processing block {block_number}: {e}")
            self.blocks_skipped += 1
            return []

        reports = []
        for tx in transactions:
            if not tx.to_address:
                continue

            # Re-read so toggles and counter updates made meanwhile are seen
            matched = match_workflows(tx.to_address, self.workflows.list_active())
            for workflow in matched:
                try:
                    reports.append(await self.engine.handle_match(workflow, tx))
                except Exception:
                    logger.exception(
                        f"Error handling workflow {workflow.name!r} for tx {tx.hash}"
                    )

        self.blocks_processed += 1
        return reports
