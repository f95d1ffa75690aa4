"""
Execution counters and usage aggregation.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from web3flow.database.models import Workflow
from web3flow.database.repository import UserRepository, WorkflowRepository
from web3flow.publisher import LiveUpdatePublisher

logger = logging.getLogger(__name__)


class ExecutionRecorder:
    """Records workflow executions and keeps owner usage in step."""

    def __init__(
        self,
        workflows: WorkflowRepository,
        users: UserRepository,
        publisher: LiveUpdatePublisher,
    ):
        self.workflows = workflows
        self.users = users
        self.publisher = publisher

    def apply(
        self,
        workflow_id: str,
        response_time_ms: Optional[float] = None,
        succeeded: bool = True,
        now: Optional[datetime] = None,
    ) -> Optional[Workflow]:
        """
        Increment a workflow's counters from its freshest stored copy.

        No await happens between the read and the write, so a concurrent
        task cannot interleave an update to the same workflow.

        Returns:
            The updated workflow, or None if it no longer exists
        """
        workflow = self.workflows.get(workflow_id)
        if workflow is None:
            logger.warning(f"Cannot record execution: workflow {workflow_id} not found")
            return None

        now = now or datetime.now(timezone.utc)
        previous = workflow.execution_count or 0
        if workflow.previous_execution_count is None:
            workflow.previous_execution_count = previous

        workflow.execution_count = previous + 1
        outcome = 100.0 if succeeded else 0.0
        workflow.success_rate = (workflow.success_rate * previous + outcome) / workflow.execution_count
        workflow.last_triggered = now
        workflow.execution_timestamps.append(now)
        if response_time_ms is not None:
            workflow.response_times.append(response_time_ms)

        self.workflows.upsert(workflow)
        logger.info(
            f"Incremented execution count for workflow {workflow.name!r} "
            f"to {workflow.execution_count}"
        )

        if workflow.user_address:
            self.refresh_usage(workflow.user_address)
        return workflow

    def refresh_usage(self, user_address: str) -> int:
        """Recompute a user's execution usage as the sum over their workflows."""
        total = sum(w.execution_count for w in self.workflows.list_for_user(user_address))
        self.users.update_usage(user_address, executions=total)
        return total

    async def record(
        self,
        workflow_id: str,
        response_time_ms: Optional[float] = None,
        succeeded: bool = True,
    ) -> Optional[Workflow]:
        """Apply one execution and publish a WORKFLOW_EXECUTED event."""
        workflow = self.apply(workflow_id, response_time_ms=response_time_ms, succeeded=succeeded)
        if workflow is not None:
            await self.publisher.workflow_executed(
                workflow.id, workflow.execution_count, workflow.last_triggered
            )
        return workflow
