"""
Per-match workflow pipeline: resolve, dispatch, record, publish.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from web3flow.chain.transaction import ChainTransaction
from web3flow.database.models import User, Workflow
from web3flow.database.repository import NotificationRuleRepository, UserRepository
from web3flow.notifiers.base import NotificationResult
from web3flow.notifiers.dispatcher import NotificationDispatcher
from web3flow.recorder import ExecutionRecorder
from web3flow.rules.resolver import NotificationResolver, Outcome, build_context

logger = logging.getLogger(__name__)


@dataclass
class ExecutionReport:
    """What happened when a matched workflow was processed."""

    workflow_id: str
    outcome: Outcome
    notification_source: str
    results: list[NotificationResult] = field(default_factory=list)
    error: Optional[str] = None
    execution_count: Optional[int] = None


class WorkflowEngine:
    """Runs the notification pipeline for one matched workflow at a time."""

    def __init__(
        self,
        users: UserRepository,
        rules: NotificationRuleRepository,
        resolver: NotificationResolver,
        dispatcher: NotificationDispatcher,
        recorder: ExecutionRecorder,
    ):
        self.users = users
        self.rules = rules
        self.resolver = resolver
        self.dispatcher = dispatcher
        self.recorder = recorder

    def _owner(self, workflow: Workflow) -> Optional[User]:
        if not workflow.user_address:
            return None
        return self.users.find_or_create(workflow.user_address)

    def _action_error(self, workflow: Workflow, user: Optional[User]) -> Optional[str]:
        """Return a reason when the workflow's own action channel cannot be reached."""
        channel = workflow.action_type.value
        endpoint = workflow.action_params.endpoint_for(channel)
        if not endpoint and user is not None:
            endpoint = user.integrations.endpoint_for(channel)
        if not endpoint:
            return f"No {channel} endpoint found for workflow or user integrations."
        return None

    async def handle_match(
        self, workflow: Workflow, transaction: Optional[ChainTransaction] = None
    ) -> ExecutionReport:
        """
        Process a workflow matched by a transaction.

        The success notification is resolved and sent first. The execution
        fails when the workflow's action channel is enabled but has no
        endpoint, or when every planned delivery failed; the failure
        notification then goes through the same resolver. Executions whose
        notification the owner switched off count as successes. The
        execution is recorded either way.

        Returns:
            ExecutionReport describing the outcome
        """
        started = time.monotonic()
        logger.info(
            f"Matched workflow {workflow.name!r} for a transaction to "
            f"{transaction.to_address if transaction else workflow.source_address}"
        )

        user = self._owner(workflow)
        rules = self.rules.list_for_user(user.address) if user else []
        context = build_context(workflow, user, transaction)

        plan = self.resolver.resolve(Outcome.SUCCESS, workflow, user, rules, context)
        error = None
        # Silenced executions and disabled action channels are not failures
        if plan.source == "default" and user.notifications.is_channel_enabled(
            workflow.action_type.value
        ):
            error = self._action_error(workflow, user)

        results: list[NotificationResult] = []
        if error is None:
            results = await self.dispatcher.dispatch(plan.deliveries)
            if results and not any(r.success for r in results):
                error = "; ".join(f"{r.channel}: {r.error}" for r in results)

        outcome = Outcome.SUCCESS
        source = plan.source
        if error is not None:
            outcome = Outcome.FAILURE
            logger.error(f"Workflow {workflow.name!r} failed: {error}")
            failure_context = build_context(workflow, user, transaction, error=error)
            failure_plan = self.resolver.resolve(
                Outcome.FAILURE, workflow, user, rules, failure_context
            )
            source = failure_plan.source
            results.extend(await self.dispatcher.dispatch(failure_plan.deliveries))

        response_time_ms = (time.monotonic() - started) * 1000
        updated = await self.recorder.record(
            workflow.id,
            response_time_ms=response_time_ms,
            succeeded=outcome == Outcome.SUCCESS,
        )

        return ExecutionReport(
            workflow_id=workflow.id,
            outcome=outcome,
            notification_source=source,
            results=results,
            error=error,
            execution_count=updated.execution_count if updated else None,
        )
