"""
Workflow lifecycle operations that other viewers need to hear about.
"""

import logging
from typing import Any, Optional

from web3flow.database.models import ActionParams, MessageTemplate, Workflow
from web3flow.database.repository import UserRepository, WorkflowRepository
from web3flow.publisher import LiveUpdatePublisher, UpdateEvent, UpdateType

logger = logging.getLogger(__name__)

# Definition fields that update() may change; counters belong to the recorder
EDITABLE_FIELDS = {
    "name",
    "description",
    "trigger_type",
    "source_address",
    "action_type",
    "action_params",
    "message",
    "notification_rule_id",
    "portfolio_alert_id",
    "is_active",
}


class WorkflowNotFoundError(KeyError):
    """Raised when a workflow ID does not exist."""


class WorkflowService:
    """Create, toggle, edit and delete workflows, keeping usage and viewers in step."""

    def __init__(
        self,
        workflows: WorkflowRepository,
        users: UserRepository,
        publisher: LiveUpdatePublisher,
    ):
        self.workflows = workflows
        self.users = users
        self.publisher = publisher

    def _require(self, workflow_id: str) -> Workflow:
        workflow = self.workflows.get(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        return workflow

    def _refresh_workflow_count(self, address: Optional[str]) -> None:
        if not address:
            return
        count = len(self.workflows.list_for_user(address))
        self.users.update_usage(address, workflows=count)

    def create(self, workflow: Workflow) -> Workflow:
        """Store a new workflow and bump the owner's workflow count."""
        if workflow.user_address:
            self.users.find_or_create(workflow.user_address)
        created = self.workflows.create(workflow)
        self._refresh_workflow_count(created.user_address)
        logger.info(f"Created workflow {created.name!r} watching {created.source_address}")
        return created

    async def toggle(self, workflow_id: str) -> Workflow:
        """
        Flip a workflow's active flag.

        Raises:
            WorkflowNotFoundError: If the workflow does not exist
        """
        workflow = self._require(workflow_id)
        workflow.is_active = not workflow.is_active
        self.workflows.upsert(workflow)
        logger.info(
            f"Workflow {workflow.name!r} is now {'active' if workflow.is_active else 'inactive'}"
        )
        await self.publisher.publish(
            UpdateEvent(type=UpdateType.WORKFLOW_TOGGLED, payload={"workflow": workflow.to_dict()})
        )
        return workflow

    async def update(self, workflow_id: str, changes: dict[str, Any]) -> Workflow:
        """
        Apply definition edits to a workflow.

        Args:
            workflow_id: Workflow to edit
            changes: Field name to new value; nested action_params and
                message may be given as dicts

        Raises:
            WorkflowNotFoundError: If the workflow does not exist
            ValueError: If a field cannot be edited
        """
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        workflow = self._require(workflow_id)
        values = dict(changes)
        if isinstance(values.get("action_params"), dict):
            values["action_params"] = ActionParams(**values["action_params"])
        if isinstance(values.get("message"), dict):
            values["message"] = MessageTemplate(**values["message"])

        for name, value in values.items():
            setattr(workflow, name, value)
        # Re-run enum coercion
        workflow.__post_init__()

        self.workflows.upsert(workflow)
        await self.publisher.publish(
            UpdateEvent(type=UpdateType.WORKFLOW_UPDATED, payload={"workflow": workflow.to_dict()})
        )
        return workflow

    async def delete(self, workflow_id: str) -> Workflow:
        """
        Delete a workflow and lower the owner's workflow count.

        Raises:
            WorkflowNotFoundError: If the workflow does not exist
        """
        workflow = self.workflows.delete(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)

        self._refresh_workflow_count(workflow.user_address)
        logger.info(f"Deleted workflow {workflow.name!r}")
        await self.publisher.publish(
            UpdateEvent(type=UpdateType.WORKFLOW_DELETED, payload={"workflowId": workflow_id})
        )
        return workflow
