"""
Workflow service tests.
"""

import pytest

from web3flow.database.models import ActionType, Workflow
from web3flow.publisher import LiveUpdatePublisher, UpdateType
from web3flow.workflows import WorkflowNotFoundError, WorkflowService


@pytest.fixture
def publisher():
    return LiveUpdatePublisher()


@pytest.fixture
def service(repos, publisher):
    return WorkflowService(repos.workflows, repos.users, publisher)


class TestWorkflowService:
    """Test lifecycle operations and their events."""

    def test_create_counts_workflows(self, service, repos):
        """Should create the owner and keep usage.workflows in step."""
        service.create(Workflow(name="a", source_address="0x1", user_address="0xOWNER"))
        service.create(Workflow(name="b", source_address="0x2", user_address="0xowner"))

        assert repos.users.get("0xowner").usage.workflows == 2

    @pytest.mark.asyncio
    async def test_toggle(self, service, publisher, repos, workflow):
        """Should flip the flag and publish WORKFLOW_TOGGLED."""
        queue = publisher.subscribe()
        toggled = await service.toggle(workflow.id)

        assert toggled.is_active is False
        assert repos.workflows.get(workflow.id).is_active is False
        event = queue.get_nowait()
        assert event.type == UpdateType.WORKFLOW_TOGGLED
        assert event.payload["workflow"]["id"] == workflow.id
        assert event.payload["workflow"]["is_active"] is False

    @pytest.mark.asyncio
    async def test_update(self, service, publisher, repos, workflow):
        """Should apply edits and publish WORKFLOW_UPDATED."""
        queue = publisher.subscribe()
        updated = await service.update(
            workflow.id,
            {
                "name": "Renamed",
                "action_type": "webhook",
                "action_params": {"webhook_url": "https://hooks.example.com/in"},
                "message": {"subject": "s", "body": "{{amount}}"},
            },
        )

        assert updated.action_type == ActionType.WEBHOOK
        stored = repos.workflows.get(workflow.id)
        assert stored.name == "Renamed"
        assert stored.action_params.webhook_url == "https://hooks.example.com/in"
        assert stored.message.body == "{{amount}}"
        assert queue.get_nowait().type == UpdateType.WORKFLOW_UPDATED

    @pytest.mark.asyncio
    async def test_update_rejects_counter_fields(self, service, workflow):
        """Should not let edits touch execution counters."""
        with pytest.raises(ValueError, match="execution_count"):
            await service.update(workflow.id, {"execution_count": 99})

    @pytest.mark.asyncio
    async def test_delete(self, service, publisher, repos, owner, workflow):
        """Should delete, lower usage.workflows and publish WORKFLOW_DELETED."""
        repos.users.update_usage(owner.address, workflows=1)
        queue = publisher.subscribe()

        await service.delete(workflow.id)

        assert repos.workflows.get(workflow.id) is None
        assert repos.users.get(owner.address).usage.workflows == 0
        event = queue.get_nowait()
        assert event.type == UpdateType.WORKFLOW_DELETED
        assert event.payload == {"workflowId": workflow.id}

    @pytest.mark.asyncio
    async def test_missing_workflow(self, service):
        """Should raise WorkflowNotFoundError for unknown IDs."""
        with pytest.raises(WorkflowNotFoundError):
            await service.toggle("missing")
        with pytest.raises(WorkflowNotFoundError):
            await service.delete("missing")
