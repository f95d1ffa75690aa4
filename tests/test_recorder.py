"""
Execution recorder and live-update publisher tests.
"""

import asyncio
from datetime import datetime, timezone

import pytest

from web3flow.database.models import Workflow
from web3flow.publisher import LiveUpdatePublisher, UpdateEvent, UpdateType
from web3flow.recorder import ExecutionRecorder


@pytest.fixture
def publisher():
    return LiveUpdatePublisher()


@pytest.fixture
def recorder(repos, publisher):
    return ExecutionRecorder(repos.workflows, repos.users, publisher)


class TestExecutionRecorder:
    """Test counter updates and usage aggregation."""

    def test_increment_is_monotonic(self, recorder, workflow):
        """Should add exactly one per recorded execution."""
        for expected in range(1, 4):
            updated = recorder.apply(workflow.id)
            assert updated.execution_count == expected

    def test_previous_count_captured_once(self, recorder, repos, workflow):
        """Should set previous_execution_count on the first increment only."""
        workflow.execution_count = 5
        repos.workflows.upsert(workflow)

        recorder.apply(workflow.id)
        recorder.apply(workflow.id)

        stored = repos.workflows.get(workflow.id)
        assert stored.previous_execution_count == 5
        assert stored.execution_count == 7

    def test_timestamps_and_response_times(self, recorder, repos, workflow):
        """Should log the time of each execution and its response time."""
        now = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)
        recorder.apply(workflow.id, response_time_ms=42.0, now=now)
        recorder.apply(workflow.id)

        stored = repos.workflows.get(workflow.id)
        assert stored.last_triggered >= now
        assert stored.execution_timestamps[0] == now
        assert len(stored.execution_timestamps) == 2
        assert stored.response_times == [42.0]

    def test_success_rate(self, recorder, repos, workflow):
        """Should keep a running percentage of successful executions."""
        recorder.apply(workflow.id, succeeded=True)
        recorder.apply(workflow.id, succeeded=False)
        recorder.apply(workflow.id, succeeded=True)
        recorder.apply(workflow.id, succeeded=True)

        assert repos.workflows.get(workflow.id).success_rate == pytest.approx(75.0)

    def test_usage_is_sum_over_owner_workflows(self, recorder, repos, owner, workflow):
        """Should set the owner's executions to the sum of workflow counts."""
        other = repos.workflows.create(
            Workflow(name="Other", source_address="0xBBB", user_address=owner.address)
        )
        recorder.apply(workflow.id)
        recorder.apply(workflow.id)
        recorder.apply(other.id)

        assert repos.users.get(owner.address).usage.executions == 3

    def test_missing_workflow(self, recorder):
        """Should return None for unknown workflows."""
        assert recorder.apply("missing") is None

    def test_reads_fresh_copy(self, recorder, repos, workflow):
        """Should build on the stored count, not a stale in-memory copy."""
        stale = repos.workflows.get(workflow.id)
        recorder.apply(workflow.id)
        recorder.apply(stale.id)
        assert repos.workflows.get(workflow.id).execution_count == 2

    @pytest.mark.asyncio
    async def test_record_publishes_one_event(self, recorder, publisher, workflow):
        """Should emit one WORKFLOW_EXECUTED event per execution."""
        queue = publisher.subscribe()
        updated = await recorder.record(workflow.id, response_time_ms=12.0)

        event = queue.get_nowait()
        assert event.type == UpdateType.WORKFLOW_EXECUTED
        assert event.payload == {
            "workflowId": workflow.id,
            "executionCount": 1,
            "lastTriggered": updated.last_triggered.isoformat(),
        }
        assert queue.empty()

    @pytest.mark.asyncio
    async def test_record_missing_publishes_nothing(self, recorder, publisher):
        """Should not publish for unknown workflows."""
        queue = publisher.subscribe()
        assert await recorder.record("missing") is None
        assert queue.empty()


class TestLiveUpdatePublisher:
    """Test best-effort fan-out."""

    @pytest.mark.asyncio
    async def test_fan_out(self, publisher):
        """Should deliver each event to every subscriber."""
        first = publisher.subscribe()
        second = publisher.subscribe()

        delivered = await publisher.publish(
            UpdateEvent(type=UpdateType.WORKFLOW_DELETED, payload={"workflowId": "w1"})
        )

        assert delivered == 2
        assert first.get_nowait().payload == {"workflowId": "w1"}
        assert second.get_nowait().type == UpdateType.WORKFLOW_DELETED

    @pytest.mark.asyncio
    async def test_no_subscribers(self, publisher):
        """Should accept events with nobody listening."""
        delivered = await publisher.publish(
            UpdateEvent(type=UpdateType.WORKFLOW_TOGGLED, payload={})
        )
        assert delivered == 0
        assert publisher.published_count == 1

    @pytest.mark.asyncio
    async def test_full_queue_drops_for_that_subscriber(self):
        """Should drop events for a slow subscriber without affecting others."""
        publisher = LiveUpdatePublisher(max_queue_size=1)
        slow = publisher.subscribe()
        fast = publisher.subscribe()

        await publisher.publish(UpdateEvent(type=UpdateType.WORKFLOW_UPDATED, payload={"n": 1}))
        fast.get_nowait()
        delivered = await publisher.publish(
            UpdateEvent(type=UpdateType.WORKFLOW_UPDATED, payload={"n": 2})
        )

        assert delivered == 1
        assert slow.qsize() == 1
        assert fast.get_nowait().payload == {"n": 2}

    @pytest.mark.asyncio
    async def test_unsubscribe(self, publisher):
        """Should stop delivering after unsubscribe."""
        queue = publisher.subscribe()
        publisher.unsubscribe(queue)
        await publisher.publish(UpdateEvent(type=UpdateType.WORKFLOW_TOGGLED, payload={}))
        assert publisher.subscriber_count == 0
        assert queue.empty()

    @pytest.mark.asyncio
    async def test_subscriber_task_receives_event(self, publisher):
        """Should wake a waiting subscriber task."""
        queue = publisher.subscribe()
        waiter = asyncio.create_task(queue.get())
        await publisher.publish(UpdateEvent(type=UpdateType.ALERT_TRIGGERED, payload={"alertId": "a"}))
        event = await asyncio.wait_for(waiter, timeout=1)
        assert event.to_message() == {"type": "ALERT_TRIGGERED", "payload": {"alertId": "a"}}
