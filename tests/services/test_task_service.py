"""Tests for ScheduleTaskService - creation, execution with retry, lifecycle."""

import asyncio

import pytest
from structlog.testing import capture_logs

from agenda.core.errors import StateConflictError, TaskNotFoundError, ValidationError
from agenda.scheduling.config import ScheduleConfig
from agenda.scheduling.enums import ExecutionStatus, ScheduleTaskStatus, SourceModule
from agenda.scheduling.task import TaskMetadata
from tests._support.clock import ACCOUNT, HOUR, T0


async def ok(task):
    return {"sent": True}


async def boom(task):
    raise RuntimeError("upstream 503")


@pytest.fixture
async def task(task_service, task_repo, make_task):
    created = make_task()
    await task_repo.save(created)
    return created


@pytest.fixture
def create_kwargs(hourly, fast_retry):
    return {
        "account_uuid": ACCOUNT,
        "name": "Weekly review",
        "source_module": SourceModule.TASK,
        "source_entity_id": "task-9",
        "schedule": hourly,
        "retry_policy": fast_retry,
    }


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_task_updates_statistics(self, task_service, task_repo, statistics_repo, create_kwargs):
        created = await task_service.create_task(**create_kwargs)

        assert await task_repo.find_by_uuid(created.uuid) is not None
        stats = await statistics_repo.find_by_account_uuid(ACCOUNT)
        assert stats.get_module_stats(SourceModule.TASK).total_tasks == 1
        assert stats.active_tasks == 1
        assert "schedule_task.created" in [e.name for e in task_service.outbox.peek()]

    @pytest.mark.asyncio
    async def test_create_batch(self, task_service, task_repo, statistics_repo, create_kwargs):
        requests = [create_kwargs, {**create_kwargs, "source_entity_id": "task-10"}]
        created = await task_service.create_tasks_batch(requests)

        assert len(created) == 2
        assert len(task_repo) == 2
        stats = await statistics_repo.find_by_account_uuid(ACCOUNT)
        assert stats.total_tasks == 2

    @pytest.mark.asyncio
    async def test_invalid_batch_saves_nothing(self, task_service, task_repo, create_kwargs):
        requests = [create_kwargs, {**create_kwargs, "name": ""}]
        with pytest.raises(ValidationError):
            await task_service.create_tasks_batch(requests)
        assert len(task_repo) == 0


class TestQueries:
    @pytest.mark.asyncio
    async def test_get_task_missing(self, task_service):
        with pytest.raises(TaskNotFoundError):
            await task_service.get_task("missing")

    @pytest.mark.asyncio
    async def test_find_by_source(self, task_service, task):
        found = await task_service.find_by_source(SourceModule.GOAL, "goal-1")
        assert [t.uuid for t in found] == [task.uuid]
        assert await task_service.find_by_source(SourceModule.TASK, "goal-1") == []

    @pytest.mark.asyncio
    async def test_find_due_tasks(self, task_service, task):
        assert await task_service.find_due_tasks(before_time=T0) == []
        due = await task_service.find_due_tasks(before_time=T0 + HOUR)
        assert [t.uuid for t in due] == [task.uuid]


class TestExecute:
    @pytest.mark.asyncio
    async def test_success(self, task_service, task_repo, statistics_repo, task):
        record = await task_service.execute_task(task.uuid, ok, executed_at=T0 + HOUR)

        assert record.status is ExecutionStatus.SUCCESS
        assert record.result == {"sent": True}
        stored = await task_repo.find_by_uuid(task.uuid)
        assert stored.next_run_at == T0 + 2 * HOUR
        assert stored.execution.execution_count == 1
        stats = await statistics_repo.find_by_account_uuid(ACCOUNT)
        assert stats.successful_executions == 1

    @pytest.mark.asyncio
    async def test_scalar_result_is_wrapped(self, task_service, task):
        async def answer(_):
            return 42

        record = await task_service.execute_task(task.uuid, answer, executed_at=T0 + HOUR)
        assert record.result == {"value": 42}

    @pytest.mark.asyncio
    async def test_failure_schedules_retry(self, task_service, task_repo, task):
        record = await task_service.execute_task(task.uuid, boom, executed_at=T0 + HOUR)

        assert record.status is ExecutionStatus.FAILED
        assert record.error == "upstream 503"
        stored = await task_repo.find_by_uuid(task.uuid)
        assert stored.status is ScheduleTaskStatus.ACTIVE
        assert stored.consecutive_failures == 1
        assert stored.next_run_at == T0 + HOUR + 2000

    @pytest.mark.asyncio
    async def test_failure_is_logged_as_execution_error(self, task_service, task):
        with capture_logs() as logs:
            await task_service.execute_task(task.uuid, boom, executed_at=T0 + HOUR)

        entry = next(e for e in logs if e["event"] == "task.execution_failed")
        assert entry["error_type"] == "ExecutionError"
        assert entry["category"] == "EXECUTION"
        assert entry["cause"] == "upstream 503"
        assert entry["context"] == {"account_uuid": ACCOUNT, "task_uuid": task.uuid}

    @pytest.mark.asyncio
    async def test_retries_exhausted_fails_task(self, task_service, task_repo, statistics_repo, task):
        for n in range(3):
            await task_service.execute_task(task.uuid, boom, executed_at=T0 + HOUR + n * 10_000)

        stored = await task_repo.find_by_uuid(task.uuid)
        assert stored.status is ScheduleTaskStatus.FAILED
        assert stored.next_run_at is None
        stats = await statistics_repo.find_by_account_uuid(ACCOUNT)
        assert stats.failed_executions == 3
        assert stats.failed_tasks == 1
        assert stats.active_tasks == 0

    @pytest.mark.asyncio
    async def test_timeout(self, task_service, task_repo, make_task):
        slow_task = make_task(metadata=TaskMetadata(timeout_ms=10))
        await task_repo.save(slow_task)

        async def slow(_):
            await asyncio.sleep(1)

        record = await task_service.execute_task(slow_task.uuid, slow, executed_at=T0 + HOUR)
        assert record.status is ExecutionStatus.TIMEOUT
        assert "10 ms" in record.error

    @pytest.mark.asyncio
    async def test_paused_task_is_not_executable(self, task_service, task):
        await task_service.pause_task(task.uuid)
        with pytest.raises(StateConflictError):
            await task_service.execute_task(task.uuid, ok)

    @pytest.mark.asyncio
    async def test_execute_due_tasks_isolates_failures(self, task_service, task_repo, make_task):
        first = make_task(source_entity_id="a")
        second = make_task(source_entity_id="b")
        later = make_task(source_entity_id="c", schedule=ScheduleConfig.daily(hour=12))
        for t in (first, second, later):
            await task_repo.save(t)

        async def fail_b(t):
            if t.source_entity_id == "b":
                raise RuntimeError("nope")
            return None

        batch = await task_service.execute_due_tasks(fail_b, before_time=T0 + HOUR)

        assert set(batch.succeeded) == {first.uuid, second.uuid}
        assert batch.failed_count == 0
        assert (await task_repo.find_by_uuid(second.uuid)).consecutive_failures == 1


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_pause_resume_statistics(self, task_service, statistics, statistics_repo, task):
        await statistics.record_task_created(ACCOUNT, SourceModule.GOAL)

        await task_service.pause_task(task.uuid)
        stats = await statistics_repo.find_by_account_uuid(ACCOUNT)
        assert (stats.active_tasks, stats.paused_tasks) == (0, 1)

        resumed = await task_service.resume_task(task.uuid)
        assert resumed.status is ScheduleTaskStatus.ACTIVE
        stats = await statistics_repo.find_by_account_uuid(ACCOUNT)
        assert (stats.active_tasks, stats.paused_tasks) == (1, 0)

    @pytest.mark.asyncio
    async def test_complete_and_fail(self, task_service, task_repo, make_task):
        a, b = make_task(source_entity_id="a"), make_task(source_entity_id="b")
        await task_repo.save(a)
        await task_repo.save(b)

        assert (await task_service.complete_task(a.uuid, "done")).status is ScheduleTaskStatus.COMPLETED
        assert (await task_service.fail_task(b.uuid, "bad")).status is ScheduleTaskStatus.FAILED
        assert (await task_service.cancel_task(b.uuid)).status is ScheduleTaskStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_batch_operations_report_per_item(self, task_service, task):
        result = await task_service.cancel_tasks([task.uuid, "missing"], reason="cleanup")
        assert result.succeeded == [task.uuid]
        assert "missing" in result.failed

        again = await task_service.pause_tasks([task.uuid])
        assert again.failed_count == 1
        assert again.total_count == 1

    @pytest.mark.asyncio
    async def test_resume_and_complete_batches(self, task_service, task):
        await task_service.pause_tasks([task.uuid])
        assert (await task_service.resume_tasks([task.uuid])).success_count == 1
        assert (await task_service.complete_tasks([task.uuid])).success_count == 1


class TestDeleteAndUpdate:
    @pytest.mark.asyncio
    async def test_delete_task(self, task_service, task_repo, statistics_repo, create_kwargs):
        created = await task_service.create_task(**create_kwargs)
        await task_service.delete_task(created.uuid)

        assert await task_repo.find_by_uuid(created.uuid) is None
        stats = await statistics_repo.find_by_account_uuid(ACCOUNT)
        assert (stats.total_tasks, stats.active_tasks) == (0, 0)

    @pytest.mark.asyncio
    async def test_delete_tasks(self, task_service, task_repo, task):
        result = await task_service.delete_tasks([task.uuid, "missing"])
        assert result.succeeded == [task.uuid]
        assert list(result.failed) == ["missing"]
        assert len(task_repo) == 0

    @pytest.mark.asyncio
    async def test_update_schedule_config(self, task_service, task_repo, task):
        await task_service.update_schedule_config(task.uuid, ScheduleConfig.every_minutes(30))
        stored = await task_repo.find_by_uuid(task.uuid)
        assert stored.schedule.cron_expression == "*/30 * * * *"

    @pytest.mark.asyncio
    async def test_update_metadata(self, task_service, task_repo, task):
        await task_service.update_metadata(task.uuid, payload={"channel": "email"}, add_tags=["weekly"])
        stored = await task_repo.find_by_uuid(task.uuid)
        assert stored.metadata.payload == {"channel": "email"}
        assert stored.metadata.tags == ("weekly",)
