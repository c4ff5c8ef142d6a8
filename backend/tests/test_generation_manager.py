"""
NoteStudio Backend — Generation Manager Tests
===============================================

What we test:
    ✅ Bulk and single-addition tasks reach the right terminal state
    ✅ Terminal states never change once reached
    ✅ cancel() wins over late answers from the client
    ✅ Subscribers get a snapshot on subscribe and one per change
    ✅ Completion callbacks fire once per task
    ✅ Merge failures are recorded without failing the task
"""

import asyncio
import logging

import pytest

from conftest import make_project, make_version, wait_until_terminal
from notestudio.exceptions import GenerationCancelledError, LLMServiceError
from notestudio.services.generation_manager import (
    BulkResult,
    GenerationManager,
    SingleResult,
    TaskKind,
    TaskStatus,
)


class TestBulkTask:

    @pytest.mark.asyncio
    async def test_returns_running_task_id_before_work_runs(self, manager, fake_client):
        task_id = manager.start_bulk_task("hello")

        task = manager.get(task_id)
        assert task_id.startswith("bulk-")
        assert task.kind is TaskKind.BULK_REFINE
        assert task.status is TaskStatus.RUNNING
        assert task.result is None
        assert fake_client.calls == []

    @pytest.mark.asyncio
    async def test_completes_with_all_versions(self, manager, fake_client):
        task_id = manager.start_bulk_task("hello")
        task = await wait_until_terminal(manager, task_id)

        assert task.status is TaskStatus.COMPLETED
        assert isinstance(task.result, BulkResult)
        assert len(task.result.versions) == 4
        assert len({v.id for v in task.result.versions}) == 4
        assert fake_client.calls == [("batch", "hello")]
        assert task.finished_at is not None

    @pytest.mark.asyncio
    async def test_empty_result_is_an_error(self, manager, fake_client):
        fake_client.batch_result = []

        task = await wait_until_terminal(manager, manager.start_bulk_task("hello"))

        assert task.status is TaskStatus.ERROR
        assert task.result is None
        assert task.error_message

    @pytest.mark.asyncio
    async def test_missing_result_is_an_error(self, manager, fake_client):
        fake_client.batch_result = None

        task = await wait_until_terminal(manager, manager.start_bulk_task("hello"))

        assert task.status is TaskStatus.ERROR

    @pytest.mark.asyncio
    async def test_client_failure_is_an_error(self, manager, fake_client):
        fake_client.batch_result = LLMServiceError(message="Gemini is down")

        task = await wait_until_terminal(manager, manager.start_bulk_task("hello"))

        assert task.status is TaskStatus.ERROR
        assert task.error_message == "Gemini is down"

    @pytest.mark.asyncio
    async def test_unexpected_failure_gets_generic_message(self, manager, fake_client):
        fake_client.batch_result = RuntimeError("socket closed")

        task = await wait_until_terminal(manager, manager.start_bulk_task("hello"))

        assert task.status is TaskStatus.ERROR
        assert "socket closed" not in task.error_message

    @pytest.mark.asyncio
    async def test_client_reported_cancellation_is_aborted(self, manager, fake_client):
        fake_client.batch_result = GenerationCancelledError(task_id="x")

        task = await wait_until_terminal(manager, manager.start_bulk_task("hello"))

        assert task.status is TaskStatus.ABORTED
        assert task.error_message is None

    @pytest.mark.asyncio
    async def test_concurrent_tasks_update_only_their_own_entry(self, manager, fake_client):
        first = manager.start_bulk_task("one")
        second = manager.start_bulk_task("two")

        await wait_until_terminal(manager, first)
        await wait_until_terminal(manager, second)

        assert first != second
        assert [t.id for t in manager.tasks] == [first, second]
        assert sorted(fake_client.calls) == [("batch", "one"), ("batch", "two")]


class TestSingleAdditionTask:

    @pytest.mark.asyncio
    async def test_merges_new_version_into_project(self, manager, fake_client, fake_store):
        fake_store.projects["P"] = make_project("P", ["v1", "v2"], timestamp=1000)
        fake_client.single_result = make_version("v3", style="story")

        task_id = manager.start_single_addition_task("core note", "P")
        task = await wait_until_terminal(manager, task_id)

        assert task_id.startswith("single-")
        assert task.status is TaskStatus.COMPLETED
        assert task.project_id == "P"
        assert isinstance(task.result, SingleResult)
        assert task.result.version.id == "v3"
        project = await fake_store.get_project("P")
        assert [v.id for v in project.versions] == ["v1", "v2", "v3"]
        assert project.timestamp > 1000

    @pytest.mark.asyncio
    async def test_deleted_project_still_completes(self, manager, fake_store):
        task = await wait_until_terminal(
            manager, manager.start_single_addition_task("core note", "gone")
        )

        assert task.status is TaskStatus.COMPLETED
        assert task.persistence_error is None
        assert fake_store.project_writes == []

    @pytest.mark.asyncio
    async def test_store_failure_is_recorded_but_task_completes(self, manager, fake_store):
        fake_store.projects["P"] = make_project("P", ["v1"])
        fake_store.fail_writes = True

        task = await wait_until_terminal(manager, manager.start_single_addition_task("core", "P"))

        assert task.status is TaskStatus.COMPLETED
        assert task.persistence_error == "Could not save the project. Please try again."
        assert isinstance(task.result, SingleResult)

    @pytest.mark.asyncio
    async def test_empty_answer_is_an_error_and_touches_nothing(self, manager, fake_client, fake_store):
        fake_store.projects["P"] = make_project("P", ["v1"])
        fake_client.single_result = None

        task = await wait_until_terminal(manager, manager.start_single_addition_task("core", "P"))

        assert task.status is TaskStatus.ERROR
        assert fake_store.project_writes == []


class TestCancellation:

    @pytest.mark.asyncio
    async def test_cancel_marks_aborted_immediately(self, manager, fake_client):
        fake_client.gate = asyncio.Event()
        task_id = manager.start_bulk_task("hello")
        await asyncio.sleep(0)

        assert manager.cancel(task_id) is True

        task = manager.get(task_id)
        assert task.status is TaskStatus.ABORTED
        assert task.token.cancelled

    @pytest.mark.asyncio
    async def test_cancelled_single_task_leaves_project_unchanged(self, manager, fake_client, fake_store):
        fake_store.projects["P"] = make_project("P", ["v1", "v2"])
        fake_client.gate = asyncio.Event()
        fake_client.stubborn = True
        fake_client.single_result = make_version("v3")

        task_id = manager.start_single_addition_task("core", "P")
        await asyncio.sleep(0)
        manager.cancel(task_id)

        # The client answers anyway
        fake_client.gate.set()
        for _ in range(20):
            await asyncio.sleep(0)

        assert manager.get(task_id).status is TaskStatus.ABORTED
        assert manager.get(task_id).result is None
        project = await fake_store.get_project("P")
        assert [v.id for v in project.versions] == ["v1", "v2"]
        assert fake_store.project_writes == []

    @pytest.mark.asyncio
    async def test_cancel_during_merge_leaves_project_unchanged(
        self, manager, fake_client, fake_store, caplog
    ):
        fake_store.projects["P"] = make_project("P", ["v1", "v2"])
        merge_reached = asyncio.Event()
        release = asyncio.Event()

        async def slow_database():
            merge_reached.set()
            await release.wait()

        fake_store.before_append = slow_database
        task_id = manager.start_single_addition_task("core", "P")
        await merge_reached.wait()

        with caplog.at_level(logging.INFO, logger="notestudio.services.generation_manager"):
            assert manager.cancel(task_id) is True
            release.set()
            for _ in range(20):
                await asyncio.sleep(0)

        assert manager.get(task_id).status is TaskStatus.ABORTED
        assert [v.id for v in fake_store.projects["P"].versions] == ["v1", "v2"]
        assert fake_store.project_writes == []
        assert "discarded after cancel" in caplog.text

    @pytest.mark.asyncio
    async def test_concurrent_additions_to_one_project_keep_both(
        self, manager, fake_client, fake_store
    ):
        fake_store.projects["P"] = make_project("P", ["v1"])
        fake_client.gate = asyncio.Event()

        fake_client.single_result = make_version("v-a")
        first = manager.start_single_addition_task("core", "P")
        await asyncio.sleep(0)
        fake_client.single_result = make_version("v-b")
        second = manager.start_single_addition_task("core", "P")
        await asyncio.sleep(0)
        fake_client.gate.set()

        await wait_until_terminal(manager, first)
        await wait_until_terminal(manager, second)

        ids = {v.id for v in fake_store.projects["P"].versions}
        assert ids == {"v1", "v-a", "v-b"}

    @pytest.mark.asyncio
    async def test_cancel_before_runner_starts(self, manager, fake_client, fake_store):
        fake_store.projects["P"] = make_project("P", ["v1"])

        task_id = manager.start_single_addition_task("core", "P")
        manager.cancel(task_id)
        for _ in range(20):
            await asyncio.sleep(0)

        assert manager.get(task_id).status is TaskStatus.ABORTED
        assert fake_client.calls == []
        assert fake_store.project_writes == []

    @pytest.mark.asyncio
    async def test_cancel_unknown_task(self, manager):
        assert manager.cancel("bulk-missing") is False

    @pytest.mark.asyncio
    async def test_cancel_after_completion_changes_nothing(self, manager):
        task_id = manager.start_bulk_task("hello")
        await wait_until_terminal(manager, task_id)

        assert manager.cancel(task_id) is False
        assert manager.get(task_id).status is TaskStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_second_cancel_does_not_notify(self, manager, fake_client):
        fake_client.gate = asyncio.Event()
        task_id = manager.start_bulk_task("hello")
        statuses = []
        manager.subscribe(lambda tasks: statuses.append(tasks[0].status))

        manager.cancel(task_id)
        manager.cancel(task_id)

        assert statuses == [TaskStatus.RUNNING, TaskStatus.ABORTED]

    @pytest.mark.asyncio
    async def test_shutdown_aborts_running_tasks(self, manager, fake_client):
        fake_client.gate = asyncio.Event()
        running = manager.start_bulk_task("hello")
        await asyncio.sleep(0)

        await manager.shutdown()

        assert manager.get(running).status is TaskStatus.ABORTED
        assert manager.running_count == 0


class TestSubscriptions:

    @pytest.mark.asyncio
    async def test_subscribe_delivers_current_tasks_immediately(self, manager, fake_client):
        fake_client.gate = asyncio.Event()
        task_id = manager.start_bulk_task("hello")
        received = []

        manager.subscribe(received.append)

        assert len(received) == 1
        assert [t.id for t in received[0]] == [task_id]

    def test_subscribe_with_no_tasks_gets_empty_list(self, manager):
        received = []
        manager.subscribe(received.append)
        assert received == [[]]

    @pytest.mark.asyncio
    async def test_each_transition_is_notified_in_order(self, manager):
        seen = []
        manager.subscribe(lambda tasks: seen.append([t.status for t in tasks]))

        task_id = manager.start_bulk_task("hello")
        await wait_until_terminal(manager, task_id)

        assert seen == [[], [TaskStatus.RUNNING], [TaskStatus.COMPLETED]]

    @pytest.mark.asyncio
    async def test_listeners_share_one_snapshot_in_registration_order(self, manager):
        calls = []
        manager.subscribe(lambda tasks: calls.append(("a", tasks)))
        manager.subscribe(lambda tasks: calls.append(("b", tasks)))
        calls.clear()

        manager.start_bulk_task("hello")

        assert [name for name, _ in calls] == ["a", "b"]
        assert calls[0][1] is calls[1][1]

    @pytest.mark.asyncio
    async def test_unsubscribe_stops_notifications(self, manager):
        received = []
        unsubscribe = manager.subscribe(received.append)
        unsubscribe()
        unsubscribe()

        manager.start_bulk_task("hello")

        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_unsubscribing_another_listener_mid_delivery(self, manager):
        received = []
        handles = {}

        def first(tasks):
            if tasks:
                handles["second"]()

        manager.subscribe(first)
        handles["second"] = manager.subscribe(received.append)
        received.clear()

        manager.start_bulk_task("hello")

        assert received == []

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_others_or_the_task(self, manager):
        received = []

        def broken(tasks):
            if tasks:
                raise RuntimeError("listener bug")

        manager.subscribe(broken)
        manager.subscribe(received.append)

        task_id = manager.start_bulk_task("hello")
        task = await wait_until_terminal(manager, task_id)

        assert task.status is TaskStatus.COMPLETED
        assert len(received) == 3


class TestCompletionSubscriptions:

    @pytest.mark.asyncio
    async def test_reports_each_finished_task_once(self, manager, fake_store):
        fake_store.projects["P"] = make_project("P", ["v1"])
        finished = []
        manager.subscribe_completions(finished.append)

        first = manager.start_bulk_task("hello")
        await wait_until_terminal(manager, first)
        second = manager.start_single_addition_task("core", "P")
        await wait_until_terminal(manager, second)
        manager.cancel(first)

        assert [t.id for t in finished] == [first, second]

    @pytest.mark.asyncio
    async def test_filters_by_kind_and_project(self, manager, fake_store):
        fake_store.projects["P"] = make_project("P", ["v1"])
        fake_store.projects["Q"] = make_project("Q", ["v1"])
        finished = []
        manager.subscribe_completions(
            finished.append, kind=TaskKind.SINGLE_ADDITION, project_id="P"
        )

        ids = [
            manager.start_bulk_task("hello"),
            manager.start_single_addition_task("core", "Q"),
            manager.start_single_addition_task("core", "P"),
        ]
        for task_id in ids:
            await wait_until_terminal(manager, task_id)

        assert [t.id for t in finished] == [ids[2]]

    @pytest.mark.asyncio
    async def test_existing_terminal_tasks_skipped_unless_requested(self, manager):
        done = manager.start_bulk_task("hello")
        await wait_until_terminal(manager, done)

        skipped, included = [], []
        manager.subscribe_completions(skipped.append)
        manager.subscribe_completions(included.append, include_existing=True)

        assert skipped == []
        assert [t.id for t in included] == [done]


class TestTaskResponse:

    @pytest.mark.asyncio
    async def test_bulk_task_exposes_versions(self, manager):
        task = await wait_until_terminal(manager, manager.start_bulk_task("hello"))

        response = task.to_response()

        assert response.kind == "bulk_refine"
        assert response.status == "completed"
        assert len(response.versions) == 4
        assert response.version is None

    @pytest.mark.asyncio
    async def test_running_task_has_no_payload(self, fake_client, fake_store):
        fake_client.gate = asyncio.Event()
        manager = GenerationManager(client=fake_client, store=fake_store)

        response = manager.get(manager.start_single_addition_task("core", "P")).to_response()

        assert response.status == "running"
        assert response.project_id == "P"
        assert response.versions is None and response.version is None
