"""Tests for undo/redo and audit log reconciliation."""

from datetime import timedelta

import pytest

from focustm.history import (
    HistorySnapshot,
    HistoryStack,
    RecorderState,
    UndoManager,
    detect_task_changes,
)
from focustm.models import HistoryActionType as A, QuadrantType, StandardTask, Subtask
from focustm.models import convert_task

from conftest import T0, make_task

DO = QuadrantType.URGENT_IMPORTANT
SCHEDULE = QuadrantType.NOT_URGENT_IMPORTANT


def snapshot(label):
    return HistorySnapshot(tasks=(make_task(label),), tags=(), taken_at=T0)


def add(store, title, quadrant=DO):
    return store.add_task({"title": title, "quadrant": quadrant})


class TestHistoryStack:
    """Test the bounded past/future stacks."""

    def test_undo_redo(self):
        """Test undo moves the current state to the future and redo moves it back."""
        stack = HistoryStack()
        stack.push(snapshot("a"))

        assert stack.undo(snapshot("b")) == snapshot("a")
        assert stack.can_redo and not stack.can_undo
        assert stack.redo(snapshot("a")) == snapshot("b")
        assert stack.undo(snapshot("b")) == snapshot("a")
        assert stack.undo(snapshot("a")) is None

    def test_push_clears_future(self):
        """Test a new step discards redo."""
        stack = HistoryStack()
        stack.push(snapshot("a"))
        stack.undo(snapshot("b"))
        stack.push(snapshot("c"))
        assert not stack.can_redo

    def test_capacity(self):
        """Test the oldest step is evicted first."""
        stack = HistoryStack(capacity=2)
        for label in ("a", "b", "c"):
            stack.push(snapshot(label))
        assert [s.tasks[0].id for s in stack.past] == ["b", "c"]


class TestDetectTaskChanges:
    """Test which audit actions an undo unwinds."""

    def test_completion(self):
        """Test completion flips name both the direct and the parent event."""
        before = make_task("a")
        after = make_task("a", completed=True)
        assert detect_task_changes(after, before) == [A.TASK_COMPLETED, A.PARENT_AUTO_COMPLETED]
        assert detect_task_changes(before, after) == [A.TASK_UNCOMPLETED, A.PARENT_AUTO_UNCOMPLETED]

    def test_star_and_move(self):
        """Test star flips and quadrant moves."""
        before = make_task("a")
        after = make_task("a", is_starred=True, quadrant=SCHEDULE)
        assert detect_task_changes(after, before) == [A.TASK_STARRED, A.TASK_MOVED]

    def test_reparent_and_detach(self):
        """Test parent changes and detaching."""
        before = make_task("s", kind=Subtask, parent_id="p1")
        reparented = before.model_copy(update={"parent_id": "p2"})
        detached = convert_task(before, StandardTask)

        assert detect_task_changes(reparented, before) == [A.SUBTASK_REPARENTED]
        assert detect_task_changes(detached, before) == [A.SUBTASK_DETACHED]

    def test_field_edits(self):
        """Test edits map to task_updated and bookkeeping fields to nothing."""
        before = make_task("a")
        assert detect_task_changes(before.model_copy(update={"title": "B"}), before) == [A.TASK_UPDATED]
        assert detect_task_changes(before.model_copy(update={"order": 4, "updated_at": T0 + timedelta(1)}), before) == []


class TestRecording:
    """Test how store changes become undo steps."""

    def test_burst_becomes_one_step(self, store):
        """Test changes before a flush are undone together."""
        history = UndoManager(store)
        add(store, "A")
        add(store, "B")

        assert history.state == RecorderState.PENDING
        assert history.can_undo
        assert history.flush()
        assert not history.flush()
        assert len(history.stack.past) == 1

        history.undo()
        assert store.tasks == ()

    def test_separate_steps(self, store):
        """Test flushed changes are undone one at a time."""
        history = UndoManager(store)
        a = add(store, "A")
        history.flush()
        add(store, "B")
        history.flush()

        history.undo()
        assert [t.id for t in store.tasks] == [a.id]
        history.undo()
        assert store.tasks == ()
        assert not history.undo()

    def test_redo(self, store):
        """Test redo restores the undone state and a new change discards it."""
        history = UndoManager(store)
        a = add(store, "A")
        history.flush()

        history.undo()
        assert history.can_redo
        assert history.redo()
        assert [t.id for t in store.tasks] == [a.id]
        assert not history.redo()

        history.undo()
        add(store, "B")
        history.flush()
        assert not history.can_redo

    @pytest.mark.parametrize("mutate", [
        lambda store, ids: store.move_subtask_to_parent(ids["s1"], ids["p2"]),
        lambda store, ids: store.detach_subtask(ids["s1"]),
        lambda store, ids: store.delete_task(ids["p1"]),
        lambda store, ids: store.move_task_with_subtasks(ids["p1"], SCHEDULE, 0),
        lambda store, ids: store.toggle_complete(ids["s2"]),
    ], ids=["reparent", "detach", "cascading-delete", "move-with-subtasks", "complete-propagates"])
    def test_undo_redo_round_trip(self, store, clock, mutate):
        """Test undo restores the exact prior state and redo the exact state after the change."""
        p1 = add(store, "Report")
        p2 = add(store, "Launch", SCHEDULE)
        s1 = store.add_subtask(p1.id, {"title": "Outline"})
        s2 = store.add_subtask(p1.id, {"title": "Draft"})
        store.toggle_complete(s1.id)
        clock.advance(hours=1)

        history = UndoManager(store)
        before = store.state
        mutate(store, {"p1": p1.id, "p2": p2.id, "s1": s1.id, "s2": s2.id})
        after = store.state
        assert after != before

        assert history.undo()
        assert store.state == before
        assert history.redo()
        assert store.state == after

    def test_undo_is_not_recorded(self, store):
        """Test applying a snapshot does not create another undo step."""
        history = UndoManager(store)
        add(store, "A")
        history.undo()

        assert history.state != RecorderState.PENDING
        assert not history.can_undo

    def test_no_change_records_nothing(self, store):
        """Test a commit that leaves tasks and tags alone is not a step."""
        history = UndoManager(store)
        store.add_person("Sam")
        assert history.state == RecorderState.IDLE
        assert not history.can_undo

    def test_clear_and_close(self, store):
        """Test clearing forgets steps and closing stops recording."""
        history = UndoManager(store)
        add(store, "A")
        history.clear()
        assert not history.can_undo

        history.close()
        add(store, "B")
        assert not history.can_undo

    @pytest.mark.asyncio
    async def test_debounce_with_running_loop(self, store):
        """Test the step is recorded by the timer once the store goes quiet."""
        import asyncio

        history = UndoManager(store, debounce=0.01)
        add(store, "A")
        assert history.state == RecorderState.PENDING

        await asyncio.sleep(0.05)

        assert history.state == RecorderState.FLUSHED
        assert len(history.stack.past) == 1
        history.close()


class TestUndoReconciliation:
    """Test that undo rewinds the audit log."""

    @pytest.mark.asyncio
    async def test_undo_add_purges_history(self, audited_store, trail):
        """Test undoing an add removes every event of the task."""
        history = UndoManager(audited_store, trail)
        task = add(audited_store, "Call back")
        history.flush()

        history.undo()
        await trail.flush()

        assert audited_store.get(task.id) is None
        assert trail.log.entries == []
        history.close()

    @pytest.mark.asyncio
    async def test_undo_delete_restores_history(self, audited_store, trail, clock):
        """Test undoing a delete un-marks the task's events and forgets the deletion."""
        history = UndoManager(audited_store, trail, clock=clock)
        task = add(audited_store, "Call back")
        history.flush()
        clock.advance(minutes=1)
        audited_store.delete_task(task.id)
        history.flush()

        history.undo()
        await trail.flush()

        assert audited_store.get(task.id) is not None
        assert [(e.action, e.is_deleted) for e in trail.log.entries] == [(A.TASK_ADDED, False)]
        history.close()

    @pytest.mark.asyncio
    async def test_undo_completion_with_parent(self, audited_store, trail, clock):
        """Test undoing the completion of a last subtask removes both completion events."""
        history = UndoManager(audited_store, trail, clock=clock)
        parent = add(audited_store, "Report")
        subtask = audited_store.add_subtask(parent.id, {"title": "Outline"})
        history.flush()
        clock.advance(minutes=1)
        audited_store.toggle_complete(subtask.id)
        history.flush()

        history.undo()
        await trail.flush()

        assert not audited_store.get(parent.id).completed
        assert not audited_store.get(subtask.id).completed
        assert [e.action for e in trail.log.entries] == [A.TASK_ADDED, A.SUBTASK_ADDED]
        history.close()

    @pytest.mark.asyncio
    async def test_undo_keeps_older_events(self, audited_store, trail, clock):
        """Test only events from the undone step are removed."""
        history = UndoManager(audited_store, trail, clock=clock)
        task = add(audited_store, "Call back")
        audited_store.toggle_star(task.id)
        history.flush()
        clock.advance(minutes=1)
        audited_store.toggle_star(task.id)
        history.flush()

        history.undo()
        await trail.flush()

        assert audited_store.get(task.id).is_starred
        assert [e.action for e in trail.log.entries] == [A.TASK_ADDED, A.TASK_STARRED]
        history.close()

    @pytest.mark.asyncio
    async def test_undo_move(self, audited_store, trail, clock):
        """Test undoing a quadrant move removes the move event."""
        history = UndoManager(audited_store, trail, clock=clock)
        task = add(audited_store, "Call back")
        history.flush()
        clock.advance(minutes=1)
        audited_store.move_task(task.id, SCHEDULE, 0)
        history.flush()

        history.undo()
        await trail.flush()

        assert audited_store.get(task.id).quadrant == DO
        assert [e.action for e in trail.log.entries] == [A.TASK_ADDED]
        history.close()

    @pytest.mark.asyncio
    async def test_redo_leaves_log_alone(self, audited_store, trail):
        """Test redo does not touch the audit log."""
        history = UndoManager(audited_store, trail)
        add(audited_store, "Call back")
        history.flush()
        history.undo()
        await trail.flush()

        history.redo()
        await trail.flush()

        assert len(audited_store.tasks) == 1
        assert trail.log.entries == []
        history.close()
