"""Tests for TaskStore mutations."""

import re
from datetime import timedelta

import pytest

from focustm.data import AppData
from focustm.hierarchy import check_invariants
from focustm.models import (
    QuadrantType,
    RecurringInstance,
    RecurringTemplate,
    StandardTask,
    Subtask,
)
from focustm.recovery import (
    CycleError,
    HasChildrenError,
    HasOwnChildrenError,
    InvalidKindError,
    InvalidOrderError,
    InvalidParentError,
    InvalidPatchError,
    NotFoundError,
)
from focustm.store import SUPPRESS_RECORDING, TaskStore, generate_id

from conftest import T0, RecordingSync, make_task

DO = QuadrantType.URGENT_IMPORTANT
SCHEDULE = QuadrantType.NOT_URGENT_IMPORTANT


def add(store, title, quadrant=DO, **fields):
    return store.add_task({"title": title, "quadrant": quadrant, **fields})


def orders(store, *ids):
    return [store.get(task_id).order for task_id in ids]


def assert_consistent(store):
    assert check_invariants(store.tasks) == []


class TestGenerateId:
    """Test id generation."""

    def test_format(self):
        """Test ids are a millisecond timestamp and a random suffix."""
        task_id = generate_id(T0)
        assert re.fullmatch(r"\d+-[0-9a-z]{9}", task_id)
        assert task_id.startswith(str(int(T0.timestamp() * 1000)))
        assert generate_id(T0) != generate_id(T0)


class TestAddTask:
    """Test top-level task creation."""

    def test_appends_to_quadrant(self, store, clock):
        """Test new tasks go to the end of their quadrant."""
        a = add(store, "A")
        b = add(store, "B")
        c = add(store, "C", quadrant=SCHEDULE)

        assert (a.order, b.order, c.order) == (0, 1, 0)
        assert isinstance(a, StandardTask)
        assert a.created_at == a.updated_at == clock.now
        assert_consistent(store)

    def test_quadrant_required(self, store):
        """Test top-level tasks need a quadrant."""
        with pytest.raises(ValueError):
            store.add_task({"title": "Nowhere"})
        assert store.tasks == ()

    def test_recurrence_makes_template(self, store):
        """Test a task with a recurrence becomes a template."""
        template = add(store, "Standup", recurrence={"pattern": "daily"})
        assert isinstance(template, RecurringTemplate)
        assert not template.is_paused

    def test_completed_on_creation(self, store, clock):
        """Test a task created completed is stamped with the current time."""
        task = add(store, "Done already", completed=True)
        assert task.completed_at == clock.now

    def test_recurring_instance(self, store):
        """Test instances join their template's quadrant."""
        template = add(store, "Standup", quadrant=SCHEDULE, recurrence={"pattern": "daily"})
        instance = store.add_recurring_instance(template.id, {"title": "Standup (Mon)"})

        assert isinstance(instance, RecurringInstance)
        assert instance.parent_id == template.id
        assert instance.quadrant == SCHEDULE
        assert instance.order == 1
        assert store.get_subtasks(template.id) == [instance]

        with pytest.raises(InvalidParentError):
            store.add_recurring_instance(instance.id, {"title": "Nope"})


class TestAddSubtask:
    """Test subtask creation."""

    def test_follows_parent(self, store):
        """Test subtasks take the parent's quadrant and are ordered within the parent."""
        parent = add(store, "Report", quadrant=SCHEDULE)
        first = store.add_subtask(parent.id, {"title": "Outline"})
        second = store.add_subtask(parent.id, {"title": "Draft"})

        assert first.quadrant == second.quadrant == SCHEDULE
        assert (first.order, second.order) == (0, 1)
        assert store.get_subtasks(parent.id) == [first, second]
        assert_consistent(store)

    def test_invalid_parents(self, store):
        """Test subtasks cannot be added to missing tasks, templates or subtasks."""
        template = add(store, "Standup", recurrence={"pattern": "daily"})
        parent = add(store, "Report")
        subtask = store.add_subtask(parent.id, {"title": "Outline"})
        before = store.state

        for parent_id in ("missing", template.id, subtask.id):
            with pytest.raises(InvalidParentError):
                store.add_subtask(parent_id, {"title": "Orphan"})

        assert store.state is before

    def test_subtasks_cannot_recur(self, store):
        """Test a recurrence on a subtask is rejected."""
        parent = add(store, "Report")
        with pytest.raises(InvalidKindError):
            store.add_subtask(parent.id, {"title": "Daily", "recurrence": {"pattern": "daily"}})

    def test_reopens_completed_parent(self, store):
        """Test an incomplete subtask reopens a completed childless parent."""
        parent = add(store, "Report")
        store.toggle_complete(parent.id)

        store.add_subtask(parent.id, {"title": "One more thing"})

        assert not store.get(parent.id).completed
        assert store.get(parent.id).completed_at is None
        assert_consistent(store)

    def test_instance_holds_subtasks(self, store):
        """Test recurring instances can hold subtasks."""
        template = add(store, "Standup", recurrence={"pattern": "daily"})
        instance = store.add_recurring_instance(template.id, {"title": "Standup (Mon)"})
        subtask = store.add_subtask(instance.id, {"title": "Prepare notes"})

        assert store.get_subtasks(instance.id) == [subtask]
        assert_consistent(store)


class TestCompletion:
    """Test completion toggling and propagation through the store."""

    def test_parent_follows_subtasks(self, store, clock):
        """Test the parent completes with its last subtask and reopens with any."""
        parent = add(store, "Report")
        s1 = store.add_subtask(parent.id, {"title": "Outline"})
        s2 = store.add_subtask(parent.id, {"title": "Draft"})

        clock.advance(hours=1)
        store.toggle_complete(s1.id)
        assert not store.get(parent.id).completed

        finished = clock.advance(hours=1)
        store.toggle_complete(s2.id)
        assert store.get(parent.id).completed
        assert store.get(parent.id).completed_at == finished
        assert_consistent(store)

        store.toggle_complete(s1.id)
        assert not store.get(parent.id).completed
        assert store.get(parent.id).completed_at is None
        assert_consistent(store)

    def test_parent_toggle_rejected(self, store):
        """Test a parent with subtasks cannot be toggled by hand."""
        parent = add(store, "Report")
        store.add_subtask(parent.id, {"title": "Outline"})
        before = store.state

        with pytest.raises(HasChildrenError):
            store.toggle_complete(parent.id)
        with pytest.raises(HasChildrenError):
            store.update_task(parent.id, {"completed": True})

        assert store.state is before

    def test_childless_parent_toggles(self, store, clock):
        """Test a task without subtasks toggles freely."""
        task = add(store, "Call back")
        done = store.toggle_complete(task.id)
        assert done.completed and done.completed_at == clock.now

        reopened = store.toggle_complete(task.id)
        assert not reopened.completed and reopened.completed_at is None

    def test_update_subtask_completion_propagates(self, store):
        """Test completing a subtask through update_task propagates too."""
        parent = add(store, "Report")
        subtask = store.add_subtask(parent.id, {"title": "Outline"})

        store.update_task(subtask.id, {"completed": True})

        assert store.get(parent.id).completed
        assert_consistent(store)

    def test_update_completion_stamps(self, store, clock):
        """Test completed_at follows the completed flag."""
        task = add(store, "Call back")
        done = store.update_task(task.id, {"completed": True})
        assert done.completed_at == clock.now

        clock.advance(minutes=5)
        still_done = store.update_task(task.id, {"completed": True})
        assert still_done.completed_at == done.completed_at

        reopened = store.update_task(task.id, {"completed": False})
        assert reopened.completed_at is None


class TestUpdateTask:
    """Test field edits."""

    def test_merges_explicit_fields(self, store, clock):
        """Test only the fields in the patch change."""
        task = add(store, "Call back", description="About the invoice")
        clock.advance(minutes=1)

        updated = store.update_task(task.id, {"title": "Call Sam back"})

        assert updated.title == "Call Sam back"
        assert updated.description == "About the invoice"
        assert updated.updated_at == clock.now
        assert updated.created_at == task.created_at

    def test_clears_with_explicit_none(self, store):
        """Test an explicit None clears a field."""
        task = add(store, "Call back", due_date=T0 + timedelta(days=1))
        assert store.update_task(task.id, {"due_date": None}).due_date is None

    def test_template_only_fields(self, store):
        """Test recurrence settings only apply to templates."""
        task = add(store, "Call back")
        template = add(store, "Standup", recurrence={"pattern": "daily"})

        with pytest.raises(InvalidKindError):
            store.update_task(task.id, {"is_paused": True})
        assert store.update_task(template.id, {"is_paused": True}).is_paused

    def test_lone_completed_at_must_match_completion(self, store, clock):
        """Test a completion time alone cannot complete or reopen a task."""
        task = add(store, "Call back")
        with pytest.raises(InvalidPatchError):
            store.update_task(task.id, {"completed_at": T0})
        assert store.get(task.id) == task

        done = store.update_task(task.id, {"completed": True})
        with pytest.raises(InvalidPatchError):
            store.update_task(task.id, {"completed_at": None})

        earlier = clock.now - timedelta(hours=1)
        assert store.update_task(done.id, {"completed_at": earlier}).completed_at == earlier

    def test_missing_task(self, store):
        """Test updating a missing task fails."""
        with pytest.raises(NotFoundError):
            store.update_task("missing", {"title": "X"})

    def test_toggle_star(self, store):
        """Test starring."""
        task = add(store, "Call back")
        assert store.toggle_star(task.id).is_starred
        assert not store.toggle_star(task.id).is_starred

    def test_toggle_template_pause(self, store):
        """Test pausing only applies to templates."""
        task = add(store, "Call back")
        template = add(store, "Standup", recurrence={"pattern": "daily"})

        assert store.toggle_template_pause(template.id).is_paused
        with pytest.raises(InvalidKindError):
            store.toggle_template_pause(task.id)


class TestDelete:
    """Test deletion and its cascades."""

    def test_cascades_to_subtasks(self, store):
        """Test deleting a parent removes its subtasks and renumbers the quadrant."""
        a = add(store, "A")
        parent = add(store, "Report")
        b = add(store, "B")
        s1 = store.add_subtask(parent.id, {"title": "Outline"})
        s2 = store.add_subtask(parent.id, {"title": "Draft"})

        removed = store.delete_task(parent.id)

        assert [t.id for t in removed] == [parent.id, s1.id, s2.id]
        assert [t.id for t in store.tasks] == [a.id, b.id]
        assert orders(store, a.id, b.id) == [0, 1]
        assert_consistent(store)

    def test_deleting_last_open_subtask_completes_parent(self, store, clock):
        """Test removing the only incomplete subtask auto-completes the parent."""
        parent = add(store, "Report")
        s1 = store.add_subtask(parent.id, {"title": "Outline"})
        s2 = store.add_subtask(parent.id, {"title": "Draft"})
        s3 = store.add_subtask(parent.id, {"title": "Review"})
        clock.advance(hours=1)
        store.toggle_complete(s1.id)

        store.delete_task(s2.id)
        assert not store.get(parent.id).completed
        assert orders(store, s1.id, s3.id) == [0, 1]

        store.delete_task(s3.id)
        assert store.get(parent.id).completed
        assert store.get(parent.id).completed_at == store.get(s1.id).completed_at
        assert_consistent(store)

    def test_template_cascade(self, store):
        """Test deleting a template removes its instances and their subtasks."""
        template = add(store, "Standup", recurrence={"pattern": "daily"})
        instance = store.add_recurring_instance(template.id, {"title": "Standup (Mon)"})
        store.add_subtask(instance.id, {"title": "Prepare notes"})
        keep = add(store, "Keep")

        removed = store.delete_task(template.id)

        assert len(removed) == 3
        assert [t.id for t in store.tasks] == [keep.id]
        assert store.get(keep.id).order == 0

    def test_delete_with_subtasks_asks_first(self, store):
        """Test delete_task_with_subtasks refuses parents and deletes the rest."""
        parent = add(store, "Report")
        store.add_subtask(parent.id, {"title": "Outline"})
        store.add_subtask(parent.id, {"title": "Draft"})
        single = add(store, "Call back")

        assert store.delete_task_with_subtasks(parent.id) == (True, 2)
        assert store.get(parent.id) is not None

        assert store.delete_task_with_subtasks(single.id) == (False, 0)
        assert store.get(single.id) is None

    def test_delete_all(self, store):
        """Test every task can be removed at once."""
        parent = add(store, "Report")
        store.add_subtask(parent.id, {"title": "Outline"})
        store.delete_all_tasks()
        assert store.tasks == ()

    def test_missing_task(self, store):
        """Test deleting a missing task fails."""
        with pytest.raises(NotFoundError):
            store.delete_task("missing")


class TestMove:
    """Test moving top-level tasks."""

    def test_reorder_within_quadrant(self, store):
        """Test a task can be moved to the front."""
        a, b, c = add(store, "A"), add(store, "B"), add(store, "C")

        store.move_task(c.id, DO, 0)

        assert orders(store, c.id, a.id, b.id) == [0, 1, 2]
        assert_consistent(store)

    def test_position_is_clamped(self, store):
        """Test out-of-range positions land at the end."""
        a, b = add(store, "A"), add(store, "B")
        store.move_task(a.id, DO, 99)
        assert orders(store, b.id, a.id) == [0, 1]

    def test_move_to_other_quadrant(self, store):
        """Test both quadrants are renumbered."""
        a, b = add(store, "A"), add(store, "B")
        c = add(store, "C", quadrant=SCHEDULE)

        moved = store.move_task(a.id, SCHEDULE, 0)

        assert moved.quadrant == SCHEDULE
        assert orders(store, a.id, c.id) == [0, 1]
        assert store.get(b.id).order == 0
        assert_consistent(store)

    def test_subtasks_cannot_be_moved(self, store):
        """Test subtasks move only through their parent."""
        parent = add(store, "Report")
        subtask = store.add_subtask(parent.id, {"title": "Outline"})
        with pytest.raises(InvalidKindError):
            store.move_task(subtask.id, SCHEDULE, 0)

    def test_parent_needs_subtasks_along(self, store):
        """Test a parent changes quadrant only together with its subtasks."""
        parent = add(store, "Report")
        other = add(store, "Other")
        subtask = store.add_subtask(parent.id, {"title": "Outline"})

        with pytest.raises(HasChildrenError):
            store.move_task(parent.id, SCHEDULE, 0)

        store.move_task(parent.id, DO, 1)
        assert orders(store, other.id, parent.id) == [0, 1]

        store.move_task_with_subtasks(parent.id, SCHEDULE, 0)
        assert store.get(parent.id).quadrant == SCHEDULE
        assert store.get(subtask.id).quadrant == SCHEDULE
        assert_consistent(store)


class TestSubtaskStructure:
    """Test reordering, reparenting and detaching subtasks."""

    def test_reorder_subtasks(self, store):
        """Test subtasks follow the given permutation."""
        parent = add(store, "Report")
        s1, s2, s3 = (store.add_subtask(parent.id, {"title": t}) for t in ("One", "Two", "Three"))

        store.reorder_subtasks(parent.id, [s3.id, s1.id, s2.id])

        assert [s.id for s in store.get_subtasks(parent.id)] == [s3.id, s1.id, s2.id]
        assert_consistent(store)

    def test_reorder_requires_permutation(self, store):
        """Test partial, extended and duplicated orderings are rejected."""
        parent = add(store, "Report")
        s1 = store.add_subtask(parent.id, {"title": "One"})
        s2 = store.add_subtask(parent.id, {"title": "Two"})

        for ordering in ([s1.id], [s1.id, s2.id, "x"], [s1.id, s1.id]):
            with pytest.raises(InvalidOrderError):
                store.reorder_subtasks(parent.id, ordering)

    def test_move_to_other_parent(self, store):
        """Test reparenting moves quadrant, renumbers and propagates both parents."""
        p1 = add(store, "Report")
        p2 = add(store, "Launch", quadrant=SCHEDULE)
        s1 = store.add_subtask(p1.id, {"title": "Outline"})
        s2 = store.add_subtask(p1.id, {"title": "Draft"})
        t1 = store.add_subtask(p2.id, {"title": "Checklist"})
        store.toggle_complete(s2.id)

        moved = store.move_subtask_to_parent(s1.id, p2.id)

        assert moved.parent_id == p2.id
        assert moved.quadrant == SCHEDULE
        assert orders(store, t1.id, s1.id) == [0, 1]
        assert store.get(s2.id).order == 0
        assert store.get(p1.id).completed
        assert not store.get(p2.id).completed
        assert_consistent(store)

    def test_move_errors(self, store):
        """Test every rejected reparent leaves the state alone."""
        parent = add(store, "Report")
        subtask = store.add_subtask(parent.id, {"title": "Outline"})
        sibling = store.add_subtask(parent.id, {"title": "Draft"})
        template = add(store, "Standup", recurrence={"pattern": "daily"})
        other = add(store, "Other")
        before = store.state

        with pytest.raises(NotFoundError):
            store.move_subtask_to_parent("missing", parent.id)
        with pytest.raises(CycleError):
            store.move_subtask_to_parent(subtask.id, subtask.id)
        with pytest.raises(InvalidKindError):
            store.move_subtask_to_parent(other.id, parent.id)
        with pytest.raises(InvalidParentError):
            store.move_subtask_to_parent(subtask.id, template.id)
        with pytest.raises(InvalidParentError):
            store.move_subtask_to_parent(subtask.id, sibling.id)
        with pytest.raises(InvalidParentError):
            store.move_subtask_to_parent(subtask.id, "missing")

        assert store.state is before

    def test_nested_subtask_rejected(self, store):
        """Test a subtask that somehow holds children cannot be moved or detached."""
        store.replace_state(tasks=[
            make_task("p"),
            make_task("other", order=1),
            make_task("s", kind=Subtask, parent_id="p"),
            make_task("deep", kind=Subtask, parent_id="s"),
        ])

        with pytest.raises(HasOwnChildrenError):
            store.move_subtask_to_parent("s", "other")
        with pytest.raises(HasOwnChildrenError):
            store.detach_subtask("s")

    def test_detach(self, store):
        """Test a detached subtask becomes a standard task at the end of its quadrant."""
        parent = add(store, "Report")
        add(store, "Other")
        s1 = store.add_subtask(parent.id, {"title": "Outline"})
        s2 = store.add_subtask(parent.id, {"title": "Draft"})
        store.toggle_complete(s2.id)

        standalone = store.detach_subtask(s1.id)

        assert isinstance(standalone, StandardTask)
        assert standalone.quadrant == parent.quadrant
        assert standalone.order == 2
        assert store.get(s2.id).order == 0
        assert store.get(parent.id).completed
        assert_consistent(store)

    def test_detach_requires_subtask(self, store):
        """Test only subtasks can be detached."""
        task = add(store, "Call back")
        with pytest.raises(InvalidKindError):
            store.detach_subtask(task.id)
        with pytest.raises(NotFoundError):
            store.detach_subtask("missing")


class TestLabels:
    """Test tag and person management."""

    def test_tag_lifecycle(self, store):
        """Test tags can be added, renamed and deleted, and deletion strips them from tasks."""
        urgent = store.add_tag("urgent", "#EF4444")
        home = store.add_tag("home")
        task = add(store, "Call back", tags={urgent.id, home.id})

        assert home.color == "#6B7280"
        assert store.update_tag(home.id, name="house").name == "house"

        store.delete_tag(urgent.id)

        assert [t.id for t in store.tags] == [home.id]
        assert store.get(task.id).tags == frozenset({home.id})
        assert store.get(task.id).updated_at == task.updated_at

    def test_update_missing_label(self, store):
        """Test renaming a missing tag or person fails."""
        with pytest.raises(NotFoundError):
            store.update_tag("missing", name="x")
        with pytest.raises(NotFoundError):
            store.update_person("missing", name="x")

    def test_delete_all_people(self, store):
        """Test clearing people strips every task."""
        sam = store.add_person("Sam")
        task = add(store, "Call back", people={sam.id})

        store.delete_all_people()

        assert store.people == ()
        assert store.get(task.id).people == frozenset()


class TestNotifications:
    """Test subscribers and persistence scheduling."""

    def test_listeners_see_every_commit(self, store):
        """Test listeners get the previous and current state."""
        calls = []
        unsubscribe = store.subscribe(lambda previous, current, token: calls.append((previous, current, token)))

        task = add(store, "A")
        assert len(calls) == 1
        previous, current, token = calls[0]
        assert previous.tasks == () and current.tasks == (task,) and token is None

        with pytest.raises(NotFoundError):
            store.toggle_star("missing")
        assert len(calls) == 1

        unsubscribe()
        add(store, "B")
        assert len(calls) == 1

    def test_commits_are_scheduled_for_sync(self, clock):
        """Test every commit is handed to the sync."""
        sync = RecordingSync()
        store = TaskStore(clock=clock, sync=sync)

        add(store, "A")
        store.add_tag("home")

        assert len(sync.states) == 2
        assert sync.states[-1] is store.state


class FakeSink:
    def __init__(self, data):
        self.data = data

    async def load_all(self):
        return self.data


class TestLoad:
    """Test the one-time load."""

    @pytest.mark.asyncio
    async def test_load_once(self, clock):
        """Test loading populates the store without scheduling a write, and only once."""
        sync = RecordingSync()
        store = TaskStore(clock=clock, sync=sync)
        tokens = []
        store.subscribe(lambda previous, current, token: tokens.append(token))
        data = AppData(tasks=(make_task("a"),), tags=(), people=())

        state = await store.load(FakeSink(data))

        assert state.tasks == data.tasks
        assert tokens == [SUPPRESS_RECORDING]
        assert sync.states == []

        with pytest.raises(RuntimeError):
            await store.load(FakeSink(data))
