"""
TaskStore - the single writer of task, tag and person state.

Every operation validates first, computes the complete next state (including
parent completion propagation) and commits it with one assignment. Rejected
operations raise a ``HierarchyError`` and leave the state untouched. After a
commit, subscribers are notified synchronously, audit events are handed to
the ``AuditTrail`` and a coalesced persistence sync is scheduled.
"""
import random
import string
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .hierarchy import (
    TaskIndex,
    can_parent_children,
    check_invariants,
    children_of,
    has_children,
    sibling_key,
    would_create_cycle,
)
from .logs import get_logger
from .models import (
    Person,
    QuadrantType,
    RecurringInstance,
    RecurringTemplate,
    StandardTask,
    Subtask,
    Tag,
    TaskBase,
    TaskData,
    TaskPatch,
    convert_task,
)
from .propagate import Propagation, propagate_completion
from .recovery import (
    CycleError,
    HasChildrenError,
    HasOwnChildrenError,
    InvalidKindError,
    InvalidOrderError,
    InvalidParentError,
    InvalidPatchError,
    NotFoundError,
)

log = get_logger("store")

# Token passed with commits that must not become undo steps
SUPPRESS_RECORDING = "suppress-recording"

ID_ALPHABET = string.digits + string.ascii_lowercase

@dataclass(frozen=True)
class StoreState:
    tasks: Tuple[TaskBase, ...] = ()
    tags: Tuple[Tag, ...] = ()
    people: Tuple[Person, ...] = ()

Listener = Callable[[StoreState, StoreState, Optional[str]], None]

def generate_id(now: datetime) -> str:
    return f"{int(now.timestamp() * 1000)}-{''.join(random.choices(ID_ALPHABET, k=9))}"

def renumber(tasks: Sequence[TaskBase], groups: Iterable[Tuple[str, object]]) -> Tuple[TaskBase, ...]:
    """Rewrite ``order`` to 0..n-1 within each of ``groups``, keeping relative order."""
    groups = set(groups)
    members: Dict[Tuple[str, object], List[Tuple[int, int]]] = defaultdict(list)
    for position, task in enumerate(tasks):
        key = sibling_key(task)
        if key in groups:
            members[key].append((task.order, position))

    new_order: Dict[int, int] = {}
    for items in members.values():
        for order, (_, position) in enumerate(sorted(items)):
            new_order[position] = order

    return tuple(
        task if new_order.get(position, task.order) == task.order
        else task.model_copy(update={"order": new_order[position]})
        for position, task in enumerate(tasks)
    )

def place(tasks: Sequence[TaskBase], moved: TaskBase, position: Optional[int] = None) -> Tuple[TaskBase, ...]:
    """
    Put ``moved`` (replacing the task with its id) at ``position`` within its
    sibling group, clamped to the group size; ``None`` appends it.
    """
    key = sibling_key(moved)
    siblings = sorted((t for t in tasks if t.id != moved.id and sibling_key(t) == key), key=lambda t: t.order)
    if position is None or position > len(siblings):
        position = len(siblings)
    position = max(0, position)
    orders = {t.id: i for i, t in enumerate(siblings[:position] + [moved] + siblings[position:])}

    placed = []
    for task in tasks:
        if task.id == moved.id:
            task = moved
        if task.id in orders and task.order != orders[task.id]:
            task = task.model_copy(update={"order": orders[task.id]})
        placed.append(task)
    return tuple(placed)

def _replace(tasks: Sequence[TaskBase], updated: TaskBase) -> Tuple[TaskBase, ...]:
    return tuple(updated if task.id == updated.id else task for task in tasks)

class TaskStore:
    """
    Owns the task set and applies every mutation to it.

    Args:
        clock: Source of ``created_at``/``updated_at``/``completed_at`` stamps.
        audit: ``AuditTrail`` receiving one event per user-visible change.
        sync: ``DebouncedSync`` (or anything with ``schedule(state)``) persisting committed state.
    """

    def __init__(self, clock: Callable[[], datetime] = datetime.now, audit=None, sync=None):
        self._clock = clock
        self._state = StoreState()
        self._listeners: List[Listener] = []
        self._loaded = False
        self.audit = audit
        self.sync = sync

    # ---- reads ----

    @property
    def state(self) -> StoreState:
        return self._state

    @property
    def tasks(self) -> Tuple[TaskBase, ...]:
        return self._state.tasks

    @property
    def tags(self) -> Tuple[Tag, ...]:
        return self._state.tags

    @property
    def people(self) -> Tuple[Person, ...]:
        return self._state.people

    def index(self) -> TaskIndex:
        return TaskIndex(self._state.tasks)

    def get(self, task_id: str) -> Optional[TaskBase]:
        return self.index().get(task_id)

    def get_subtasks(self, parent_id: str) -> List[TaskBase]:
        """Children of ``parent_id`` in order: instances for a template, subtasks otherwise."""
        return children_of(parent_id, self.index())

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener(previous, current, token)``; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ---- commit plumbing ----

    def _commit(self, tasks=None, tags=None, people=None, token: Optional[str] = None, persist: bool = True) -> StoreState:
        previous = self._state
        current = StoreState(
            tasks=previous.tasks if tasks is None else tuple(tasks),
            tags=previous.tags if tags is None else tuple(tags),
            people=previous.people if people is None else tuple(people),
        )
        self._state = current

        for listener in list(self._listeners):
            listener(previous, current, token)

        if persist and self.sync is not None:
            self.sync.schedule(current)
        return current

    def _require(self, index: TaskIndex, task_id: str) -> TaskBase:
        task = index.get(task_id)
        if task is None:
            log.debug(f"Task {task_id} not found")
            raise NotFoundError(f"Task {task_id} not found")
        return task

    def _propagate(self, tasks: Tuple[TaskBase, ...], parent_id: Optional[str], now: datetime):
        """Apply propagation for ``parent_id`` to ``tasks``; returns the new tasks and what changed."""
        index = TaskIndex(tasks)
        before = index.get(parent_id)
        result = propagate_completion(parent_id, index, now)
        if result.changed:
            tasks = _replace(tasks, result.parent)
        return tasks, (before, result)

    def _log_propagation(self, changes: Iterable[Tuple[Optional[TaskBase], Propagation]]) -> None:
        if self.audit is None:
            return
        for before, result in changes:
            if result.event is None:
                continue
            if result.parent.completed:
                self.audit.parent_auto_completed(result.parent)
            else:
                self.audit.parent_auto_uncompleted(result.parent, before.completed_at)

    @staticmethod
    def _coerce(model, data):
        return data if isinstance(data, model) else model.model_validate(data)

    def _new_fields(self, data: TaskData, quadrant: QuadrantType, now: datetime) -> Dict[str, Any]:
        completed_at = data.completed_at if data.completed else None
        if data.completed and completed_at is None:
            completed_at = now
        return dict(
            id=generate_id(now),
            title=data.title,
            description=data.description,
            quadrant=quadrant,
            completed=data.completed,
            completed_at=completed_at,
            is_starred=data.is_starred,
            due_date=data.due_date,
            tags=data.tags,
            people=data.people,
            created_at=now,
            updated_at=now,
        )

    # ---- task creation ----

    def add_task(self, data: Union[TaskData, Dict[str, Any]]) -> TaskBase:
        """
        Create a top-level task at the end of its quadrant.

        A task with a recurrence becomes a RecurringTemplate, anything else a
        StandardTask.
        """
        data = self._coerce(TaskData, data)
        if data.quadrant is None:
            raise ValueError("A quadrant is required for top-level tasks")

        now = self._clock()
        fields = self._new_fields(data, data.quadrant, now)
        if data.recurrence is not None:
            task = RecurringTemplate(recurrence=data.recurrence, is_paused=data.is_paused, **fields)
        else:
            task = StandardTask(**fields)

        tasks = place(self.tasks + (task,), task)
        task = tasks[-1]
        self._commit(tasks=tasks)
        log.debug(f"Added {task.kind} task {task.id}")
        if self.audit is not None:
            self.audit.task_added(task)
        return task

    def add_subtask(self, parent_id: str, data: Union[TaskData, Dict[str, Any]]) -> Subtask:
        data = self._coerce(TaskData, data)
        index = self.index()
        parent = index.get(parent_id)
        if not can_parent_children(parent):
            reason = "does not exist" if parent is None else f"is a {parent.kind} task"
            log.debug(f"Rejected subtask for {parent_id}: parent {reason}")
            raise InvalidParentError(f"Cannot add a subtask to {parent_id}: parent {reason}")
        if data.recurrence is not None:
            raise InvalidKindError("Subtasks cannot recur")

        now = self._clock()
        # The quadrant always follows the parent
        subtask = Subtask(parent_id=parent.id, **self._new_fields(data, parent.quadrant, now))
        tasks = place(self.tasks + (subtask,), subtask)
        subtask = tasks[-1]
        tasks, change = self._propagate(tasks, parent.id, now)

        self._commit(tasks=tasks)
        log.debug(f"Added subtask {subtask.id} to {parent.id}")
        if self.audit is not None:
            self.audit.subtask_added(parent, subtask)
        self._log_propagation([change])
        return subtask

    def add_recurring_instance(self, template_id: str, data: Union[TaskData, Dict[str, Any]]) -> RecurringInstance:
        """Create an instance of a template; called by the recurrence scheduler."""
        data = self._coerce(TaskData, data)
        template = self.index().get(template_id)
        if not isinstance(template, RecurringTemplate):
            raise InvalidParentError(f"Cannot add an instance to {template_id}: not a recurring template")

        now = self._clock()
        instance = RecurringInstance(parent_id=template.id,
                                     **self._new_fields(data, data.quadrant or template.quadrant, now))
        tasks = place(self.tasks + (instance,), instance)
        instance = tasks[-1]
        self._commit(tasks=tasks)
        log.debug(f"Added instance {instance.id} of template {template.id}")
        if self.audit is not None:
            self.audit.task_added(instance)
        return instance

    # ---- task edits ----

    def update_task(self, task_id: str, patch: Union[TaskPatch, Dict[str, Any]]) -> TaskBase:
        """
        Merge the explicitly set fields of ``patch`` into the task.

        Raises:
            NotFoundError: No such task.
            InvalidKindError: Template-only fields on another kind of task.
            HasChildrenError: Completion fields on a parent with children.
            InvalidPatchError: A lone completed_at that disagrees with the completed flag.
        """
        patch = self._coerce(TaskPatch, patch)
        changes = patch.changes()
        index = self.index()
        task = self._require(index, task_id)

        if changes.keys() & TaskPatch.TEMPLATE_ONLY and not isinstance(task, RecurringTemplate):
            raise InvalidKindError(f"Only recurring templates have {sorted(changes.keys() & TaskPatch.TEMPLATE_ONLY)}")
        if changes.keys() & TaskPatch.COMPLETION and can_parent_children(task) and has_children(task.id, index):
            log.warning(f"Completion of {task.id} follows its subtasks and cannot be set directly")
            raise HasChildrenError(f"Task {task.id} has subtasks; its completion is derived from them")
        if "completed_at" in changes and "completed" not in changes and (changes["completed_at"] is None) == task.completed:
            raise InvalidPatchError(f"completed_at of task {task.id} must agree with its completed flag")

        now = self._clock()
        if changes.get("completed") is False:
            changes["completed_at"] = None
        elif changes.get("completed") is True and changes.get("completed_at") is None:
            changes["completed_at"] = task.completed_at or now

        updated = type(task).model_validate({**dict(task), **changes, "updated_at": now})
        tasks = _replace(self.tasks, updated)

        propagation = []
        if isinstance(updated, Subtask) and changes.keys() & TaskPatch.COMPLETION:
            tasks, change = self._propagate(tasks, updated.parent_id, now)
            propagation.append(change)

        self._commit(tasks=tasks)
        if self.audit is not None:
            self.audit.task_updated(task, updated)
            if updated.completed != task.completed:
                self.audit.completion_toggled(updated, updated.completed)
            if updated.is_starred != task.is_starred:
                self.audit.star_toggled(updated, updated.is_starred)
        self._log_propagation(propagation)
        return updated

    def toggle_complete(self, task_id: str) -> TaskBase:
        index = self.index()
        task = self._require(index, task_id)
        if can_parent_children(task) and has_children(task.id, index):
            log.warning("Cannot manually toggle completion for parent tasks with subtasks. "
                        "Completion is automatically managed based on subtask status.")
            raise HasChildrenError(f"Task {task.id} has subtasks; its completion is derived from them")

        now = self._clock()
        completed = not task.completed
        updated = task.model_copy(update={
            "completed": completed,
            "completed_at": now if completed else None,
            "updated_at": now,
        })
        tasks = _replace(self.tasks, updated)

        propagation = []
        if isinstance(updated, Subtask):
            tasks, change = self._propagate(tasks, updated.parent_id, now)
            propagation.append(change)

        self._commit(tasks=tasks)
        if self.audit is not None:
            self.audit.completion_toggled(updated, completed)
        self._log_propagation(propagation)
        return updated

    def toggle_star(self, task_id: str) -> TaskBase:
        task = self._require(self.index(), task_id)
        updated = task.model_copy(update={"is_starred": not task.is_starred, "updated_at": self._clock()})
        self._commit(tasks=_replace(self.tasks, updated))
        if self.audit is not None:
            self.audit.star_toggled(updated, updated.is_starred)
        return updated

    def toggle_template_pause(self, task_id: str) -> RecurringTemplate:
        task = self._require(self.index(), task_id)
        if not isinstance(task, RecurringTemplate):
            raise InvalidKindError(f"Only recurring templates can be paused, {task.id} is a {task.kind} task")
        updated = task.model_copy(update={"is_paused": not task.is_paused, "updated_at": self._clock()})
        self._commit(tasks=_replace(self.tasks, updated))
        log.debug(f"Template {task.id} {'paused' if updated.is_paused else 'resumed'}")
        return updated

    # ---- deletion ----

    def delete_task(self, task_id: str) -> Tuple[TaskBase, ...]:
        """Delete a task and everything below it. Returns the removed tasks, the task itself first."""
        index = self.index()
        task = self._require(index, task_id)

        removed = [task]
        pending = [task.id]
        while pending:
            for child_id in index.child_ids(pending.pop()):
                removed.append(index.get(child_id))
                pending.append(child_id)
        removed_ids = {t.id for t in removed}

        tasks = tuple(t for t in self.tasks if t.id not in removed_ids)
        tasks = renumber(tasks, {sibling_key(t) for t in removed})

        propagation = []
        if isinstance(task, Subtask):
            tasks, change = self._propagate(tasks, task.parent_id, self._clock())
            propagation.append(change)

        self._commit(tasks=tasks)
        log.debug(f"Deleted task {task.id} ({len(removed) - 1} descendants)")
        if self.audit is not None:
            for gone in removed:
                self.audit.task_deleted(gone)
        self._log_propagation(propagation)
        return tuple(removed)

    def delete_task_with_subtasks(self, task_id: str) -> Tuple[bool, int]:
        """
        Delete a task only if it has no subtasks.

        Returns:
            ``(has_subtasks, subtask_count)``; when ``has_subtasks`` is true nothing was deleted
            and the caller is expected to confirm and call ``delete_task``.
        """
        index = self.index()
        task = self._require(index, task_id)
        subtasks = [c for c in children_of(task.id, index) if isinstance(c, Subtask)]
        if subtasks:
            return True, len(subtasks)
        self.delete_task(task_id)
        return False, 0

    def delete_all_tasks(self) -> None:
        self._commit(tasks=())
        log.info("Deleted all tasks")
        # History only describes tasks that no longer exist
        if self.audit is not None:
            self.audit.clear()

    # ---- structure ----

    def _move(self, task_id: str, quadrant: QuadrantType, order: int, with_subtasks: bool) -> TaskBase:
        index = self.index()
        task = self._require(index, task_id)
        if isinstance(task, Subtask):
            raise InvalidKindError(f"Subtask {task.id} moves with its parent; use move_subtask_to_parent")

        subtasks = [c for c in children_of(task.id, index) if isinstance(c, Subtask)]
        quadrant_changed = quadrant != task.quadrant
        if quadrant_changed and subtasks and not with_subtasks:
            raise HasChildrenError(f"Task {task.id} has subtasks; use move_task_with_subtasks to change its quadrant")

        now = self._clock()
        moved = task.model_copy(update={"quadrant": quadrant, "updated_at": now})
        tasks = place(self.tasks, moved, order)
        if quadrant_changed:
            tasks = renumber(tasks, {sibling_key(task)})
            for child in subtasks:
                tasks = _replace(tasks, child.model_copy(update={"quadrant": quadrant, "updated_at": now}))

        self._commit(tasks=tasks)
        moved = TaskIndex(tasks).get(task.id)
        if quadrant_changed and self.audit is not None:
            self.audit.task_moved(moved, task.quadrant, quadrant)
        return moved

    def move_task(self, task_id: str, quadrant: QuadrantType, order: int) -> TaskBase:
        """Move a top-level task to ``order`` within ``quadrant``."""
        return self._move(task_id, QuadrantType(quadrant), order, with_subtasks=False)

    def move_task_with_subtasks(self, task_id: str, quadrant: QuadrantType, order: int) -> TaskBase:
        """Like ``move_task``, and the task's subtasks follow it into ``quadrant``."""
        return self._move(task_id, QuadrantType(quadrant), order, with_subtasks=True)

    def reorder_subtasks(self, parent_id: str, ordered_ids: Sequence[str]) -> None:
        index = self.index()
        parent = self._require(index, parent_id)
        current = [c.id for c in children_of(parent.id, index) if isinstance(c, Subtask)]
        ordered_ids = list(ordered_ids)
        if len(ordered_ids) != len(set(ordered_ids)) or set(ordered_ids) != set(current):
            raise InvalidOrderError(f"{ordered_ids} is not a permutation of the subtasks of {parent.id}")

        now = self._clock()
        orders = {subtask_id: i for i, subtask_id in enumerate(ordered_ids)}
        tasks = tuple(
            t.model_copy(update={"order": orders[t.id], "updated_at": now})
            if t.id in orders and t.order != orders[t.id] else t
            for t in self.tasks
        )
        self._commit(tasks=tasks)

    def move_subtask_to_parent(self, subtask_id: str, new_parent_id: str) -> Subtask:
        """
        Re-parent a subtask, appending it to the new parent's subtasks.

        Raises:
            NotFoundError: No such subtask.
            CycleError: The new parent is the subtask itself or below it.
            HasOwnChildrenError: The subtask has children of its own.
            InvalidKindError: The task is not a subtask.
            InvalidParentError: The new parent is missing or cannot hold subtasks.
        """
        index = self.index()
        subtask = self._require(index, subtask_id)
        if subtask_id == new_parent_id:
            raise CycleError(f"Cannot move {subtask_id} under itself")
        if has_children(subtask.id, index):
            raise HasOwnChildrenError(f"Cannot reparent {subtask.id}: it has children of its own")
        if not isinstance(subtask, Subtask):
            raise InvalidKindError(f"{subtask.id} is a {subtask.kind} task, not a subtask")
        new_parent = index.get(new_parent_id)
        if not can_parent_children(new_parent):
            reason = "does not exist" if new_parent is None else f"is a {new_parent.kind} task"
            raise InvalidParentError(f"Cannot move {subtask.id} to {new_parent_id}: parent {reason}")
        if would_create_cycle(new_parent.id, subtask.id, index):
            raise CycleError(f"Cannot move {subtask.id} under its own descendant {new_parent.id}")

        now = self._clock()
        old_parent = index.get(subtask.parent_id)
        moved = subtask.model_copy(update={
            "parent_id": new_parent.id,
            "quadrant": new_parent.quadrant,
            "updated_at": now,
        })
        tasks = place(self.tasks, moved)
        tasks = renumber(tasks, {sibling_key(subtask)})

        propagation = []
        for parent_id in dict.fromkeys((subtask.parent_id, new_parent.id)):
            tasks, change = self._propagate(tasks, parent_id, now)
            propagation.append(change)

        self._commit(tasks=tasks)
        moved = TaskIndex(tasks).get(subtask.id)
        log.debug(f"Moved subtask {subtask.id} from {subtask.parent_id} to {new_parent.id}")
        if self.audit is not None and old_parent is not None:
            self.audit.subtask_reparented(moved, old_parent, TaskIndex(tasks).get(new_parent.id))
        self._log_propagation(propagation)
        return moved

    def detach_subtask(self, subtask_id: str) -> StandardTask:
        """Turn a subtask into a standard task at the end of its quadrant."""
        index = self.index()
        subtask = self._require(index, subtask_id)
        if has_children(subtask.id, index):
            raise HasOwnChildrenError(f"Cannot detach {subtask.id}: it has children of its own")
        if not isinstance(subtask, Subtask):
            raise InvalidKindError(f"{subtask.id} is a {subtask.kind} task, not a subtask")

        now = self._clock()
        old_parent = index.get(subtask.parent_id)
        standalone = convert_task(subtask, StandardTask, updated_at=now)
        tasks = place(self.tasks, standalone)
        tasks = renumber(tasks, {sibling_key(subtask)})
        tasks, change = self._propagate(tasks, subtask.parent_id, now)

        self._commit(tasks=tasks)
        standalone = TaskIndex(tasks).get(subtask.id)
        log.debug(f"Detached subtask {subtask.id} from {subtask.parent_id}")
        if self.audit is not None and old_parent is not None:
            self.audit.subtask_detached(standalone, old_parent, standalone.quadrant)
        self._log_propagation([change])
        return standalone

    # ---- tags and people ----

    def _label_tasks(self, field: str, keep: Callable[[str], bool]) -> Tuple[TaskBase, ...]:
        """Drop label ids failing ``keep`` from every task's ``field``."""
        tasks = []
        for task in self.tasks:
            labels = getattr(task, field)
            kept = frozenset(label for label in labels if keep(label))
            tasks.append(task if kept == labels else task.model_copy(update={field: kept}))
        return tuple(tasks)

    def add_tag(self, name: str, color: Optional[str] = None) -> Tag:
        tag = Tag(id=generate_id(self._clock()), name=name, **({"color": color} if color else {}))
        self._commit(tags=self.tags + (tag,))
        return tag

    def update_tag(self, tag_id: str, **fields: Any) -> Tag:
        for tag in self.tags:
            if tag.id == tag_id:
                updated = Tag.model_validate({**dict(tag), **fields, "id": tag.id})
                self._commit(tags=tuple(updated if t.id == tag_id else t for t in self.tags))
                return updated
        raise NotFoundError(f"Tag {tag_id} not found")

    def delete_tag(self, tag_id: str) -> None:
        """Remove a tag and its id from every task."""
        self._commit(
            tags=tuple(t for t in self.tags if t.id != tag_id),
            tasks=self._label_tasks("tags", lambda label: label != tag_id),
        )

    def delete_all_tags(self) -> None:
        self._commit(tags=(), tasks=self._label_tasks("tags", lambda label: False))

    def add_person(self, name: str, color: Optional[str] = None) -> Person:
        person = Person(id=generate_id(self._clock()), name=name, **({"color": color} if color else {}))
        self._commit(people=self.people + (person,))
        return person

    def update_person(self, person_id: str, **fields: Any) -> Person:
        for person in self.people:
            if person.id == person_id:
                updated = Person.model_validate({**dict(person), **fields, "id": person.id})
                self._commit(people=tuple(updated if p.id == person_id else p for p in self.people))
                return updated
        raise NotFoundError(f"Person {person_id} not found")

    def delete_person(self, person_id: str) -> None:
        """Remove a person and their id from every task."""
        self._commit(
            people=tuple(p for p in self.people if p.id != person_id),
            tasks=self._label_tasks("people", lambda label: label != person_id),
        )

    def delete_all_people(self) -> None:
        self._commit(people=(), tasks=self._label_tasks("people", lambda label: False))

    # ---- whole-state writes ----

    def replace_state(self, tasks=None, tags=None, people=None, token: Optional[str] = None) -> StoreState:
        """Swap whole collections; ``None`` keeps the current one. Used by undo/redo."""
        return self._commit(tasks=tasks, tags=tags, people=people, token=token)

    async def load(self, sink) -> StoreState:
        """
        Populate the store from ``sink.load_all()``. May only be called once.

        Raises:
            RuntimeError: The store was already loaded.
        """
        if self._loaded:
            raise RuntimeError("TaskStore.load() may only be called once")
        self._loaded = True

        data = await sink.load_all()
        for problem in check_invariants(data.tasks):
            log.warning(f"Loaded data is inconsistent: {problem}")

        state = self._commit(tasks=data.tasks, tags=data.tags, people=data.people,
                             token=SUPPRESS_RECORDING, persist=False)
        log.info(f"Loaded {len(state.tasks)} tasks, {len(state.tags)} tags, {len(state.people)} people")
        return state
