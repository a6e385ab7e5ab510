"""
Hierarchy rules for the task set.

Tasks nest at most one level below an actionable task (Standard or
RecurringInstance -> Subtask) and templates own their generated instances
(RecurringTemplate -> RecurringInstance). Everything here is side-effect free;
the store is the only caller that turns these answers into state changes.
"""
from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from .models import (
    RecurringInstance,
    RecurringTemplate,
    StandardTask,
    Subtask,
    TaskBase,
)

class TaskIndex:
    """Id-indexed view over a tuple of tasks with O(1) parent and child lookups."""

    def __init__(self, tasks: Iterable[TaskBase] = ()):
        self._by_id: Dict[str, TaskBase] = {}
        self._children: Dict[str, List[str]] = defaultdict(list)
        for task in tasks:
            self._by_id[task.id] = task
            parent_id = getattr(task, "parent_id", None)
            if parent_id is not None:
                self._children[parent_id].append(task.id)

    @property
    def tasks(self) -> Tuple[TaskBase, ...]:
        return tuple(self._by_id.values())

    def __contains__(self, task_id: str) -> bool:
        return task_id in self._by_id

    def __len__(self) -> int:
        return len(self._by_id)

    def get(self, task_id: Optional[str]) -> Optional[TaskBase]:
        if task_id is None:
            return None
        return self._by_id.get(task_id)

    def child_ids(self, parent_id: str) -> List[str]:
        return list(self._children.get(parent_id, ()))

def can_parent_children(task: Optional[TaskBase]) -> bool:
    """Only standard tasks and recurring instances can hold subtasks."""
    return isinstance(task, (StandardTask, RecurringInstance))

def can_parent_instances(task: Optional[TaskBase]) -> bool:
    return isinstance(task, RecurringTemplate)

def is_leaf_only(task: Optional[TaskBase]) -> bool:
    return isinstance(task, Subtask)

def is_top_level(task: TaskBase) -> bool:
    return not isinstance(task, Subtask)

def children_of(parent_id: str, index: TaskIndex) -> List[TaskBase]:
    """Children of a parent sorted by order: instances for a template, subtasks otherwise."""
    parent = index.get(parent_id)
    if parent is None:
        return []
    child_kind = RecurringInstance if can_parent_instances(parent) else Subtask
    children = [index.get(cid) for cid in index.child_ids(parent_id)]
    return sorted((c for c in children if isinstance(c, child_kind)), key=lambda c: c.order)

def has_children(task_id: str, index: TaskIndex) -> bool:
    return bool(index.child_ids(task_id))

def child_count(parent: TaskBase, index: TaskIndex) -> int:
    return len(children_of(parent.id, index))

def would_create_cycle(candidate_parent_id: str, subtask_id: str, index: TaskIndex) -> bool:
    """True if ``candidate_parent_id`` is the subtask itself or sits somewhere below it."""
    seen = set()
    current = index.get(candidate_parent_id)
    while current is not None and current.id not in seen:
        if current.id == subtask_id:
            return True
        seen.add(current.id)
        current = index.get(getattr(current, "parent_id", None))
    return candidate_parent_id == subtask_id

def all_children_completed(parent: TaskBase, index: TaskIndex) -> bool:
    """True iff the parent has at least one child and every child is completed."""
    children = children_of(parent.id, index)
    return bool(children) and all(child.completed for child in children)

def latest_child_completion(parent: TaskBase, index: TaskIndex) -> Optional[datetime]:
    stamps = [c.completed_at for c in children_of(parent.id, index) if c.completed and c.completed_at]
    return max(stamps) if stamps else None

def sibling_key(task: TaskBase) -> Tuple[str, object]:
    """Subtasks are ordered among their parent's children, everything else within its quadrant."""
    if isinstance(task, Subtask):
        return ("parent", task.parent_id)
    return ("quadrant", task.quadrant)

def check_invariants(tasks: Iterable[TaskBase]) -> List[str]:
    """
    Collect every hierarchy invariant violation in ``tasks``.

    Returns:
        Human readable violation messages; an empty list means the set is consistent.
    """
    index = TaskIndex(tasks)
    problems: List[str] = []
    groups: Dict[Tuple[str, object], List[int]] = defaultdict(list)

    for task in index.tasks:
        groups[sibling_key(task)].append(task.order)
        parent_id = getattr(task, "parent_id", None)
        parent = index.get(parent_id)

        if isinstance(task, Subtask):
            if not can_parent_children(parent):
                problems.append(f"subtask {task.id} has invalid parent {parent_id}")
            elif task.quadrant != parent.quadrant:
                problems.append(f"subtask {task.id} is in {task.quadrant.value} but its parent is in {parent.quadrant.value}")
        elif isinstance(task, RecurringInstance):
            if not can_parent_instances(parent):
                problems.append(f"instance {task.id} has invalid template {parent_id}")

        if is_leaf_only(task) and has_children(task.id, index):
            problems.append(f"subtask {task.id} has children of its own")

        if can_parent_children(task):
            children = children_of(task.id, index)
            if children:
                if all(c.completed for c in children):
                    if not task.completed:
                        problems.append(f"parent {task.id} is incomplete although all children are completed")
                    elif task.completed_at != latest_child_completion(task, index):
                        problems.append(f"parent {task.id} completed_at does not match its latest child")
                elif task.completed or task.completed_at is not None:
                    problems.append(f"parent {task.id} is completed although a child is incomplete")

    for key, orders in groups.items():
        if sorted(orders) != list(range(len(orders))):
            problems.append(f"sibling group {key[0]}={getattr(key[1], 'value', key[1])} has orders {sorted(orders)}")

    return problems
