from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .hierarchy import TaskIndex, all_children_completed, can_parent_children, children_of, latest_child_completion
from .models import HistoryActionType, TaskBase
from .logs import get_logger

log = get_logger("propagate")

@dataclass(frozen=True)
class Propagation:
    """Outcome of a propagation pass: the parent's new value (if it changed) and the audit event to log."""

    parent: Optional[TaskBase] = None
    event: Optional[HistoryActionType] = None

    @property
    def changed(self) -> bool:
        return self.parent is not None

NO_CHANGE = Propagation()

def propagate_completion(parent_id: Optional[str], index: TaskIndex, now: datetime) -> Propagation:
    """
    Derive a parent's completion from its direct children.

    Only the direct parent is examined; subtasks cannot have children, so a
    pass never needs to climb further. Calling this again with unchanged
    children returns ``NO_CHANGE``.

    Args:
        parent_id: Task whose completion may need to follow its children.
        index: Current task set.
        now: Timestamp used for ``updated_at`` on the parent.

    Returns:
        A Propagation describing the new parent value, or ``NO_CHANGE``.
    """
    parent = index.get(parent_id)
    if parent is None or not can_parent_children(parent):
        return NO_CHANGE

    if not children_of(parent.id, index):
        # No children left: completion is back under manual control
        return NO_CHANGE

    if all_children_completed(parent, index):
        latest = latest_child_completion(parent, index)
        if not parent.completed:
            log.debug(f"Auto-completing parent {parent.id}")
            updated = parent.model_copy(update={"completed": True, "completed_at": latest, "updated_at": now})
            return Propagation(updated, HistoryActionType.PARENT_AUTO_COMPLETED)
        if parent.completed_at != latest:
            updated = parent.model_copy(update={"completed_at": latest, "updated_at": now})
            return Propagation(updated, None)
        return NO_CHANGE

    if parent.completed:
        log.debug(f"Auto-uncompleting parent {parent.id}")
        updated = parent.model_copy(update={"completed": False, "completed_at": None, "updated_at": now})
        return Propagation(updated, HistoryActionType.PARENT_AUTO_UNCOMPLETED)

    return NO_CHANGE
