"""
Undo/redo over whole-state snapshots.

``UndoManager`` watches the store. The first change of a burst captures the
state from before the burst; once the store has been quiet for ``debounce``
seconds that snapshot becomes one undo step. Undo and redo swap the live
state with a snapshot using the ``SUPPRESS_RECORDING`` token, so the swap is
never recorded itself. After an undo the audit log is rewound to match.
"""
import asyncio
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Deque, Dict, List, Optional, Tuple

from .logs import get_logger
from .models import HistoryActionType, StandardTask, Subtask, Tag, TaskBase
from .store import SUPPRESS_RECORDING, StoreState, TaskStore

log = get_logger("history")

# Fields whose changes are logged as task_updated
UPDATE_FIELDS = ('title', 'description', 'due_date', 'tags', 'people', 'recurrence', 'is_paused')

@dataclass(frozen=True)
class HistorySnapshot:
    tasks: Tuple[TaskBase, ...]
    tags: Tuple[Tag, ...]
    taken_at: datetime

class RecorderState(Enum):
    IDLE = "idle"
    PENDING = "pending"
    FLUSHED = "flushed"

class HistoryStack:
    """Bounded past/future stacks; the oldest entries are evicted first."""

    def __init__(self, capacity: int = 50):
        self.capacity = capacity
        self.past: Deque[HistorySnapshot] = deque(maxlen=capacity)
        self.future: Deque[HistorySnapshot] = deque(maxlen=capacity)

    @property
    def can_undo(self) -> bool:
        return bool(self.past)

    @property
    def can_redo(self) -> bool:
        return bool(self.future)

    def push(self, snapshot: HistorySnapshot) -> None:
        self.past.append(snapshot)
        self.future.clear()

    def undo(self, current: HistorySnapshot) -> Optional[HistorySnapshot]:
        if not self.past:
            return None
        previous = self.past.pop()
        self.future.appendleft(current)
        return previous

    def redo(self, current: HistorySnapshot) -> Optional[HistorySnapshot]:
        if not self.future:
            return None
        following = self.future.popleft()
        self.past.append(current)
        return following

    def clear(self) -> None:
        self.past.clear()
        self.future.clear()

def detect_task_changes(current: TaskBase, previous: TaskBase) -> List[HistoryActionType]:
    """Audit actions that turned ``previous`` into ``current``."""
    changes = []

    if current.completed != previous.completed:
        if current.completed:
            changes += [HistoryActionType.TASK_COMPLETED, HistoryActionType.PARENT_AUTO_COMPLETED]
        else:
            changes += [HistoryActionType.TASK_UNCOMPLETED, HistoryActionType.PARENT_AUTO_UNCOMPLETED]

    if current.is_starred != previous.is_starred:
        changes.append(HistoryActionType.TASK_STARRED if current.is_starred else HistoryActionType.TASK_UNSTARRED)

    if current.quadrant != previous.quadrant:
        changes.append(HistoryActionType.TASK_MOVED)

    if isinstance(current, Subtask) and isinstance(previous, Subtask) and current.parent_id != previous.parent_id:
        changes.append(HistoryActionType.SUBTASK_REPARENTED)

    if isinstance(current, StandardTask) and isinstance(previous, Subtask):
        changes.append(HistoryActionType.SUBTASK_DETACHED)

    if any(getattr(current, f, None) != getattr(previous, f, None) for f in UPDATE_FIELDS):
        changes.append(HistoryActionType.TASK_UPDATED)

    return changes

class UndoManager:
    """
    Records undo steps from store changes and applies undo/redo.

    Args:
        store: The store to observe and rewind.
        trail: ``AuditTrail`` rewound alongside undo; ``None`` skips reconciliation.
        capacity: Maximum undo (and redo) depth.
        debounce: Seconds of quiet that close a burst of edits into one step.
    """

    def __init__(self, store: TaskStore, trail=None, capacity: int = 50, debounce: float = 0.3,
                 clock: Callable[[], datetime] = datetime.now):
        self.store = store
        self.trail = trail
        self.stack = HistoryStack(capacity)
        self.debounce = debounce
        self._clock = clock
        self.state = RecorderState.IDLE
        self._baseline = self._snapshot(store.state)
        self._pending: Optional[HistorySnapshot] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._unsubscribe = store.subscribe(self._on_change)

    @property
    def can_undo(self) -> bool:
        return self.state == RecorderState.PENDING or self.stack.can_undo

    @property
    def can_redo(self) -> bool:
        return self.stack.can_redo

    def _snapshot(self, state: StoreState) -> HistorySnapshot:
        return HistorySnapshot(tasks=state.tasks, tags=state.tags, taken_at=self._clock())

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_change(self, previous: StoreState, current: StoreState, token: Optional[str]) -> None:
        if token == SUPPRESS_RECORDING:
            self._baseline = self._snapshot(current)
            return

        if current.tasks == self._baseline.tasks and current.tags == self._baseline.tags:
            return

        if self.state != RecorderState.PENDING:
            # The burst starts now; remember what it is changing away from
            self._pending = HistorySnapshot(self._baseline.tasks, self._baseline.tags, self._clock())
            self.state = RecorderState.PENDING
        self._baseline = self._snapshot(current)
        self._arm()

    def _arm(self) -> None:
        self._cancel_timer()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: the step stays pending until flush(), undo() or redo()
            return
        self._timer = loop.call_later(self.debounce, self.flush)

    def flush(self) -> bool:
        """Close the pending burst into an undo step. Returns True if one was recorded."""
        self._cancel_timer()
        if self.state != RecorderState.PENDING:
            return False
        self.stack.push(self._pending)
        self._pending = None
        self.state = RecorderState.FLUSHED
        log.debug(f"Recorded undo step ({len(self.stack.past)} in history)")
        return True

    def _apply(self, snapshot: HistorySnapshot) -> None:
        self.store.replace_state(tasks=snapshot.tasks, tags=snapshot.tags, token=SUPPRESS_RECORDING)

    def undo(self) -> bool:
        """Restore the state before the most recent step. Returns False if there is nothing to undo."""
        self.flush()
        if not self.stack.can_undo:
            return False

        current = self._snapshot(self.store.state)
        restored = self.stack.undo(current)

        if self.trail is None:
            self._apply(restored)
            return True

        correlation_id = f"undo-{int(self._clock().timestamp() * 1000)}"
        with self.trail.correlation(correlation_id):
            self._apply(restored)
        self._reconcile(current, restored, correlation_id)
        return True

    def redo(self) -> bool:
        """Re-apply the most recently undone step. The audit log is left alone."""
        self.flush()
        if not self.stack.can_redo:
            return False

        current = self._snapshot(self.store.state)
        self._apply(self.stack.redo(current))
        return True

    def _reconcile(self, current: HistorySnapshot, restored: HistorySnapshot, correlation_id: str) -> None:
        before = {t.id: t for t in current.tasks}
        after = {t.id: t for t in restored.tasks}

        removed = [task_id for task_id in before if task_id not in after]
        reappeared = [task_id for task_id in after if task_id not in before]
        changed: Dict[str, List[HistoryActionType]] = {}
        for task_id, task in before.items():
            if task_id in after:
                actions = detect_task_changes(task, after[task_id])
                if actions:
                    changed[task_id] = actions

        log.debug(f"Undo {correlation_id}: {len(removed)} removed, {len(reappeared)} restored, {len(changed)} changed")
        self.trail.reconcile_undo(removed, reappeared, changed, restored.taken_at, correlation_id)

    def clear(self) -> None:
        """Forget all undo and redo steps."""
        self._cancel_timer()
        self.stack.clear()
        self._pending = None
        self.state = RecorderState.IDLE
        self._baseline = self._snapshot(self.store.state)

    def close(self) -> None:
        self._cancel_timer()
        self._unsubscribe()
