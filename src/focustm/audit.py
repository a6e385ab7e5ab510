"""
Append-only audit log of task events.

``AuditLog`` is the storage port; ``AuditTrail`` is what the store and the
undo engine talk to. The trail turns task changes into ``HistoryEntry``
records and applies every log operation for a given task id strictly in the
order it was submitted, so a purge requested by an undo can never overtake
(or be overtaken by) a later deletion of the same task.
"""
import abc
import asyncio
from collections import OrderedDict, defaultdict, deque
from contextlib import asynccontextmanager, contextmanager
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Awaitable, Callable, Deque, Dict, Iterable, List, Literal, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, Field

from .logs import get_logger
from .models import FieldChange, HistoryActionType, HistoryEntry, HistoryLog, QuadrantType, TaskBase

log = get_logger("audit")

Predicate = Callable[[HistoryEntry], bool]

# Fields compared when logging a task_updated event. Completion, stars and
# quadrant moves have dedicated events.
TRACKED_FIELDS = (
    'title',
    'description',
    'due_date',
    'tags',
    'people',
    'recurrence',
    'is_paused',
)

class AuditLog(abc.ABC):
    """Storage port for history entries."""

    @abc.abstractmethod
    async def add(self, entry: HistoryEntry) -> int:
        """Store ``entry`` and return its assigned id."""

    @abc.abstractmethod
    async def query(self, predicate: Optional[Predicate] = None) -> List[HistoryEntry]:
        """Entries matching ``predicate`` in insertion order."""

    @abc.abstractmethod
    async def delete(self, entry_ids: Iterable[int]) -> int:
        """Remove entries by id, returning how many were removed."""

    @abc.abstractmethod
    async def update(self, entry_ids: Iterable[int], **fields: Any) -> int:
        """Overwrite ``fields`` on the given entries."""

    @abc.abstractmethod
    async def clear(self) -> None:
        """Drop every entry."""

class MemoryAuditLog(AuditLog):
    """Audit log kept in process memory."""

    def __init__(self, entries: Iterable[HistoryEntry] = (), next_id: int = 1):
        self._entries: "OrderedDict[int, HistoryEntry]" = OrderedDict()
        self._next_id = next_id
        for entry in entries:
            if entry.id is None:
                entry = entry.model_copy(update={"id": self._allocate_id()})
            self._entries[entry.id] = entry
            self._next_id = max(self._next_id, entry.id + 1)

    def _allocate_id(self) -> int:
        entry_id = self._next_id
        self._next_id += 1
        return entry_id

    @property
    def entries(self) -> List[HistoryEntry]:
        return list(self._entries.values())

    def _changed(self) -> None:
        """Hook for backends that persist after every mutation."""

    async def add(self, entry: HistoryEntry) -> int:
        entry = entry.model_copy(update={"id": self._allocate_id()})
        self._entries[entry.id] = entry
        self._changed()
        return entry.id

    async def query(self, predicate: Optional[Predicate] = None) -> List[HistoryEntry]:
        return [e for e in self._entries.values() if predicate is None or predicate(e)]

    async def delete(self, entry_ids: Iterable[int]) -> int:
        removed = 0
        for entry_id in list(entry_ids):
            if self._entries.pop(entry_id, None) is not None:
                removed += 1
        if removed:
            self._changed()
        return removed

    async def update(self, entry_ids: Iterable[int], **fields: Any) -> int:
        updated = 0
        for entry_id in list(entry_ids):
            entry = self._entries.get(entry_id)
            if entry is not None:
                self._entries[entry_id] = entry.model_copy(update=fields)
                updated += 1
        if updated:
            self._changed()
        return updated

    async def clear(self) -> None:
        self._entries.clear()
        self._changed()

class YAMLAuditLog(MemoryAuditLog):
    """Audit log mirrored to a YAML document after every mutation."""

    def __init__(self, file_path: Union[Path, str]):
        # Imported here: the data package depends on the models module only
        from .data.io import DATA_YAML, atomic_write, load_model

        self.file_path = Path(file_path)
        self._write = lambda data: atomic_write(DATA_YAML, self.file_path, data, create_dirs=True)
        stored = load_model(HistoryLog, self.file_path)
        if stored is None:
            stored = HistoryLog()
        super().__init__(stored.entries, stored.next_id)
        log.debug(f"Loaded {len(self._entries)} history entries from {self.file_path}")

    def _changed(self) -> None:
        document = HistoryLog(next_id=self._next_id, entries=list(self._entries.values()))
        self._write(document.model_dump(mode="json"))

def _entry_fields(task: TaskBase) -> Dict[str, Any]:
    return {"task_id": task.id, "task_title": task.title, "task_quadrant": task.quadrant}

def diff_fields(old: TaskBase, new: TaskBase, fields: Sequence[str] = TRACKED_FIELDS) -> List[FieldChange]:
    changes = []
    for field in fields:
        before, after = getattr(old, field, None), getattr(new, field, None)
        if before != after:
            changes.append(FieldChange(field=field, old_value=before, new_value=after))
    return changes

class AuditTrail:
    """
    Semantic logger in front of an ``AuditLog``.

    Logging methods are synchronous and fire-and-forget. When an event loop is
    running each operation becomes a task; otherwise operations queue until
    the next ``await flush()``. Operations for the same task id never overlap
    and run in submission order; task-less operations such as ``clear`` are
    ordered against every lane.
    """

    def __init__(self, audit_log: Optional[AuditLog] = None, clock: Callable[[], datetime] = datetime.now):
        self.log = audit_log if audit_log is not None else MemoryAuditLog()
        self._clock = clock
        self._correlation: Optional[str] = None
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = defaultdict(int)
        self._backlog: Deque[Tuple[Optional[str], Callable[[], Awaitable[Any]]]] = deque()
        self._pending: set = set()
        self._barrier: Optional[asyncio.Task] = None
        self._lanes: Dict[str, asyncio.Task] = {}

    # ---- scheduling ----

    @asynccontextmanager
    async def _hold(self, task_id: str):
        lock = self._locks.setdefault(task_id, asyncio.Lock())
        self._lock_users[task_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[task_id] -= 1
            if not self._lock_users[task_id]:
                del self._lock_users[task_id]
                self._locks.pop(task_id, None)

    async def _run(self, task_id: Optional[str], operation: Callable[[], Awaitable[Any]], after: Sequence[asyncio.Task] = ()):
        if after:
            await asyncio.gather(*after, return_exceptions=True)
        try:
            if task_id is None:
                await operation()
            else:
                async with self._hold(task_id):
                    await operation()
        except Exception as e:
            # The in-memory task state stays authoritative; a failed log write is only reported
            log.error(f"Audit log operation failed for task {task_id}: {e}")

    def _spawn(self, loop: asyncio.AbstractEventLoop, task_id: Optional[str], operation) -> None:
        # Task-less operations span the whole log: they wait for everything submitted
        # before them, and everything submitted after them waits for the latest one
        if task_id is None:
            after = list(self._pending)
        else:
            after = [t for t in (self._barrier, self._lanes.get(task_id)) if t is not None and not t.done()]
        task = loop.create_task(self._run(task_id, operation, after))
        if task_id is None:
            self._barrier = task
        else:
            self._lanes[task_id] = task
            task.add_done_callback(lambda done: self._release_lane(task_id, done))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _release_lane(self, task_id: str, task: asyncio.Task) -> None:
        if self._lanes.get(task_id) is task:
            del self._lanes[task_id]

    def submit(self, task_id: Optional[str], operation: Callable[[], Awaitable[Any]]) -> None:
        """Queue ``operation``; ``task_id`` selects the serialization lane (``None`` waits for all lanes)."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._backlog.append((task_id, operation))
            return
        while self._backlog:
            self._spawn(loop, *self._backlog.popleft())
        self._spawn(loop, task_id, operation)

    async def flush(self) -> None:
        """Wait until every submitted operation has been applied."""
        loop = asyncio.get_running_loop()
        while self._backlog or self._pending:
            while self._backlog:
                self._spawn(loop, *self._backlog.popleft())
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @property
    def pending(self) -> int:
        return len(self._backlog) + len(self._pending)

    # ---- correlation ----

    @contextmanager
    def correlation(self, correlation_id: str):
        """Tag every entry logged inside the block with ``correlation_id``."""
        previous = self._correlation
        self._correlation = correlation_id
        try:
            yield correlation_id
        finally:
            self._correlation = previous

    def _append(self, action: HistoryActionType, task: TaskBase, **fields: Any) -> None:
        data = _entry_fields(task)
        data.update(fields)
        entry = HistoryEntry(timestamp=self._clock(), action=action,
                             undo_correlation_id=self._correlation, **data)
        self.submit(task.id, lambda: self.log.add(entry))

    # ---- task events ----

    def task_added(self, task: TaskBase) -> None:
        self._append(HistoryActionType.TASK_ADDED, task)

    def task_updated(self, old: TaskBase, new: TaskBase) -> None:
        changes = diff_fields(old, new)
        if not changes:
            return
        self._append(HistoryActionType.TASK_UPDATED, new, changes=changes)

    def task_deleted(self, task: TaskBase) -> None:
        entry = HistoryEntry(timestamp=self._clock(), action=HistoryActionType.TASK_DELETED,
                             is_deleted=True, undo_correlation_id=self._correlation, **_entry_fields(task))

        async def operation():
            await self.log.add(entry)
            await self._mark_deleted(task.id, True)

        self.submit(task.id, operation)

    def completion_toggled(self, task: TaskBase, completed: bool) -> None:
        action = HistoryActionType.TASK_COMPLETED if completed else HistoryActionType.TASK_UNCOMPLETED
        self._append(action, task)

    def task_moved(self, task: TaskBase, from_quadrant: QuadrantType, to_quadrant: QuadrantType) -> None:
        self._append(HistoryActionType.TASK_MOVED, task, task_quadrant=to_quadrant,
                     from_quadrant=from_quadrant, to_quadrant=to_quadrant)

    def star_toggled(self, task: TaskBase, starred: bool) -> None:
        action = HistoryActionType.TASK_STARRED if starred else HistoryActionType.TASK_UNSTARRED
        self._append(action, task)

    def subtask_added(self, parent: TaskBase, subtask: TaskBase) -> None:
        self._append(HistoryActionType.SUBTASK_ADDED, subtask,
                     task_title=f"{parent.title} → {subtask.title}", task_quadrant=parent.quadrant)

    def subtask_reparented(self, subtask: TaskBase, old_parent: TaskBase, new_parent: TaskBase) -> None:
        moved = old_parent.quadrant != new_parent.quadrant
        self._append(HistoryActionType.SUBTASK_REPARENTED, subtask,
                     task_quadrant=new_parent.quadrant,
                     old_parent_id=old_parent.id, old_parent_title=old_parent.title,
                     new_parent_id=new_parent.id, new_parent_title=new_parent.title,
                     from_quadrant=old_parent.quadrant if moved else None,
                     to_quadrant=new_parent.quadrant if moved else None)

    def subtask_detached(self, subtask: TaskBase, old_parent: TaskBase, quadrant: QuadrantType) -> None:
        moved = old_parent.quadrant != quadrant
        self._append(HistoryActionType.SUBTASK_DETACHED, subtask, task_quadrant=quadrant,
                     old_parent_id=old_parent.id, old_parent_title=old_parent.title,
                     from_quadrant=old_parent.quadrant if moved else None,
                     to_quadrant=quadrant if moved else None)

    def parent_auto_completed(self, parent: TaskBase) -> None:
        self._append(HistoryActionType.PARENT_AUTO_COMPLETED, parent, changes=[
            FieldChange(field='completed', old_value=False, new_value=True),
            FieldChange(field='completed_at', old_value=None, new_value=parent.completed_at),
        ])

    def parent_auto_uncompleted(self, parent: TaskBase, previous_completed_at: Optional[datetime]) -> None:
        self._append(HistoryActionType.PARENT_AUTO_UNCOMPLETED, parent, changes=[
            FieldChange(field='completed', old_value=True, new_value=False),
            FieldChange(field='completed_at', old_value=previous_completed_at, new_value=None),
        ])

    # ---- reconciliation ----

    async def _mark_deleted(self, task_id: str, deleted: bool) -> None:
        entries = await self.log.query(lambda e: e.task_id == task_id)
        await self.log.update([e.id for e in entries], is_deleted=deleted)

    async def _remove_all(self, task_id: str) -> None:
        entries = await self.log.query(lambda e: e.task_id == task_id)
        removed = await self.log.delete(e.id for e in entries)
        log.debug(f"Removed {removed} history events for task {task_id}")

    async def _remove_by_action(self, task_id: str, action: HistoryActionType, since: Optional[datetime] = None) -> None:
        entries = await self.log.query(
            lambda e: e.task_id == task_id and e.action == action and (since is None or e.timestamp >= since))
        removed = await self.log.delete(e.id for e in entries)
        log.debug(f"Removed {removed} '{action.value}' events for task {task_id}")

    async def _restore(self, task_id: str) -> None:
        await self._mark_deleted(task_id, False)
        deletions = await self.log.query(
            lambda e: e.task_id == task_id and e.action == HistoryActionType.TASK_DELETED)
        await self.log.delete(e.id for e in deletions)

    async def _remove_correlated(self, correlation_id: str) -> None:
        entries = await self.log.query(lambda e: e.undo_correlation_id == correlation_id)
        if entries:
            log.debug(f"Removed {len(entries)} events logged during {correlation_id}")
        await self.log.delete(e.id for e in entries)

    def remove_all_events_for_task(self, task_id: str) -> None:
        self.submit(task_id, lambda: self._remove_all(task_id))

    def remove_events_by_action(self, task_id: str, action: HistoryActionType, since: Optional[datetime] = None) -> None:
        self.submit(task_id, lambda: self._remove_by_action(task_id, action, since))

    def unmark_task_as_deleted(self, task_id: str) -> None:
        """Un-mark a re-appearing task's entries and drop its ``task_deleted`` events."""
        self.submit(task_id, lambda: self._restore(task_id))

    def remove_correlated(self, correlation_id: str) -> None:
        self.submit(None, lambda: self._remove_correlated(correlation_id))

    def reconcile_undo(self, removed: Iterable[str], restored: Iterable[str],
                       changed: Dict[str, Iterable[HistoryActionType]], since: Optional[datetime],
                       correlation_id: str) -> None:
        """
        Rewind the log alongside an undo step.

        Args:
            removed: Tasks that no longer exist after the undo; their history is purged.
            restored: Tasks that exist again; their deletion is forgotten.
            changed: Per task, the action types whose effects were unwound.
            since: Start of the unwound step; only entries logged from then on are removed.
            correlation_id: Entries tagged with it are side effects of the undo itself.
        """
        for task_id in removed:
            log.debug(f"Undo: removing history for deleted task {task_id}")
            self.remove_all_events_for_task(task_id)
        for task_id in restored:
            log.debug(f"Undo: restoring history for re-added task {task_id}")
            self.unmark_task_as_deleted(task_id)
        for task_id, actions in changed.items():
            for action in actions:
                self.remove_events_by_action(task_id, action, since)
        self.remove_correlated(correlation_id)

    def clear(self) -> None:
        self.submit(None, self.log.clear)

    async def purge_older_than(self, days: Optional[int], now: Optional[datetime] = None) -> int:
        """Retention cleanup; ``None`` keeps all history."""
        if days is None:
            log.debug("History retention disabled - keeping all history")
            return 0
        cutoff = (now or self._clock()) - timedelta(days=days)
        await self.flush()
        stale = await self.log.query(lambda e: e.timestamp < cutoff)
        removed = await self.log.delete(e.id for e in stale)
        log.info(f"Deleted {removed} history events older than {days} days")
        return removed

class HistoryQuery(BaseModel):
    """Filters for browsing the audit log."""

    search_query: str = ""
    action_types: List[HistoryActionType] = Field(default_factory=list)
    date_range: Literal['today', '7days', '30days', 'all'] = 'all'

def filter_entries(entries: Iterable[HistoryEntry], query: HistoryQuery, now: Optional[datetime] = None) -> List[HistoryEntry]:
    """Entries matching ``query``, most recent first."""
    now = now or datetime.now()
    filtered = sorted(entries, key=lambda e: (e.timestamp, e.id or 0), reverse=True)

    if query.search_query:
        needle = query.search_query.lower()
        filtered = [e for e in filtered if needle in e.task_title.lower()]

    if query.action_types:
        filtered = [e for e in filtered if e.action in query.action_types]

    start = None
    if query.date_range == 'today':
        start = datetime.combine(now.date(), datetime.min.time())
    elif query.date_range == '7days':
        start = now - timedelta(days=7)
    elif query.date_range == '30days':
        start = now - timedelta(days=30)

    if start is not None:
        filtered = [e for e in filtered if e.timestamp >= start]

    return filtered

def group_entries_by_date(entries: Iterable[HistoryEntry]) -> "OrderedDict[date, List[HistoryEntry]]":
    grouped: "OrderedDict[date, List[HistoryEntry]]" = OrderedDict()
    for entry in entries:
        grouped.setdefault(entry.timestamp.date(), []).append(entry)
    return grouped
