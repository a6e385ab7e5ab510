"""
Data core - persistence for focustm.

This module provides the storage sink the store loads from and syncs to, the
coalescing background writer, and ``FocusContext`` which wires storage, the
store, the audit trail and undo history together for one session.
"""
import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Protocol, Tuple, Union

from focustm.audit import AuditTrail, YAMLAuditLog
from focustm.config import Settings, load_settings
from focustm.history import UndoManager
from focustm.logs import get_logger
from focustm.models import FocusData, Person, Tag, TaskBase
from focustm.recovery import FocusError
from focustm.store import StoreState, TaskStore
from focustm.version import APP_SCHEMA_VERSION
from .io import DATA_YAML, atomic_write, load_yaml_file
from .migrate import MigrationEngine
from .validate import validate_document

log = get_logger("data")

@dataclass(frozen=True)
class AppData:
    tasks: Tuple[TaskBase, ...] = ()
    tags: Tuple[Tag, ...] = ()
    people: Tuple[Person, ...] = ()

class PersistenceSink(Protocol):
    async def save_all(self, tasks: Iterable[TaskBase], tags: Iterable[Tag], people: Iterable[Person]) -> None:
        ...

    async def load_all(self) -> AppData:
        ...

class YAMLStorage:
    """Stores the task document as ``tasks.yml`` and the audit log as ``history.yml`` in ``data_dir``."""

    TASKS_FILE = "tasks.yml"
    HISTORY_FILE = "history.yml"

    def __init__(self, data_dir: Union[Path, str], migrations: Optional[MigrationEngine] = None):
        self.data_dir = Path(data_dir)
        self.migrations = migrations or MigrationEngine()

    @property
    def tasks_path(self) -> Path:
        return self.data_dir / self.TASKS_FILE

    @property
    def history_path(self) -> Path:
        return self.data_dir / self.HISTORY_FILE

    def exists(self) -> bool:
        return self.tasks_path.exists()

    def schema_version(self) -> Optional[str]:
        data = load_yaml_file(self.tasks_path)
        return None if data is None else self.migrations.document_version(data)

    def init(self) -> bool:
        """Create an empty document. Returns False if one already exists."""
        if self.exists():
            return False
        self.write((), (), ())
        log.info(f"Initialized data directory {self.data_dir}")
        return True

    def read(self) -> FocusData:
        """
        Read, upgrade and validate the task document.

        An older document is migrated and written back before it is returned.

        Raises:
            FileOperationError: The file cannot be read.
            CorruptionError: The file is malformed or fails validation.
            MigrationError: The document cannot be upgraded.
        """
        data = load_yaml_file(self.tasks_path)
        if data is None:
            log.info(f"No data at {self.tasks_path}, starting empty")
            return FocusData()

        if self.migrations.needs_migration(data):
            log.info(f"{self.tasks_path} is at schema {self.migrations.document_version(data)}; "
                     f"migrating to {APP_SCHEMA_VERSION}")
            data = self.migrations.migrate(data)
            validate_document(data, FocusData, str(self.tasks_path))
            atomic_write(DATA_YAML, self.tasks_path, data)
        else:
            # Rejects documents written by a newer version
            self.migrations.get_migration_path(self.migrations.document_version(data))
            validate_document(data, FocusData, str(self.tasks_path))

        return FocusData.model_validate(data)

    def write(self, tasks: Iterable[TaskBase], tags: Iterable[Tag], people: Iterable[Person]) -> None:
        document = FocusData(tasks=list(tasks), tags=list(tags), people=list(people))
        atomic_write(DATA_YAML, self.tasks_path, document.model_dump(mode="json"), create_dirs=True)

    async def load_all(self) -> AppData:
        document = self.read()
        return AppData(tuple(document.tasks), tuple(document.tags), tuple(document.people))

    async def save_all(self, tasks: Iterable[TaskBase], tags: Iterable[Tag], people: Iterable[Person]) -> None:
        self.write(tasks, tags, people)
        log.debug(f"Synced state to {self.tasks_path}")

class DebouncedSync:
    """
    Coalescing writer in front of a ``PersistenceSink``.

    ``schedule`` replaces any state still waiting to be written, so only the
    latest state of a burst reaches the sink. Without a running event loop the
    state waits for ``flush()``. Write failures are logged, never raised: the
    in-memory state stays authoritative.
    """

    def __init__(self, sink: PersistenceSink, delay: float = 0.3):
        self.sink = sink
        self.delay = delay
        self._pending: Optional[StoreState] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._writes: set = set()

    @property
    def pending(self) -> bool:
        return self._pending is not None

    def schedule(self, state: StoreState) -> None:
        self._pending = state
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._timer = loop.call_later(self.delay, self._start_write)

    def _start_write(self) -> None:
        self._timer = None
        write = asyncio.get_running_loop().create_task(self._write_pending())
        self._writes.add(write)
        write.add_done_callback(self._writes.discard)

    async def _write_pending(self) -> None:
        state, self._pending = self._pending, None
        if state is None:
            return
        try:
            await self.sink.save_all(state.tasks, state.tags, state.people)
        except FocusError as e:
            log.error(f"Failed to sync data: {e}")

    async def flush(self) -> None:
        """Write any pending state now and wait for in-flight writes."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._writes:
            await asyncio.gather(*list(self._writes))
        await self._write_pending()

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._pending = None

class FocusContext:
    """
    One working session over a data directory.

    Usage::

        async with FocusContext(settings) as ctx:
            ctx.store.add_task(...)

    Entering loads the store exactly once and applies history retention;
    leaving closes the undo recorder and flushes pending writes and audit
    operations.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or load_settings()
        self.storage = YAMLStorage(self.settings.data_dir)
        self.trail = AuditTrail(YAMLAuditLog(self.storage.history_path))
        self.sync = DebouncedSync(self.storage, self.settings.sync_debounce_seconds)
        self.store = TaskStore(audit=self.trail, sync=self.sync)
        self.history: Optional[UndoManager] = None

    async def __aenter__(self) -> "FocusContext":
        await self.store.load(self.storage)
        self.history = UndoManager(
            self.store,
            self.trail,
            capacity=self.settings.history_limit,
            debounce=self.settings.record_debounce_seconds,
        )
        await self.trail.purge_older_than(self.settings.history_retention_days)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        if self.history is not None:
            self.history.close()
        await self.sync.flush()
        await self.trail.flush()
