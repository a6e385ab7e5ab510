"""
focustm - A priority-matrix task manager.

Tasks live in one of four urgency/importance quadrants and may carry
subtasks or recur from a template:
Standard / RecurringInstance → Subtask, RecurringTemplate → RecurringInstance
"""

from .version import VERSION, APP_SCHEMA_VERSION
from .models import (
    QuadrantType,
    StandardTask,
    Subtask,
    RecurringTemplate,
    RecurringInstance,
    TaskData,
    TaskPatch,
    FilterConfig,
)
from .store import TaskStore
from .filters import FilterResolver, resolve_visible
from .history import UndoManager
from .audit import AuditTrail
from .data import FocusContext

__version__ = VERSION

__all__ = [
    "VERSION",
    "APP_SCHEMA_VERSION",
    "QuadrantType",
    "StandardTask",
    "Subtask",
    "RecurringTemplate",
    "RecurringInstance",
    "TaskData",
    "TaskPatch",
    "FilterConfig",
    "TaskStore",
    "FilterResolver",
    "resolve_visible",
    "UndoManager",
    "AuditTrail",
    "FocusContext",
]
