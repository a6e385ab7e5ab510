"""
Data management submodule: storage, validation and migration of the task document.
"""

from .core import AppData, DebouncedSync, FocusContext, PersistenceSink, YAMLStorage
from .migrate import MigrationEngine

__all__ = [
    'AppData',
    'DebouncedSync',
    'FocusContext',
    'PersistenceSink',
    'YAMLStorage',
    'MigrationEngine',
]
