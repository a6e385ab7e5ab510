class FocusError(Exception):
    """Base exception for all focustm errors."""
    pass

class RecoverableError(FocusError):
    """An error that can be recovered from without data loss."""
    pass

class FatalError(FocusError):
    """An error that requires application termination or major intervention."""
    pass

class CorruptionError(FatalError):
    """Corrupted Data Error - from syntax errors in data formats, to just unknown data"""
    pass

class MigrationError(CorruptionError):
    """Data migration failed - data may be corrupted."""
    pass

class FileOperationError(RecoverableError):
    """File operation failed but can be retried."""
    pass

class HierarchyError(RecoverableError):
    """A task operation was rejected; the task set is left untouched."""
    pass

class InvalidParentError(HierarchyError):
    """The target parent does not exist or cannot hold this kind of child."""
    pass

class CycleError(HierarchyError):
    """Reparenting would nest a task under itself or one of its descendants."""
    pass

class HasOwnChildrenError(HierarchyError):
    """Reparent or detach attempted on a task that has children of its own."""
    pass

class HasChildrenError(HierarchyError):
    """Completion of a parent with children is derived and cannot be set by hand."""
    pass

class NotFoundError(HierarchyError):
    """Referenced id does not exist."""
    pass

class InvalidKindError(HierarchyError):
    """Operation is not valid for the task's kind."""
    pass

class InvalidOrderError(HierarchyError):
    """Requested ordering is not a permutation of the current sibling group."""
    pass

class InvalidPatchError(HierarchyError):
    """Patch would leave the task inconsistent, e.g. a completion time on an incomplete task."""
    pass
