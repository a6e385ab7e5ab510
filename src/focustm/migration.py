import abc
from typing import Any, Dict, Optional

# Raw document as read from YAML
MigrationData = Dict[str, Any]

class Migration(abc.ABC):
    """
    Base class for schema upgrades of the persisted task document.

    Each concrete migration handles exactly one version jump, from
    ``FROM_VERSION`` to ``VERSION``, and works on plain dictionaries so it
    never depends on the current models.
    """
    FROM_VERSION: Optional[str] = None
    VERSION: Optional[str] = None

    @abc.abstractmethod
    def upgrade(self, data: MigrationData) -> MigrationData:
        """
        Applies schema changes to the data to upgrade it to ``VERSION``.

        Args:
            data: The document to be migrated.

        Returns:
            The migrated document.
        """
        pass

    @abc.abstractmethod
    def downgrade(self, data: MigrationData) -> MigrationData:
        """
        Reverts schema changes to downgrade the data to ``FROM_VERSION``.

        Args:
            data: The document to be reverted.

        Returns:
            The downgraded document.
        """
        pass

class AddTaskKinds(Migration):
    """
    0.1.0 documents carried a loose ``task_type`` string next to an
    ``is_recurring`` flag and a ``parent_task_id``. 0.2.0 stores a ``kind``
    discriminator and a single ``parent_id``.
    """
    FROM_VERSION = "0.1.0"
    VERSION = "0.2.0"

    LEGACY_TYPES = {
        "standard": "standard",
        "subtask": "subtask",
        "recurring-parent": "recurring-template",
        "recurring-instance": "recurring-instance",
    }

    def _infer_kind(self, task: Dict[str, Any]) -> str:
        legacy = self.LEGACY_TYPES.get(task.get("task_type"))
        if legacy is not None:
            return legacy
        parent_id = task.get("parent_id")
        if task.get("is_recurring"):
            return "recurring-instance" if parent_id else "recurring-template"
        return "subtask" if parent_id else "standard"

    def upgrade(self, data: MigrationData) -> MigrationData:
        tasks = []
        for task in data.get("tasks", []):
            task = dict(task)
            if "parent_task_id" in task:
                task["parent_id"] = task.pop("parent_task_id")
            task["kind"] = self._infer_kind(task)
            task.pop("task_type", None)
            task.pop("is_recurring", None)
            task.setdefault("is_starred", False)
            if task["kind"] == "recurring-template":
                task.setdefault("recurrence", {"pattern": "daily"})
            else:
                task.pop("recurrence", None)
            if task["kind"] in ("standard", "recurring-template"):
                task.pop("parent_id", None)
            tasks.append(task)
        data["tasks"] = tasks
        data.setdefault("tags", [])
        data.setdefault("people", [])
        data["schema_version"] = self.VERSION
        return data

    def downgrade(self, data: MigrationData) -> MigrationData:
        legacy_types = {v: k for k, v in self.LEGACY_TYPES.items()}
        tasks = []
        for task in data.get("tasks", []):
            task = dict(task)
            kind = task.pop("kind", "standard")
            task["task_type"] = legacy_types[kind]
            task["is_recurring"] = kind in ("recurring-template", "recurring-instance")
            task.pop("is_paused", None)
            if "parent_id" in task:
                task["parent_task_id"] = task.pop("parent_id")
            tasks.append(task)
        data["tasks"] = tasks
        data["schema_version"] = self.FROM_VERSION
        return data

MIGRATIONS = [AddTaskKinds()]
