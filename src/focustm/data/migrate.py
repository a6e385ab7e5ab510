from typing import Dict, List, Optional, Sequence

from packaging.version import InvalidVersion, Version

from focustm.logs import get_logger
from focustm.migration import MIGRATIONS, Migration, MigrationData
from focustm.recovery import MigrationError
from focustm.version import APP_SCHEMA_VERSION

log = get_logger("data.migrate")

# Documents written before versioning was introduced
DEFAULT_SOURCE_VERSION = "0.1.0"

class MigrationEngine:
    """
    Upgrades persisted documents step by step to ``target_version``.

    Migrations are chained by their ``FROM_VERSION``/``VERSION`` pairs, so a
    document at any known version walks every intermediate step in order.
    """

    def __init__(self, migrations: Sequence[Migration] = MIGRATIONS, target_version: str = APP_SCHEMA_VERSION):
        self.migrations: Dict[str, Migration] = {m.FROM_VERSION: m for m in migrations}
        self.target_version = target_version

    @staticmethod
    def document_version(data: MigrationData) -> str:
        return str(data.get("schema_version") or DEFAULT_SOURCE_VERSION)

    def needs_migration(self, data: MigrationData) -> bool:
        try:
            return Version(self.document_version(data)) < Version(self.target_version)
        except InvalidVersion as e:
            raise MigrationError(f"Unrecognized schema version: {e}") from e

    def get_migration_path(self, current_version: str) -> List[Migration]:
        """
        Determines the sequence of migrations from ``current_version`` to the target.

        Raises:
            MigrationError: The document is newer than this application, or a step is missing.
        """
        try:
            current, target = Version(current_version), Version(self.target_version)
        except InvalidVersion as e:
            raise MigrationError(f"Unrecognized schema version: {e}") from e

        if current > target:
            raise MigrationError(f"Data version {current_version} is newer than supported {self.target_version}")

        path = []
        version = current_version
        while Version(version) < target:
            step: Optional[Migration] = self.migrations.get(version)
            if step is None:
                raise MigrationError(f"No migration available from version {version}")
            path.append(step)
            version = step.VERSION
        return path

    def migrate(self, data: MigrationData) -> MigrationData:
        """Return ``data`` upgraded to the target version."""
        current_version = self.document_version(data)
        path = self.get_migration_path(current_version)
        if not path:
            log.debug(f"No migration needed from version {current_version}")
            return data

        data = dict(data)
        for step in path:
            log.info(f"Migrating from {step.FROM_VERSION} to {step.VERSION}...")
            try:
                data = step.upgrade(data)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                raise MigrationError(f"Migration {step.FROM_VERSION} -> {step.VERSION} failed: {e}") from e

        log.info(f"Successfully migrated data to version {self.target_version}")
        return data
