#!/usr/bin/env python3
"""
JSON Schema Generator Script

Writes the JSON Schemas of the persisted focustm documents (the ones marked
with ``_schema_scope``) to ``schemas/v<version>/``.
"""

import argparse
import inspect
import json
from pathlib import Path

from pydantic import BaseModel

from focustm import models
from focustm.data.validate import document_schema
from focustm.version import APP_SCHEMA_VERSION


class SchemaGenerator:
    def __init__(self, base_version=None, schemas_dir="schemas"):
        self.base_version = base_version or APP_SCHEMA_VERSION
        self.schemas_dir = Path(schemas_dir)

    def find_schema_classes(self, models_module=models):
        """Find all Pydantic models marked with _schema_scope."""
        schema_classes = []
        for _, member in inspect.getmembers(models_module, inspect.isclass):
            if getattr(member, '__module__', None) != models_module.__name__:
                continue
            if issubclass(member, BaseModel) and '_schema_scope' in member.__private_attributes__:
                schema_classes.append(member)
        return schema_classes

    @staticmethod
    def schema_filename(cls):
        attrs = cls.__private_attributes__
        return f"{attrs['_schema_scope'].default}_{attrs['_schema_filename'].default}.schema.json"

    def generate_schemas(self, version=None):
        """Generate every document schema. Returns the written paths."""
        version_dir = self.schemas_dir / f"v{version or self.base_version}"
        version_dir.mkdir(parents=True, exist_ok=True)

        written = []
        for cls in self.find_schema_classes():
            schema_path = version_dir / self.schema_filename(cls)
            with open(schema_path, "w", encoding="utf-8") as f:
                json.dump(document_schema(cls), f, indent=2, ensure_ascii=False)
            print(f"Generated: {schema_path}")
            written.append(schema_path)

        print(f"Schema generation complete! Files saved to {version_dir}")
        return written


def main():
    parser = argparse.ArgumentParser(description="Generate JSON schemas from Pydantic models")
    parser.add_argument("--version", "-v", help="Schema version (default: APP_SCHEMA_VERSION from version.py)")
    parser.add_argument("--output", "-o", default="schemas", help="Output directory")
    args = parser.parse_args()

    generator = SchemaGenerator(args.version, args.output)
    print(f"Generating schemas with version: {generator.base_version}")

    try:
        generator.generate_schemas()
    except OSError as e:
        print(f"Error: {e}")
        return 1

    if generator.base_version != APP_SCHEMA_VERSION:
        print(f"\n⚠️  IMPORTANT: If this is a new schema version, remember to update")
        print(f"   APP_SCHEMA_VERSION in src/focustm/version.py to '{generator.base_version}'")
        print(f"   and add a migration to src/focustm/migration.py")
    return 0


if __name__ == "__main__":
    exit(main())
