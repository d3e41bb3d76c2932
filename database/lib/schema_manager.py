"""Versioned schema management for the marketplace database.

Schema versions live in `database/schema/vN.py` as plain dictionaries. A fresh
database is created directly at the latest version; an existing one is
brought forward by running each newer version's `migrations` statements.
The DDL builders are static so schema definitions can be checked without a
database.
"""
import importlib
import logging
from pathlib import Path
from typing import Dict, Any, List

from ..exceptions import DatabaseSchemaError

logger = logging.getLogger(__name__)

SCHEMA_DIR = Path(__file__).resolve().parent.parent / 'schema'

class SchemaManager:
    """Creates and migrates the marketplace tables."""

    def __init__(self, pool, schema_dir: Path = SCHEMA_DIR) -> None:
        """Initialize schema manager.

        Args:
            pool: Database connection pool
            schema_dir: Directory containing schema version files
        """
        self.pool = pool
        self._schema_dir = Path(schema_dir)
        self.current_version = 0
        self._schema_files = {}

    async def initialize(self) -> None:
        """Bring the database up to the latest schema version.

        Raises:
            DatabaseSchemaError: If no schema files exist or a migration fails
        """
        try:
            async with self.pool.acquire() as conn:
                await conn.execute('''
                    CREATE TABLE IF NOT EXISTS schema_version (
                        version INT8 PRIMARY KEY,
                        applied_at TIMESTAMPTZ NOT NULL DEFAULT now()
                    )
                ''')
                self.current_version = await conn.fetchval(
                    'SELECT COALESCE(MAX(version), 0) FROM schema_version'
                )

            schema_files = self.load_schema_files()
            if not schema_files:
                raise DatabaseSchemaError(f"No schema files found in {self._schema_dir}")

            await self._upgrade(schema_files)

        except DatabaseSchemaError as e:
            logger.error(str(e))
            raise
        except Exception as e:
            logger.error(f"Schema initialization failed: {e}")
            raise DatabaseSchemaError(f"Failed to initialize schema: {e}")

    def load_schema_files(self) -> Dict[int, Dict[str, Any]]:
        """Import every `vN.py` schema module.

        Returns:
            Dict mapping version numbers to schema definitions, sorted by version

        Raises:
            DatabaseSchemaError: If a schema file is malformed
        """
        schema_files = {}

        for file in sorted(self._schema_dir.glob('v*.py')):
            if not file.stem[1:].isdigit():
                logger.warning(f"Ignoring schema file with invalid name: {file.name}")
                continue
            version = int(file.stem[1:])

            module = importlib.import_module(f"database.schema.{file.stem}")
            schema = getattr(module, 'schema', None)
            if schema is None:
                raise DatabaseSchemaError(f"{file.name} has no 'schema' definition")
            if schema['version'] != version:
                raise DatabaseSchemaError(
                    f"{file.name} declares version {schema['version']}, expected {version}"
                )
            schema_files[version] = schema

        self._schema_files = dict(sorted(schema_files.items()))
        return self._schema_files

    async def _upgrade(self, schema_files: Dict[int, Dict[str, Any]]) -> None:
        latest_version = max(schema_files)
        if self.current_version >= latest_version:
            logger.info(f"Schema is up to date (version {self.current_version})")
            return

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                if self.current_version == 0:
                    await self._create_fresh_schema(conn, schema_files[latest_version])
                    return

                for version in range(self.current_version + 1, latest_version + 1):
                    if version not in schema_files:
                        continue
                    for statement in schema_files[version].get('migrations', []):
                        await conn.execute(statement)
                    await conn.execute(
                        'INSERT INTO schema_version (version) VALUES ($1)',
                        version
                    )
                    logger.info(f"Migrated schema to version {version}")

        self.current_version = latest_version

    async def _create_fresh_schema(self, conn, schema: Dict[str, Any]) -> None:
        """Create every table, constraint and trigger of `schema`.

        Only tables named in the schema are dropped first, so unrelated
        tables sharing the database are left alone.
        """
        tables = schema.get('tables', [])

        for table in reversed(tables):
            await conn.execute(f'DROP TABLE IF EXISTS {table["name"]} CASCADE')

        # Tables first so foreign keys can reference any of them
        for table in tables:
            await conn.execute(self.table_ddl(table))
            logger.info(f"Created table {table['name']}")

        for table in tables:
            for fk in table.get('foreign_keys', []):
                await conn.execute(self.foreign_key_ddl(table['name'], fk))
            for index in table.get('indexes', []):
                await conn.execute(self.index_ddl(table['name'], index))

        for trigger in schema.get('triggers', []):
            for statement in self.trigger_ddl(trigger):
                await conn.execute(statement)

        await conn.execute(
            'INSERT INTO schema_version (version) VALUES ($1)',
            schema['version']
        )
        self.current_version = schema['version']
        logger.info(f"Created schema version {schema['version']} ({len(tables)} tables)")

    @staticmethod
    def table_ddl(table: Dict[str, Any]) -> str:
        """Build the CREATE TABLE statement for a table definition.

        Column keys: name, type, and optionally primary_key, unique, default,
        nullable (False adds NOT NULL) and check. Table keys primary_key (a
        list, for composite keys) and unique (list of column lists) add
        table-level constraints.
        """
        columns = []
        constraints = []

        for col in table['columns']:
            parts = [col['name'], col['type']]
            if 'default' in col:
                parts.append(f"DEFAULT {col['default']}")
            if col.get('nullable') is False:
                parts.append('NOT NULL')
            if 'check' in col:
                parts.append(f"CHECK ({col['check']})")
            columns.append(' '.join(parts))

            if col.get('primary_key'):
                constraints.append(f"PRIMARY KEY ({col['name']})")
            elif col.get('unique'):
                constraints.append(f"UNIQUE ({col['name']})")

        if isinstance(table.get('primary_key'), list):
            constraints.append(f"PRIMARY KEY ({', '.join(table['primary_key'])})")

        for unique in table.get('unique', []):
            constraints.append(f"UNIQUE ({', '.join(unique)})")

        return f"CREATE TABLE {table['name']} ({', '.join(columns + constraints)})"

    @staticmethod
    def foreign_key_ddl(table_name: str, fk: Dict[str, Any]) -> str:
        """Build an ALTER TABLE statement adding a foreign key."""
        on_delete = f" ON DELETE {fk['on_delete']}" if 'on_delete' in fk else ''
        return (
            f"ALTER TABLE {table_name} "
            f"ADD CONSTRAINT fk_{table_name}_{fk['columns'][0]} "
            f"FOREIGN KEY ({', '.join(fk['columns'])}) "
            f"REFERENCES {fk['references']}{on_delete}"
        )

    @staticmethod
    def index_ddl(table_name: str, index: Dict[str, Any]) -> str:
        """Build a CREATE INDEX statement; `where` makes it a partial index."""
        unique = 'UNIQUE ' if index.get('unique') else ''
        where = f" WHERE {index['where']}" if 'where' in index else ''
        return (
            f"CREATE {unique}INDEX {index['name']} "
            f"ON {table_name} ({', '.join(index['columns'])}){where}"
        )

    @staticmethod
    def trigger_ddl(trigger: Dict[str, Any]) -> List[str]:
        """Build the function and trigger statements for a row trigger."""
        return [
            f"CREATE OR REPLACE FUNCTION {trigger['function_name']}() "
            f"RETURNS TRIGGER AS $${trigger['function_body']}$$ LANGUAGE plpgsql",
            f"CREATE TRIGGER {trigger['name']} "
            f"{trigger['timing']} {trigger['event']} ON {trigger['table']} "
            f"FOR EACH ROW EXECUTE FUNCTION {trigger['function_name']}()"
        ]
