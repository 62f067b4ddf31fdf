from __future__ import annotations

import argparse
import hashlib
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from flexkids.bootstrap.logging import configure_logging
from flexkids.bootstrap.settings import load_sync_settings, resolve_log_dir

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parents[1] / "migrations"


@dataclass(frozen=True)
class MigrationDefinition:
    version: int
    name: str
    up_sql: Path
    down_sql: Path


class MigrationRunner:
    """Aplica las migraciones SQL del Local Store en orden de versión.

    `PRAGMA user_version` refleja siempre la última versión aplicada. Un
    fichero creado por una versión más nueva de la aplicación (user_version
    mayor que la última migración conocida) se abre tal cual: las tablas y
    columnas extra no molestan a este código.
    """

    def __init__(self, connection: sqlite3.Connection, migrations_dir: Path | None = None) -> None:
        self.connection = connection
        self.connection.row_factory = sqlite3.Row
        self.migrations_dir = migrations_dir or MIGRATIONS_DIR
        self.migrations = self._discover_migrations()

    @property
    def latest_version(self) -> int:
        return self.migrations[-1].version if self.migrations else 0

    def current_version(self) -> int:
        return int(self.connection.execute("PRAGMA user_version").fetchone()[0])

    def apply_all(self) -> list[int]:
        self._ensure_history_table()
        current = self.current_version()
        if current > self.latest_version:
            logger.warning(
                "Local Store en versión %s, más nueva que la conocida (%s); se abre sin migrar",
                current,
                self.latest_version,
            )
            return []
        applied_versions = self._applied_versions()
        applied_now: list[int] = []
        for migration in self.migrations:
            if migration.version in applied_versions or migration.version <= current:
                continue
            self._apply_migration(migration)
            applied_now.append(migration.version)
        if applied_now:
            logger.info("Migraciones aplicadas: %s", applied_now)
        return applied_now

    def rollback(self, steps: int = 1) -> list[int]:
        self._ensure_history_table()
        cursor = self.connection.cursor()
        cursor.execute("SELECT version FROM schema_migrations ORDER BY version DESC LIMIT ?", (steps,))
        versions_to_rollback = [row["version"] for row in cursor.fetchall()]
        version_map = {migration.version: migration for migration in self.migrations}
        rolled_back: list[int] = []
        for version in versions_to_rollback:
            self._rollback_migration(version_map[version])
            rolled_back.append(version)
        return rolled_back

    def status(self) -> list[dict[str, object]]:
        self._ensure_history_table()
        applied_versions = self._applied_versions()
        return [
            {
                "version": migration.version,
                "name": migration.name,
                "applied": migration.version in applied_versions,
            }
            for migration in self.migrations
        ]

    def _ensure_history_table(self) -> None:
        self.connection.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
                version INTEGER PRIMARY KEY,
                name TEXT NOT NULL,
                checksum TEXT NOT NULL,
                applied_at TEXT NOT NULL
            )
            """
        )
        self.connection.commit()

    def _applied_versions(self) -> set[int]:
        cursor = self.connection.execute("SELECT version FROM schema_migrations")
        return {row["version"] for row in cursor.fetchall()}

    def _apply_migration(self, migration: MigrationDefinition) -> None:
        sql_script = migration.up_sql.read_text(encoding="utf-8")
        checksum = hashlib.sha256(sql_script.encode("utf-8")).hexdigest()
        with self.connection:
            if sql_script.strip():
                self.connection.executescript(sql_script)
            self.connection.execute(
                """
                INSERT INTO schema_migrations (version, name, checksum, applied_at)
                VALUES (?, ?, ?, ?)
                """,
                (
                    migration.version,
                    migration.name,
                    checksum,
                    datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
                ),
            )
            self.connection.execute(f"PRAGMA user_version = {migration.version}")

    def _rollback_migration(self, migration: MigrationDefinition) -> None:
        sql_script = migration.down_sql.read_text(encoding="utf-8")
        with self.connection:
            if sql_script.strip():
                self.connection.executescript(sql_script)
            self.connection.execute("DELETE FROM schema_migrations WHERE version = ?", (migration.version,))
            previous = self.connection.execute(
                "SELECT COALESCE(MAX(version), 0) AS version FROM schema_migrations"
            ).fetchone()["version"]
            self.connection.execute(f"PRAGMA user_version = {previous}")

    def _discover_migrations(self) -> list[MigrationDefinition]:
        definitions: list[MigrationDefinition] = []
        for up_file in sorted(self.migrations_dir.glob("*.up.sql")):
            stem = up_file.name[:-7]
            version_text, name = stem.split("_", maxsplit=1)
            down_file = self.migrations_dir / f"{stem}.down.sql"
            if not down_file.exists():
                raise FileNotFoundError(f"Missing down migration for {up_file.name}: {down_file}")
            definitions.append(
                MigrationDefinition(version=int(version_text), name=name, up_sql=up_file, down_sql=down_file)
            )
        return definitions


def run_migrations(connection: sqlite3.Connection) -> list[int]:
    return MigrationRunner(connection).apply_all()


def build_cli() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Gestiona migraciones del Local Store")
    parser.add_argument("command", choices=["up", "down", "status"], help="Operación a ejecutar")
    parser.add_argument("--db", default=None, help="Ruta al archivo SQLite")
    parser.add_argument("--steps", type=int, default=1, help="Número de migraciones a revertir")
    return parser


def main(argv: list[str] | None = None) -> int:
    configure_logging(resolve_log_dir())
    args = build_cli().parse_args(argv)

    db_path = Path(args.db) if args.db else load_sync_settings().db_path
    db_path.parent.mkdir(parents=True, exist_ok=True)

    connection = sqlite3.connect(db_path)
    connection.row_factory = sqlite3.Row
    runner = MigrationRunner(connection)
    try:
        if args.command == "up":
            applied = runner.apply_all()
            logger.info("Migraciones aplicadas", extra={"extra": {"command": "up", "versions": applied}})
        elif args.command == "down":
            rolled_back = runner.rollback(args.steps)
            logger.info("Migraciones revertidas", extra={"extra": {"command": "down", "count": len(rolled_back)}})
        else:
            for item in runner.status():
                marker = "[x]" if item["applied"] else "[ ]"
                logger.info("Estado de migración %s %04d %s", marker, item["version"], item["name"])
    finally:
        connection.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
