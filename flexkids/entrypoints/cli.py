from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Callable

from flexkids.bootstrap.container import AppContainer, build_container
from flexkids.bootstrap.logging import configure_logging, install_exception_hook
from flexkids.bootstrap.settings import resolve_log_dir
from flexkids.infrastructure import migrations

logger = logging.getLogger("flexkids.cli")

ContainerFactory = Callable[..., AppContainer]


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="flexkids", description="Caché local y sincronización de FlexKids")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("status", help="Muestra el estado de la cola de sincronización")
    subparsers.add_parser("sync", help="Drena la cola contra el almacén remoto")

    requeue = subparsers.add_parser("requeue", help="Reencola las entradas descartadas (dead-letter)")
    requeue.add_argument("entry_ids", nargs="*", help="Ids de entrada; sin ids se reencolan todas")

    subparsers.add_parser("clear-synced", help="Borra de la cola las entradas ya sincronizadas")

    migrate = subparsers.add_parser("migrate", help="Gestiona migraciones del Local Store")
    migrate.add_argument("migrate_args", nargs=argparse.REMAINDER)
    return parser


def _write(payload: dict[str, Any]) -> None:
    sys.stdout.write(json.dumps(payload, ensure_ascii=False, default=str) + "\n")


def _status(container: AppContainer) -> int:
    stats = container.local_store.sync_queue_stats()
    checks = container.local_store_probe.check()
    _write(
        {
            "db_path": str(container.settings.db_path),
            "pending": stats.pending,
            "synced": stats.synced,
            "dead_letter": stats.dead_letter,
            "pending_by_collection": stats.by_collection,
            "checks": {name: {"ok": ok, "message": message} for name, (ok, message, _action) in checks.items()},
            "dead_letters": [
                {"id": entry.id, "collection": entry.collection, "operation": entry.operation, "error": entry.last_error}
                for entry in container.local_store.get_dead_letters()
            ],
        }
    )
    return 0 if stats.dead_letter == 0 else 1


def _sync(container: AppContainer) -> int:
    summary = container.sync_engine.sync_all()
    _write(summary.to_dict())
    if summary.skipped:
        return 2
    return 1 if summary.has_failures else 0


def main(argv: list[str] | None = None, *, container_factory: ContainerFactory = build_container) -> int:
    args = _build_parser().parse_args(argv)
    if args.command == "migrate":
        return migrations.main(args.migrate_args or ["status"])

    log_dir = resolve_log_dir()
    configure_logging(log_dir, console=True)
    install_exception_hook(log_dir)

    # Solo `sync` necesita saber si hay red; el resto trabaja en local.
    initial_online = None if args.command == "sync" else False
    container = container_factory(initial_online=initial_online)
    try:
        if args.command == "status":
            return _status(container)
        if args.command == "sync":
            return _sync(container)
        if args.command == "requeue":
            requeued = container.sync_engine.requeue_dead_letters(args.entry_ids or None)
            _write({"requeued": requeued})
            return 0
        removed = container.sync_engine.clear_synced()
        _write({"removed": removed})
        return 0
    except Exception:
        logger.exception("Error interno ejecutando '%s'", args.command)
        return 3
    finally:
        container.shutdown()


if __name__ == "__main__":
    raise SystemExit(main())
