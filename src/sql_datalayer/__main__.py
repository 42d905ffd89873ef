"""Command line interface for the SQL data layer."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import IO, Optional

from .config import enrich_config, load_layer_config, load_settings
from .errors import ConfigurationError, LayerError
from .layer import DataLayer
from .model import EntityParser, write_entity_document

logger = logging.getLogger("sql_datalayer")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="PostgreSQL entity data layer")
    parser.add_argument(
        "--config",
        help="Layer config JSON (defaults to LAYER_CONFIG_PATH)",
        default=None,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("datasets", help="List configured datasets")

    changes_parser = subparsers.add_parser(
        "changes", help="Print changed entities as an entity document"
    )
    changes_parser.add_argument("dataset", help="Dataset name")
    changes_parser.add_argument(
        "--since", help="Continuation token from a previous read", default=""
    )
    changes_parser.add_argument(
        "--limit", type=int, default=0, help="Maximum number of entities (0 = all)"
    )

    write_parser = subparsers.add_parser(
        "write", help="Upsert entities from an entity document"
    )
    write_parser.add_argument("dataset", help="Dataset name")
    write_parser.add_argument(
        "--file", help="Entity document to read (defaults to stdin)", default=None
    )

    return parser


def _write(layer: DataLayer, name: str, stream: IO[str]) -> int:
    dataset = layer.dataset(name)
    written = 0

    with dataset.incremental() as writer:

        def _on_entity(entity) -> None:
            nonlocal written
            writer.write(entity)
            written += 1

        try:
            EntityParser().parse(stream, _on_entity)
        except ValueError as exc:
            raise ConfigurationError(f"invalid entity document: {exc}") from exc
    return written


def main(argv: Optional[list[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    settings = load_settings()
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=getattr(logging, settings.log_level, logging.INFO),
            format="%(asctime)s %(levelname)s %(name)s - %(message)s",
        )

    config_path = args.config or settings.layer_config_path
    if config_path is None:
        parser.error("no layer config given (use --config or LAYER_CONFIG_PATH)")

    try:
        config = enrich_config(load_layer_config(Path(config_path)))
        layer = DataLayer(config, settings)
    except LayerError as exc:
        logger.error("failed to start data layer: %s", exc)
        return 1

    try:
        if args.command == "datasets":
            for description in layer.dataset_descriptions():
                print(description.name)
            return 0

        if args.command == "changes":
            dataset = layer.dataset(args.dataset)
            with dataset.changes(args.since, args.limit) as changes:
                write_entity_document(sys.stdout, changes, changes.token(), changes.context())
            return 0

        if args.command == "write":
            if args.file:
                with open(args.file, encoding="utf-8") as handle:
                    written = _write(layer, args.dataset, handle)
            else:
                written = _write(layer, args.dataset, sys.stdin)
            print(f"Wrote {written} entities to {args.dataset}")
            return 0
    except LayerError as exc:
        logger.error("%s failed: %s", args.command, exc)
        return 1
    finally:
        layer.stop()

    parser.error("Unknown command")
    return 1


if __name__ == "__main__":
    sys.exit(main())
