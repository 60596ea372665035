"""
Command-line interface for the Node Banana workflow engine.

Usage:
    nodebanana validate my-workflow.json
    nodebanana order my-workflow.json
    nodebanana run my-workflow.json
    nodebanana run my-workflow.json --from universalGenerator-4 --write
    nodebanana run my-workflow.json --api-base http://localhost:3000
    nodebanana run my-workflow.json --save-locally
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from nodebanana.config import EngineConfig
from nodebanana.errors import GraphCycleError, PersistenceFailureError, RequestFailureError
from nodebanana.generation.catalog import ModelCatalog
from nodebanana.generation.client import HttpGenerationClient
from nodebanana.graph.resolver import resolve_order
from nodebanana.graph.store import GraphStore
from nodebanana.observability import configure_logging
from nodebanana.runtime.controller import RunController, RunStatus
from nodebanana.runtime.event_bus import EventBus, EventType, WorkflowEvent
from nodebanana.storage.generations import LocalGenerationStore
from nodebanana.storage.workflow_files import load_workflow_file
from nodebanana.utils.io import atomic_write

logger = logging.getLogger(__name__)


def _load_store(path: str, config: EngineConfig | None = None) -> GraphStore:
    defaults = config.generator_defaults if config else None
    store = GraphStore(generator_defaults=defaults)
    store.load_document(load_workflow_file(path))
    return store


def cmd_validate(args: argparse.Namespace) -> int:
    try:
        store = _load_store(args.file)
    except PersistenceFailureError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    report = store.validate()
    if report.valid:
        print(f"✓ {args.file} is valid ({len(store.nodes)} nodes, {len(store.edges)} edges)")
        return 0
    print(f"✗ {args.file} has {len(report.errors)} problem(s):")
    for error in report.errors:
        print(f"  • {error}")
    return 1


def cmd_order(args: argparse.Namespace) -> int:
    try:
        store = _load_store(args.file)
        order = resolve_order(store.nodes, store.edges)
    except (PersistenceFailureError, GraphCycleError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    for index, node in enumerate(order, start=1):
        pause = " ⏸" if any(edge.has_pause for edge in store.incoming_edges(node.id)) else ""
        print(f"{index:>3}. {node.id}{pause}")
    return 0


async def _run(args: argparse.Namespace) -> int:
    config = EngineConfig()
    if args.api_base:
        config.api_base = args.api_base.rstrip("/")
    if args.no_save_artifacts:
        config.generations_path = None

    try:
        store = _load_store(args.file, config)
    except PersistenceFailureError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    event_bus = EventBus()

    async def show_notification(event: WorkflowEvent) -> None:
        print(f"[{event.data.get('level', 'info')}] {event.data.get('message', '')}")

    event_bus.subscribe([EventType.NOTIFICATION], show_notification)

    async with HttpGenerationClient(config.api_base, timeout=config.request_timeout) as client:
        catalog = ModelCatalog(client)
        try:
            await catalog.refresh()
        except RequestFailureError as e:
            logger.warning(f"Model catalog unavailable, generator options will not be checked: {e}")

        backend = LocalGenerationStore(fetch_media=client.fetch_media) if args.save_locally else None
        controller = RunController.from_config(
            store,
            config=config,
            client=client,
            event_bus=event_bus,
            catalog=catalog,
            artifact_backend=backend,
        )
        try:
            # A file on disk keeps no record of the pause, so --from always resumes
            result = await controller.run(start_from=args.start_from, resume=args.start_from is not None)
        except GraphCycleError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        finally:
            saver = controller.executor.artifact_saver
            if saver is not None:
                await saver.drain()

    if args.write:
        with atomic_write(Path(args.file)) as f:
            f.write(json.dumps(store.to_document().to_wire(), indent=2))

    if result.status == RunStatus.COMPLETED:
        print(f"✓ Run complete: {' → '.join(result.path) or '(nothing to run)'}")
        return 0
    if result.status == RunStatus.PAUSED:
        print(f"⏸ Paused before {result.paused_at}. Resume with: --from {result.paused_at}")
        return 0
    if result.status == RunStatus.FAILED:
        print(f"✗ Failed at {result.failed_node}: {result.error}", file=sys.stderr)
        return 1
    print(f"Run ended: {result.status}", file=sys.stderr)
    return 1


def cmd_run(args: argparse.Namespace) -> int:
    return asyncio.run(_run(args))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nodebanana",
        description="Node Banana - run image generation workflows",
    )
    parser.add_argument("--log-level", default="WARNING", help="Logging level (default: WARNING)")
    parser.add_argument(
        "--log-format",
        default="auto",
        choices=["auto", "human", "json"],
        help="Log output format",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    validate_parser = subparsers.add_parser("validate", help="Check a workflow is wired well enough to run")
    validate_parser.add_argument("file", help="Workflow JSON file")
    validate_parser.set_defaults(func=cmd_validate)

    order_parser = subparsers.add_parser("order", help="Print the execution order")
    order_parser.add_argument("file", help="Workflow JSON file")
    order_parser.set_defaults(func=cmd_order)

    run_parser = subparsers.add_parser("run", help="Execute a workflow")
    run_parser.add_argument("file", help="Workflow JSON file")
    run_parser.add_argument(
        "--from",
        dest="start_from",
        default=None,
        help="Node id to resume at; a pause in front of it is passed",
    )
    run_parser.add_argument("--api-base", default=None, help="Generation service base URL")
    run_parser.add_argument("--write", action="store_true", help="Write results back into the workflow file")
    run_parser.add_argument(
        "--no-save-artifacts",
        action="store_true",
        help="Do not save generated artifacts to the generations folder",
    )
    run_parser.add_argument(
        "--save-locally",
        action="store_true",
        help="Write artifacts to the generations folder directly instead of through the service",
    )
    run_parser.set_defaults(func=cmd_run)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(level=args.log_level, format=args.log_format)
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
