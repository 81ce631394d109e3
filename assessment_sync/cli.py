# Command-line entry point for the admin server and the candidate sync tools
# assessment_sync/cli.py
import argparse
import asyncio
import json
import sys

from assessment_sync.utils.config import settings
from assessment_sync.utils.logger import logger, configure_logger


def _print_json(data):
    print(json.dumps(data, indent=2, default=str))


async def _with_controller(action):
    from assessment_sync.candidate.controller import SyncController
    from assessment_sync.candidate.store import CandidateStore

    store = CandidateStore()
    await store.init_schema()
    try:
        return await action(SyncController(store))
    finally:
        await store.close()


async def _create_event(name: str, description: str | None):
    from assessment_sync.services.events import create_event
    from assessment_sync.utils.db import engine, AsyncSessionLocal, create_tables

    await create_tables()
    try:
        async with AsyncSessionLocal() as session:
            event = await create_event(session, name, description)
            return {"id": event.id, "event_name": event.event_name, "event_code": event.event_code}
    finally:
        await engine.dispose()


async def _run_worker(controller):
    controller.start_worker()
    try:
        await asyncio.Event().wait()
    finally:
        await controller.stop_worker()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="assessment-sync", description="Assessment result sync: admin server and candidate tools.")
    parser.add_argument("--log-level", type=str, default=None, help="Override LOG_LEVEL for this run.")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the admin ingestion API.")
    serve.add_argument("--host", type=str, default=settings.api_host)
    serve.add_argument("--port", type=int, default=settings.api_port)

    create = sub.add_parser("create-event", help="Create an event and print its access code.")
    create.add_argument("name", type=str)
    create.add_argument("--description", type=str, default=None)

    set_server = sub.add_parser("set-server", help="Set and persist this device's admin server URL.")
    set_server.add_argument("url", type=str)

    sub.add_parser("test-connection", help="Probe the configured admin server.")
    sub.add_parser("sync-once", help="Run a single sync cycle now.")
    sub.add_parser("worker", help="Run the sync worker until interrupted.")
    sub.add_parser("status", help="Show sync queue status.")
    sub.add_parser("dead-letter", help="List queue items that exhausted their retries.")

    requeue = sub.add_parser("requeue", help="Give a dead queue item a fresh retry budget.")
    requeue.add_argument("queue_id", type=int)
    return parser


def _dispatch(args) -> int:
    if args.command == "serve":
        import uvicorn
        uvicorn.run("assessment_sync.main:app", host=args.host, port=args.port)
        return 0

    if args.command == "create-event":
        _print_json(asyncio.run(_create_event(args.name, args.description)))
        return 0

    if args.command == "set-server":
        async def action(controller):
            url = controller.set_server_url(args.url)
            return url, await controller.test_server_connection()
        url, reachable = asyncio.run(_with_controller(action))
        print(f"Server URL set to: {url} ({'reachable' if reachable else 'NOT reachable'})")
        return 0

    if args.command == "test-connection":
        reachable = asyncio.run(_with_controller(lambda c: c.test_server_connection()))
        print("Connected" if reachable else "Connection failed")
        return 0 if reachable else 1

    if args.command == "sync-once":
        report = asyncio.run(_with_controller(lambda c: c.sync_now()))
        _print_json(report.model_dump())
        return 0

    if args.command == "worker":
        try:
            asyncio.run(_with_controller(_run_worker))
        except KeyboardInterrupt:
            logger.info("Interrupted; sync worker shut down.")
        return 0

    if args.command == "status":
        _print_json(asyncio.run(_with_controller(lambda c: c.queue_status())))
        return 0

    if args.command == "dead-letter":
        _print_json(asyncio.run(_with_controller(lambda c: c.dead_items())))
        return 0

    if args.command == "requeue":
        requeued = asyncio.run(_with_controller(lambda c: c.requeue(args.queue_id)))
        print(f"Item {args.queue_id} re-enqueued" if requeued else f"Item {args.queue_id} is not a dead item")
        return 0 if requeued else 1

    return 1


def main(argv=None) -> int:
    from assessment_sync.candidate.controller import ServerUrlNotConfigured

    args = build_parser().parse_args(argv)
    if args.log_level:
        configure_logger(level=args.log_level)
    try:
        return _dispatch(args)
    except ServerUrlNotConfigured:
        print("No server URL configured. Run `assessment-sync set-server URL` first.", file=sys.stderr)
        return 2
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
