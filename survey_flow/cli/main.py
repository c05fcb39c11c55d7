"""CLI: survey-flow serve, config validate, session show, walk."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from ..client import SurveyClient
from ..config import load_config, validate_config
from ..core.form_state import load_identity
from ..core.scheduler import LoopScheduler
from ..core.session import SurveySession
from ..core.snapshot import read_snapshot
from ..core.state_store import MemoryStateStore
from ..platform import Platform
from ..storage import open_state_store

WALK_ACTIONS = ("next", "back", "browser-back", "browser-forward", "consent", "reload")


def cmd_serve(args):
    """Start the HTTP relay server."""
    import uvicorn

    from ..server import create_app

    class _SuppressCancelled(logging.Filter):
        def filter(self, record: logging.LogRecord) -> bool:
            if record.exc_info and record.exc_info[0] is asyncio.CancelledError:
                return False
            return True

    class _SuppressPollAccess(logging.Filter):
        """Hide the once-a-second POST /getactivities access logs."""
        def filter(self, record: logging.LogRecord) -> bool:
            msg = record.getMessage()
            return not ("POST /getactivities" in msg and "200" in msg)

    logging.getLogger("uvicorn.error").addFilter(_SuppressCancelled())
    logging.getLogger("uvicorn.access").addFilter(_SuppressPollAccess())

    config = load_config(config_path=args.config)
    host = args.host or config.server.host
    port = args.port or config.server.port
    app = create_app(config=config)
    print(f"survey-flow relay on {host}:{port} -> {config.relay.direct_line_base}")
    uvicorn.run(app, host=host, port=port, log_level="info", timeout_graceful_shutdown=2)


def cmd_config_validate(args):
    """Validate config file."""
    try:
        config = load_config(args.config)
    except Exception as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    errors = validate_config(config)
    if errors:
        print("Config validation errors:")
        for err in errors:
            print(f"  - {err}")
        sys.exit(1)
    else:
        print("Config is valid.")
        print(f"  Steps: {config.survey.total_steps} (agent at {config.survey.agent_step})")
        print(f"  Question sets: {len(config.survey.question_sets)}")
        print(f"  Submit attempts: {config.transport.submit_attempts}")
        print(f"  Storage: {config.storage.backend}")


def cmd_session_show(args):
    """Print the persisted navigation snapshot of one session."""
    config = load_config(args.config)
    if config.storage.backend == "memory":
        print("The memory backend keeps no sessions between runs.", file=sys.stderr)
        sys.exit(1)
    store = open_state_store(config.storage, args.session_id)
    if not store.keys():
        print(f"No stored state for session {args.session_id}.")
        return

    snapshot = read_snapshot(store, config.survey.total_steps)
    identity = load_identity(store)
    output = {
        "session": args.session_id,
        "currentStep": snapshot.current_step,
        "history": [entry.step for entry in snapshot.history],
        "scrollPositions": {str(k): v for k, v in sorted(snapshot.scroll_positions.items())},
        "agentSessionStarted": snapshot.agent_session_started,
        "participantId": identity.participant_id if identity else None,
        "treatmentGroup": identity.treatment_group if identity else None,
    }
    print(json.dumps(output, indent=2))


async def _walk(config, store, actions: list[str], client=None) -> list[int]:
    scheduler = LoopScheduler(frame_interval=config.scroll.frame_interval_s)
    platform = Platform.simulated(scheduler)
    session = SurveySession(config, platform, store, client=client)
    await session.initialize()
    total = config.survey.total_steps
    print(f"{'start':>16} -> step {session.current}/{total}")

    visited = [session.current]
    for action in actions:
        if action == "next":
            session.next()
        elif action == "back":
            session.back()
        elif action == "browser-back":
            platform.history.back()
        elif action == "browser-forward":
            platform.history.forward()
        elif action == "consent":
            session.set_consent(True)
        elif action == "reload":
            session.before_unload()
            platform.history.reload()
            session = SurveySession(config, platform, store, client=client)
            await session.initialize()
        history = [entry.step for entry in session.shadow.entries]
        print(f"{action:>16} -> step {session.current}/{total}  history={history}")
        visited.append(session.current)

    session.scroll.cancel_pending()
    return visited


async def _walk_with_server(config, store, actions: list[str], client: SurveyClient) -> list[int]:
    try:
        return await _walk(config, store, actions, client=client)
    finally:
        await client.aclose()


def cmd_walk(args):
    """Drive a headless session through a list of navigation actions."""
    config = load_config(args.config)
    unknown = [a for a in args.actions if a not in WALK_ACTIONS]
    if unknown:
        print(f"Unknown actions: {', '.join(unknown)} (choose from {', '.join(WALK_ACTIONS)})", file=sys.stderr)
        sys.exit(1)
    if args.session:
        store = open_state_store(config.storage, args.session)
    else:
        store = MemoryStateStore()
    if args.server:
        # Identity comes from the relay server at server.base_url.
        asyncio.run(_walk_with_server(config, store, args.actions, SurveyClient.from_config(config)))
    else:
        asyncio.run(_walk(config, store, args.actions))


def main(argv: list[str] | None = None):
    parser = argparse.ArgumentParser(
        prog="survey-flow",
        description="Multi-step questionnaire navigation with an embedded conversational agent",
    )
    parser.add_argument("--config", "-c", help="Path to config file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Start the HTTP relay server")
    serve_parser.add_argument("--port", "-p", type=int, default=None)
    serve_parser.add_argument("--host", default=None)

    # config validate
    config_parser = subparsers.add_parser("config", help="Config operations")
    config_sub = config_parser.add_subparsers(dest="config_command")
    config_sub.add_parser("validate", help="Validate config file")

    # session show
    session_parser = subparsers.add_parser("session", help="Inspect persisted sessions")
    session_sub = session_parser.add_subparsers(dest="session_command")
    show_parser = session_sub.add_parser("show", help="Show a session's navigation snapshot")
    show_parser.add_argument("session_id", help="Session id")

    # walk
    walk_parser = subparsers.add_parser("walk", help="Simulate navigation on a headless session")
    walk_parser.add_argument("actions", nargs="+", help=f"Actions: {', '.join(WALK_ACTIONS)}")
    walk_parser.add_argument("--session", "-s", help="Persist to this session id in the configured store")
    walk_parser.add_argument("--server", action="store_true", help="Fetch participant identity from the configured relay server")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "serve":
        cmd_serve(args)
    elif args.command == "walk":
        cmd_walk(args)
    elif args.command == "session":
        if args.session_command == "show":
            cmd_session_show(args)
        else:
            print("Usage: survey-flow session show <session-id>")
            sys.exit(1)
    elif args.command == "config":
        if args.config_command == "validate":
            cmd_config_validate(args)
        else:
            print("Usage: survey-flow config validate")
            sys.exit(1)


if __name__ == "__main__":
    main()
