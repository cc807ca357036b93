"""buildrelay CLI entry point."""

from __future__ import annotations

import argparse
import asyncio
import getpass
import logging
import os
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import aiosqlite
from dotenv import load_dotenv

from buildrelay.config import RelayConfig, load_config
from buildrelay.errors import RelayError, TriggerError
from buildrelay.models import BuildStatus, User
from buildrelay.scm import GitHubScm
from buildrelay.secrets import TokenSealer
from buildrelay.store import EntityRegistry
from buildrelay.triggers import BuildCompletionHandler, DownstreamTrigger, TriggerOrchestrator


@asynccontextmanager
async def _open_registry(config: RelayConfig) -> AsyncIterator[EntityRegistry]:
    async with aiosqlite.connect(config.database_path) as db:
        db.row_factory = aiosqlite.Row
        await db.execute("PRAGMA foreign_keys=ON")
        registry = EntityRegistry(db)
        await registry.initialize()
        yield registry


async def _init_db(config: RelayConfig) -> None:
    async with _open_registry(config):
        pass
    print(f"Initialized database at {config.database_path}")


async def _add_user(config: RelayConfig, username: str, scm_context: str) -> None:
    token = os.environ.get("BUILDRELAY_USER_TOKEN") or getpass.getpass("SCM token: ")
    sealer = TokenSealer.from_env(config.secrets.key_env)
    async with _open_registry(config) as registry:
        user = await registry.create_user(
            User(username=username, scm_context=scm_context, token=sealer.seal(token))
        )
    print(f"Stored token for {user.username} ({user.scm_context})")


async def _complete(config: RelayConfig, build_id: int, status: BuildStatus) -> None:
    sealer = TokenSealer.from_env(config.secrets.key_env)
    async with _open_registry(config) as registry, GitHubScm(
        api_url=config.scm.api_url,
        timeout=config.scm.timeout,
        user_agent=config.scm.user_agent,
    ) as scm:
        handler = BuildCompletionHandler(
            registry,
            TriggerOrchestrator(registry),
            DownstreamTrigger(registry, scm, sealer),
        )
        result = await handler.handle(build_id, status)

    started = [b for b in result.builds if b is not None]
    print(f"Build {build_id} -> {status.value}")
    for build in started:
        print(f"  started build {build.id} (job {build.job_id})")
    for event in result.events:
        print(f"  triggered event {event.id} in pipeline {event.pipeline_id}")


async def _trigger_event(
    config: RelayConfig, pipeline_id: int, start_from: str, cause: str
) -> None:
    sealer = TokenSealer.from_env(config.secrets.key_env)
    async with _open_registry(config) as registry, GitHubScm(
        api_url=config.scm.api_url,
        timeout=config.scm.timeout,
        user_agent=config.scm.user_agent,
    ) as scm:
        event = await DownstreamTrigger(registry, scm, sealer).trigger_event(
            pipeline_id, start_from, cause
        )
    print(f"Created event {event.id} in pipeline {pipeline_id} (sha {event.sha})")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="buildrelay",
        description="buildrelay — trigger-and-join decision engine for CI pipelines",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to a YAML config file (default: built-in defaults)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("init-db", help="Create the entity database tables")
    subparsers.add_parser("gen-key", help="Print a new token encryption key")

    user_parser = subparsers.add_parser("add-user", help="Store a sealed SCM token for a user")
    user_parser.add_argument("--username", required=True)
    user_parser.add_argument("--scm-context", required=True, help="e.g. github:github.com")

    complete_parser = subparsers.add_parser(
        "complete", help="Record a build's final status and trigger its successors"
    )
    complete_parser.add_argument("--build-id", type=int, required=True)
    complete_parser.add_argument(
        "--status",
        default=BuildStatus.SUCCESS.value,
        choices=[s.value for s in BuildStatus],
        help="Final build status (default: SUCCESS)",
    )

    event_parser = subparsers.add_parser(
        "trigger-event", help="Start a new event in another pipeline"
    )
    event_parser.add_argument("--pipeline-id", type=int, required=True)
    event_parser.add_argument("--start-from", required=True, help="Job to start from")
    event_parser.add_argument("--cause", default="Triggered manually", help="Cause message")

    return parser


def main(argv: list[str] | None = None) -> None:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    if args.command == "gen-key":
        print(TokenSealer.generate_key())
        return

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        config = load_config(args.config)
        if args.command == "init-db":
            asyncio.run(_init_db(config))
        elif args.command == "add-user":
            asyncio.run(_add_user(config, args.username, args.scm_context))
        elif args.command == "complete":
            asyncio.run(_complete(config, args.build_id, BuildStatus(args.status)))
        elif args.command == "trigger-event":
            asyncio.run(_trigger_event(config, args.pipeline_id, args.start_from, args.cause))
    except TriggerError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(2)
    except (RelayError, FileNotFoundError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
