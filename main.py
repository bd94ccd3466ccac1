"""Command-line interface for the Gitpod workspace-service client."""

from __future__ import annotations
import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Awaitable, Callable, Sequence

import anyio

from gitpod_client.config import ClientSettings, ConfigurationError, load_settings, normalise_host
from gitpod_client.models import GetWorkspacesOptions, SendHeartBeatOptions, WorkspaceInfo
from gitpod_client.protocol import ResponseError
from gitpod_client.server import GitpodServer, GitpodServerClient
from gitpod_client.service import ConnectionService
from gitpod_client.workspaces import ALL_WORKSPACES, WorkspaceTracker, connection_state

logger = logging.getLogger("gitpod.main")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2

Command = Callable[[GitpodServer, argparse.Namespace], Awaitable[None]]


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Gitpod workspace-service client")
    parser.add_argument("--host", default=None, help="Gitpod host (default: gitpod.io or GITPOD_HOST)")
    parser.add_argument("--token", default=None, help="Access token (default: GITPOD_TOKEN)")
    parser.add_argument("--config", default=None, help="Path to a YAML settings file")
    parser.add_argument("--timeout", type=float, default=None, help="Per-request timeout in seconds")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command")
    parser.set_defaults(command="whoami")

    subparsers.add_parser("whoami", help="Show the logged-in user")

    list_parser = subparsers.add_parser("workspaces", help="List workspaces")
    list_parser.add_argument("--search", default=None, help="Only list workspaces matching this text")
    list_parser.add_argument("--limit", type=int, default=None, help="Maximum number of workspaces")
    list_parser.add_argument("--pinned-only", action="store_true", help="Only list pinned workspaces")

    show_parser = subparsers.add_parser("workspace", help="Show one workspace")
    show_parser.add_argument("workspace_id")

    owner_parser = subparsers.add_parser("owner-token", help="Print the owner token of a workspace")
    owner_parser.add_argument("workspace_id")

    scopes_parser = subparsers.add_parser("token-scopes", help="List the scopes of a token")
    scopes_parser.add_argument("token_hash", help="SHA-256 hex digest of the token")

    heartbeat_parser = subparsers.add_parser("heartbeat", help="Send a heartbeat for an instance")
    heartbeat_parser.add_argument("instance_id")
    heartbeat_parser.add_argument("--closed", action="store_true", help="Report the IDE as closed")
    heartbeat_parser.add_argument("--rtt", type=float, default=None, help="Round-trip time in milliseconds")

    watch_parser = subparsers.add_parser("watch", help="Follow workspace status changes")
    watch_parser.add_argument("workspace_id", nargs="?", default=ALL_WORKSPACES)

    return parser.parse_args(list(argv) if argv is not None else sys.argv[1:])


def _resolve_settings(args: argparse.Namespace) -> ClientSettings:
    config_path = Path(args.config).expanduser() if args.config else None
    settings = load_settings(config_path)
    overrides = {
        "host": normalise_host(args.host) if args.host else None,
        "token": args.token,
        "timeout": args.timeout,
    }
    return ClientSettings.from_dict(overrides, settings)


def _format_workspace(info: WorkspaceInfo) -> str:
    state = connection_state(info)
    label = state.value if state is not None else "never started"
    context = info.workspace.context.normalized_context_url or info.workspace.context_url
    return f"{info.workspace.id:<36}  {label:<14}  {context}"


async def _whoami(server: GitpodServer, args: argparse.Namespace) -> None:
    user = await server.get_logged_in_user()
    print(f"{user.display_name} ({user.id})")
    email = user.primary_email
    if email:
        print(f"Email: {email}")
    for identity in user.identities:
        print(f"- {identity.auth_provider_id}: {identity.auth_name}")


async def _workspaces(server: GitpodServer, args: argparse.Namespace) -> None:
    options = GetWorkspacesOptions(
        search_string=args.search,
        limit=args.limit,
        pinned_only=True if args.pinned_only else None,
    )
    infos = await server.get_workspaces(options)
    if not infos:
        print("No workspaces found.")
        return

    print(f"{len(infos)} workspace(s) found:")
    print(f"{'ID':<36}  {'State':<14}  Context")
    print("-" * 80)
    for info in infos:
        print(_format_workspace(info))


async def _workspace(server: GitpodServer, args: argparse.Namespace) -> None:
    info = await server.get_workspace(args.workspace_id)
    print(_format_workspace(info))
    if info.workspace.description:
        print(f"Description: {info.workspace.description}")
    instance = info.latest_instance
    if instance is not None:
        print(f"Instance: {instance.id} ({instance.phase})")
        if instance.ide_url:
            print(f"IDE: {instance.ide_url}")


async def _owner_token(server: GitpodServer, args: argparse.Namespace) -> None:
    print(await server.get_owner_token(args.workspace_id))


async def _token_scopes(server: GitpodServer, args: argparse.Namespace) -> None:
    scopes = await server.get_gitpod_token_scopes(args.token_hash)
    if not scopes:
        print("Token has no scopes.")
        return
    for scope in scopes:
        print(scope)


async def _heartbeat(server: GitpodServer, args: argparse.Namespace) -> None:
    options = SendHeartBeatOptions(
        instance_id=args.instance_id,
        was_closed=True if args.closed else None,
        round_trip_time=args.rtt,
    )
    await server.send_heart_beat(options)
    print(f"Heartbeat sent for {options.instance_id}.")


async def _watch(server: GitpodServerClient, args: argparse.Namespace) -> None:
    tracker = WorkspaceTracker()
    updates = server.listen_to_workspace(args.workspace_id)
    async with updates:
        for info in await tracker.refresh(server):
            print(_format_workspace(info))
        async for instance in updates:
            if not await tracker.apply(instance):
                continue
            info = await tracker.get(instance.workspace_id)
            if info is not None:
                print(_format_workspace(info))


_COMMANDS = {
    "whoami": _whoami,
    "workspaces": _workspaces,
    "workspace": _workspace,
    "owner-token": _owner_token,
    "token-scopes": _token_scopes,
    "heartbeat": _heartbeat,
    "watch": _watch,
}


async def _run(command: Command, settings: ClientSettings, args: argparse.Namespace) -> None:
    async with ConnectionService(settings) as service:
        server = await service.obtain_client()
        logger.debug("Running %s against %s", args.command, settings.host)
        await command(server, args)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    try:
        settings = _resolve_settings(args)
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return EXIT_USAGE
    if not settings.token:
        print(
            "No access token configured. Pass --token or set the GITPOD_TOKEN environment variable.",
            file=sys.stderr,
        )
        return EXIT_USAGE

    command = _COMMANDS[args.command]
    try:
        anyio.run(_run, command, settings, args)
    except ResponseError as exc:
        print(f"Request failed: {exc.message} (code {exc.code})", file=sys.stderr)
        return EXIT_FAILED
    except (ConnectionError, asyncio.TimeoutError) as exc:
        print(f"Failed to contact {settings.host}: {str(exc) or 'request timed out'}", file=sys.stderr)
        return EXIT_FAILED
    except ValueError as exc:
        print(f"Invalid argument: {exc}", file=sys.stderr)
        return EXIT_USAGE
    except KeyboardInterrupt:
        print("\nExiting.")
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
