"""Command-line entry point: wires the components and runs the sidecar."""

from __future__ import annotations

import argparse
import asyncio
import functools
import os
import signal
import sys
from collections.abc import Sequence
from typing import NoReturn

from pydantic import ValidationError

from mirror_sidecar import __version__
from mirror_sidecar.config import Settings, load_settings
from mirror_sidecar.errors import SupervisorError
from mirror_sidecar.git import GitRemote
from mirror_sidecar.hooks import run_shell_command
from mirror_sidecar.logging import get_logger, setup_logging
from mirror_sidecar.orchestrator import UpdateOrchestrator
from mirror_sidecar.supervisor import ProcessSupervisor
from mirror_sidecar.tracker import RevisionTracker
from mirror_sidecar.triggers import TriggerQueue
from mirror_sidecar.webhook import WebhookServer

log = get_logger("mirror_sidecar.main")

# option dest -> Settings field
_OPTION_FIELDS = {
    "url": "git_url",
    "repo_folder": "git_repo_folder",
    "local_folder": "git_local_folder",
    "branch": "git_branch",
    "username": "git_username",
    "password": "git_password",
    "update_period": "git_update_period",
    "pre_update_command": "pre_update_command",
    "pre_update_runner": "pre_update_runner",
    "restart_command": "restart_command",
    "stop_timeout": "stop_timeout",
    "webhook_port": "webhook_port",
    "webhook_token_header": "webhook_token_header",
    "webhook_token_value": "webhook_token_value",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mirror-sidecar",
        description=(
            "Mirror a folder of a git branch into a local folder and restart "
            "a command whenever it changes."
        ),
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-u", "--url", help="Git URL [GIT_URL]")
    parser.add_argument("-r", "--repo-folder", help="Folder inside the repo [GIT_REPO_FOLDER]")
    parser.add_argument("-l", "--local-folder", help="Local folder [GIT_LOCAL_FOLDER]")
    parser.add_argument("-b", "--branch", help="Git branch [GIT_BRANCH]")
    parser.add_argument("--username", help="Git username [GIT_USERNAME]")
    parser.add_argument("--password", help="Git password [GIT_PASSWORD]")
    parser.add_argument(
        "--update-period", type=float, help="Update period in seconds [GIT_UPDATE_PERIOD]"
    )
    parser.add_argument(
        "--pre-update-command",
        help=(
            "Shell command run before restarting the application after an update, "
            "inside the local folder [PRE_UPDATE_COMMAND]"
        ),
    )
    parser.add_argument(
        "--pre-update-runner", help="Shell running the pre-update command [PRE_UPDATE_RUNNER]"
    )
    parser.add_argument(
        "--restart-command",
        help="Command run instead of restarting the application itself [RESTART_COMMAND]",
    )
    parser.add_argument(
        "--stop-timeout", type=float, help="Seconds between SIGTERM and SIGKILL [STOP_TIMEOUT]"
    )
    parser.add_argument("--webhook-port", type=int, help="Webhook port, 0 disables [WEBHOOK_PORT]")
    parser.add_argument(
        "--webhook-token-header", help="Header with the token value [WEBHOOK_TOKEN_HEADER]"
    )
    parser.add_argument(
        "--webhook-token-value", help="Token value to authenticate requests [WEBHOOK_TOKEN_VALUE]"
    )
    parser.add_argument("command", nargs=argparse.REMAINDER, help="Command to supervise")
    return parser


def parse_args(argv: Sequence[str] | None = None) -> tuple[Settings, list[str]]:
    """Parse the command line into settings and the command to supervise."""
    parser = build_parser()
    args = parser.parse_args(argv)

    command = list(args.command)
    if command and command[0] == "--":
        command = command[1:]
    if not command:
        parser.error("No command specified")

    overrides = {field: getattr(args, dest) for dest, field in _OPTION_FIELDS.items()}
    try:
        settings = load_settings(**overrides)
    except ValidationError as exc:
        parser.error(str(exc))
    return settings, command


def exec_command(command: Sequence[str]) -> NoReturn:
    """Replace the sidecar with *command*; used when no repository is configured."""
    log.info("exec_command", command=command[0])
    try:
        os.execvp(command[0], list(command))
    except OSError as exc:
        log.error("exec_failed", command=command[0], error=str(exc))
        sys.exit(1)


def _request_stop(sig: signal.Signals, stop_event: asyncio.Event) -> None:
    log.info("signal_received", signal=sig.name)
    stop_event.set()


async def main(settings: Settings, command: Sequence[str]) -> int:
    """Run the sidecar until interrupted; return the process exit status."""
    try:
        restart_argv = settings.restart_argv
    except ValueError as exc:
        log.error("restart_command_invalid", error=str(exc))
        return 1

    log.info(
        "starting_mirror_sidecar",
        url=settings.git_url,
        branch=settings.git_branch,
        repo_folder=settings.git_repo_folder,
        local_folder=settings.git_local_folder,
        update_period=settings.git_update_period,
    )

    supervisor = ProcessSupervisor(command, restart_argv, stop_timeout=settings.stop_timeout)
    remote = GitRemote(
        settings.git_url,
        branch=settings.git_branch,
        username=settings.git_username,
        password=settings.git_password.get_secret_value(),
    )
    tracker = RevisionTracker(remote, settings.git_repo_folder)
    triggers = TriggerQueue()

    pre_update = None
    if settings.pre_update_command:
        pre_update = functools.partial(
            run_shell_command,
            settings.pre_update_command,
            settings.pre_update_runner,
            settings.git_local_folder,
        )

    orchestrator = UpdateOrchestrator(
        tracker,
        supervisor,
        settings.git_local_folder,
        update_period=settings.git_update_period,
        triggers=triggers,
        pre_update=pre_update,
    )

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    handled = (signal.SIGINT, signal.SIGTERM)
    for sig in handled:
        loop.add_signal_handler(sig, _request_stop, sig, stop_event)

    webhook: WebhookServer | None = None
    try:
        if settings.webhook_port:
            webhook = WebhookServer(
                triggers.notify,
                settings.webhook_port,
                token_header=settings.webhook_token_header,
                token_value=settings.webhook_token_value.get_secret_value(),
            )
            try:
                await webhook.start()
            except OSError as exc:
                log.error("webhook_start_failed", port=settings.webhook_port, error=str(exc))
                return 1

        try:
            await orchestrator.run(stop_event)
        except SupervisorError as exc:
            log.error("supervisor_failed", error=str(exc))
            return 1
    finally:
        if webhook is not None:
            await webhook.stop()
        for sig in handled:
            loop.remove_signal_handler(sig)

    log.info("mirror_sidecar_stopped")
    return 0


def run(argv: Sequence[str] | None = None) -> None:
    """Run the application."""
    settings, command = parse_args(argv)
    setup_logging(settings)

    if not settings.git_url:
        exec_command(command)

    sys.exit(asyncio.run(main(settings, command)))
