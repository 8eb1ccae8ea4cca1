from __future__ import annotations

import logging
import os
import shlex
import shutil
import signal
import subprocess
import sys
from pathlib import Path
from typing import Iterable, Sequence

from ai_launcher.errors import SandboxLaunchFailure
from ai_launcher.resolver import LaunchContext
from ai_launcher.sensitive import SecretValue, reveal

LOGGER = logging.getLogger("ai_launcher.sandbox")

DEFAULT_CONTAINER_RUNTIME = "docker"
CONTAINER_SHELL = "/bin/bash"
FORWARDED_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGHUP)


def _bootstrap_script(install_script: str, command: str) -> str:
    # Tool arguments arrive as positional parameters, never as script text.
    return f'{install_script} && exec {shlex.quote(command)} "$@"'


def _stdin_is_tty() -> bool:
    try:
        return sys.stdin.isatty()
    except (AttributeError, ValueError):
        return False


def _bind_mount(source: Path | str, target: str, *, readonly: bool = False) -> str:
    spec = f"type=bind,source={source},target={target}"
    if readonly:
        spec += ",readonly"
    return spec


def _in_terminal_foreground(pid: int) -> bool:
    """True when ``pid`` belongs to the terminal's foreground process group."""
    try:
        return os.getpgid(pid) == os.tcgetpgrp(sys.stdin.fileno())
    except (AttributeError, ValueError, OSError):
        return False


class SandboxExecutor:
    def __init__(self, runtime: str = DEFAULT_CONTAINER_RUNTIME) -> None:
        self.runtime = str(runtime or DEFAULT_CONTAINER_RUNTIME).strip() or DEFAULT_CONTAINER_RUNTIME

    def ensure_available(self) -> None:
        if shutil.which(self.runtime) is None:
            raise SandboxLaunchFailure(f"{self.runtime} command not found in PATH")

    def build_command(
        self,
        context: LaunchContext,
        bindings: Iterable[tuple[str, str | SecretValue]],
        tool_args: Sequence[str],
        *,
        config_file: Path | None = None,
    ) -> list[str]:
        profile = context.profile
        cmd = [self.runtime, "run", "--rm", "-i"]
        if _stdin_is_tty():
            cmd.append("-t")
        for capability in profile.capabilities:
            cmd.extend(["--cap-add", capability])
        cmd.extend(["--mount", _bind_mount(context.project_dir, profile.workdir)])
        for volume_name, container_path in profile.volumes:
            cmd.extend(["--volume", f"{volume_name}:{container_path}"])
        if config_file is not None and profile.container_config_path:
            cmd.extend(["--mount", _bind_mount(config_file, profile.container_config_path, readonly=True)])
        # Values travel through the runtime's own environment so they never show up in argv.
        for name, _ in bindings:
            cmd.extend(["--env", name])
        cmd.extend(
            [
                "--workdir",
                profile.workdir,
                "--entrypoint",
                CONTAINER_SHELL,
                profile.image,
                "-c",
                _bootstrap_script(profile.install_script, profile.command),
                profile.command,
                *[str(arg) for arg in tool_args],
            ]
        )
        return cmd

    def run(self, cmd: Sequence[str], bindings: Iterable[tuple[str, str | SecretValue]]) -> int:
        child_env = dict(os.environ)
        for name, value in bindings:
            child_env[name] = reveal(value)

        LOGGER.debug("Executing: %s", " ".join(shlex.quote(part) for part in cmd))
        try:
            process = subprocess.Popen(list(cmd), env=child_env)
        except OSError as exc:
            raise SandboxLaunchFailure(f"Unable to start {cmd[0]}: {exc}") from exc

        def forward(signum: int, _frame: object) -> None:
            if process.poll() is not None:
                return
            # A terminal Ctrl-C already went to the whole foreground group.
            if signum == signal.SIGINT and _in_terminal_foreground(process.pid):
                return
            LOGGER.debug("Forwarding signal %d to %s", signum, self.runtime)
            process.send_signal(signum)

        previous_handlers = {}
        for signum in FORWARDED_SIGNALS:
            previous_handlers[signum] = signal.signal(signum, forward)
        try:
            returncode = process.wait()
        finally:
            for signum, handler in previous_handlers.items():
                signal.signal(signum, handler)

        LOGGER.debug("%s exited with code %d", self.runtime, returncode)
        if returncode < 0:
            return 128 - returncode
        return returncode
