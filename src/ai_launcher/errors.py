from __future__ import annotations

from typing import Iterable

import click

EXIT_SETUP_FAILURE = 3
EXIT_SANDBOX_LAUNCH_FAILURE = 4


class LauncherSetupError(click.ClickException):
    """Setup failed before the sandbox was started."""

    exit_code = EXIT_SETUP_FAILURE


class MandatoryCredentialMissing(LauncherSetupError):
    def __init__(self, name: str, sources_tried: Iterable[str]) -> None:
        self.name = name
        self.sources_tried = tuple(sources_tried)
        tried = ", ".join(self.sources_tried) or "none"
        super().__init__(f"Required credential {name} could not be resolved (sources tried: {tried})")


class SandboxLaunchFailure(LauncherSetupError):
    exit_code = EXIT_SANDBOX_LAUNCH_FAILURE
