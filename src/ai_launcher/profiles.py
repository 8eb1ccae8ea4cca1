from __future__ import annotations

import abc
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Mapping

import click

from ai_launcher.resolver import CredentialSpec

CONTAINER_WORKDIR = "/workspace"
TOOL_CLAUDE = "claude"
TOOL_CODEX = "codex"
DEFAULT_TOOL = TOOL_CLAUDE


def _cli_arg_matches_option(arg: str, *, long_option: str, short_option: str | None = None) -> bool:
    if arg == long_option or arg.startswith(f"{long_option}="):
        return True
    if short_option and (arg == short_option or arg.startswith(f"{short_option}=")):
        return True
    return False


def _has_cli_option(args: Iterable[str], *, long_option: str, short_option: str | None = None) -> bool:
    return any(_cli_arg_matches_option(arg, long_option=long_option, short_option=short_option) for arg in args)


@dataclass(frozen=True)
class ToolProfile(abc.ABC):
    name: str
    title: str
    image: str
    command: str
    install_script: str
    credentials: tuple[CredentialSpec, ...] = ()
    default_model: str | None = None
    config_path: str | None = None
    config_template: Mapping[str, Any] | None = None
    container_config_path: str | None = None
    static_env: tuple[tuple[str, str], ...] = ()
    volumes: tuple[tuple[str, str], ...] = ()
    # None passes every dotenv entry through; an empty tuple passes none.
    dotenv_prefixes: tuple[str, ...] | None = ()
    capabilities: tuple[str, ...] = ("NET_ADMIN", "NET_RAW")
    workdir: str = CONTAINER_WORKDIR

    @abc.abstractmethod
    def runtime_flags(self, *, explicit_args: Iterable[str], model: str | None, auto_approve: bool) -> list[str]:
        """Flags placed before the passthrough arguments on the tool's command line."""

    def dotenv_passthrough(self, values: Mapping[str, str]) -> list[tuple[str, str]]:
        if self.dotenv_prefixes is None:
            return list(values.items())
        return [(name, value) for name, value in values.items() if name.startswith(self.dotenv_prefixes)]

    def render_config(self, *, model: str | None, environ: Mapping[str, str]) -> dict[str, Any] | None:
        if self.config_template is None:
            return None
        rendered = dict(self.config_template)
        rendered["model"] = model or self.default_model
        return rendered

    def write_config(self, project_dir: Path, *, model: str | None, environ: Mapping[str, str]) -> Path | None:
        """Write the tool config from the template unless one already exists."""
        if self.config_path is None:
            return None
        config_file = project_dir / self.config_path
        if config_file.exists():
            click.echo(f"{self.title} config file already exists: {config_file}", err=True)
            return config_file
        rendered = self.render_config(model=model, environ=environ)
        if rendered is None:
            return None
        try:
            config_file.parent.mkdir(parents=True, exist_ok=True)
            config_file.write_text(json.dumps(rendered, indent=2) + "\n", encoding="utf-8")
        except OSError as exc:
            raise click.ClickException(f"Unable to write {self.title} config file {config_file}: {exc}") from exc
        click.echo(f"Created {self.title} config file: {config_file}", err=True)
        return config_file


@dataclass(frozen=True)
class ClaudeProfile(ToolProfile):
    def runtime_flags(self, *, explicit_args: Iterable[str], model: str | None, auto_approve: bool) -> list[str]:
        parsed_args = [str(arg) for arg in explicit_args]
        flags: list[str] = []
        if model and not _has_cli_option(parsed_args, long_option="--model"):
            flags.extend(["--model", model])
        if (
            auto_approve
            and not _has_cli_option(parsed_args, long_option="--dangerously-skip-permissions")
            and not _has_cli_option(parsed_args, long_option="--permission-mode")
        ):
            flags.extend(["--permission-mode", "bypassPermissions"])
        return flags


@dataclass(frozen=True)
class CodexProfile(ToolProfile):
    def runtime_flags(self, *, explicit_args: Iterable[str], model: str | None, auto_approve: bool) -> list[str]:
        parsed_args = [str(arg) for arg in explicit_args]
        flags: list[str] = []
        selected_model = model or self.default_model
        if selected_model and not _has_cli_option(parsed_args, long_option="--model", short_option="-m"):
            flags.extend(["--model", selected_model])
        if auto_approve and not any(
            _has_cli_option(parsed_args, long_option=option)
            for option in ("--full-auto", "--ask-for-approval", "--dangerously-bypass-approvals-and-sandbox")
        ):
            flags.append("--full-auto")
        return flags

    def render_config(self, *, model: str | None, environ: Mapping[str, str]) -> dict[str, Any] | None:
        rendered = super().render_config(model=model, environ=environ)
        if rendered is None:
            return None
        for env_name, key, parse in (("TEMPERATURE", "temperature", float), ("MAX_TOKENS", "max_tokens", int)):
            raw_value = str(environ.get(env_name, "")).strip()
            if not raw_value:
                continue
            try:
                rendered[key] = parse(raw_value)
            except ValueError as exc:
                raise click.BadParameter(f"{raw_value!r} is not a valid {parse.__name__}", param_hint=env_name) from exc
        return rendered


CLAUDE_PROFILE = ClaudeProfile(
    name=TOOL_CLAUDE,
    title="Claude Code CLI",
    image="node:20",
    command="claude",
    install_script="npm install -g @anthropic-ai/claude-code",
    credentials=(CredentialSpec(name="ANTHROPIC_API_KEY", sensitive=True),),
    static_env=(
        ("NODE_OPTIONS", "--max-old-space-size=4096"),
        ("CLAUDE_CONFIG_DIR", "/home/node/.claude"),
        ("POWERLEVEL9K_DISABLE_GITSTATUS", "true"),
    ),
    volumes=(
        ("claude-code-bashhistory", "/commandhistory"),
        ("claude-code-config", "/home/node/.claude"),
    ),
    dotenv_prefixes=("AWS_",),
)

CODEX_PROFILE = CodexProfile(
    name=TOOL_CODEX,
    title="OpenAI Codex",
    image="node:22",
    command="codex",
    install_script="npm install -g @openai/codex",
    credentials=(
        CredentialSpec(
            name="OPENAI_API_KEY",
            prompt="Please enter your OpenAI API key",
            sensitive=True,
            persist=True,
            required=True,
        ),
        CredentialSpec(name="OPENAI_ORG_ID", sensitive=False),
    ),
    default_model="o4-mini",
    config_path=".config/codex/config.json",
    config_template={"model": "o4-mini", "temperature": 0.7, "max_tokens": 4000, "top_p": 1},
    container_config_path="/root/.codex/config.json",
    dotenv_prefixes=None,
)

PROFILES: dict[str, ToolProfile] = {
    CLAUDE_PROFILE.name: CLAUDE_PROFILE,
    CODEX_PROFILE.name: CODEX_PROFILE,
}


def get_profile(name: str) -> ToolProfile:
    normalized = str(name or "").strip().lower()
    try:
        return PROFILES[normalized]
    except KeyError:
        choices = ", ".join(sorted(PROFILES))
        raise click.BadParameter(f"Tool must be one of: {choices}", param_hint="--tool") from None
