from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Sequence

import click

from ai_launcher.environment import assemble
from ai_launcher.gitignore import ensure_ignored
from ai_launcher.profiles import DEFAULT_TOOL, PROFILES, get_profile
from ai_launcher.resolver import CredentialResolver, LaunchContext
from ai_launcher.sandbox import DEFAULT_CONTAINER_RUNTIME, SandboxExecutor
from ai_launcher.sources import DOTENV_FILE_NAME, MAPPING_FILE_NAME
from ai_launcher.vault import DEFAULT_VAULT_COMMAND, SESSION_ENV, VaultClient

LOGGER = logging.getLogger("ai_launcher")
LOGGER.addHandler(logging.NullHandler())

LOG_LEVEL_CHOICES = ("debug", "info", "warning", "error")
DEFAULT_LOG_LEVEL = "warning"

ENV_HELP = f"""\
Environment variables:
  {SESSION_ENV:<20} Vault session token (the vault is unlocked on demand if unset)

  Claude Code CLI:
  ANTHROPIC_API_KEY    Anthropic API key (optional, Claude can log in interactively)

  OpenAI Codex:
  OPENAI_API_KEY       OpenAI API key (required)
  OPENAI_ORG_ID        OpenAI organization ID (optional)
  TEMPERATURE          Temperature written to a new config file (default: 0.7)
  MAX_TOKENS           Token limit written to a new config file (default: 4000)

Project files:
  {MAPPING_FILE_NAME:<20} Vault references, one per line: VAR_NAME=vault-note:ITEM_NAME
  {DOTENV_FILE_NAME:<20} KEY=VALUE pairs; AWS_* entries for Claude, every entry for Codex.
                       Keys entered at a prompt are saved here and the file is added
                       to .gitignore inside git repositories.
  .config/codex/config.json
                       Codex configuration, created on first run and never overwritten

Persistent state:
  claude-code-bashhistory, claude-code-config   Docker volumes used by Claude
"""


def _configure_launcher_logging(level: str) -> None:
    normalized = str(level or DEFAULT_LOG_LEVEL).strip().lower()
    if normalized not in LOG_LEVEL_CHOICES:
        normalized = DEFAULT_LOG_LEVEL
    handler = logging.StreamHandler(sys.__stderr__)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    LOGGER.handlers.clear()
    LOGGER.addHandler(handler)
    LOGGER.setLevel(getattr(logging, normalized.upper(), logging.WARNING))
    LOGGER.propagate = False


def _show_env_help(ctx: click.Context, _param: click.Parameter, value: bool) -> None:
    if not value or ctx.resilient_parsing:
        return
    click.echo(ENV_HELP, nl=False)
    ctx.exit(0)


def _validate_model(_ctx: click.Context, _param: click.Parameter, value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    if not normalized:
        raise click.BadParameter("model name must not be empty")
    return normalized


def _select_tool(tool: str | None, *, interactive: bool) -> str:
    if tool:
        return tool
    if interactive:
        return click.prompt(
            "Please select which AI tool to use",
            type=click.Choice(sorted(PROFILES)),
            default=DEFAULT_TOOL,
            err=True,
        )
    click.echo(
        f"No tool specified and --non-interactive mode is enabled. Defaulting to {PROFILES[DEFAULT_TOOL].title}.",
        err=True,
    )
    return DEFAULT_TOOL


def launch(
    context: LaunchContext,
    *,
    model: str | None,
    auto_approve: bool,
    tool_args: Sequence[str],
    vault: VaultClient,
    executor: SandboxExecutor,
) -> int:
    profile = context.profile
    resolver = CredentialResolver(context, vault)
    resolved = resolver.resolve_all(profile.credentials)

    try:
        ensure_ignored(context.project_dir, [DOTENV_FILE_NAME])
    except OSError as exc:
        LOGGER.warning("Unable to update .gitignore in %s: %s", context.project_dir, exc)

    static_bindings = [
        *profile.static_env,
        *profile.dotenv_passthrough(resolver.dotenv_values),
        *resolver.resolve_references(exclude=[spec.name for spec in profile.credentials]),
    ]
    bindings = assemble(resolved, static_bindings)
    config_file = profile.write_config(context.project_dir, model=model, environ=context.environ)

    explicit_args = [str(arg) for arg in tool_args]
    command_args = [
        *profile.runtime_flags(explicit_args=explicit_args, model=model, auto_approve=auto_approve),
        *explicit_args,
    ]
    cmd = executor.build_command(context, bindings, command_args, config_file=config_file)
    click.echo(f"Starting {profile.title} in {context.project_dir}...", err=True)
    return executor.run(cmd, bindings)


@click.command(
    help="Launch Claude Code or OpenAI Codex in a container for the current project.",
    context_settings={
        "help_option_names": ["-h", "--help"],
        "ignore_unknown_options": True,
        "allow_interspersed_args": False,
    },
)
@click.option(
    "--tool",
    type=click.Choice(sorted(PROFILES), case_sensitive=False),
    default=None,
    help="Tool to run (prompts when omitted in interactive mode, otherwise claude).",
)
@click.option("--model", default=None, callback=_validate_model, help="Model passed to the tool.")
@click.option("--auto-approve", is_flag=True, default=False, help="Let the tool run commands without asking.")
@click.option(
    "--non-interactive",
    is_flag=True,
    default=False,
    help="Never prompt; fail when a required value is missing.",
)
@click.option(
    "--project",
    default=".",
    show_default=True,
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Project directory mounted into the container.",
)
@click.option("--vault-command", default=DEFAULT_VAULT_COMMAND, show_default=True, help="Password vault CLI.")
@click.option("--runtime", default=DEFAULT_CONTAINER_RUNTIME, show_default=True, help="Container runtime CLI.")
@click.option("--log-level", type=click.Choice(LOG_LEVEL_CHOICES), default=DEFAULT_LOG_LEVEL, show_default=True)
@click.option(
    "--env-help",
    is_flag=True,
    expose_value=False,
    is_eager=True,
    callback=_show_env_help,
    help="Show environment variables and project files used by the launcher.",
)
@click.argument("tool_args", nargs=-1, type=click.UNPROCESSED)
@click.pass_context
def main(
    ctx: click.Context,
    tool: str | None,
    model: str | None,
    auto_approve: bool,
    non_interactive: bool,
    project: Path,
    vault_command: str,
    runtime: str,
    log_level: str,
    tool_args: tuple[str, ...],
) -> None:
    _configure_launcher_logging(log_level)
    interactive = not non_interactive
    profile = get_profile(_select_tool(tool, interactive=interactive))

    executor = SandboxExecutor(runtime)
    executor.ensure_available()

    context = LaunchContext.from_environment(project.resolve(), profile, interactive=interactive)
    LOGGER.debug("Current directory: %s", context.project_dir)
    if context.session_token is not None:
        LOGGER.debug("%s found: %s", SESSION_ENV, context.session_token.preview())
        click.echo("Using existing vault session.", err=True)

    exit_code = launch(
        context,
        model=model,
        auto_approve=auto_approve,
        tool_args=tool_args,
        vault=VaultClient(vault_command),
        executor=executor,
    )
    LOGGER.debug("Sandbox exited with code %d", exit_code)
    ctx.exit(exit_code)


if __name__ == "__main__":
    main()
