from __future__ import annotations

import enum
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Iterable, Mapping

import click

from ai_launcher.errors import MandatoryCredentialMissing
from ai_launcher.gitignore import ensure_ignored
from ai_launcher.sensitive import SecretValue
from ai_launcher.sources import (
    DOTENV_FILE_NAME,
    MAPPING_FILE_NAME,
    SOURCE_VAULT_NOTE,
    PersistedSecretStore,
    SecretReference,
    read_dotenv,
    read_env,
    read_mapping_file,
)
from ai_launcher.vault import SESSION_ENV, VaultClient

if TYPE_CHECKING:
    from ai_launcher.profiles import ToolProfile

LOGGER = logging.getLogger("ai_launcher.resolver")


class Provenance(str, enum.Enum):
    ENVIRONMENT = "environment"
    DOTENV = "dotenv"
    MAPPING_FILE_VAULT = "mapping-file-vault"
    VAULT_DIRECT = "vault-direct"
    INTERACTIVE = "interactive"
    DEFAULT = "default"


@dataclass(frozen=True)
class CredentialSpec:
    name: str
    prompt: str | None = None
    sensitive: bool = True
    default: str | None = None
    persist: bool = False
    required: bool = False
    dotenv: bool = True


@dataclass(frozen=True)
class ResolvedCredential:
    name: str
    value: SecretValue
    provenance: Provenance


@dataclass
class LaunchContext:
    """Everything one launch needs to know, passed explicitly between components."""

    project_dir: Path
    profile: ToolProfile
    interactive: bool = True
    session_token: SecretValue | None = None
    environ: Mapping[str, str] = field(default_factory=lambda: dict(os.environ))

    @property
    def mapping_file(self) -> Path:
        return self.project_dir / MAPPING_FILE_NAME

    @property
    def dotenv_file(self) -> Path:
        return self.project_dir / DOTENV_FILE_NAME

    @classmethod
    def from_environment(
        cls,
        project_dir: Path,
        profile: ToolProfile,
        *,
        interactive: bool,
        environ: Mapping[str, str] | None = None,
    ) -> LaunchContext:
        source = dict(os.environ if environ is None else environ)
        token = read_env(SESSION_ENV, source)
        return cls(
            project_dir=project_dir,
            profile=profile,
            interactive=interactive,
            session_token=SecretValue(token) if token else None,
            environ=source,
        )


Prompter = Callable[[CredentialSpec], str]


def prompt_for_credential(spec: CredentialSpec) -> str:
    return click.prompt(
        spec.prompt or spec.name,
        default=spec.default or "",
        hide_input=spec.sensitive,
        show_default=bool(spec.default) and not spec.sensitive,
        err=True,
    )


class CredentialResolver:
    def __init__(
        self,
        context: LaunchContext,
        vault: VaultClient,
        prompter: Prompter | None = None,
    ) -> None:
        self.context = context
        self.vault = vault
        self.prompter = prompter or prompt_for_credential
        self._dotenv: dict[str, str] | None = None
        self._references: dict[str, SecretReference] | None = None
        self._session_requested = False

    @property
    def dotenv_values(self) -> dict[str, str]:
        if self._dotenv is None:
            self._dotenv = read_dotenv(self.context.dotenv_file)
        return self._dotenv

    @property
    def references(self) -> dict[str, SecretReference]:
        if self._references is None:
            self._references = {ref.name: ref for ref in read_mapping_file(self.context.mapping_file)}
        return self._references

    def session_token(self) -> SecretValue | None:
        if self.context.session_token is not None:
            return self.context.session_token
        if self._session_requested:
            return None
        self._session_requested = True
        if not self.context.interactive:
            LOGGER.debug("No %s set and running non-interactively; vault lookups disabled", SESSION_ENV)
            return None
        if not self.vault.available():
            LOGGER.debug("Vault command %s not found; vault lookups disabled", self.vault.command)
            return None
        click.echo("Unlocking the password vault...", err=True)
        self.context.session_token = self.vault.unlock()
        return self.context.session_token

    def _fetch_reference(self, reference: SecretReference) -> SecretValue | None:
        if reference.source != SOURCE_VAULT_NOTE:
            LOGGER.warning("Unsupported source type %r for %s", reference.source, reference.name)
            return None
        session = self.session_token()
        if session is None:
            return None
        return self.vault.fetch(session, reference.reference)

    def _persist(self, spec: CredentialSpec, value: SecretValue) -> None:
        store = PersistedSecretStore(self.context.dotenv_file)
        try:
            written = store.write(spec.name, value.reveal())
            ensure_ignored(self.context.project_dir, [DOTENV_FILE_NAME])
        except OSError as exc:
            LOGGER.warning("Unable to save %s to %s: %s", spec.name, store.path, exc)
            return
        if written:
            click.echo(f"Saved {spec.name} to {store.path}", err=True)

    def resolve(self, spec: CredentialSpec) -> ResolvedCredential | None:
        tried: list[str] = []

        def found(value: str | SecretValue, provenance: Provenance) -> ResolvedCredential:
            secret = value if isinstance(value, SecretValue) else SecretValue(value)
            if spec.sensitive:
                LOGGER.debug("Resolved %s from %s: %s", spec.name, provenance.value, secret.preview())
            else:
                LOGGER.debug("Resolved %s from %s: %s", spec.name, provenance.value, secret.reveal())
            return ResolvedCredential(name=spec.name, value=secret, provenance=provenance)

        tried.append(Provenance.ENVIRONMENT.value)
        env_value = read_env(spec.name, self.context.environ)
        if env_value:
            return found(env_value, Provenance.ENVIRONMENT)

        if spec.dotenv:
            tried.append(Provenance.DOTENV.value)
            dotenv_value = self.dotenv_values.get(spec.name)
            if dotenv_value:
                return found(dotenv_value, Provenance.DOTENV)

        reference = self.references.get(spec.name)
        if reference is not None:
            tried.append(Provenance.MAPPING_FILE_VAULT.value)
            vault_value = self._fetch_reference(reference)
            if vault_value:
                return found(vault_value, Provenance.MAPPING_FILE_VAULT)

        tried.append(Provenance.VAULT_DIRECT.value)
        session = self.session_token()
        if session is not None:
            vault_value = self.vault.fetch(session, spec.name)
            if vault_value:
                return found(vault_value, Provenance.VAULT_DIRECT)

        if self.context.interactive and spec.prompt:
            tried.append(Provenance.INTERACTIVE.value)
            entered = str(self.prompter(spec) or "").strip()
            if entered:
                secret = SecretValue(entered)
                if spec.persist:
                    self._persist(spec, secret)
                return found(secret, Provenance.INTERACTIVE)

        if spec.default:
            return found(spec.default, Provenance.DEFAULT)

        if spec.required:
            raise MandatoryCredentialMissing(spec.name, tried)
        LOGGER.info("Optional credential %s not found (sources tried: %s)", spec.name, ", ".join(tried))
        return None

    def resolve_all(self, specs: Iterable[CredentialSpec]) -> list[ResolvedCredential]:
        resolved: list[ResolvedCredential] = []
        for spec in specs:
            item = self.resolve(spec)
            if item is not None:
                resolved.append(item)
        return resolved

    def resolve_references(self, exclude: Iterable[str] = ()) -> list[tuple[str, SecretValue]]:
        """Fetch every mapping-file entry that no credential spec claims."""
        skipped = set(exclude)
        bindings: list[tuple[str, SecretValue]] = []
        for name, reference in self.references.items():
            if name in skipped:
                continue
            value = self._fetch_reference(reference)
            if not value:
                LOGGER.warning("Failed to get value for %s from the vault", name)
                continue
            LOGGER.debug("Added environment variable %s from %s", name, MAPPING_FILE_NAME)
            bindings.append((name, value))
        return bindings
