from __future__ import annotations

import logging
import os
import re
import stat
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

LOGGER = logging.getLogger("ai_launcher.sources")

MAPPING_FILE_NAME = "env-keys"
DOTENV_FILE_NAME = ".env"
SOURCE_VAULT_NOTE = "vault-note"
LEGACY_SOURCE_ALIASES = {"Bitwarden-note": SOURCE_VAULT_NOTE}

_MAPPING_LINE_RE = re.compile(r"^([^=]+)=([^:]+):(.+)$")
_DOTENV_LINE_RE = re.compile(r"^\s*(?:export\s+)?([A-Za-z_][A-Za-z0-9_.]*)\s*=\s*(.+?)\s*$")


@dataclass(frozen=True)
class SecretReference:
    name: str
    source: str
    reference: str
    line: int = 0


def read_env(name: str, environ: Mapping[str, str] | None = None) -> str | None:
    source = os.environ if environ is None else environ
    value = source.get(name)
    if not value:
        return None
    return value


def _read_lines(path: Path) -> list[str] | None:
    if not path.is_file():
        LOGGER.debug("No file found at %s", path)
        return None
    try:
        return path.read_text(encoding="utf-8").splitlines()
    except (OSError, UnicodeError) as exc:
        LOGGER.debug("Unable to read %s: %s", path, exc)
        return None


def _is_skippable(line: str) -> bool:
    stripped = line.strip()
    return not stripped or stripped.startswith("#")


def _strip_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
        return value[1:-1]
    return value


def read_mapping_file(path: Path) -> list[SecretReference]:
    lines = _read_lines(path)
    if lines is None:
        return []

    references: dict[str, SecretReference] = {}
    for line_number, line in enumerate(lines, start=1):
        if _is_skippable(line):
            continue
        match = _MAPPING_LINE_RE.match(line.strip())
        if not match:
            LOGGER.warning("Invalid format in %s line %d: %r", path.name, line_number, line)
            continue
        name = match.group(1).strip()
        source = match.group(2).strip()
        reference = match.group(3).strip()
        source = LEGACY_SOURCE_ALIASES.get(source, source)
        if name in references:
            LOGGER.warning(
                "Duplicate entry for %s in %s line %d overrides line %d",
                name,
                path.name,
                line_number,
                references[name].line,
            )
        references[name] = SecretReference(name=name, source=source, reference=reference, line=line_number)
    return list(references.values())


def read_dotenv(path: Path) -> dict[str, str]:
    lines = _read_lines(path)
    if lines is None:
        return {}

    values: dict[str, str] = {}
    for line in lines:
        if _is_skippable(line):
            continue
        match = _DOTENV_LINE_RE.match(line)
        if not match:
            continue
        values[match.group(1)] = _strip_quotes(match.group(2))
    return values


class PersistedSecretStore:
    """Project-scoped ``NAME="value"`` file that only ever gains or updates keys."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def write(self, name: str, value: str) -> bool:
        if not value:
            LOGGER.debug("Not writing empty value for %s to %s", name, self.path)
            return False

        entry = f'{name}="{value}"'
        if not self.path.exists():
            LOGGER.debug("Creating %s with %s", self.path, name)
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(entry + "\n")
            return True

        existing = self.path.read_text(encoding="utf-8")
        prefix_re = re.compile(r"^\s*(?:export\s+)?" + re.escape(name) + r"\s*=")
        lines = existing.splitlines()
        matches = [index for index, line in enumerate(lines) if prefix_re.match(line)]
        if matches:
            LOGGER.debug("Updating existing %s in %s", name, self.path)
            # Earlier duplicates collapse into the last definition.
            lines[matches[-1]] = entry
            stale = set(matches[:-1])
            lines = [line for index, line in enumerate(lines) if index not in stale]
        else:
            LOGGER.debug("Appending %s to %s", name, self.path)
            lines.append(entry)
        self._replace("\n".join(lines) + "\n", stat.S_IMODE(self.path.stat().st_mode))
        return True

    def _replace(self, content: str, mode: int) -> None:
        tmp_path = self.path.parent / f".{self.path.name}.{uuid.uuid4().hex}.tmp"
        fd = os.open(str(tmp_path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(content)
            os.chmod(tmp_path, mode)
            os.replace(tmp_path, self.path)
        finally:
            if tmp_path.exists():
                try:
                    tmp_path.unlink()
                except OSError:
                    pass
