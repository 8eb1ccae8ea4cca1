from __future__ import annotations

import logging
import os
import shutil
import subprocess

from ai_launcher.sensitive import SecretValue

LOGGER = logging.getLogger("ai_launcher.vault")

DEFAULT_VAULT_COMMAND = "bw"
SESSION_ENV = "BW_SESSION"
VAULT_ITEM_KINDS = ("notes", "password")


class VaultClient:
    """Thin wrapper over the Bitwarden CLI.

    Every failure of the underlying command (missing binary, locked or expired
    session, unknown item) is reported as an absent value so callers can fall
    through to the next credential source.
    """

    def __init__(self, command: str = DEFAULT_VAULT_COMMAND) -> None:
        self.command = str(command or DEFAULT_VAULT_COMMAND).strip() or DEFAULT_VAULT_COMMAND

    def available(self) -> bool:
        return shutil.which(self.command) is not None

    def _get(self, kind: str, reference: str, session_token: SecretValue) -> str | None:
        try:
            result = subprocess.run(
                [self.command, "get", kind, reference],
                check=False,
                env={**os.environ, SESSION_ENV: session_token.reveal()},
                text=True,
                capture_output=True,
            )
        except OSError as exc:
            LOGGER.debug("Vault command %s unavailable: %s", self.command, exc)
            return None
        if result.returncode != 0:
            # stderr may echo item details; only the exit code is reported.
            LOGGER.debug("Vault lookup of %s %r failed with exit code %d", kind, reference, result.returncode)
            return None
        value = result.stdout.rstrip("\r\n")
        return value or None

    def fetch(self, session_token: SecretValue | None, reference: str) -> SecretValue | None:
        if not session_token:
            return None
        for kind in VAULT_ITEM_KINDS:
            value = self._get(kind, reference, session_token)
            if value:
                LOGGER.debug("Vault item %r resolved as %s", reference, kind)
                return SecretValue(value)
            LOGGER.debug("Vault item %r not found as %s", reference, kind)
        return None

    def unlock(self) -> SecretValue | None:
        """Run ``bw unlock --raw`` on the user's terminal and return the session token."""
        if not self.available():
            LOGGER.debug("Vault command %s not found in PATH", self.command)
            return None
        try:
            result = subprocess.run(
                [self.command, "unlock", "--raw"],
                check=False,
                text=True,
                stdout=subprocess.PIPE,
            )
        except OSError as exc:
            LOGGER.debug("Unable to run %s unlock: %s", self.command, exc)
            return None
        token = result.stdout.strip()
        if result.returncode != 0 or not token:
            LOGGER.warning("Vault unlock failed with exit code %d; continuing without the vault", result.returncode)
            return None
        session = SecretValue(token)
        LOGGER.debug("Vault session obtained: %s", session.preview())
        return session
