from __future__ import annotations

from typing import Iterable

from ai_launcher.resolver import ResolvedCredential
from ai_launcher.sensitive import SecretValue

EnvBinding = tuple[str, str | SecretValue]


def merge_bindings(*groups: Iterable[EnvBinding]) -> list[EnvBinding]:
    """Merge binding groups in order; a later value replaces an earlier one in place."""
    merged: dict[str, str | SecretValue] = {}
    for group in groups:
        for name, value in group:
            merged[name] = value
    return list(merged.items())


def assemble(
    resolved: Iterable[ResolvedCredential | None],
    static_bindings: Iterable[EnvBinding],
) -> list[EnvBinding]:
    credential_bindings = [(item.name, item.value) for item in resolved if item is not None]
    return merge_bindings(static_bindings, credential_bindings)
