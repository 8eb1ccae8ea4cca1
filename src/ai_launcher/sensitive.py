from __future__ import annotations

PREVIEW_LENGTH = 4
MASK = "********"


class SecretValue:
    """A string that refuses to render its contents.

    ``str()``, ``repr()`` and format specs all produce a masked form, so a
    secret passed to a log call or an f-string never leaks. Call
    :meth:`reveal` at the single point where the plain value is needed.
    """

    __slots__ = ("_value",)

    def __init__(self, value: str) -> None:
        self._value = str(value)

    def reveal(self) -> str:
        return self._value

    def preview(self) -> str:
        if len(self._value) <= PREVIEW_LENGTH * 2:
            return MASK
        return f"{self._value[:PREVIEW_LENGTH]}..."

    def __bool__(self) -> bool:
        return bool(self._value)

    def __len__(self) -> int:
        return len(self._value)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, SecretValue):
            return self._value == other._value
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._value)

    def __str__(self) -> str:
        return MASK

    def __repr__(self) -> str:
        return f"SecretValue({MASK!r})"

    def __format__(self, format_spec: str) -> str:
        return format(MASK, format_spec)


def reveal(value: str | SecretValue) -> str:
    if isinstance(value, SecretValue):
        return value.reveal()
    return str(value)
