from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    NOT_FOUND = "NOT_FOUND"
    AUTH_REQUIRED = "AUTH_REQUIRED"
    ACCOUNT_CHALLENGED = "ACCOUNT_CHALLENGED"
    RATE_LIMITED = "RATE_LIMITED"
    TIMEOUT = "TIMEOUT"
    UNPARSABLE_RESPONSE = "UNPARSABLE_RESPONSE"
    NO_CANDIDATES = "NO_CANDIDATES"
    DOWNLOAD_FAILED = "DOWNLOAD_FAILED"
    INVALID_URL = "INVALID_URL"


# Kinds no remaining strategy can recover from.
TERMINAL_KINDS: frozenset[ErrorKind] = frozenset({ErrorKind.NOT_FOUND})

# Most specific first; used to pick the error surfaced after every strategy failed.
# TIMEOUT is absent: it means the global deadline, which the orchestrator raises itself.
_SPECIFICITY: list[ErrorKind] = [
    ErrorKind.NOT_FOUND,
    ErrorKind.ACCOUNT_CHALLENGED,
    ErrorKind.AUTH_REQUIRED,
    ErrorKind.RATE_LIMITED,
    ErrorKind.UNPARSABLE_RESPONSE,
    ErrorKind.DOWNLOAD_FAILED,
]


class ResolutionError(RuntimeError):
    """A failure with a known kind, raised anywhere in the resolve/deliver pipeline."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str | None = None,
        *,
        strategy: str | None = None,
    ) -> None:
        super().__init__(message or kind.value)
        self.kind = kind
        self.strategy = strategy

    @property
    def is_terminal(self) -> bool:
        return self.kind in TERMINAL_KINDS


def most_specific(kinds: list[ErrorKind]) -> ErrorKind:
    """Return the most specific kind observed, defaulting to DOWNLOAD_FAILED."""
    for kind in _SPECIFICITY:
        if kind in kinds:
            return kind
    return ErrorKind.DOWNLOAD_FAILED
