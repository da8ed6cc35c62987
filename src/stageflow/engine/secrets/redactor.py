"""Masking of credential values in captured output, outcomes and notifications.

Only values of credential scopes that are open right now are masked. A scope
registers each value on entry and releases it on exit; two concurrent scopes
that bind the same value share one registration count, so the value stays
masked until the last of them closes.

Example:
    >>> redactor = SecretRedactor()
    >>> token = redactor.add_secret("registry_token", "glpat-0123456789")
    >>> redactor.redact({"log": "login with glpat-0123456789"})
    {'log': 'login with ***REDACTED***'}
    >>> redactor.release(token)
"""

import re
from collections import Counter
from typing import Any


class SecretRedactor:
    """Replaces active credential values with ``REDACTION_MARKER``.

    Values shorter than ``MIN_SECRET_LENGTH`` are never registered; masking
    them would mangle ordinary output such as ``true`` or port numbers.
    """

    MIN_SECRET_LENGTH = 8
    REDACTION_MARKER = "***REDACTED***"

    def __init__(self) -> None:
        self._refcount: Counter[str] = Counter()
        self._registrations: dict[int, tuple[str, str]] = {}
        self._tokens = iter(range(1 << 62))
        self._pattern: re.Pattern[str] | None = None

    def _rebuild(self) -> None:
        # Longest first so a value never leaves a visible suffix of a longer one.
        values = sorted(self._refcount, key=len, reverse=True)
        self._pattern = re.compile("|".join(map(re.escape, values))) if values else None

    def add_secret(self, key: str, value: str) -> int | None:
        """Start masking ``value``.

        ``key`` is kept for bookkeeping only. Returns the token for
        ``release``, or None when the value is too short to mask.
        """
        if len(value) < self.MIN_SECRET_LENGTH:
            return None
        token = next(self._tokens)
        self._registrations[token] = (key, value)
        self._refcount[value] += 1
        if self._refcount[value] == 1:
            self._rebuild()
        return token

    def release(self, token: int | None) -> None:
        registration = self._registrations.pop(token, None) if token is not None else None
        if registration is None:
            return
        value = registration[1]
        self._refcount[value] -= 1
        if self._refcount[value] <= 0:
            del self._refcount[value]
            self._rebuild()

    def redact(self, data: Any) -> Any:  # noqa: ANN401
        """Copy of ``data`` with active values masked.

        Walks dicts, lists and tuples; strings are masked and anything else is
        returned unchanged.
        """
        if isinstance(data, str):
            return self._pattern.sub(self.REDACTION_MARKER, data) if self._pattern else data
        if isinstance(data, dict):
            return {key: self.redact(value) for key, value in data.items()}
        if isinstance(data, list):
            return [self.redact(item) for item in data]
        if isinstance(data, tuple):
            return tuple(self.redact(item) for item in data)
        return data

    def get_loaded_secret_keys(self) -> list[str]:
        """Keys (never values) of the credentials currently masked."""
        return sorted({key for key, _ in self._registrations.values()})
