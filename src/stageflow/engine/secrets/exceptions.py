"""Errors raised by secret providers.

    SecretError
    ├── SecretNotFoundError   no value for the requested key
    └── SecretProviderError   the source itself failed

A credential scope turns any ``SecretError`` into a
``CredentialResolutionFailure`` for the stage that declared the binding, so
these never reach the caller of ``PipelineRunner.run``.
"""


class SecretError(Exception):
    """Base class for secret lookup errors."""


class SecretNotFoundError(SecretError):
    """No value for ``key``; ``provider_hint`` says how to supply one."""

    def __init__(self, key: str, provider_hint: str | None = None) -> None:
        self.key = key
        self.provider_hint = provider_hint
        detail = f": {provider_hint}" if provider_hint else ""
        super().__init__(f"Secret '{key}' not found{detail}")


class SecretProviderError(SecretError):
    """The provider could not be queried (unreachable store, bad data)."""

    def __init__(self, provider_name: str, details: str) -> None:
        self.provider_name = provider_name
        self.details = details
        super().__init__(f"Secret provider '{provider_name}' failed: {details}")
