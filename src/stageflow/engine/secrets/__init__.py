"""Credential values for credential scopes.

Providers look values up, the redactor masks the ones in use, and the
audit log records when a scope opened and closed. Scopes themselves live in
``stageflow.engine.credentials``.
"""

from .audit import SecretAccessEvent, SecretAuditLog
from .exceptions import SecretError, SecretNotFoundError, SecretProviderError
from .provider import (
    DEFAULT_SECRET_PREFIX,
    EnvVarSecretProvider,
    SecretProvider,
    StaticSecretProvider,
)
from .redactor import SecretRedactor

__all__ = [
    "DEFAULT_SECRET_PREFIX",
    "EnvVarSecretProvider",
    "SecretAccessEvent",
    "SecretAuditLog",
    "SecretError",
    "SecretNotFoundError",
    "SecretProvider",
    "SecretProviderError",
    "SecretRedactor",
    "StaticSecretProvider",
]
