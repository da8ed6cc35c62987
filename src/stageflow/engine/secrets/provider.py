"""Where credential values come from.

The engine never stores credentials. A credential scope asks a provider for
already-resolved values on entry and forgets them on exit.

- SecretProvider: async interface (local and remote sources alike)
- EnvVarSecretProvider: ``STAGEFLOW_SECRET_<KEY>`` process variables, the
  usual way a CI agent hands credentials to a job
- StaticSecretProvider: values an outer credential store resolved already

Example:
    >>> provider = EnvVarSecretProvider()
    >>> await provider.get_secret("registry_token")   # STAGEFLOW_SECRET_REGISTRY_TOKEN
"""

import os
from abc import ABC, abstractmethod
from collections.abc import Mapping

from ...config import DEFAULT_SECRET_PREFIX
from .exceptions import SecretNotFoundError, SecretProviderError


class SecretProvider(ABC):
    """Source of credential values keyed by secret key."""

    @abstractmethod
    async def get_secret(self, key: str) -> str:
        """Value of ``key``.

        Raises:
            SecretNotFoundError: No value for ``key``
            SecretProviderError: The source itself failed
        """
        pass

    @abstractmethod
    async def list_secret_keys(self) -> list[str]:
        """Keys this provider can serve (never values)."""
        pass


class EnvVarSecretProvider(SecretProvider):
    """Reads ``{prefix}{KEY}`` process environment variables.

    Keys are upper-cased and dashes become underscores, so the credential
    ids ``registry_token`` and ``registry-token`` both map to
    ``STAGEFLOW_SECRET_REGISTRY_TOKEN``.
    """

    def __init__(self, prefix: str = DEFAULT_SECRET_PREFIX) -> None:
        self.prefix = prefix

    def variable_for(self, key: str) -> str:
        return self.prefix + key.upper().replace("-", "_")

    async def get_secret(self, key: str) -> str:
        variable = self.variable_for(key)
        try:
            return os.environ[variable]
        except KeyError:
            raise SecretNotFoundError(
                key=key, provider_hint=f"Export {variable} in the agent environment"
            ) from None

    async def list_secret_keys(self) -> list[str]:
        start = len(self.prefix)
        return [name[start:].lower() for name in os.environ if name.startswith(self.prefix)]


class StaticSecretProvider(SecretProvider):
    """Provider over credential handles resolved by the caller.

    Used when secrets come from an outer system (CI credential store, vault
    agent) that already resolved them, and in tests.

    Example:
        >>> provider = StaticSecretProvider({"registry_token": "glpat-123456"})
        >>> await provider.get_secret("registry_token")
        'glpat-123456'
    """

    def __init__(self, secrets: Mapping[str, str], name: str = "static") -> None:
        self._secrets = dict(secrets)
        self.name = name

    async def get_secret(self, key: str) -> str:
        if key not in self._secrets:
            raise SecretNotFoundError(key=key, provider_hint=f"Not supplied to provider '{self.name}'")
        value = self._secrets[key]
        if not isinstance(value, str):
            raise SecretProviderError(
                provider_name=self.name,
                details=f"Secret '{key}' is {type(value).__name__}, expected str",
            )
        return value

    async def list_secret_keys(self) -> list[str]:
        return list(self._secrets.keys())
