"""
Credential scopes: secrets materialized into the environment for one sub-tree.

A credential binding names the environment keys a stage needs and the secret
keys that back them. The scope resolves the values through a SecretProvider,
pushes them as one environment layer, and pops that layer on exit, whether
the body succeeded, failed or was cancelled.
"""

from __future__ import annotations

import logging
import re
from collections.abc import AsyncIterator, Sequence
from contextlib import AsyncExitStack, asynccontextmanager

from pydantic import BaseModel, Field, field_validator

from .environment import EnvironmentContext, LayerHandle
from .exceptions import CredentialResolutionFailure
from .secrets import SecretAuditLog, SecretError, SecretProvider, SecretRedactor

logger = logging.getLogger(__name__)

_ENV_KEY_PATTERN = r"^[A-Za-z_][A-Za-z0-9_]*$"


class CredentialBinding(BaseModel):
    """
    Named credential handle materialized into the environment.

    Example (YAML):
        credentials:
          - name: registry
            variables:
              REGISTRY_USER: registry_user
              REGISTRY_TOKEN: registry_token
    """

    model_config = {"extra": "forbid", "frozen": True}

    name: str = Field(description="Credential binding name", min_length=1)
    variables: dict[str, str] = Field(
        description="Environment key -> secret key in the provider", min_length=1
    )

    @field_validator("variables")
    @classmethod
    def validate_env_keys(cls, v: dict[str, str]) -> dict[str, str]:
        for env_key in v:
            if not re.match(_ENV_KEY_PATTERN, env_key):
                raise ValueError(f"Invalid environment variable name: '{env_key}'")
        return v


@asynccontextmanager
async def credential_scope(
    env: EnvironmentContext,
    binding: CredentialBinding,
    provider: SecretProvider,
    *,
    redactor: SecretRedactor | None = None,
    audit_log: SecretAuditLog | None = None,
    pipeline: str = "",
    stage: str = "",
) -> AsyncIterator[LayerHandle]:
    """
    Materialize ``binding`` into ``env`` for the duration of the block.

    Nothing is pushed if any secret fails to resolve.

    Raises:
        CredentialResolutionFailure: If a secret cannot be resolved
    """
    values: dict[str, str] = {}
    for env_key, secret_key in binding.variables.items():
        try:
            values[env_key] = await provider.get_secret(secret_key)
        except SecretError as e:
            if audit_log is not None:
                await audit_log.log_access(
                    pipeline=pipeline,
                    stage=stage,
                    binding=binding.name,
                    secret_key=secret_key,
                    action="materialize",
                    success=False,
                    error_message=str(e),
                )
            values.clear()
            raise CredentialResolutionFailure(binding.name, str(e)) from e

    tokens: list[int | None] = []
    handle: LayerHandle | None = None
    try:
        if redactor is not None:
            tokens = [redactor.add_secret(key, value) for key, value in values.items()]
        handle = env.push(values, label=f"credentials:{binding.name}")
        if audit_log is not None:
            for secret_key in binding.variables.values():
                await audit_log.log_access(
                    pipeline=pipeline,
                    stage=stage,
                    binding=binding.name,
                    secret_key=secret_key,
                    action="materialize",
                    success=True,
                )
        logger.debug(f"Credential '{binding.name}' materialized for '{stage}'")
        yield handle
    finally:
        if handle is not None:
            env.pop(handle)
        values.clear()
        if redactor is not None:
            for token in tokens:
                redactor.release(token)
        if audit_log is not None and handle is not None:
            for secret_key in binding.variables.values():
                await audit_log.log_access(
                    pipeline=pipeline,
                    stage=stage,
                    binding=binding.name,
                    secret_key=secret_key,
                    action="revoke",
                    success=True,
                )
        logger.debug(f"Credential '{binding.name}' revoked for '{stage}'")


@asynccontextmanager
async def credential_scopes(
    env: EnvironmentContext,
    bindings: Sequence[CredentialBinding],
    provider: SecretProvider,
    *,
    redactor: SecretRedactor | None = None,
    audit_log: SecretAuditLog | None = None,
    pipeline: str = "",
    stage: str = "",
) -> AsyncIterator[None]:
    """Enter several credential scopes in declaration order; exit in reverse."""
    async with AsyncExitStack() as stack:
        for binding in bindings:
            await stack.enter_async_context(
                credential_scope(
                    env,
                    binding,
                    provider,
                    redactor=redactor,
                    audit_log=audit_log,
                    pipeline=pipeline,
                    stage=stage,
                )
            )
        yield


__all__ = ["CredentialBinding", "credential_scope", "credential_scopes"]
