"""Shared test secrets configuration.

Single source of truth for test secrets used across:
- conftest.py (process environment for EnvVarSecretProvider)
- test modules building StaticSecretProvider instances
"""

import os

# Secret key (as referenced by credential bindings) -> value
TEST_SECRET_VALUES = {
    "registry_user": "ci-robot-account",
    "registry_token": "glpat-registry-0123456789",
    "sonar_token": "squ_sonar_abcdef123456",
    "chat_webhook": "https://hooks.chat.example/T000/B000/XXXX",
    "short": "abc",
}

TEST_SECRETS = {
    f"STAGEFLOW_SECRET_{key.upper()}": value for key, value in TEST_SECRET_VALUES.items()
}


def setup_test_secrets() -> None:
    """Configure test secrets in environment variables."""
    for key, value in TEST_SECRETS.items():
        os.environ[key] = value


def teardown_test_secrets() -> None:
    """Remove test secrets from environment variables."""
    for key in TEST_SECRETS:
        os.environ.pop(key, None)
