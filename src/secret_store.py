"""Storage for the GitHub token, kept apart from the settings file."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class SecretStoreError(Exception):
    """Raised when a secret cannot be saved or cleared."""


class SecretStore(ABC):
    """Secret store contract: a single secret string."""

    @abstractmethod
    def set_secret(self, secret: str) -> None:
        """Persist the secret. Raises SecretStoreError on failure."""

    @abstractmethod
    def get_secret(self) -> str | None:
        """Return the secret, or None if none is stored. Never raises."""

    @abstractmethod
    def clear_secret(self) -> None:
        """Remove the secret. Raises SecretStoreError on failure."""


class MemorySecretStore(SecretStore):
    """Keeps the secret in process memory only."""

    def __init__(self, secret: str | None = None) -> None:
        self._secret = secret

    def set_secret(self, secret: str) -> None:
        if not secret.strip():
            raise SecretStoreError("Secret cannot be empty")
        self._secret = secret.strip()

    def get_secret(self) -> str | None:
        return self._secret

    def clear_secret(self) -> None:
        self._secret = None


class GhCliSecretStore(SecretStore):
    """
    Uses the GitHub CLI's credential storage for the token.

    Resolution order for reads (stops at first success):
      1. GH_TOKEN environment variable
      2. `gh auth token` (the token saved by `gh auth login`)
    """

    def __init__(self, hostname: str = "github.com", env_var: str = "GH_TOKEN") -> None:
        self.hostname = hostname
        self.env_var = env_var

    def _check_gh_cli_available(self) -> None:
        if not shutil.which("gh"):
            raise SecretStoreError(
                "GitHub CLI (gh) is not installed. See https://cli.github.com/ to install it."
            )

    def set_secret(self, secret: str) -> None:
        if not secret.strip():
            raise SecretStoreError("Secret cannot be empty")
        self._check_gh_cli_available()
        try:
            subprocess.run(
                ["gh", "auth", "login", "--hostname", self.hostname, "--with-token"],
                input=secret.strip(),
                capture_output=True,
                text=True,
                check=True,
                timeout=30,
            )
        except subprocess.CalledProcessError as e:
            raise SecretStoreError(f"gh auth login failed: {e.stderr.strip()}") from e
        except subprocess.TimeoutExpired as e:
            raise SecretStoreError("gh auth login timed out") from e
        except OSError as e:
            raise SecretStoreError(f"Could not run gh auth login: {e}") from e
        logger.info(f"Saved GitHub token for {self.hostname} via gh CLI")

    def get_secret(self) -> str | None:
        token = os.environ.get(self.env_var)
        if token:
            return token

        try:
            result = subprocess.run(
                ["gh", "auth", "token", "--hostname", self.hostname],
                capture_output=True,
                text=True,
                timeout=5,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug(f"gh auth token unavailable: {e}")
            return None
        if result.returncode == 0:
            token = result.stdout.strip()
            if token:
                logger.debug("Resolved GitHub token via gh CLI session.")
                return token
        return None

    def clear_secret(self) -> None:
        self._check_gh_cli_available()
        try:
            subprocess.run(
                ["gh", "auth", "logout", "--hostname", self.hostname],
                capture_output=True,
                text=True,
                check=True,
                timeout=30,
            )
        except subprocess.CalledProcessError as e:
            raise SecretStoreError(f"gh auth logout failed: {e.stderr.strip()}") from e
        except subprocess.TimeoutExpired as e:
            raise SecretStoreError("gh auth logout timed out") from e
        except OSError as e:
            raise SecretStoreError(f"Could not run gh auth logout: {e}") from e
        logger.info(f"Cleared GitHub token for {self.hostname}")
