"""Unit tests for token storage."""

from __future__ import annotations

import os
import subprocess
from unittest.mock import Mock, patch

import pytest

from secret_store import GhCliSecretStore, MemorySecretStore, SecretStoreError


class TestMemorySecretStore:
    """Tests for the in-memory secret store."""

    def test_set_get_clear(self):
        store = MemorySecretStore()
        assert store.get_secret() is None

        store.set_secret("  ghp_abc  ")
        assert store.get_secret() == "ghp_abc"

        store.clear_secret()
        assert store.get_secret() is None

    def test_empty_secret_rejected(self):
        with pytest.raises(SecretStoreError):
            MemorySecretStore().set_secret("   ")


class TestGhCliSecretStore:
    """Tests for the gh CLI backed secret store."""

    def test_env_var_wins(self):
        """Test that GH_TOKEN is used without invoking gh."""
        with (
            patch.dict(os.environ, {"GH_TOKEN": "ghp_env"}, clear=True),
            patch("secret_store.subprocess.run") as mock_run,
        ):
            assert GhCliSecretStore().get_secret() == "ghp_env"
            mock_run.assert_not_called()

    def test_falls_back_to_gh_auth_token(self):
        with (
            patch.dict(os.environ, {}, clear=True),
            patch(
                "secret_store.subprocess.run",
                return_value=Mock(returncode=0, stdout="gho_cli\n"),
            ) as mock_run,
        ):
            assert GhCliSecretStore().get_secret() == "gho_cli"

        args = mock_run.call_args[0][0]
        assert args == ["gh", "auth", "token", "--hostname", "github.com"]

    def test_get_returns_none_when_unavailable(self):
        """Test that a missing gh binary or session yields None instead of raising."""
        with patch.dict(os.environ, {}, clear=True):
            with patch("secret_store.subprocess.run", side_effect=FileNotFoundError):
                assert GhCliSecretStore().get_secret() is None
            with patch(
                "secret_store.subprocess.run",
                return_value=Mock(returncode=1, stdout=""),
            ):
                assert GhCliSecretStore().get_secret() is None

    def test_get_returns_none_when_gh_cannot_run(self):
        """Test that an OS error starting gh, such as a permission error, yields None."""
        with (
            patch.dict(os.environ, {}, clear=True),
            patch("secret_store.subprocess.run", side_effect=PermissionError(13, "denied")),
        ):
            assert GhCliSecretStore().get_secret() is None

    def test_set_passes_token_on_stdin(self):
        with (
            patch("secret_store.shutil.which", return_value="/usr/local/bin/gh"),
            patch("secret_store.subprocess.run") as mock_run,
        ):
            GhCliSecretStore().set_secret("ghp_new")

        assert mock_run.call_args.kwargs["input"] == "ghp_new"
        assert "--with-token" in mock_run.call_args[0][0]

    def test_set_requires_gh(self):
        with patch("secret_store.shutil.which", return_value=None):
            with pytest.raises(SecretStoreError, match="not installed"):
                GhCliSecretStore().set_secret("ghp_new")

    def test_clear_failure_raises(self):
        error = subprocess.CalledProcessError(1, ["gh"], stderr="not logged in\n")
        with (
            patch("secret_store.shutil.which", return_value="/usr/local/bin/gh"),
            patch("secret_store.subprocess.run", side_effect=error),
        ):
            with pytest.raises(SecretStoreError, match="not logged in"):
                GhCliSecretStore().clear_secret()

    def test_set_wraps_os_error(self):
        with (
            patch("secret_store.shutil.which", return_value="/usr/local/bin/gh"),
            patch("secret_store.subprocess.run", side_effect=PermissionError(13, "denied")),
        ):
            with pytest.raises(SecretStoreError, match="Could not run gh auth login"):
                GhCliSecretStore().set_secret("ghp_new")
