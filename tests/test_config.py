"""Tests for configuration loading."""

import os

import pytest

from hyperpublisher.config import Config, load_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep HYPERPUB_* variables from the outer environment out of tests."""
    for key in list(os.environ):
        if key.startswith("HYPERPUB_"):
            monkeypatch.delenv(key)


class TestDefaults:
    """Tests for default configuration."""

    def test_defaults(self):
        config = Config()

        assert config.timeouts.peer_seconds == 30.0
        assert config.timeouts.update_seconds == 10.0
        assert config.timeouts.ack_seconds == 60.0
        assert config.storage.db_path == ":memory:"
        assert config.mirror.enabled is False
        assert config.pinning.url == ""
        assert config.publish.compare_content is True
        assert config.publish.delete is False
        assert config.publish.min_metadata_length == 1

    def test_no_path(self):
        assert load_config(None) == Config()

    def test_missing_file(self, tmp_path):
        assert load_config(tmp_path / "missing.yaml") == Config()


class TestYaml:
    """Tests for YAML config files."""

    def test_full_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            """
timeouts:
  peer_seconds: 5
  ack_seconds: 0
storage:
  db_path: /var/lib/hyperpublisher/blocks.db
mirror:
  enabled: true
pinning:
  url: https://pins.example.org
  name: my-site
  max_retries: 5
publish:
  ignore:
    - .git
    - "*.tmp"
  delete: true
"""
        )

        config = load_config(path)

        assert config.timeouts.peer_seconds == 5.0
        assert config.timeouts.update_seconds == 10.0
        assert config.timeouts.ack_seconds is None
        assert config.storage.db_path == "/var/lib/hyperpublisher/blocks.db"
        assert config.mirror.enabled is True
        assert config.mirror.db_path == "~/.hyperpublisher/mirror.db"
        assert config.pinning.url == "https://pins.example.org"
        assert config.pinning.name == "my-site"
        assert config.pinning.max_retries == 5
        assert config.publish.ignore == [".git", "*.tmp"]
        assert config.publish.delete is True
        assert config.publish.compare_content is True

    def test_empty_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")

        assert load_config(path) == Config()


class TestEnvOverrides:
    """Tests for HYPERPUB_* environment variables."""

    def test_timeouts(self, monkeypatch):
        monkeypatch.setenv("HYPERPUB_PEER_TIMEOUT", "2.5")
        monkeypatch.setenv("HYPERPUB_ACK_TIMEOUT", "0")

        config = load_config()

        assert config.timeouts.peer_seconds == 2.5
        assert config.timeouts.ack_seconds is None

    def test_env_beats_file(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text("pinning:\n  url: https://file.example.org\n")
        monkeypatch.setenv("HYPERPUB_PINNING_URL", "https://env.example.org")
        monkeypatch.setenv("HYPERPUB_PINNING_TOKEN", "secret")

        config = load_config(path)

        assert config.pinning.url == "https://env.example.org"
        assert config.pinning.token == "secret"

    def test_publish_and_mirror(self, monkeypatch):
        monkeypatch.setenv("HYPERPUB_IGNORE", ".git,node_modules,")
        monkeypatch.setenv("HYPERPUB_COMPARE_CONTENT", "false")
        monkeypatch.setenv("HYPERPUB_MIRROR_ENABLED", "yes")
        monkeypatch.setenv("HYPERPUB_MIRROR_DB_PATH", "/tmp/mirror.db")
        monkeypatch.setenv("HYPERPUB_DB_PATH", "/tmp/blocks.db")

        config = load_config()

        assert config.publish.ignore == [".git", "node_modules"]
        assert config.publish.compare_content is False
        assert config.mirror.enabled is True
        assert config.mirror.db_path == "/tmp/mirror.db"
        assert config.storage.db_path == "/tmp/blocks.db"
