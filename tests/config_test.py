"""Tests for loading the configuration."""

from datetime import timedelta
from pathlib import Path

import pytest
from safir.logging import LogLevel

from voldriver.config import Config
from voldriver.constants import DEFAULT_DOCKER_SOCKET


def test_defaults() -> None:
    config = Config()
    assert config.name == "hpe.com/"
    assert config.plugin.socket == ""
    assert config.plugin.docker_socket == DEFAULT_DOCKER_SOCKET
    assert config.plugin.strip_kubernetes_options
    assert config.resync_period == timedelta(minutes=1)
    assert config.clone_wait == 60
    assert config.size_options == ["sizeInGiB"]
    assert config.slack_webhook is None


def test_from_file(config_path: Path) -> None:
    config = Config.from_file(config_path)
    assert config.name == "hpe.com/"
    assert config.plugin.socket == "/run/docker/plugins/test.sock"
    assert config.plugin.timeout == timedelta(seconds=30)
    assert config.resync_period == timedelta(minutes=2)
    assert config.clone_wait == 10
    assert config.size_options == ["sizeInGiB", "size"]
    assert config.log_level == LogLevel.DEBUG


def test_environment(
    config_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("VOLDRIVER_NAME", "example.com/")
    monkeypatch.setenv("VOLDRIVER_CLONE_WAIT", "5")
    monkeypatch.setenv("VOLDRIVER_PLUGIN__SOCKET", "nimble")
    monkeypatch.setenv("VOLDRIVER_ALERT_HOOK", "https://slack.example/x")

    config = Config.from_file(config_path)
    assert config.name == "example.com/"
    assert config.clone_wait == 5
    assert config.plugin.socket == "nimble"
    assert config.slack_webhook
    assert config.slack_webhook.get_secret_value() == (
        "https://slack.example/x"
    )
