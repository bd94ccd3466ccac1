from __future__ import annotations

from pathlib import Path

import pytest

from gitpod_client.config import (
    ClientSettings,
    ConfigurationError,
    load_settings,
    load_settings_file,
    normalise_host,
)


def test_defaults() -> None:
    settings = load_settings(environ={})
    assert settings.host == "gitpod.io"
    assert settings.token is None
    assert settings.timeout is None
    assert settings.endpoint_url == "wss://gitpod.io/api/v1"
    assert settings.origin_header == "https://gitpod.io/"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("gitpod.io", "gitpod.io"),
        ("https://gitpod.example.com/", "gitpod.example.com"),
        ("  gitpod.example.com/workspaces ", "gitpod.example.com"),
        ("localhost:3000", "localhost:3000"),
    ],
)
def test_normalise_host(raw: str, expected: str) -> None:
    assert normalise_host(raw) == expected


def test_normalise_host_rejects_blank() -> None:
    with pytest.raises(ConfigurationError):
        normalise_host(" https:// ")


def test_yaml_file_then_environment(tmp_path: Path) -> None:
    config_path = tmp_path / "client.yaml"
    config_path.write_text(
        "host: https://gitpod.example.com\n"
        "token: from-file\n"
        "timeout: 15\n"
        "use_tls: false\n",
        encoding="utf-8",
    )

    from_file = load_settings(config_path, environ={})
    assert from_file.host == "gitpod.example.com"
    assert from_file.token == "from-file"
    assert from_file.timeout == 15.0
    assert from_file.endpoint_url == "ws://gitpod.example.com/api/v1"
    assert from_file.origin_header == "http://gitpod.example.com/"

    env = {"GITPOD_TOKEN": "from-env", "GITPOD_TIMEOUT": "2.5"}
    overridden = load_settings(config_path, environ=env)
    assert overridden.host == "gitpod.example.com"
    assert overridden.token == "from-env"
    assert overridden.timeout == 2.5


def test_config_path_from_environment(tmp_path: Path) -> None:
    config_path = tmp_path / "other.yaml"
    config_path.write_text("host: self-hosted.example.org\n", encoding="utf-8")

    settings = load_settings(environ={"GITPOD_CONFIG": str(config_path), "GITPOD_HOST": ""})
    assert settings.host == "self-hosted.example.org"


def test_invalid_files_raise_configuration_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError):
        load_settings_file(tmp_path / "missing.yaml")

    not_mapping = tmp_path / "list.yaml"
    not_mapping.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_settings_file(not_mapping)

    broken = tmp_path / "broken.yaml"
    broken.write_text("host: [unclosed\n", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_settings_file(broken)


@pytest.mark.parametrize("value", ["soon", "0", "-3"])
def test_invalid_timeouts(value: str) -> None:
    with pytest.raises(ConfigurationError):
        load_settings(environ={"GITPOD_TIMEOUT": value})


def test_repr_hides_token() -> None:
    settings = ClientSettings(token="secret-value")
    assert "secret-value" not in repr(settings)
    assert settings.for_host("https://other.example.com").host == "other.example.com"
    assert settings.for_host("other.example.com").token == "secret-value"
