from typing import Any, Dict

import pytest

import gitpod_client.service as service_module
from gitpod_client.connection import JsonRpcConnection
from gitpod_client.protocol import NotFoundError
from gitpod_client.server import GET_LOGGED_IN_USER, GET_OWNER_TOKEN, GET_WORKSPACES, GitpodServerClient
from gitpod_client.transport import MemoryTransport
from main import EXIT_FAILED, EXIT_OK, EXIT_USAGE, _parse_args, main


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    for name in ("GITPOD_HOST", "GITPOD_TOKEN", "GITPOD_TIMEOUT", "GITPOD_USE_TLS"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("GITPOD_CONFIG", str(tmp_path / "client.yaml"))
    (tmp_path / "client.yaml").write_text("{}\n", encoding="utf-8")


@pytest.fixture()
def fake_server(monkeypatch: pytest.MonkeyPatch) -> Dict[str, Any]:
    seen: Dict[str, Any] = {}

    def owner_token(workspace_id: str) -> str:
        raise NotFoundError(f"Workspace {workspace_id} does not exist.")

    async def connector(settings):
        seen["settings"] = settings
        left, right = MemoryTransport.pair()
        peer = JsonRpcConnection(right)
        peer.on_request(GET_LOGGED_IN_USER, lambda: {"id": "user-1", "name": "ada"})
        peer.on_request(GET_WORKSPACES, lambda options: [])
        peer.on_request(GET_OWNER_TOKEN, owner_token)
        peer.start()
        connection = JsonRpcConnection(left)
        connection.start()
        return GitpodServerClient(connection)

    monkeypatch.setattr(service_module, "connect", connector)
    return seen


def test_default_command_is_whoami() -> None:
    args = _parse_args([])
    assert args.command == "whoami"


def test_global_options_without_subcommand() -> None:
    args = _parse_args(["--host", "gitpod.example.com", "--timeout", "3"])
    assert args.command == "whoami"
    assert args.host == "gitpod.example.com"
    assert args.timeout == 3.0


def test_subcommand_arguments() -> None:
    args = _parse_args(["heartbeat", "instance-1", "--closed", "--rtt", "12.5"])
    assert args.command == "heartbeat"
    assert args.instance_id == "instance-1"
    assert args.closed is True
    assert args.rtt == 12.5

    watch = _parse_args(["watch"])
    assert watch.workspace_id == "*"


def test_missing_token_is_a_usage_error(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["whoami"]) == EXIT_USAGE
    assert "No access token configured" in capsys.readouterr().err


def test_invalid_timeout_is_a_usage_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GITPOD_TIMEOUT", "never")
    assert main(["--token", "abc", "whoami"]) == EXIT_USAGE


def test_whoami_prints_user(fake_server: Dict[str, Any], capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["--token", "abc", "--host", "https://gitpod.example.com/", "whoami"]) == EXIT_OK
    assert "ada (user-1)" in capsys.readouterr().out
    assert fake_server["settings"].host == "gitpod.example.com"
    assert fake_server["settings"].token == "abc"


def test_empty_workspace_list(fake_server: Dict[str, Any], capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["--token", "abc", "workspaces", "--limit", "5"]) == EXIT_OK
    assert "No workspaces found." in capsys.readouterr().out


def test_server_error_exits_with_failure(fake_server: Dict[str, Any], capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["--token", "abc", "owner-token", "ws-missing"]) == EXIT_FAILED
    err = capsys.readouterr().err
    assert "Workspace ws-missing does not exist." in err
    assert "code 404" in err
