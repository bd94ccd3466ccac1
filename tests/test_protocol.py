import json
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from gitpod_client.protocol import (  # noqa: E402
    InvalidRequestError,
    InvalidResponseError,
    MethodNotFoundError,
    NotFoundError,
    Notification,
    ParseError,
    PermissionDeniedError,
    Request,
    Response,
    ResponseError,
    decode_message,
    encode_message,
    error_from_payload,
)


def test_encode_request_uses_positional_params() -> None:
    text = encode_message(Request(id=7, method="getWorkspace", params=["ws-1"]))
    assert json.loads(text) == {"jsonrpc": "2.0", "id": 7, "method": "getWorkspace", "params": ["ws-1"]}


def test_encode_error_response() -> None:
    text = encode_message(Response(id=3, error=NotFoundError("Workspace not found", data={"id": "ws-1"})))
    assert json.loads(text) == {
        "jsonrpc": "2.0",
        "id": 3,
        "error": {"code": 404, "message": "Workspace not found", "data": {"id": "ws-1"}},
    }


def test_encode_null_result_is_kept() -> None:
    payload = json.loads(encode_message(Response(id=1, result=None)))
    assert "result" in payload and payload["result"] is None


def test_decode_classifies_messages() -> None:
    request = decode_message('{"jsonrpc":"2.0","id":1,"method":"getLoggedInUser","params":[]}')
    assert isinstance(request, Request)
    assert request.id == 1 and request.params == []

    notification = decode_message('{"jsonrpc":"2.0","method":"onInstanceUpdate","params":[{}]}')
    assert isinstance(notification, Notification)

    response = decode_message('{"jsonrpc":"2.0","id":"abc","result":["function:getWorkspace"]}')
    assert isinstance(response, Response)
    assert response.result == ["function:getWorkspace"]
    assert not response.is_error


def test_decode_error_response_maps_code() -> None:
    response = decode_message('{"jsonrpc":"2.0","id":2,"error":{"code":403,"message":"denied"}}')
    assert isinstance(response, Response)
    assert isinstance(response.error, PermissionDeniedError)
    assert response.error.message == "denied"


def test_decode_invalid_json_raises_parse_error() -> None:
    with pytest.raises(ParseError):
        decode_message("{not json")


@pytest.mark.parametrize(
    "text",
    [
        "[]",
        '{"id":1,"method":"x"}',
        '{"jsonrpc":"2.0","id":1,"method":""}',
        '{"jsonrpc":"2.0","id":1,"method":"x","params":"scalar"}',
        '{"jsonrpc":"2.0","id":1}',
        '{"jsonrpc":"2.0","result":1}',
    ],
)
def test_decode_rejects_invalid_messages(text: str) -> None:
    with pytest.raises(InvalidRequestError):
        decode_message(text)


def test_decode_invalid_request_keeps_id_for_reply() -> None:
    with pytest.raises(InvalidRequestError) as excinfo:
        decode_message('{"jsonrpc":"1.0","id":9,"method":"x"}')
    assert excinfo.value.data == {"id": 9}
    assert not isinstance(excinfo.value, InvalidResponseError)


@pytest.mark.parametrize(
    "text",
    [
        '{"jsonrpc":"2.0","id":3}',
        '{"id":3,"result":"ok"}',
    ],
)
def test_decode_broken_reply_is_an_invalid_response(text: str) -> None:
    with pytest.raises(InvalidResponseError) as excinfo:
        decode_message(text)
    assert excinfo.value.data == {"id": 3}


def test_error_from_payload_falls_back_to_generic_error() -> None:
    error = error_from_payload({"code": 460, "message": "Too many running workspaces"})
    assert type(error) is ResponseError
    assert error.code == 460

    assert isinstance(error_from_payload({"code": -32601, "message": "nope"}), MethodNotFoundError)
    assert error_from_payload("boom").message == "boom"
    assert error_from_payload({"code": "x"}).message == "Request failed with code -32603"
