import pytest

from hubwire.messages import (
    CancelInvocationMessage,
    CloseMessage,
    CompletionMessage,
    HandshakeRequest,
    HandshakeResponse,
    HubMessage,
    HubProtocol,
    InvocationMessage,
    StreamItemMessage,
)


def test_ping_message_dict():
    assert HubMessage(type=6).to_dict() == {"type": 6}


def test_invocation_omits_empty_id_and_stream_ids():
    message = InvocationMessage(target="A", arguments=[1])
    assert message.to_dict() == {"type": 1, "target": "A", "arguments": [1]}


def test_invocation_full_field_order():
    message = InvocationMessage(
        type=4, target="A", invocation_id="B", arguments=[], stream_ids=["C", "D"]
    )
    data = message.to_dict()
    assert list(data) == ["type", "target", "invocationId", "arguments", "streamIds"]
    assert data["type"] == 4
    assert data["streamIds"] == ["C", "D"]


def test_completion_omits_empty_result_and_error():
    assert CompletionMessage(invocation_id="8").to_dict() == {"type": 3, "invocationId": "8"}


def test_completion_with_result_and_error():
    data = CompletionMessage(invocation_id="9", result="3", error="Failed").to_dict()
    assert data == {"type": 3, "invocationId": "9", "result": "3", "error": "Failed"}


def test_stream_item_always_has_item():
    assert StreamItemMessage(invocation_id="9").to_dict() == {
        "type": 2,
        "invocationId": "9",
        "item": None,
    }


def test_cancel_invocation_dict():
    assert CancelInvocationMessage(invocation_id="5").to_dict() == {
        "type": 5,
        "invocationId": "5",
    }


def test_close_message_dict():
    assert CloseMessage(error="bye", allow_reconnect=True).to_dict() == {
        "type": 7,
        "error": "bye",
        "allowReconnect": True,
    }


def test_handshake_request_defaults():
    assert HandshakeRequest().to_dict() == {"protocol": "json", "version": 1}


def test_handshake_response_error_only_when_set():
    assert HandshakeResponse().to_dict() == {}
    assert HandshakeResponse(error="bad").to_dict() == {"error": "bad"}


def test_messages_compare_by_value():
    assert InvocationMessage(target="A") == InvocationMessage(target="A")
    assert HubMessage(type=6) != HubMessage(type=7)


def test_hub_protocol_is_abstract():
    with pytest.raises(TypeError):
        HubProtocol()