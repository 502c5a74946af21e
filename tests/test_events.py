"""EventEmitter のユニットテスト"""

from unittest.mock import MagicMock

from k1s0_id_token_verifier.events import EventEmitter, EventNames, VerifierEvent
from k1s0_id_token_verifier.exceptions import ErrorCodes, FetchError


def test_emit_forwards_to_hooks() -> None:
    hook = MagicMock()
    emitter = EventEmitter("web", [hook])

    event = emitter.emit(EventNames.FETCH_SUCCESS, url="https://example.com/jwks", key_count=2)

    hook.assert_called_once_with(event)
    assert event.verifier_name == "web"
    assert event.attributes == {"url": "https://example.com/jwks", "key_count": 2}
    assert event.error_code is None


def test_failing_hook_does_not_propagate() -> None:
    """フックの例外は呼び出し元に伝播せず、後続のフックも呼ばれること。"""
    received: list[VerifierEvent] = []
    broken = MagicMock(side_effect=RuntimeError("hook bug"))
    emitter = EventEmitter("web", [broken, received.append])

    emitter.emit(EventNames.REFRESH_SUCCESS)

    broken.assert_called_once()
    assert [e.name for e in received] == [EventNames.REFRESH_SUCCESS]


def test_error_code_from_error() -> None:
    emitter = EventEmitter()
    error = FetchError(ErrorCodes.FETCH_NETWORK_ERROR, "down", retryable=True)
    event = emitter.emit(EventNames.FETCH_FAILURE, error=error)
    assert event.error_code == ErrorCodes.FETCH_NETWORK_ERROR
    assert event.verifier_name == "default"

    plain = VerifierEvent(name="x", verifier_name="v", error=ValueError("x"))
    assert plain.error_code == "ValueError"


def test_add_hook() -> None:
    hook = MagicMock()
    emitter = EventEmitter()
    emitter.add_hook(hook)
    emitter.emit(EventNames.FETCH_ATTEMPT)
    hook.assert_called_once()
