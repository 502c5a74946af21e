"""検証器の内部イベントとフック"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog

logger = structlog.get_logger(__name__)


class EventNames:
    """VerifierEvent.name の定数。"""

    FETCH_ATTEMPT: str = "fetch_attempt"
    FETCH_SUCCESS: str = "fetch_success"
    FETCH_FAILURE: str = "fetch_failure"
    REFRESH_SUCCESS: str = "refresh_success"
    REFRESH_FAILURE: str = "refresh_failure"
    VERIFICATION_FAILURE: str = "verification_failure"


_WARNING_EVENTS = frozenset(
    {
        EventNames.FETCH_FAILURE,
        EventNames.REFRESH_FAILURE,
    }
)


@dataclass(frozen=True)
class VerifierEvent:
    """フックに渡されるイベント。トークン本体は含まない。"""

    name: str
    verifier_name: str
    error: BaseException | None = None
    attributes: Mapping[str, Any] = field(default_factory=dict)

    @property
    def error_code(self) -> str | None:
        if self.error is None:
            return None
        return getattr(self.error, "code", type(self.error).__name__)


class EventHook(Protocol):
    """イベントを受け取るフック。"""

    def __call__(self, event: VerifierEvent) -> None: ...


class EventEmitter:
    """イベントを structlog に記録し、登録されたフックへ配信する。

    フックが送出した例外はログに記録するだけで呼び出し元には伝播しない。
    """

    def __init__(self, verifier_name: str = "default", hooks: Iterable[EventHook] = ()) -> None:
        self._verifier_name = verifier_name
        self._hooks: list[EventHook] = list(hooks)
        self._logger = logger.bind(verifier_name=verifier_name)

    @property
    def verifier_name(self) -> str:
        return self._verifier_name

    def add_hook(self, hook: EventHook) -> None:
        self._hooks.append(hook)

    def emit(self, name: str, *, error: BaseException | None = None, **attributes: Any) -> VerifierEvent:
        event = VerifierEvent(
            name=name,
            verifier_name=self._verifier_name,
            error=error,
            attributes=attributes,
        )
        log_kwargs = dict(attributes)
        if error is not None:
            log_kwargs["error"] = str(error)
        if name in _WARNING_EVENTS:
            self._logger.warning(name, **log_kwargs)
        else:
            self._logger.debug(name, **log_kwargs)

        for hook in self._hooks:
            try:
                hook(event)
            except Exception:
                self._logger.exception("event_hook_failed", event_name=name)
        return event
