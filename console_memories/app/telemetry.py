from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Literal, Protocol

import structlog

TelemetryValue = bool | int | str | None


class TelemetryEvent(StrEnum):
    REQUEST_START = "http.request.start"
    REQUEST_FINISH = "http.request.finish"
    REQUEST_ERROR = "http.request.error"
    ARTICLE_PUBLISHED = "article.published"
    ARTICLE_UPDATED = "article.updated"
    ARTICLE_DELETED = "article.deleted"
    REACTION_RECORDED = "reaction.recorded"
    VIEW_RECORDED = "view.recorded"


# Anything else, visitor ids, article bodies and credentials included, is dropped.
EVENT_ATTRIBUTES: frozenset[str] = frozenset(
    {
        "request_id",
        "method",
        "path",
        "status_code",
        "duration_ms",
        "error_type",
        "article_id",
        "slug",
        "featured",
        "kind",
        "anonymous",
        "views",
    }
)
MAX_ATTRIBUTE_LENGTH = 160


class TelemetrySink(Protocol):
    def emit(self, *, event_name: TelemetryEvent, attributes: Mapping[str, TelemetryValue]) -> None:
        ...


class NoOpTelemetrySink:
    def emit(self, *, event_name: TelemetryEvent, attributes: Mapping[str, TelemetryValue]) -> None:
        return


class StructuredLogTelemetrySink:
    """Writes events through the ``console_memories.telemetry`` logger."""

    def __init__(self) -> None:
        self._logger = structlog.get_logger("console_memories.telemetry")

    def emit(self, *, event_name: TelemetryEvent, attributes: Mapping[str, TelemetryValue]) -> None:
        self._logger.info("telemetry", telemetry_event=event_name.value, **attributes)


@dataclass(frozen=True)
class TelemetryClient:
    enabled: bool
    sink: TelemetrySink

    @classmethod
    def disabled(cls) -> TelemetryClient:
        return cls(enabled=False, sink=NoOpTelemetrySink())

    def emit(self, event: TelemetryEvent, **attributes: TelemetryValue) -> None:
        if not self.enabled:
            return
        self.sink.emit(event_name=event, attributes=event_attributes(attributes))


def build_telemetry_client(*, enabled: bool, sink: Literal["none", "log"]) -> TelemetryClient:
    if not enabled or sink == "none":
        return TelemetryClient.disabled()
    return TelemetryClient(enabled=True, sink=StructuredLogTelemetrySink())


def event_attributes(attributes: Mapping[str, TelemetryValue]) -> dict[str, TelemetryValue]:
    kept: dict[str, TelemetryValue] = {}
    for key, value in attributes.items():
        if key not in EVENT_ATTRIBUTES:
            continue
        if isinstance(value, str) and len(value) > MAX_ATTRIBUTE_LENGTH:
            value = f"{value[:MAX_ATTRIBUTE_LENGTH]}..."
        kept[key] = value
    return kept
