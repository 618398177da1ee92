# Overview: Fire-and-forget lifecycle events for the real-time broadcast layer.

from __future__ import annotations

from typing import Protocol

from flask import current_app


EVENT_ORDER_PLACED = "orderPlaced"
EVENT_ORDER_STATUS_CHANGED = "orderStatusChanged"
EVENT_PRODUCT_DISPENSED = "productDispensed"
EVENT_DISPENSARY_STATUS_CHANGED = "dispensaryStatusChanged"

EXTENSION_KEY = "campuscare.notifier"


class NotificationSink(Protocol):
    def publish(self, event: str, payload: dict) -> None:
        ...


class LoggingNotificationSink:
    """Default sink: writes events to the application log."""

    def publish(self, event: str, payload: dict) -> None:
        current_app.logger.info("event %s %s", event, payload)


class RecordingNotificationSink:
    """Keeps events in memory. Used by tests and local tooling."""

    def __init__(self):
        self.events: list[tuple[str, dict]] = []

    def publish(self, event: str, payload: dict) -> None:
        self.events.append((event, payload))

    def named(self, event: str) -> list[dict]:
        return [payload for name, payload in self.events if name == event]

    def clear(self) -> None:
        self.events.clear()


def init_app(app, sink: NotificationSink | None = None) -> None:
    app.extensions[EXTENSION_KEY] = sink or LoggingNotificationSink()


def get_sink() -> NotificationSink:
    return current_app.extensions[EXTENSION_KEY]


def publish(event: str, payload: dict) -> None:
    """
    Hand an event to the configured sink.

    Called only after the unit of work has committed. A failing sink is
    logged and ignored: delivery never decides the outcome of an order.
    """
    try:
        get_sink().publish(event, payload)
    except Exception:
        current_app.logger.exception("Failed to publish %s event", event)
