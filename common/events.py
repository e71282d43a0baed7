"""Booking decision notifications over RabbitMQ."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Protocol

import pika
from pika.exceptions import AMQPError

from .config import Settings
from .models import Booking

logger = logging.getLogger(__name__)


class EventPublisher(Protocol):
    def publish(self, event: str, payload: Dict[str, Any]) -> None: ...


def booking_event(booking: Booking) -> Dict[str, Any]:
    return {
        "booking_id": booking.id,
        "user_id": booking.user_id,
        "venue_id": booking.venue_id,
        "date": booking.start_date.isoformat(),
        "start_time": booking.start_time.isoformat(),
        "end_time": booking.end_time.isoformat(),
        "status": booking.status.value,
        "priority": booking.priority,
        "reason": booking.rejection_reason,
    }


class NullPublisher:
    """Drops events; used when notifications are switched off."""

    def publish(self, event: str, payload: Dict[str, Any]) -> None:
        logger.debug("Event %s not published (events disabled)", event)


class RecordingPublisher:
    """Keeps events in memory, for tests and local inspection."""

    def __init__(self) -> None:
        self.events: List[Dict[str, Any]] = []

    def publish(self, event: str, payload: Dict[str, Any]) -> None:
        self.events.append({"event": event, **payload})

    def names(self) -> List[str]:
        return [entry["event"] for entry in self.events]


class RabbitMQPublisher:
    """Publishes persistent messages to a durable queue.

    Called only after the decision has committed; a broker failure is logged
    and does not undo the decision.
    """

    def __init__(self, host: str, queue: str) -> None:
        self.host = host
        self.queue = queue

    def publish(self, event: str, payload: Dict[str, Any]) -> None:
        message = {"event": event, **payload}
        try:
            connection = pika.BlockingConnection(pika.ConnectionParameters(host=self.host))
            try:
                channel = connection.channel()
                channel.queue_declare(queue=self.queue, durable=True)
                channel.basic_publish(
                    exchange="",
                    routing_key=self.queue,
                    body=json.dumps(message),
                    properties=pika.BasicProperties(delivery_mode=2),
                )
            finally:
                connection.close()
            logger.info("[RabbitMQ] Sent %s for booking %s", event, payload.get("booking_id"))
        except AMQPError as exc:
            logger.error("[RabbitMQ] Could not publish %s: %s", event, exc)


def build_publisher(settings: Settings) -> EventPublisher:
    if settings.events_enabled:
        return RabbitMQPublisher(settings.rabbitmq_host, settings.rabbitmq_queue)
    return NullPublisher()
