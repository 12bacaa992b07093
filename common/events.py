"""Publish booking lifecycle events to RabbitMQ for downstream notifiers."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import pika
from pika.exceptions import AMQPError

from .config import Settings, get_settings
from .models import Booking

logger = logging.getLogger(__name__)


def booking_payload(event: str, booking: Booking, **extra: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "event": event,
        "booking_id": booking.id,
        "customer_id": booking.customer_id,
        "product_id": booking.product_id,
        "status": booking.status.value,
        "start_date": booking.start_date.isoformat(),
        "end_date": booking.end_date.isoformat(),
        "total_amount": str(booking.total_amount),
    }
    payload.update(extra)
    return payload


def publish_booking_event(event: str, booking: Booking, settings: Optional[Settings] = None, **extra: Any) -> bool:
    """Send ``event`` to the bookings queue.

    Delivery is best effort: broker failures are logged and reported through
    the return value, never raised into the request that caused the event.
    """
    settings = settings or get_settings()
    if not settings.events_enabled:
        return False

    message = booking_payload(event, booking, **extra)
    try:
        connection = pika.BlockingConnection(pika.ConnectionParameters(host=settings.rabbitmq_host))
        try:
            channel = connection.channel()
            channel.queue_declare(queue=settings.bookings_queue, durable=True)
            channel.basic_publish(
                exchange="",
                routing_key=settings.bookings_queue,
                body=json.dumps(message),
                properties=pika.BasicProperties(delivery_mode=2),
            )
        finally:
            connection.close()
    except AMQPError as exc:
        logger.error("[RabbitMQ] Failed to publish %s for booking %s: %s", event, booking.id, exc)
        return False

    logger.info("[RabbitMQ] Published %s for booking %s", event, booking.id)
    return True
