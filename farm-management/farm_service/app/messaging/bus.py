import json
import logging
import threading
import time

import pika

from .. import settings

logger = logging.getLogger(__name__)


class RabbitMQProducer:
    """
    Handles the connection to RabbitMQ and publishing of events.

    Connects lazily on first publish with a single, short attempt. After a
    failed connect every publish fails fast until RABBITMQ_RETRY_DELAY has
    passed, so a missing broker never stalls a request.

    One BlockingConnection is not thread-safe; the lock serialises connect
    and publish across the request threads sharing this producer.
    """

    def __init__(self, exchange_name=None, exchange_type="topic"):
        self.exchange_name = exchange_name or settings.EVENTS_EXCHANGE
        self.exchange_type = exchange_type
        self.connection = None
        self.channel = None
        self._lock = threading.Lock()
        self._retry_after = 0.0

    def connect(self):
        """Establishes a connection to RabbitMQ and declares the exchange."""
        if time.monotonic() < self._retry_after:
            raise pika.exceptions.AMQPConnectionError(
                f"RabbitMQ at {settings.RABBITMQ_HOST} unavailable, not retrying yet"
            )

        credentials = pika.PlainCredentials(settings.RABBITMQ_USER, settings.RABBITMQ_PASSWORD)
        parameters = pika.ConnectionParameters(
            host=settings.RABBITMQ_HOST,
            credentials=credentials,
            connection_attempts=1,
            socket_timeout=settings.RABBITMQ_CONNECT_TIMEOUT,
        )
        try:
            self.connection = pika.BlockingConnection(parameters)
            self.channel = self.connection.channel()

            # Declare the exchange (durable ensures it survives restarts)
            self.channel.exchange_declare(
                exchange=self.exchange_name,
                exchange_type=self.exchange_type,
                durable=True
            )
        except pika.exceptions.AMQPConnectionError:
            self._retry_after = time.monotonic() + settings.RABBITMQ_RETRY_DELAY
            logger.warning(
                "RabbitMQ not reachable at %s; next attempt in %ss",
                settings.RABBITMQ_HOST, settings.RABBITMQ_RETRY_DELAY,
            )
            raise
        logger.info("Connected to RabbitMQ exchange %s", self.exchange_name)

    def publish(self, routing_key, message):
        """
        Publishes a message to the exchange with a specific routing key.

        Args:
            routing_key (str): The topic key (e.g., 'notification.incoming_transfer').
            message (dict): The data payload to send.
        """
        with self._lock:
            # Reconnect if the connection was lost
            if not self.connection or self.connection.is_closed:
                self.connect()

            self.channel.basic_publish(
                exchange=self.exchange_name,
                routing_key=routing_key,
                body=json.dumps(message, default=str),
                properties=pika.BasicProperties(
                    delivery_mode=2,  # Make message persistent
                    content_type='application/json'
                )
            )
        logger.debug("Sent event '%s': %s", routing_key, message)

    def close(self):
        """Closes the connection cleanly."""
        with self._lock:
            if self.connection and not self.connection.is_closed:
                self.connection.close()


class NotificationDispatcher:
    """
    Fire-and-forget delivery of notifications to farm users.

    Each payload is published as `notification.<type>`. Failures are logged
    and swallowed: a notification is advisory and must never undo the
    operation that triggered it.
    """

    def __init__(self, producer=None):
        self.producer = producer or RabbitMQProducer()

    def send_notification(self, payload: dict) -> bool:
        if not settings.NOTIFICATIONS_ENABLED:
            return False

        routing_key = f"notification.{payload.get('type', 'generic')}"
        try:
            self.producer.publish(routing_key=routing_key, message=payload)
            return True
        except Exception as e:
            logger.warning(
                "Failed to send notification to %s: %s", payload.get("recipient_id"), e
            )
            return False

    def notify_admins(self, admin_ids, ferme_id, **payload) -> int:
        """
        Sends one notification per admin; returns how many were published.
        The first failure skips the remaining admins.
        """
        sent = 0
        for index, admin_id in enumerate(admin_ids):
            message = dict(payload, recipient_id=admin_id, recipient_ferme_id=ferme_id)
            message.setdefault("status", "unread")
            if not self.send_notification(message):
                skipped = len(admin_ids) - index - 1
                if skipped and settings.NOTIFICATIONS_ENABLED:
                    logger.warning("Skipping %d remaining %s notification(s)", skipped, payload.get("type"))
                break
            sent += 1
        return sent


_dispatcher = None
_dispatcher_lock = threading.Lock()


def get_notifier() -> NotificationDispatcher:
    """Dependency returning the process-wide dispatcher."""
    global _dispatcher
    with _dispatcher_lock:
        if _dispatcher is None:
            _dispatcher = NotificationDispatcher()
        return _dispatcher
