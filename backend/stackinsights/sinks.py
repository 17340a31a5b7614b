from __future__ import annotations

import json
from typing import Protocol

from kafka import KafkaProducer
from kafka.errors import KafkaError

from .config import Settings
from .logs import log_event
from .models import UserAttributes


class AttributeSink(Protocol):
    def publish(self, user_id: str, attributes: UserAttributes) -> None: ...

    def close(self) -> None: ...


class LogAttributeSink:
    mode = "log"

    def publish(self, user_id: str, attributes: UserAttributes) -> None:
        log_event("attributes_published", user_id=user_id, attributes=attributes.model_dump())

    def close(self) -> None:
        return None


def _encode_payload(payload: dict) -> bytes:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=True).encode("utf-8")


class KafkaAttributeSink:
    """Publishes attribute snapshots to a topic keyed by user id.

    ``send`` only enqueues into the producer buffer, and the producer is
    built with a short ``max_block_ms`` so a missing broker cannot stall the
    caller on metadata. Delivery results arrive through callbacks.
    """

    mode = "kafka"

    def __init__(self, producer: KafkaProducer, topic: str) -> None:
        self._producer = producer
        self.topic = topic
        self.publish_failed = 0

    def publish(self, user_id: str, attributes: UserAttributes) -> None:
        future = self._producer.send(
            self.topic,
            key=user_id.encode("utf-8"),
            value={"user_id": user_id, "attributes": attributes.model_dump()},
        )
        future.add_errback(self._on_send_error, user_id)

    def _on_send_error(self, user_id: str, ex: BaseException) -> None:
        self.publish_failed += 1
        log_event("attribute_publish_failed", user_id=user_id, sink=self.mode, error=str(ex))

    def close(self) -> None:
        try:
            self._producer.flush(timeout=2)
        except KafkaError as ex:
            log_event("kafka_flush_failed", error=str(ex))
        self._producer.close(timeout=2)


def build_attribute_sink(settings: Settings) -> AttributeSink:
    if settings.signal_sink == "kafka":
        try:
            producer = KafkaProducer(
                bootstrap_servers=settings.kafka_bootstrap_servers,
                value_serializer=_encode_payload,
                linger_ms=25,
                retries=3,
                acks="all",
                max_block_ms=settings.kafka_max_block_ms,
            )
        except KafkaError as ex:
            log_event("kafka_sink_start_failed_fallback_log", error=str(ex))
            return LogAttributeSink()
        log_event("attribute_sink_selected", mode="kafka", topic=settings.kafka_attributes_topic)
        return KafkaAttributeSink(producer, settings.kafka_attributes_topic)
    log_event("attribute_sink_selected", mode="log")
    return LogAttributeSink()
