# mindwell/kafka.py
import json
import logging

from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaError

from mindwell.config import KAFKA_BOOTSTRAP

logger = logging.getLogger(__name__)

producer: AIOKafkaProducer | None = None


async def start_kafka():
    global producer
    if not KAFKA_BOOTSTRAP:
        logger.info("KAFKA_BOOTSTRAP not set; event publishing disabled")
        return
    producer = AIOKafkaProducer(
        bootstrap_servers=KAFKA_BOOTSTRAP,
        value_serializer=lambda v: json.dumps(v, default=str).encode(),
        key_serializer=lambda v: str(v).encode(),
        linger_ms=5,
        acks="all",
        enable_idempotence=True,
    )
    await producer.start()


async def stop_kafka():
    global producer
    if producer:
        await producer.stop()
        producer = None


async def publish(topic: str, key, value: dict) -> bool:
    """Hand one message to the broker. Returns False when nothing was sent."""
    if producer is None:
        return False
    try:
        await producer.send_and_wait(topic, value=value, key=key)
    except KafkaError:
        logger.exception("Failed to publish to %s", topic)
        return False
    return True
