"""
Durable job queues for export work.

Named Redis lists carry JSON job messages. Producers LPUSH onto the head
and consumers BRPOP from the tail, so each list is FIFO across any number
of producers while competing consumers each receive a given message once
per delivery attempt.

Separate lists exist per job kind (``dsp-jobs`` for track exports,
``codec-jobs`` for codec previews) so a slow job class cannot starve a
cheap one sharing the same workers.

An unreachable backend raises QueueUnavailableError on both enqueue and
dequeue. It never degrades into a silent no-op.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from collections import deque
from typing import Any, Deque, Dict, Optional, Union

import redis
from pydantic import BaseModel

from src.exceptions import QueueUnavailableError

logger = logging.getLogger(__name__)

DSP_QUEUE = "dsp-jobs"
CODEC_QUEUE = "codec-jobs"

# Message type tag -> queue that carries it
MESSAGE_QUEUES = {
    "track-export": DSP_QUEUE,
    "codec-preview": CODEC_QUEUE,
}

QueuePayload = Union[str, bytes, Dict[str, Any], BaseModel]


def serialize_payload(message: QueuePayload) -> str:
    """Convert a message into the JSON text stored on a queue"""
    if isinstance(message, BaseModel):
        return message.model_dump_json()
    if isinstance(message, bytes):
        return message.decode("utf-8")
    if isinstance(message, str):
        return message
    return json.dumps(message)


def queue_for_message_type(message_type: str) -> str:
    try:
        return MESSAGE_QUEUES[message_type]
    except KeyError:
        raise ValueError(f"No queue registered for message type: {message_type}")


class JobQueue(ABC):
    """Abstract FIFO job queue with blocking dequeue"""

    @abstractmethod
    def enqueue(self, queue_name: str, message: QueuePayload) -> None:
        """Append a message to the tail of a named queue."""
        pass

    @abstractmethod
    def dequeue(self, queue_name: str, timeout: float) -> Optional[str]:
        """
        Pop the oldest message, waiting up to ``timeout`` seconds.

        Returns:
            Message JSON text, or None if the wait timed out
        """
        pass

    @abstractmethod
    def length(self, queue_name: str) -> int:
        pass

    def close(self) -> None:
        pass


class RedisJobQueue(JobQueue):
    """
    Redis list backed job queue.

    Example:
        >>> queue = RedisJobQueue("redis://localhost:6379")
        >>> queue.enqueue("dsp-jobs", {"type": "track-export", ...})
        >>> raw = queue.dequeue("dsp-jobs", timeout=5)
    """

    def __init__(self, redis_url: Optional[str] = None, client: Optional[redis.Redis] = None):
        if client is None:
            if redis_url is None:
                from src.config import config
                redis_url = config.redis_url
            client = redis.from_url(redis_url)
        self._client = client
        self._redis_url = redis_url

    def enqueue(self, queue_name: str, message: QueuePayload) -> None:
        data = serialize_payload(message)
        try:
            self._client.lpush(queue_name, data)
        except redis.exceptions.RedisError as e:
            logger.error(f"Failed to enqueue onto {queue_name}: {e}")
            raise QueueUnavailableError(
                f"Queue backend unavailable while enqueuing to {queue_name}: {e}",
                details={"queue": queue_name},
            ) from e
        logger.debug(f"Enqueued message onto {queue_name}")

    def dequeue(self, queue_name: str, timeout: float) -> Optional[str]:
        try:
            result = self._client.brpop(queue_name, timeout=timeout)
        except redis.exceptions.RedisError as e:
            logger.error(f"Failed to dequeue from {queue_name}: {e}")
            raise QueueUnavailableError(
                f"Queue backend unavailable while dequeuing from {queue_name}: {e}",
                details={"queue": queue_name},
            ) from e

        if result is None:
            return None

        _, value = result
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value

    def length(self, queue_name: str) -> int:
        try:
            return int(self._client.llen(queue_name))
        except redis.exceptions.RedisError as e:
            raise QueueUnavailableError(f"Queue backend unavailable: {e}") from e

    def ping(self) -> bool:
        """Check connectivity; raises QueueUnavailableError when unreachable"""
        try:
            return bool(self._client.ping())
        except redis.exceptions.RedisError as e:
            raise QueueUnavailableError(f"Queue backend unavailable: {e}") from e

    def close(self) -> None:
        self._client.close()


class LocalJobQueue(JobQueue):
    """
    In-memory job queue for local development and testing.

    Thread-safe with the same FIFO and timeout semantics as RedisJobQueue.
    """

    def __init__(self):
        self._queues: Dict[str, Deque[str]] = {}
        self._lock = threading.RLock()
        self._not_empty = threading.Condition(self._lock)
        self._stats = {
            'messages_enqueued': 0,
            'messages_dequeued': 0,
        }

    def enqueue(self, queue_name: str, message: QueuePayload) -> None:
        data = serialize_payload(message)
        with self._not_empty:
            self._queues.setdefault(queue_name, deque()).append(data)
            self._stats['messages_enqueued'] += 1
            self._not_empty.notify_all()
        logger.debug(f"Enqueued local message onto {queue_name}")

    def dequeue(self, queue_name: str, timeout: float) -> Optional[str]:
        with self._not_empty:
            items = self._queues.setdefault(queue_name, deque())
            if not items:
                self._not_empty.wait_for(lambda: bool(items), timeout=timeout)
            if not items:
                return None
            self._stats['messages_dequeued'] += 1
            return items.popleft()

    def length(self, queue_name: str) -> int:
        with self._lock:
            return len(self._queues.get(queue_name, ()))

    def get_stats(self) -> Dict[str, int]:
        with self._lock:
            stats = self._stats.copy()
            stats['queue_size'] = sum(len(q) for q in self._queues.values())
            return stats


def create_job_queue(settings=None) -> JobQueue:
    """
    Create the job queue selected by ``queue_mode``.

    Args:
        settings: WorkerConfig (defaults to the global config)
    """
    if settings is None:
        from src.config import config as settings

    if settings.queue_mode == "local":
        logger.info("Using in-memory local job queue")
        return LocalJobQueue()

    logger.info("Using Redis job queue")
    return RedisJobQueue(settings.redis_url)
