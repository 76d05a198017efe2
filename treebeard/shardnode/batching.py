"""Collection of block requests into per-storage batches."""

from __future__ import annotations

import logging
import queue
from dataclasses import dataclass

from treebeard.prioritylock import PriorityPreferenceLock

log = logging.getLogger("treebeard.shardnode")


@dataclass(frozen=True)
class BlockRequest:
    """A request for a block along a path."""

    block: str
    path: int


class BatchManager:
    """Queues block requests per storage and hands them out as batches.

    Each queued block gets a single-slot channel on which its answer is
    delivered once the batch has been served.
    """

    def __init__(self, batch_timeout: float) -> None:
        log.debug("Creating new batch manager with batch timeout %s", batch_timeout)
        self.batch_timeout = batch_timeout
        self.storage_queues: dict[int, list[BlockRequest]] = {}
        self.response_channel: dict[str, queue.Queue[str]] = {}
        self.mu = PriorityPreferenceLock()

    def add_request_to_storage_queue_and_wait(self, req: BlockRequest, storage_id: int) -> queue.Queue[str]:
        """Queue ``req`` for ``storage_id`` and return the channel its answer arrives on."""
        with self.mu.low_priority():
            self.storage_queues.setdefault(storage_id, []).append(req)
            channel: queue.Queue[str] = queue.Queue(maxsize=1)
            self.response_channel[req.block] = channel
            return channel

    def drain(self) -> tuple[dict[int, list[BlockRequest]], dict[str, queue.Queue[str]]]:
        """Take every queued request and response channel, leaving the manager empty."""
        with self.mu.high_priority():
            queues, channels = self.storage_queues, self.response_channel
            self.storage_queues = {}
            self.response_channel = {}
        return queues, channels