"""The replicated state machine of a shard node.

The state machine keeps the stash of blocks held by the shard node, the
position map of every block, and the bookkeeping needed to answer
concurrent requests for the same block with a single real access.
"""

from __future__ import annotations

import logging
import queue
import threading
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, BinaryIO

import msgpack

from treebeard.shardnode.commands import (
    BatchReplicateRequestAndPathAndStoragePayload,
    CommandType,
    OperationType,
    ReplicateAcksNacksPayload,
    ReplicateResponsePayload,
    ReplicateSentBlocksPayload,
    decode_command,
)

log = logging.getLogger("treebeard.shardnode")

DEFAULT_RESPONSE_TIMEOUT = 5.0


class LogType(Enum):
    """Kind of entry found in the consensus log."""

    COMMAND = "command"
    NOOP = "noop"
    BARRIER = "barrier"
    CONFIGURATION = "configuration"


@dataclass(frozen=True)
class LogEntry:
    """One committed entry of the consensus log."""

    type: LogType
    data: bytes = b""


@dataclass
class StashState:
    """A block kept in the stash.

    ``logical_time`` counts writes since the block was sent for eviction;
    ``waiting_status`` is set while an eviction of the block is in flight.
    """

    value: str = ""
    logical_time: int = 0
    waiting_status: bool = False


@dataclass(frozen=True)
class PositionState:
    """Where a block lives: its path and its storage shard."""

    path: int = 0
    storage_id: int = 0

    def is_path_in_paths(self, paths: Iterable[int]) -> bool:
        """Return whether this position's path is one of ``paths``."""
        return self.path in paths


@dataclass
class _StateSnapshot:
    """Encoded stash and position map, taken at one point in time."""

    data: bytes
    released: bool = False

    def persist(self, sink: Any) -> None:
        """Write the encoded state to ``sink``."""
        if self.released:
            raise RuntimeError("snapshot was already released")
        sink.write(self.data)

    def release(self) -> None:
        """Drop the encoded state."""
        self.data = b""
        self.released = True


@dataclass
class ShardNodeFSM:
    """State machine applied on every replica of a shard node."""

    replica_id: int
    response_timeout: float = DEFAULT_RESPONSE_TIMEOUT
    request_log: dict[str, list[str]] = field(default_factory=dict)  # block -> request ids
    path_map: dict[str, int] = field(default_factory=dict)  # request id -> new path
    storage_id_map: dict[str, int] = field(default_factory=dict)  # request id -> new storage
    stash: dict[str, StashState] = field(default_factory=dict)  # block -> stash state
    response_channel: dict[str, queue.Queue[str]] = field(default_factory=dict)  # request id -> channel
    acks: dict[str, list[str]] = field(default_factory=dict)
    nacks: dict[str, list[str]] = field(default_factory=dict)
    position_map: dict[str, PositionState] = field(default_factory=dict)  # block -> position
    stash_lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)
    position_map_lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def __str__(self) -> str:
        return (
            "ShardNodeFSM\n"
            f"requestLog: {self.request_log}\n"
            f"pathMap: {self.path_map}\n"
            f"storageIDMap: {self.storage_id_map}\n"
            f"stash: {self.stash}\n"
            f"responseChannel: {list(self.response_channel)}\n"
            f"acks: {self.acks}\n"
            f"nacks: {self.nacks}\n"
            f"position map: {self.position_map}\n"
        )

    def stash_size(self) -> int:
        """Return the number of blocks in the stash."""
        with self.stash_lock:
            return len(self.stash)

    def handle_batch_replicate_request_and_path_and_storage(
        self, payload: BatchReplicateRequestAndPathAndStoragePayload
    ) -> dict[str, bool]:
        """Record a batch of requests and tell, per request, whether it is the first for its block."""
        is_first_map: dict[str, bool] = {}
        for request in payload.requests:
            # Only the leader tracks the request log, so that a new leader is
            # not held back by requests its predecessor was tracking.
            if payload.leader_id == self.replica_id:
                self.request_log.setdefault(request.requested_block, []).append(request.request_id)
            self.path_map[request.request_id] = request.path
            self.storage_id_map[request.request_id] = request.storage_id
            is_first_map[request.request_id] = len(self.request_log.get(request.requested_block, [])) == 1
        return is_first_map

    def handle_replicate_response(self, payload: ReplicateResponsePayload) -> str:
        """Store the answer for a block and hand it to every concurrent request.

        A value already in the stash takes priority over the value read from
        storage. Returns the value the requests are answered with.
        """
        request_id = payload.request_id
        block = payload.requested_block

        with self.stash_lock:
            state = self.stash.get(block)
            if state is not None:
                if payload.op_type == OperationType.WRITE:
                    state.logical_time += 1
                    state.value = payload.new_value
            elif payload.op_type == OperationType.READ:
                self.stash[block] = StashState(value=payload.response)
            elif payload.op_type == OperationType.WRITE:
                self.stash[block] = StashState(value=payload.new_value)
            current = self.stash.get(block)
            stash_value = current.value if current is not None else ""

        with self.position_map_lock:
            self.position_map[block] = PositionState(
                path=self.path_map.get(request_id, 0),
                storage_id=self.storage_id_map.get(request_id, 0),
            )

        if self.replica_id == payload.leader_id:
            waiting = self.request_log.get(block, [])
            # The first request gets its answer from the caller, not a channel.
            for index in range(len(waiting) - 1, 0, -1):
                waiting_id = waiting[index]
                log.debug("Sending response to concurrent request number %d for block %s", index, block)
                channel = self.response_channel.get(waiting_id)
                if channel is None:
                    raise LookupError(f"response channel for request {waiting_id} does not exist")
                try:
                    channel.put(stash_value, timeout=self.response_timeout)
                except queue.Full:
                    log.error(
                        "timeout in sending response to concurrent request number %d for block %s",
                        index,
                        block,
                    )
                    continue
                self.path_map.pop(waiting_id, None)
                self.storage_id_map.pop(waiting_id, None)
                self.response_channel.pop(waiting_id, None)

        self.path_map.pop(request_id, None)
        self.storage_id_map.pop(request_id, None)
        self.response_channel.pop(request_id, None)
        self.request_log.pop(block, None)
        return stash_value

    def handle_replicate_sent_blocks(self, payload: ReplicateSentBlocksPayload) -> None:
        """Mark blocks sent for eviction as waiting, with their write count reset."""
        with self.stash_lock:
            for block in payload.sent_blocks:
                state = self.stash.setdefault(block, StashState())
                state.logical_time = 0
                state.waiting_status = True

    def handle_local_acks_nacks_replication_changes(self, request_id: str) -> None:
        """Apply recorded acks and nacks to the stash.

        Acked blocks leave the stash unless they were written during the
        eviction; nacked blocks stay and stop waiting.
        """
        with self.stash_lock:
            acked = self.acks.pop(request_id, [])
            nacked = self.nacks.pop(request_id, [])
            for block in acked:
                state = self.stash.get(block)
                if state is None or state.logical_time == 0:
                    self.stash.pop(block, None)
            for block in nacked:
                state = self.stash.setdefault(block, StashState())
                state.waiting_status = False

    def handle_replicate_acks_nacks(self, payload: ReplicateAcksNacksPayload) -> threading.Thread:
        """Record acks and nacks and apply them in the background.

        Returns the thread doing the work.
        """
        request_id = str(uuid.uuid4())
        self.acks[request_id] = list(payload.acked_blocks)
        self.nacks[request_id] = list(payload.nacked_blocks)
        worker = threading.Thread(
            target=self.handle_local_acks_nacks_replication_changes,
            args=(request_id,),
            daemon=True,
        )
        worker.start()
        return worker

    def apply(self, entry: LogEntry) -> Any:
        """Apply a committed log entry and return the command's result.

        Raises ``ValueError`` for entries that are not commands or cannot be decoded.
        """
        if entry.type is not LogType.COMMAND:
            raise ValueError(f"unknown raft log type: {entry.type.value}")
        try:
            command_type, payload = decode_command(entry.data)
        except ValueError as exc:
            raise ValueError(f"could not unmarshall the command; {exc}") from exc

        if command_type == CommandType.BATCH_REPLICATE_REQUEST_AND_PATH_AND_STORAGE:
            log.debug("got replication command for replicate request")
            assert isinstance(payload, BatchReplicateRequestAndPathAndStoragePayload)
            return self.handle_batch_replicate_request_and_path_and_storage(payload)
        if command_type == CommandType.REPLICATE_RESPONSE:
            log.debug("got replication command for replicate response")
            assert isinstance(payload, ReplicateResponsePayload)
            return self.handle_replicate_response(payload)
        if command_type == CommandType.REPLICATE_SENT_BLOCKS:
            log.debug("got replication command for replicate sent blocks")
            assert isinstance(payload, ReplicateSentBlocksPayload)
            self.handle_replicate_sent_blocks(payload)
            return None
        if command_type == CommandType.REPLICATE_ACKS_NACKS:
            log.debug("got replication command for replicate acks/nacks")
            assert isinstance(payload, ReplicateAcksNacksPayload)
            self.handle_replicate_acks_nacks(payload)
            return None
        log.error("wrong command type")
        return None

    def snapshot(self) -> _StateSnapshot:
        """Capture the stash and the position map."""
        with self.stash_lock:
            stash = {
                block: [state.value, state.logical_time, state.waiting_status]
                for block, state in self.stash.items()
            }
        with self.position_map_lock:
            positions = {
                block: [position.path, position.storage_id]
                for block, position in self.position_map.items()
            }
        data = msgpack.packb({"stash": stash, "position_map": positions}, use_bin_type=True)
        return _StateSnapshot(data=data)

    def restore(self, source: BinaryIO) -> None:
        """Replace the stash and the position map with a persisted snapshot.

        Raises ``ValueError`` if ``source`` does not hold a valid snapshot.
        """
        data = source.read()
        try:
            decoded = msgpack.unpackb(data, raw=False)
            stash = {
                block: StashState(value=value, logical_time=int(logical_time), waiting_status=bool(waiting))
                for block, (value, logical_time, waiting) in decoded["stash"].items()
            }
            positions = {
                block: PositionState(path=int(path), storage_id=int(storage_id))
                for block, (path, storage_id) in decoded["position_map"].items()
            }
        except (msgpack.UnpackException, ValueError, TypeError, KeyError, AttributeError) as exc:
            raise ValueError(f"could not restore the shard node state; {exc}") from exc
        with self.stash_lock:
            self.stash = stash
        with self.position_map_lock:
            self.position_map = positions