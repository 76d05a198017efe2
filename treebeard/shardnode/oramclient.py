"""Reading paths from the replicas of an ORAM node."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Protocol

from treebeard.shardnode.batching import BlockRequest

log = logging.getLogger("treebeard.shardnode")


class ReplicaCallError(RuntimeError):
    """Raised when no replica returned a usable reply."""


@dataclass(frozen=True)
class BlockPathRequest:
    """One block to read and the path it lies on."""

    block: str
    path: int


@dataclass(frozen=True)
class ReadPathRequest:
    """A batch of block reads against one storage."""

    requests: list[BlockPathRequest] = field(default_factory=list)
    storage_id: int = 0


@dataclass(frozen=True)
class BlockResponse:
    """The value read for a block."""

    block: str
    value: str


@dataclass(frozen=True)
class ReadPathReply:
    """The values read for a batch of blocks."""

    responses: list[BlockResponse] = field(default_factory=list)


class _ReadPathClient(Protocol):
    def read_path(self, request: ReadPathRequest) -> ReadPathReply: ...


def read_path_from_all_oram_node_replicas(
    replicas: Mapping[Any, _ReadPathClient],
    requests: Iterable[BlockRequest],
    storage_id: int,
) -> ReadPathReply:
    """Send the same read to every replica and return the first successful reply.

    Only the replica that leads answers; the others fail. If none succeeds,
    ``ReplicaCallError`` is raised.
    """
    request = ReadPathRequest(
        requests=[BlockPathRequest(block=r.block, path=r.path) for r in requests],
        storage_id=storage_id,
    )
    clients = list(replicas.values())
    if not clients:
        raise ReplicaCallError("could not get value from the oramnode; no replicas")

    log.debug("Calling all oram node replicas with block requests %s", request.requests)
    executor = ThreadPoolExecutor(max_workers=len(clients))
    errors: list[BaseException] = []
    try:
        futures = [executor.submit(client.read_path, request) for client in clients]
        for future in as_completed(futures):
            try:
                reply = future.result()
            except Exception as exc:  # a non-leader replica refuses the call
                errors.append(exc)
                continue
            log.debug("Got reply from oram node replicas: %s", reply)
            return reply
    finally:
        executor.shutdown(wait=False, cancel_futures=True)
    reasons = "; ".join(str(err) for err in errors)
    raise ReplicaCallError(f"could not get value from the oramnode; {reasons}")