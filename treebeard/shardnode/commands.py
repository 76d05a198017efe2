"""Commands replicated through the consensus log of a shard node.

Every command is a msgpack map ``{"Type": <int>, "Payload": <bytes>}``. The
payload is itself a msgpack map whose keys are the payload's field names.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Union

import msgpack


class OperationType(IntEnum):
    """Kind of client operation on a block."""

    READ = 0
    WRITE = 1


class CommandType(IntEnum):
    """Kind of replicated command."""

    BATCH_REPLICATE_REQUEST_AND_PATH_AND_STORAGE = 0
    REPLICATE_RESPONSE = 1
    REPLICATE_SENT_BLOCKS = 2
    REPLICATE_ACKS_NACKS = 3


@dataclass(frozen=True)
class Command:
    """A command envelope: its type and its encoded payload."""

    type: CommandType
    payload: bytes

    def _to_wire(self) -> dict[str, Any]:
        return {"Type": int(self.type), "Payload": self.payload}


def _require_mapping(data: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise ValueError(f"{what} is not a map")
    return data


def _strings(value: Any) -> list[str]:
    return [str(item) for item in value] if value else []


@dataclass
class ReplicateRequestAndPathAndStoragePayload:
    """A requested block and the new path and storage chosen for it."""

    requested_block: str
    path: int
    storage_id: int
    request_id: str

    def _to_wire(self) -> dict[str, Any]:
        return {
            "RequestedBlock": self.requested_block,
            "Path": self.path,
            "StorageID": self.storage_id,
            "RequestID": self.request_id,
        }

    @classmethod
    def _from_wire(cls, data: Any) -> ReplicateRequestAndPathAndStoragePayload:
        fields = _require_mapping(data, "request payload")
        return cls(
            requested_block=str(fields.get("RequestedBlock") or ""),
            path=int(fields.get("Path") or 0),
            storage_id=int(fields.get("StorageID") or 0),
            request_id=str(fields.get("RequestID") or ""),
        )


@dataclass
class BatchReplicateRequestAndPathAndStoragePayload:
    """A batch of requests replicated together by the leader."""

    requests: list[ReplicateRequestAndPathAndStoragePayload] = field(default_factory=list)
    leader_id: int = 0

    def _to_wire(self) -> dict[str, Any]:
        return {
            "Requests": [request._to_wire() for request in self.requests],
            "LeaderID": self.leader_id,
        }

    @classmethod
    def _from_wire(cls, data: Any) -> BatchReplicateRequestAndPathAndStoragePayload:
        fields = _require_mapping(data, "batch request payload")
        return cls(
            requests=[
                ReplicateRequestAndPathAndStoragePayload._from_wire(item)
                for item in fields.get("Requests") or []
            ],
            leader_id=int(fields.get("LeaderID") or 0),
        )


@dataclass
class ReplicateResponsePayload:
    """The answer obtained for the first request of a block."""

    requested_block: str
    response: str
    new_value: str
    op_type: OperationType
    request_id: str
    leader_id: int

    def _to_wire(self) -> dict[str, Any]:
        return {
            "RequestedBlock": self.requested_block,
            "Response": self.response,
            "NewValue": self.new_value,
            "OpType": int(self.op_type),
            "RequestID": self.request_id,
            "LeaderID": self.leader_id,
        }

    @classmethod
    def _from_wire(cls, data: Any) -> ReplicateResponsePayload:
        fields = _require_mapping(data, "response payload")
        try:
            op_type = OperationType(int(fields.get("OpType") or 0))
        except ValueError as exc:
            raise ValueError(f"unknown operation type {fields.get('OpType')!r}") from exc
        return cls(
            requested_block=str(fields.get("RequestedBlock") or ""),
            response=str(fields.get("Response") or ""),
            new_value=str(fields.get("NewValue") or ""),
            op_type=op_type,
            request_id=str(fields.get("RequestID") or ""),
            leader_id=int(fields.get("LeaderID") or 0),
        )


@dataclass
class ReplicateSentBlocksPayload:
    """Blocks handed to an ORAM node for eviction."""

    sent_blocks: list[str] = field(default_factory=list)

    def _to_wire(self) -> dict[str, Any]:
        return {"SentBlocks": list(self.sent_blocks)}

    @classmethod
    def _from_wire(cls, data: Any) -> ReplicateSentBlocksPayload:
        fields = _require_mapping(data, "sent blocks payload")
        return cls(sent_blocks=_strings(fields.get("SentBlocks")))


@dataclass
class ReplicateAcksNacksPayload:
    """Blocks whose eviction was acknowledged or refused."""

    acked_blocks: list[str] = field(default_factory=list)
    nacked_blocks: list[str] = field(default_factory=list)

    def _to_wire(self) -> dict[str, Any]:
        return {"AckedBlocks": list(self.acked_blocks), "NackedBlocks": list(self.nacked_blocks)}

    @classmethod
    def _from_wire(cls, data: Any) -> ReplicateAcksNacksPayload:
        fields = _require_mapping(data, "acks/nacks payload")
        return cls(
            acked_blocks=_strings(fields.get("AckedBlocks")),
            nacked_blocks=_strings(fields.get("NackedBlocks")),
        )


Payload = Union[
    BatchReplicateRequestAndPathAndStoragePayload,
    ReplicateResponsePayload,
    ReplicateSentBlocksPayload,
    ReplicateAcksNacksPayload,
]

_PAYLOAD_TYPES: dict[CommandType, Any] = {
    CommandType.BATCH_REPLICATE_REQUEST_AND_PATH_AND_STORAGE: BatchReplicateRequestAndPathAndStoragePayload,
    CommandType.REPLICATE_RESPONSE: ReplicateResponsePayload,
    CommandType.REPLICATE_SENT_BLOCKS: ReplicateSentBlocksPayload,
    CommandType.REPLICATE_ACKS_NACKS: ReplicateAcksNacksPayload,
}


def _pack(obj: Any, what: str) -> bytes:
    try:
        return msgpack.packb(obj, use_bin_type=True)
    except (TypeError, ValueError, OverflowError) as exc:
        raise ValueError(f"could not marshal the {what}; {exc}") from exc


def _unpack(data: bytes, what: str) -> Any:
    try:
        return msgpack.unpackb(data, raw=False)
    except (ValueError, TypeError, msgpack.UnpackException) as exc:
        raise ValueError(f"could not unmarshal the {what}; {exc}") from exc


def _encode(command_type: CommandType, payload: Payload, what: str) -> bytes:
    payload_bytes = _pack(payload._to_wire(), f"{what} replication payload")
    return _pack(Command(command_type, payload_bytes)._to_wire(), f"{what} replication command")


def new_request_replication_command(
    requests: Iterable[ReplicateRequestAndPathAndStoragePayload], leader_id: int
) -> bytes:
    """Encode a batch of requests with their new paths and storages."""
    payload = BatchReplicateRequestAndPathAndStoragePayload(requests=list(requests), leader_id=leader_id)
    return _encode(
        CommandType.BATCH_REPLICATE_REQUEST_AND_PATH_AND_STORAGE,
        payload,
        "batch request, path, storage",
    )


def new_response_replication_command(
    response: str,
    request_id: str,
    block: str,
    new_value: str,
    op_type: OperationType,
    leader_id: int,
) -> bytes:
    """Encode the response to the first request of a block."""
    payload = ReplicateResponsePayload(
        requested_block=block,
        response=response,
        new_value=new_value,
        op_type=OperationType(op_type),
        request_id=request_id,
        leader_id=leader_id,
    )
    return _encode(CommandType.REPLICATE_RESPONSE, payload, "response")


def new_sent_blocks_replication_command(sent_blocks: Iterable[str]) -> bytes:
    """Encode the list of blocks sent for eviction."""
    payload = ReplicateSentBlocksPayload(sent_blocks=list(sent_blocks))
    return _encode(CommandType.REPLICATE_SENT_BLOCKS, payload, "sent blocks")


def new_acks_nacks_replication_command(ack_blocks: Iterable[str], nack_blocks: Iterable[str]) -> bytes:
    """Encode acknowledged and refused evicted blocks."""
    payload = ReplicateAcksNacksPayload(acked_blocks=list(ack_blocks), nacked_blocks=list(nack_blocks))
    return _encode(CommandType.REPLICATE_ACKS_NACKS, payload, "acks/nacks")


def decode_command(data: bytes) -> tuple[CommandType, Payload]:
    """Decode an encoded command into its type and its payload.

    Raises ``ValueError`` for malformed data or an unknown command type.
    """
    envelope = _require_mapping(_unpack(data, "command"), "command")
    raw_type = envelope.get("Type")
    try:
        command_type = CommandType(int(raw_type if raw_type is not None else 0))
    except (TypeError, ValueError) as exc:
        raise ValueError(f"wrong command type {raw_type!r}") from exc
    payload_bytes = envelope.get("Payload")
    if not isinstance(payload_bytes, (bytes, bytearray)):
        raise ValueError("command payload is not binary")
    payload_data = _unpack(bytes(payload_bytes), "command payload")
    return command_type, _PAYLOAD_TYPES[command_type]._from_wire(payload_data)