import msgpack
import pytest

from treebeard.shardnode.commands import (
    BatchReplicateRequestAndPathAndStoragePayload,
    CommandType,
    OperationType,
    ReplicateAcksNacksPayload,
    ReplicateRequestAndPathAndStoragePayload,
    ReplicateResponsePayload,
    ReplicateSentBlocksPayload,
    decode_command,
    new_acks_nacks_replication_command,
    new_request_replication_command,
    new_response_replication_command,
    new_sent_blocks_replication_command,
)


def test_command_type_values_follow_declaration_order():
    commands = [
        new_request_replication_command([], 0),
        new_response_replication_command("r", "id", "b", "", OperationType.READ, 0),
        new_sent_blocks_replication_command(["a"]),
        new_acks_nacks_replication_command(["a"], []),
    ]
    assert [msgpack.unpackb(c, raw=False)["Type"] for c in commands] == [0, 1, 2, 3]
    assert [int(decode_command(c)[0]) for c in commands] == [0, 1, 2, 3]


def test_operation_type_wire_values():
    read = new_response_replication_command("r", "id", "b", "", OperationType.READ, 0)
    write = new_response_replication_command("r", "id", "b", "v", OperationType.WRITE, 0)
    read_payload = msgpack.unpackb(msgpack.unpackb(read, raw=False)["Payload"], raw=False)
    write_payload = msgpack.unpackb(msgpack.unpackb(write, raw=False)["Payload"], raw=False)
    assert read_payload["OpType"] == 0
    assert write_payload["OpType"] == 1


def test_request_replication_round_trip():
    requests = [
        ReplicateRequestAndPathAndStoragePayload("block1", 1, 2, "request1"),
        ReplicateRequestAndPathAndStoragePayload("block2", 3, 4, "request2"),
    ]
    data = new_request_replication_command(requests, 7)
    command_type, payload = decode_command(data)
    assert command_type is CommandType.BATCH_REPLICATE_REQUEST_AND_PATH_AND_STORAGE
    assert payload == BatchReplicateRequestAndPathAndStoragePayload(requests=requests, leader_id=7)


def test_response_replication_round_trip():
    data = new_response_replication_command("resp", "request1", "block", "newval", OperationType.WRITE, 3)
    command_type, payload = decode_command(data)
    assert command_type is CommandType.REPLICATE_RESPONSE
    assert payload == ReplicateResponsePayload(
        requested_block="block",
        response="resp",
        new_value="newval",
        op_type=OperationType.WRITE,
        request_id="request1",
        leader_id=3,
    )
    assert payload.op_type is OperationType.WRITE


def test_sent_blocks_round_trip():
    command_type, payload = decode_command(new_sent_blocks_replication_command(["a", "b"]))
    assert command_type is CommandType.REPLICATE_SENT_BLOCKS
    assert payload == ReplicateSentBlocksPayload(sent_blocks=["a", "b"])


def test_acks_nacks_round_trip():
    command_type, payload = decode_command(new_acks_nacks_replication_command(["a"], ["b", "c"]))
    assert command_type is CommandType.REPLICATE_ACKS_NACKS
    assert payload == ReplicateAcksNacksPayload(acked_blocks=["a"], nacked_blocks=["b", "c"])


def test_wire_format_uses_field_names():
    data = new_sent_blocks_replication_command(["x"])
    envelope = msgpack.unpackb(data, raw=False)
    assert set(envelope) == {"Type", "Payload"}
    assert envelope["Type"] == 2
    assert msgpack.unpackb(envelope["Payload"], raw=False) == {"SentBlocks": ["x"]}


def test_request_wire_format_field_names():
    data = new_request_replication_command(
        [ReplicateRequestAndPathAndStoragePayload("block1", 1, 2, "request1")], 0
    )
    payload = msgpack.unpackb(msgpack.unpackb(data, raw=False)["Payload"], raw=False)
    assert payload == {
        "Requests": [{"RequestedBlock": "block1", "Path": 1, "StorageID": 2, "RequestID": "request1"}],
        "LeaderID": 0,
    }


def test_empty_lists_decode_as_empty():
    _, payload = decode_command(new_acks_nacks_replication_command([], []))
    assert payload.acked_blocks == []
    assert payload.nacked_blocks == []


def test_nil_lists_decode_as_empty():
    inner = msgpack.packb({"AckedBlocks": None, "NackedBlocks": None}, use_bin_type=True)
    data = msgpack.packb({"Type": 3, "Payload": inner}, use_bin_type=True)
    _, payload = decode_command(data)
    assert payload == ReplicateAcksNacksPayload()


def test_unknown_command_type_raises():
    data = msgpack.packb({"Type": 9, "Payload": msgpack.packb({})}, use_bin_type=True)
    with pytest.raises(ValueError):
        decode_command(data)


@pytest.mark.parametrize("data", [b"", b"\xc1", msgpack.packb([1, 2])])
def test_malformed_data_raises(data):
    with pytest.raises(ValueError):
        decode_command(data)


def test_non_binary_payload_raises():
    data = msgpack.packb({"Type": 2, "Payload": "text"}, use_bin_type=True)
    with pytest.raises(ValueError):
        decode_command(data)