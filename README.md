# treebeard

Building blocks for the shard node of an oblivious, replicated key-value
store. Blocks live in a tree-shaped ORAM layout. A shard node sits in front of
the storage. It batches block requests by storage shard and keeps a stash of
recently touched blocks. It also replicates its state changes as commands
through a consensus log.

## What is inside

- `treebeard.prioritylock.PriorityPreferenceLock` is a lock with two priority
  levels. A waiting high-priority holder always goes ahead of new
  low-priority holders. Use `lock()` / `unlock()` and
  `high_priority_lock()` / `high_priority_unlock()` directly, or use the
  context managers `low_priority()` and `high_priority()`.
- `treebeard.bits` holds small integer helpers:
  - `binary_reverse` reverses the lowest bits of an integer.
  - `to_int32_list` converts integers to signed 32-bit values and wraps on
    overflow.
  - `to_int_list` converts back to plain integers.
- `treebeard.logsetup.init_logging` configures the `treebeard` logger. It
  either turns debug output on or switches logging off entirely. Records go
  to stderr, or they are appended to a file.
- `treebeard.storage.metadata` handles bucket metadata entries:
  - `parse_metadata_block` parses one entry such as `"2dummy1"` into a
    position and a block key.
  - `parse_metadata_blocks` turns whole buckets into a block-to-position map.
    It skips the `accessCount` field and invalidated `__null__` entries.
  - `shuffle` shuffles slot orders in place.
- `treebeard.shardnode` contains these modules:
  - `commands` holds the replicated commands, which are msgpack envelopes.
    Their builders are `new_request_replication_command`,
    `new_response_replication_command`,
    `new_sent_blocks_replication_command` and
    `new_acks_nacks_replication_command`. `decode_command` decodes them.
  - `batching.BatchManager` queues `BlockRequest`s per storage shard and gives
    each block a single-slot response channel. `drain()` takes every queued
    request under the high-priority lock.
  - `oramclient.read_path_from_all_oram_node_replicas` sends one
    `ReadPathRequest` to every replica client. A replica client is any object
    with a `read_path(request)` method. The call returns the first successful
    `ReadPathReply`. If no replica answers, it raises `ReplicaCallError`.
  - `fsm.ShardNodeFSM` is the state machine applied on each replica. It tracks
    concurrent requests for the same block and keeps the stash and the
    position map. It sends one answer to every waiting request. It handles
    eviction acks and nacks. It can also snapshot and restore its stash and
    position map.

## Examples

Bit reversal:

```python
from treebeard.bits import binary_reverse

assert binary_reverse(11, 4) == 13  # 1011 -> 1101
```

Parsing metadata:

```python
from treebeard.storage.metadata import parse_metadata_block, parse_metadata_blocks

assert parse_metadata_block("2dummy1") == (2, "dummy1")
assert parse_metadata_block("__null__") == (-1, "")
assert parse_metadata_blocks({1: {"accessCount": "4", "1": "2user1", "2": "__null__"}}) == {
    1: {"user1": 2}
}
```

Applying replicated commands to the state machine:

```python
from treebeard.shardnode.commands import (
    OperationType,
    ReplicateRequestAndPathAndStoragePayload,
    new_request_replication_command,
    new_response_replication_command,
)
from treebeard.shardnode.fsm import LogEntry, LogType, ShardNodeFSM

fsm = ShardNodeFSM(replica_id=0)
request = ReplicateRequestAndPathAndStoragePayload("a", 1, 0, "r1")
is_first = fsm.apply(LogEntry(LogType.COMMAND, new_request_replication_command([request], 0)))
assert is_first == {"r1": True}

answer = fsm.apply(LogEntry(
    LogType.COMMAND,
    new_response_replication_command("v", "r1", "a", "", OperationType.READ, 0),
))
assert answer == "v"
assert fsm.stash_size() == 1
```

Batching requests:

```python
from treebeard.shardnode.batching import BatchManager, BlockRequest

manager = BatchManager(batch_timeout=0.002)
channel = manager.add_request_to_storage_queue_and_wait(BlockRequest("a", 1), storage_id=0)
queues, channels = manager.drain()
assert queues == {0: [BlockRequest("a", 1)]}
assert channels["a"] is channel
```

## What the package does not do

The package holds the shard node's state and data handling only. It has no
request-facing server and starts no network listener or consensus cluster.
`ShardNodeFSM.apply` takes log entries that have already been committed, and
replica clients are supplied by the caller. It does not read or write storage
buckets, and it does not encrypt block values. It has no command-line entry
point.