"""Shard node: replication commands, request batching, replica reads and the state machine."""