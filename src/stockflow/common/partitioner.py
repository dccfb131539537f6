"""Deterministic partition assignment for trade keys.

Uses Kafka's murmur2 hash (as implemented by aiokafka's default partitioner)
so the mapping is stable across process restarts and agrees with what the
Java client would compute for the same key. All events for one symbol land
on one partition, which gives per-symbol ordering on the consumer side.
"""

from aiokafka.partitioner import murmur2


def assign_partition(key: str, partition_count: int) -> int:
    """Map ``key`` to a partition in ``[0, partition_count)``.

    Raises:
        ValueError: empty key or non-positive partition count
    """
    if not key:
        raise ValueError("Partition key must be a non-empty string")
    if partition_count < 1:
        raise ValueError(f"partition_count must be >= 1, got {partition_count}")

    return (murmur2(key.encode("utf-8")) & 0x7FFFFFFF) % partition_count


__all__ = ["assign_partition"]
