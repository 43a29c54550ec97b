"""
Vertex Record Distribution
Fans vertex records out to their owner and mirror partitions
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple, Union

from .elements import Edge, VertexRecord
from .exceptions import ConfigurationError, ParseError, WriteError
from .ingress import validate_ingress_code, validate_num_partitions
from .metrics import Metrics

logger = logging.getLogger(__name__)

RawVertexRecord = Union[VertexRecord, dict, str, bytes]


@dataclass
class PartitionOutput:
    """Everything one partition receives: its vertex records and a summary"""
    partition_id: int
    records: List[VertexRecord] = field(default_factory=list)
    num_vertices: int = 0
    num_own_vertices: int = 0

    def add(self, record: VertexRecord):
        self.records.append(record)
        self.num_vertices += 1
        if record.owner == self.partition_id:
            self.num_own_vertices += 1

    @property
    def metadata(self) -> Dict[str, int]:
        return {'numVertices': self.num_vertices, 'numOwnVertices': self.num_own_vertices}


def parse_vertex_record(raw: RawVertexRecord) -> VertexRecord:
    if isinstance(raw, VertexRecord):
        return raw
    if isinstance(raw, dict):
        return VertexRecord.from_dict(raw)
    if isinstance(raw, (str, bytes)):
        return VertexRecord.from_json(raw)
    raise ParseError(f"Unsupported vertex record type: {type(raw).__name__}")


def fan_out(record: VertexRecord) -> List[Tuple[int, VertexRecord]]:
    """One (partition, record) pair for the owner and one per mirror"""
    return [(pid, record) for pid in record.partitions()]


class VertexRecordDistributor:
    """
    Distributes vertex records to partitions.

    A record with owner 2 and mirrors [0, 1, 4] lands in partitions 0, 1, 2
    and 4; only partition 2 counts it as an owned vertex. Malformed records
    are logged, counted and skipped.
    """

    def __init__(self, num_partitions: int, ingress_code: int = 0,
                 metrics: Optional[Metrics] = None):
        """
        Args:
            num_partitions: Number of output partitions
            ingress_code: Ingress selector the records were produced with
            metrics: Counter handle

        Raises:
            ConfigurationError: on an out-of-range selector or partition count
        """
        self.ingress_code = validate_ingress_code(ingress_code)
        self.num_partitions = validate_num_partitions(num_partitions)
        self.metrics = metrics if metrics is not None else Metrics()
        self.partitions: Dict[int, PartitionOutput] = {}

    def add(self, raw: RawVertexRecord) -> bool:
        """
        Route one record

        Returns:
            True if the record was distributed, False if it was skipped
        """
        try:
            record = parse_vertex_record(raw)
            record.validate(self.num_partitions)
        except ParseError as e:
            self.metrics.incr('distributor.parse_errors')
            logger.warning(f"Skipping malformed vertex record: {e}")
            return False

        for pid, copy in fan_out(record):
            partition = self.partitions.get(pid)
            if partition is None:
                partition = self.partitions[pid] = PartitionOutput(pid)
            partition.add(copy)
            self.metrics.incr('distributor.vertices')
            if pid == record.owner:
                self.metrics.incr('distributor.own_vertices')
        return True

    def distribute(self, records: Iterable[RawVertexRecord]) -> Dict[int, PartitionOutput]:
        distributed = 0
        for raw in records:
            if self.add(raw):
                distributed += 1
        logger.info(f"Distributed {distributed} vertex records to {len(self.partitions)} partitions")
        return self.partitions

    def output(self, partition_id: int) -> PartitionOutput:
        """Output of one partition; empty if it received nothing"""
        if not 0 <= partition_id < self.num_partitions:
            raise ConfigurationError(f"Partition {partition_id} outside [0, {self.num_partitions})")
        return self.partitions.get(partition_id, PartitionOutput(partition_id))

    def metadata(self) -> Dict[int, Dict[str, int]]:
        return {pid: self.partitions[pid].metadata for pid in sorted(self.partitions)}

    def write(self, store, partition_edges: Optional[Dict[int, List[Edge]]] = None) -> int:
        """
        Persist every partition that received records

        A failure on one partition is logged and counted; the remaining
        partitions are still written.

        Args:
            store: PartitionStore
            partition_edges: Optional edges assigned to each partition

        Returns:
            Number of partitions written successfully
        """
        partition_edges = partition_edges or {}
        written = 0
        for pid in sorted(set(self.partitions) | set(partition_edges)):
            partition = self.partitions.get(pid, PartitionOutput(pid))
            try:
                store.write_partition(pid, partition.records, partition.metadata,
                                      edges=partition_edges.get(pid))
            except WriteError as e:
                self.metrics.incr('distributor.write_errors')
                logger.error(f"Partition {pid} not written: {e}")
                continue
            written += 1
        logger.info(f"Wrote {written} partitions")
        return written
