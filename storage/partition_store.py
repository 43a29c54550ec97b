"""
Partition Store
Writes and reads per-partition graph output through a pluggable backend
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from graph_processing.elements import EDGE_RESERVED_KEYS, Edge, VertexRecord
from graph_processing.exceptions import ConfigurationError, WriteError
from .storage_backend import StorageBackend, JSONBackend, ParquetBackend

logger = logging.getLogger(__name__)

VRECORD = 'vrecord'
EDATA = 'edata'
META = 'meta'


def edge_to_dict(edge: Edge) -> Dict[str, Any]:
    record = {'source': edge.source, 'destination': edge.destination, 'label': edge.label}
    for key in edge.properties:
        if key in EDGE_RESERVED_KEYS:
            raise ValueError(f"Property name '{key}' is reserved in edge records")
        record[key] = edge.properties.get_property(key)
    return record


class PartitionStore:
    """Manages partition output with multiple backends"""

    def __init__(self, backend_type: str = 'json', **backend_kwargs):
        """
        Initialize partition store

        Args:
            backend_type: Storage backend type ('json' or 'parquet')
            **backend_kwargs: Backend-specific keyword arguments
        """
        self.backend_type = backend_type

        if backend_type == 'json':
            self.backend: StorageBackend = JSONBackend(**backend_kwargs)
        elif backend_type == 'parquet':
            self.backend: StorageBackend = ParquetBackend(**backend_kwargs)
        else:
            raise ConfigurationError(f"Unknown backend type: {backend_type}")

        logger.info(f"Initialized PartitionStore with backend: {backend_type}")

    def write_partition(self, partition_id: int, records: Iterable[VertexRecord],
                        metadata: Dict[str, int], edges: Optional[List[Edge]] = None):
        """
        Write the vertex records, metadata and (optionally) edges of a partition

        Raises:
            WriteError: if any artifact cannot be written
        """
        try:
            self.backend.save_records([r.to_dict() for r in records], partition_id, VRECORD)
            if edges is not None:
                self.backend.save_records([edge_to_dict(e) for e in edges], partition_id, EDATA)
            self.backend.save_metadata(metadata, partition_id, META)
        except (OSError, ValueError, TypeError) as e:
            # No partial partition directory is left behind
            self.backend.delete(partition_id)
            raise WriteError(f"Failed to write partition {partition_id}: {e}", partition_id) from e

    def write_edges(self, partition_id: int, edges: List[Edge]):
        """Write only the edge artifact of a partition"""
        try:
            self.backend.save_records([edge_to_dict(e) for e in edges], partition_id, EDATA)
        except (OSError, ValueError, TypeError) as e:
            raise WriteError(f"Failed to write edges of partition {partition_id}: {e}", partition_id) from e

    def read_partition(self, partition_id: int) -> Dict[str, Any]:
        """
        Read a partition back

        Returns:
            Dict with 'records' (VertexRecord list), 'metadata' and 'edges'
            (wire dicts, empty when no edge artifact was written)
        """
        records = [VertexRecord.from_dict(r) for r in self.backend.load_records(partition_id, VRECORD)]
        edges = []
        if self.backend.exists(partition_id, EDATA):
            edges = self.backend.load_records(partition_id, EDATA)
        return {
            'records': records,
            'metadata': self.backend.load_metadata(partition_id, META),
            'edges': edges,
        }

    def exists(self, partition_id: int) -> bool:
        return self.backend.exists(partition_id, VRECORD)

    def delete_partition(self, partition_id: int):
        self.backend.delete(partition_id)

    def list_partitions(self) -> List[int]:
        return self.backend.list_partitions()
