"""
Storage Module
Persists partitioned graph output as JSON lines or Parquet
"""

from .partition_store import PartitionStore
from .storage_backend import StorageBackend, JSONBackend, ParquetBackend

__all__ = ['PartitionStore', 'StorageBackend', 'JSONBackend', 'ParquetBackend']
