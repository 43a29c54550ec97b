"""
Storage Backend Interfaces
Abstract base class and JSON-lines / Parquet implementations for partition output
"""

import gzip
import json
import logging
import os
import shutil
from abc import ABC, abstractmethod
from typing import Any, Dict, List

import pandas as pd

logger = logging.getLogger(__name__)

# Columns kept as real Parquet columns; every other key is folded into 'properties'
ARTIFACT_COLUMNS = {
    'vrecord': ['id', 'owner', 'mirrors', 'inEdges', 'outEdges', 'label'],
    'edata': ['source', 'destination', 'label'],
}
# Columns whose values may be any JSON type (vertex ids)
JSON_ENCODED_COLUMNS = {'id', 'source', 'destination'}


def partition_dir(base_dir: str, partition_id: int) -> str:
    return os.path.join(base_dir, f'partition{partition_id}')


class StorageBackend(ABC):
    """Abstract base class for partition storage backends"""

    def __init__(self, base_dir: str):
        self.base_dir = base_dir
        os.makedirs(base_dir, exist_ok=True)

    @abstractmethod
    def save_records(self, records: List[Dict[str, Any]], partition_id: int, artifact: str):
        """Save a list of wire-format records as one partition artifact"""
        pass

    @abstractmethod
    def load_records(self, partition_id: int, artifact: str) -> List[Dict[str, Any]]:
        """Load one partition artifact back into wire-format records"""
        pass

    @abstractmethod
    def exists(self, partition_id: int, artifact: str) -> bool:
        """Check if the artifact exists"""
        pass

    def save_metadata(self, metadata: Dict[str, Any], partition_id: int, artifact: str = 'meta'):
        """Save the partition summary as a JSON document"""
        directory = partition_dir(self.base_dir, partition_id)
        os.makedirs(directory, exist_ok=True)
        file_path = os.path.join(directory, artifact)
        with open(file_path, 'w') as f:
            json.dump(metadata, f)
        logger.debug(f"Saved metadata to {file_path}")

    def load_metadata(self, partition_id: int, artifact: str = 'meta') -> Dict[str, Any]:
        file_path = os.path.join(partition_dir(self.base_dir, partition_id), artifact)
        if not os.path.exists(file_path):
            raise FileNotFoundError(f"Metadata file not found: {file_path}")
        with open(file_path, 'r') as f:
            return json.load(f)

    def delete(self, partition_id: int):
        """Delete a whole partition directory"""
        directory = partition_dir(self.base_dir, partition_id)
        if os.path.exists(directory):
            shutil.rmtree(directory)
            logger.info(f"Deleted {directory}")

    def list_partitions(self) -> List[int]:
        partitions = []
        for name in os.listdir(self.base_dir):
            if name.startswith('partition') and name[len('partition'):].isdigit():
                partitions.append(int(name[len('partition'):]))
        return sorted(partitions)


class JSONBackend(StorageBackend):
    """JSON-lines backend, one record per line, optionally gzip-compressed"""

    def __init__(self, base_dir: str = './data/partitions', gzip: bool = False):
        """
        Initialize JSON backend

        Args:
            base_dir: Base directory holding partition{i}/ directories
            gzip: Compress record artifacts
        """
        super().__init__(base_dir)
        self.gzip = gzip
        logger.info(f"Initialized JSONBackend with base_dir: {base_dir}, gzip: {gzip}")

    def _file_path(self, partition_id: int, artifact: str) -> str:
        suffix = '.gz' if self.gzip else ''
        return os.path.join(partition_dir(self.base_dir, partition_id), f'{artifact}{suffix}')

    def _open(self, file_path: str, mode: str):
        if self.gzip:
            return gzip.open(file_path, mode + 't', encoding='utf-8')
        return open(file_path, mode, encoding='utf-8')

    def save_records(self, records: List[Dict[str, Any]], partition_id: int, artifact: str):
        file_path = self._file_path(partition_id, artifact)
        os.makedirs(os.path.dirname(file_path), exist_ok=True)
        with self._open(file_path, 'w') as f:
            for record in records:
                f.write(json.dumps(record, default=str))
                f.write('\n')
        logger.info(f"Saved {len(records)} records to {file_path}")

    def load_records(self, partition_id: int, artifact: str) -> List[Dict[str, Any]]:
        file_path = self._file_path(partition_id, artifact)
        if not os.path.exists(file_path):
            raise FileNotFoundError(f"Partition file not found: {file_path}")
        with self._open(file_path, 'r') as f:
            return [json.loads(line) for line in f if line.strip()]

    def exists(self, partition_id: int, artifact: str) -> bool:
        return os.path.exists(self._file_path(partition_id, artifact))


class ParquetBackend(StorageBackend):
    """Parquet backend; fixed columns per artifact plus a JSON 'properties' column"""

    def __init__(self, base_dir: str = './data/partitions'):
        """
        Initialize Parquet backend

        Args:
            base_dir: Base directory holding partition{i}/ directories
        """
        super().__init__(base_dir)
        logger.info(f"Initialized ParquetBackend with base_dir: {base_dir}")

    def _file_path(self, partition_id: int, artifact: str) -> str:
        return os.path.join(partition_dir(self.base_dir, partition_id), f'{artifact}.parquet')

    @staticmethod
    def _to_row(record: Dict[str, Any], columns: List[str]) -> Dict[str, Any]:
        row = {}
        for column in columns:
            value = record.get(column)
            row[column] = json.dumps(value) if column in JSON_ENCODED_COLUMNS else value
        row['properties'] = json.dumps({k: v for k, v in record.items() if k not in columns},
                                       default=str)
        return row

    @staticmethod
    def _from_row(row: Dict[str, Any], columns: List[str]) -> Dict[str, Any]:
        record = {}
        for column in columns:
            value = row[column]
            if column in JSON_ENCODED_COLUMNS:
                value = json.loads(value)
            elif column == 'mirrors':
                value = [int(m) for m in value]
            elif value is not None and pd.isna(value):
                continue
            elif hasattr(value, 'item'):
                value = value.item()
            record[column] = value
        record.update(json.loads(row['properties']))
        return record

    def save_records(self, records: List[Dict[str, Any]], partition_id: int, artifact: str):
        if artifact not in ARTIFACT_COLUMNS:
            raise ValueError(f"Unknown partition artifact: {artifact}")
        columns = ARTIFACT_COLUMNS[artifact]
        file_path = self._file_path(partition_id, artifact)
        os.makedirs(os.path.dirname(file_path), exist_ok=True)

        frame = pd.DataFrame([self._to_row(r, columns) for r in records],
                             columns=columns + ['properties'])
        frame.to_parquet(file_path, index=False)
        logger.info(f"Saved {len(records)} records to {file_path}")

    def load_records(self, partition_id: int, artifact: str) -> List[Dict[str, Any]]:
        if artifact not in ARTIFACT_COLUMNS:
            raise ValueError(f"Unknown partition artifact: {artifact}")
        file_path = self._file_path(partition_id, artifact)
        if not os.path.exists(file_path):
            raise FileNotFoundError(f"Partition file not found: {file_path}")

        frame = pd.read_parquet(file_path)
        columns = ARTIFACT_COLUMNS[artifact]
        return [self._from_row(row, columns) for row in frame.to_dict(orient='records')]

    def exists(self, partition_id: int, artifact: str) -> bool:
        return os.path.exists(self._file_path(partition_id, artifact))
