"""
Graph Processing Module
Handles record reading, graph element merging and vertex-cut partitioning
"""

from .deduplicator import GraphElementDeduplicator, get_reducer, merge_batch
from .distributor import VertexRecordDistributor
from .elements import Edge, EdgeID, PropertyMap, Vertex, VertexRecord
from .ingress import INGRESS_CODE_LIMIT, create_ingress, resolve_ingress_code
from .key_functions import get_key_function
from .metrics import Metrics
from .pipeline import GraphConstructionPipeline
from .record_reader import RecordBoundaryReader, open_split
from .tokenizer import get_tokenizer

__all__ = [
    'GraphElementDeduplicator', 'get_reducer', 'merge_batch',
    'VertexRecordDistributor',
    'Edge', 'EdgeID', 'PropertyMap', 'Vertex', 'VertexRecord',
    'INGRESS_CODE_LIMIT', 'create_ingress', 'resolve_ingress_code',
    'get_key_function',
    'Metrics',
    'GraphConstructionPipeline',
    'RecordBoundaryReader', 'open_split',
    'get_tokenizer',
]
