"""
Graph Construction Pipeline
Local driver chaining record reading, tokenizing, merging, ingress and distribution
"""

import logging
import multiprocessing as mp
from collections import defaultdict
from concurrent.futures import ProcessPoolExecutor
from typing import Dict, Iterable, List, Optional, Tuple

import pandas as pd

from .deduplicator import Reducer, merge_batch
from .distributor import VertexRecordDistributor
from .elements import Edge, Vertex, VertexRecord
from .exceptions import ParseError
from .ingress import (
    DEFAULT_SEED,
    assign_partitions,
    create_ingress,
    validate_ingress_code,
    validate_num_partitions,
)
from .key_functions import KeyFunction, SourceVertexKeyFunction, UndirectedPairKeyFunction
from .metrics import Metrics
from .record_reader import compute_splits, read_split
from .tokenizer import GraphTokenizer

logger = logging.getLogger(__name__)


class GraphConstructionPipeline:
    """Builds a vertex-cut partitioned property graph from raw records"""

    def __init__(self, num_partitions: int, tokenizer: GraphTokenizer, ingress_code: int = 0,
                 key_function: Optional[KeyFunction] = None, no_bidirectional: bool = False,
                 edge_reducer: Optional[Reducer] = None, vertex_reducer: Optional[Reducer] = None,
                 num_workers: int = 1, seed: Optional[int] = DEFAULT_SEED, strict_reader: bool = False,
                 metrics: Optional[Metrics] = None):
        """
        Initialize the pipeline

        Args:
            num_partitions: Number of output partitions
            tokenizer: Parser turning raw records into graph elements
            ingress_code: Ingress strategy selector
            key_function: Grouping key for the merge stage (default: source vertex,
                or the undirected pair key when no_bidirectional is set)
            no_bidirectional: Collapse reverse edge pairs while merging
            edge_reducer: Optional reducer for duplicate edges
            vertex_reducer: Optional reducer for duplicate vertices
            num_workers: Parallel workers for reading splits (default: 1)
            seed: Seed for greedy ingress tie-breaking (None draws fresh entropy)
            strict_reader: Fail on reader position mismatches
            metrics: Counter handle
        """
        self.num_partitions = validate_num_partitions(num_partitions)
        self.ingress_code = validate_ingress_code(ingress_code)
        self.tokenizer = tokenizer
        if key_function is None:
            key_function = UndirectedPairKeyFunction() if no_bidirectional else SourceVertexKeyFunction()
        elif no_bidirectional and not isinstance(key_function, UndirectedPairKeyFunction):
            logger.warning(f"Key function '{key_function.name}' splits reverse edge pairs across groups; "
                           f"bidirectional edges are only collapsed within a group")
        self.key_function = key_function
        self.no_bidirectional = no_bidirectional
        self.edge_reducer = edge_reducer
        self.vertex_reducer = vertex_reducer
        self.num_workers = num_workers or mp.cpu_count()
        self.seed = seed
        self.strict_reader = strict_reader
        self.metrics = metrics if metrics is not None else Metrics()
        logger.info(f"Initialized GraphConstructionPipeline with {self.num_partitions} partitions, "
                    f"ingress code {self.ingress_code}, key function {self.key_function.name}")

    def read_records(self, path: str, start_tag, end_tag, split_size: int = 64 * 1024 * 1024) -> List[bytes]:
        """
        Read every delimited record of a file, one reader per split

        Returns:
            Records in file order
        """
        splits = compute_splits(path, split_size)
        logger.info(f"Reading {path} in {len(splits)} splits")

        if self.num_workers > 1 and len(splits) > 1:
            with ProcessPoolExecutor(max_workers=self.num_workers) as executor:
                futures = [executor.submit(read_split, path, start, length, start_tag, end_tag,
                                           self.strict_reader)
                           for start, length in splits]
                results = [future.result() for future in futures]
        else:
            results = [read_split(path, start, length, start_tag, end_tag, self.strict_reader)
                       for start, length in splits]

        records = []
        for split_records, split_metrics in results:
            self.metrics.merge(split_metrics)
            records.extend(record for _, record in split_records)
        logger.info(f"Read {len(records)} records")
        return records

    def tokenize(self, records: Iterable) -> List:
        """Parse records into graph elements; malformed records are skipped"""
        elements = []
        for record in records:
            try:
                vertices, edges = self.tokenizer.parse(record)
            except ParseError as e:
                self.metrics.incr('tokenizer.parse_errors')
                logger.warning(f"Skipping malformed record: {e}")
                continue
            self.metrics.incr('tokenizer.records')
            elements.extend(vertices)
            elements.extend(edges)
        return elements

    def group_by_key(self, elements: Iterable) -> Dict[int, List]:
        groups = defaultdict(list)
        for element in elements:
            groups[self.key_function.key(element)].append(element)
        return groups

    def deduplicate(self, groups: Dict[int, List]) -> Tuple[List[Vertex], List[Edge]]:
        """Merge each key group independently"""
        vertices, edges = [], []
        for key in sorted(groups):
            group_vertices, group_edges = merge_batch(
                groups[key],
                edge_reducer=self.edge_reducer,
                vertex_reducer=self.vertex_reducer,
                no_bidirectional=self.no_bidirectional,
                metrics=self.metrics,
            )
            vertices.extend(group_vertices)
            edges.extend(group_edges)
        logger.info(f"Merged into {len(vertices)} vertices and {len(edges)} edges")
        return vertices, edges

    def assign(self, vertices: List[Vertex], edges: List[Edge]) -> Tuple[List[VertexRecord], Dict[int, List[Edge]]]:
        ingress = create_ingress(self.ingress_code, self.num_partitions, seed=self.seed)
        return assign_partitions(vertices, edges, ingress, metrics=self.metrics)

    def distribute(self, records: Iterable) -> VertexRecordDistributor:
        distributor = VertexRecordDistributor(self.num_partitions, self.ingress_code, metrics=self.metrics)
        distributor.distribute(records)
        return distributor

    def build(self, raw_records: Iterable) -> Tuple[List[VertexRecord], Dict[int, List[Edge]]]:
        """Tokenize, merge and assign already-delimited records"""
        elements = self.tokenize(raw_records)
        vertices, edges = self.deduplicate(self.group_by_key(elements))
        return self.assign(vertices, edges)

    def build_xml(self, path: str, start_tag, end_tag,
                  split_size: int = 64 * 1024 * 1024) -> Tuple[List[VertexRecord], Dict[int, List[Edge]]]:
        return self.build(self.read_records(path, start_tag, end_tag, split_size))

    def build_table(self, df: pd.DataFrame) -> Tuple[List[VertexRecord], Dict[int, List[Edge]]]:
        logger.info(f"Building graph from {len(df)} table rows")
        return self.build(df.to_dict(orient='records'))

    def run_xml(self, path: str, start_tag, end_tag, split_size: int = 64 * 1024 * 1024,
                store=None) -> VertexRecordDistributor:
        """Run the whole pipeline over a delimited (e.g. XML) file"""
        records, partition_edges = self.build_xml(path, start_tag, end_tag, split_size)
        distributor = self.distribute(records)
        if store is not None:
            distributor.write(store, partition_edges)
        return distributor

    def run_table(self, df: pd.DataFrame, store=None) -> VertexRecordDistributor:
        """Run the whole pipeline over the rows of a table"""
        records, partition_edges = self.build_table(df)
        distributor = self.distribute(records)
        if store is not None:
            distributor.write(store, partition_edges)
        return distributor
