"""
Vertex-Cut Ingress
Assigns edges to partitions and derives each vertex's owner and mirrors
"""

import logging
import math
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

import numpy as np

from .elements import Edge, PropertyMap, Vertex, VertexRecord
from .exceptions import ConfigurationError
from .key_functions import hash_pair, stable_hash
from .metrics import Metrics

logger = logging.getLogger(__name__)

INGRESS_CODE_LIMIT = 4

# Greedy tie-breaking seed used when none is configured
DEFAULT_SEED = 42

INGRESS_CODES = {
    0: 'random',
    1: 'greedy',
    2: 'constrainedrandom',
    3: 'constrainedgreedy',
    4: 'constrainedpdsrandom',
}


def validate_ingress_code(code: int) -> int:
    """Reject selectors outside [0, INGRESS_CODE_LIMIT]"""
    if isinstance(code, bool) or not isinstance(code, int) or not 0 <= code <= INGRESS_CODE_LIMIT:
        raise ConfigurationError(
            f"Ingress code {code!r} out of range [0, {INGRESS_CODE_LIMIT}]"
        )
    return code


def validate_num_partitions(num_partitions: int) -> int:
    if isinstance(num_partitions, bool) or not isinstance(num_partitions, int) or num_partitions < 1:
        raise ConfigurationError(f"Number of partitions must be a positive integer, got {num_partitions!r}")
    return num_partitions


class Ingress(ABC):
    """Chooses the partition of an edge from its endpoints"""

    def __init__(self, num_partitions: int):
        self.num_partitions = validate_num_partitions(num_partitions)

    @abstractmethod
    def compute_pid(self, source: Any, target: Any) -> int:
        pass


class RandomIngress(Ingress):
    """Hash of the (source, target) pair"""

    def compute_pid(self, source: Any, target: Any) -> int:
        return hash_pair(source, target) % self.num_partitions


class GreedyIngress(Ingress):
    """
    Places an edge where its endpoints already live, breaking ties by load.

    Each candidate partition scores `balance + [source present] + [target
    present]`, where balance is (max_load - load) / (max_load - min_load +
    epsilon). A vertex seen for the first time is treated as present on its
    hash partition. Ties are broken with a seeded generator.
    """

    def __init__(self, num_partitions: int, seed: Optional[int] = DEFAULT_SEED,
                 threshold: float = 0.01, use_hash: bool = True):
        super().__init__(num_partitions)
        self.threshold = threshold
        self.use_hash = use_hash
        self.vertex_presence: Dict[Any, Set[int]] = defaultdict(set)
        self.proc_load = np.zeros(num_partitions, dtype=np.int64)
        self.rng = np.random.default_rng(seed)

    def candidates(self, source: Any, target: Any) -> List[int]:
        return list(range(self.num_partitions))

    def compute_pid(self, source: Any, target: Any) -> int:
        pid = self._best_partition(source, target)
        self.vertex_presence[source].add(pid)
        self.vertex_presence[target].add(pid)
        self.proc_load[pid] += 1
        return pid

    def _best_partition(self, source: Any, target: Any) -> int:
        candidates = self.candidates(source, target)
        min_load = self.proc_load.min()
        max_load = self.proc_load.max()
        source_present = self.vertex_presence.get(source, set())
        target_present = self.vertex_presence.get(target, set())
        source_home = stable_hash(source) % self.num_partitions
        target_home = stable_hash(target) % self.num_partitions

        scores = np.zeros(len(candidates))
        for i, pid in enumerate(candidates):
            balance = (max_load - self.proc_load[pid]) / (max_load - min_load + self.threshold)
            source_score = 1 if pid in source_present or (self.use_hash and pid == source_home) else 0
            target_score = 1 if pid in target_present or (self.use_hash and pid == target_home) else 0
            scores[i] = balance + source_score + target_score

        best = [candidates[i] for i in np.flatnonzero(np.abs(scores - scores.max()) < 1e-5)]
        return int(best[self.rng.integers(len(best))])


def grid_constraint(num_partitions: int) -> Dict[int, List[int]]:
    """Each shard may share edges with the shards in its row and column of a sqrt(P) grid"""
    n_cols = max(1, int(math.sqrt(num_partitions)))
    constraint = {}
    for i in range(num_partitions):
        shards = {i}
        row_begin = (i // n_cols) * n_cols
        shards.update(j for j in range(row_begin, row_begin + n_cols) if j < num_partitions)
        shards.update(range(i % n_cols, num_partitions, n_cols))
        constraint[i] = sorted(shards)
    return constraint


def _test_sequence(a: int, b: int, c: int, p: int) -> List[int]:
    length = p * p + p + 1
    seq = [0, 0, 1]
    zeros = 2
    for i in range(3, length + 3):
        seq.append((a * seq[i - 1] + b * seq[i - 2] + c * seq[i - 3]) % p)
        if seq[i] == 0:
            zeros += 1
        if i < length and zeros > p + 1:
            return []
    if seq[length] == 0 and seq[length + 1] == 0:
        pds = [i for i in range(length) if seq[i] == 0]
        if len(pds) == p + 1:
            return pds
    return []


def find_perfect_difference_set(prime: int) -> List[int]:
    """Search the linear recurrences mod `prime` for a perfect difference set"""
    for a in range(prime):
        for b in range(prime):
            if a == 0 and b == 0:
                continue
            for c in range(1, prime):
                pds = _test_sequence(a, b, c, prime)
                if pds:
                    return pds
    return []


def pds_constraint(num_partitions: int) -> Optional[Dict[int, List[int]]]:
    """PDS shard sets when P = p^2 + p + 1, otherwise None"""
    prime = int(math.floor(math.sqrt(num_partitions - 1))) if num_partitions > 1 else 0
    if prime < 2 or num_partitions != prime * prime + prime + 1:
        return None
    pds = find_perfect_difference_set(prime)
    if not pds:
        return None
    return {i: sorted((d + i) % num_partitions for d in pds) for i in range(num_partitions)}


class ConstrainedMixin:
    """Restricts candidates to the shards shared by both endpoints' home sets"""

    constraint: Dict[int, List[int]]

    def join_shards(self, source: Any, target: Any) -> List[int]:
        source_master = stable_hash(source) % self.num_partitions
        target_master = stable_hash(target) % self.num_partitions
        target_shards = set(self.constraint[target_master])
        shared = [pid for pid in self.constraint[source_master] if pid in target_shards]
        return shared or list(range(self.num_partitions))


class ConstrainedRandomIngress(ConstrainedMixin, Ingress):

    def __init__(self, num_partitions: int):
        super().__init__(num_partitions)
        self.constraint = grid_constraint(num_partitions)

    def compute_pid(self, source: Any, target: Any) -> int:
        candidates = self.join_shards(source, target)
        return candidates[hash_pair(source, target) % len(candidates)]


class ConstrainedPDSRandomIngress(ConstrainedRandomIngress):
    """Perfect-difference-set constraint; grid constraint when P is not p^2 + p + 1"""

    def __init__(self, num_partitions: int):
        super().__init__(num_partitions)
        constraint = pds_constraint(num_partitions)
        if constraint is None:
            logger.info(f"{num_partitions} partitions do not form a perfect difference set, "
                        f"using the grid constraint")
        else:
            self.constraint = constraint


class ConstrainedGreedyIngress(ConstrainedMixin, GreedyIngress):

    def __init__(self, num_partitions: int, seed: Optional[int] = DEFAULT_SEED,
                 threshold: float = 0.01, use_hash: bool = True):
        super().__init__(num_partitions, seed=seed, threshold=threshold, use_hash=use_hash)
        self.constraint = grid_constraint(num_partitions)

    def candidates(self, source: Any, target: Any) -> List[int]:
        return self.join_shards(source, target)


def create_ingress(code: int, num_partitions: int, seed: Optional[int] = DEFAULT_SEED) -> Ingress:
    """
    Instantiate the ingress strategy selected by `code`

    Args:
        code: Selector in [0, INGRESS_CODE_LIMIT]
        num_partitions: Number of partitions
        seed: Seed for the tie-breaking generator of greedy strategies

    Returns:
        Ingress instance
    """
    name = INGRESS_CODES[validate_ingress_code(code)]
    if name == 'random':
        return RandomIngress(num_partitions)
    if name == 'greedy':
        return GreedyIngress(num_partitions, seed=seed)
    if name == 'constrainedrandom':
        return ConstrainedRandomIngress(num_partitions)
    if name == 'constrainedgreedy':
        return ConstrainedGreedyIngress(num_partitions, seed=seed)
    return ConstrainedPDSRandomIngress(num_partitions)


def resolve_ingress_code(selector) -> int:
    """Accept either a numeric code or a strategy name from config"""
    if isinstance(selector, str):
        for code, name in INGRESS_CODES.items():
            if name == selector.lower():
                return code
        raise ConfigurationError(
            f"Unknown ingress method: {selector}. Supported: {', '.join(INGRESS_CODES.values())}"
        )
    return validate_ingress_code(selector)


class VertexRecordAssembler:
    """
    Runs the edge ingress and builds one VertexRecord per vertex.

    Every edge is placed on a partition; each endpoint becomes present on
    that partition. The owner is picked deterministically among the
    partitions a vertex is present on, and the rest become mirrors. Vertices
    with no edges are owned by their hash partition.
    """

    def __init__(self, ingress: Ingress, metrics: Optional[Metrics] = None):
        self.ingress = ingress
        self.num_partitions = ingress.num_partitions
        self.metrics = metrics if metrics is not None else Metrics()
        self._presence: Dict[Any, Set[int]] = defaultdict(set)
        self._in_edges: Dict[Any, int] = defaultdict(int)
        self._out_edges: Dict[Any, int] = defaultdict(int)
        self._properties: Dict[Any, PropertyMap] = {}
        self._labels: Dict[Any, str] = {}
        self.partition_edges: Dict[int, List[Edge]] = defaultdict(list)

    def add_edge(self, edge: Edge) -> int:
        pid = self.ingress.compute_pid(edge.source, edge.destination)
        self.partition_edges[pid].append(edge)
        self._presence[edge.source].add(pid)
        self._presence[edge.destination].add(pid)
        self._out_edges[edge.source] += 1
        self._in_edges[edge.destination] += 1
        self.metrics.incr('ingress.edges')
        return pid

    def add_vertex(self, vertex: Vertex):
        if vertex.id in self._properties:
            self._properties[vertex.id].merge_properties(vertex.properties)
        else:
            self._properties[vertex.id] = vertex.properties.copy()
        if vertex.label is not None:
            self._labels.setdefault(vertex.id, vertex.label)

    def add_all(self, vertices: Iterable[Vertex], edges: Iterable[Edge]):
        for vertex in vertices:
            self.add_vertex(vertex)
        for edge in edges:
            self.add_edge(edge)

    def _choose_owner(self, vid: Any, present: Set[int]) -> int:
        if not present:
            return stable_hash(vid) % self.num_partitions
        ordered = sorted(present)
        return ordered[stable_hash(vid) % len(ordered)]

    def vertex_records(self) -> List[VertexRecord]:
        vids = list(self._properties)
        vids.extend(vid for vid in self._presence if vid not in self._properties)

        records = []
        for vid in vids:
            present = self._presence.get(vid, set())
            owner = self._choose_owner(vid, present)
            record = VertexRecord(
                id=vid,
                owner=owner,
                mirrors=set(present) - {owner},
                properties=self._properties.get(vid, PropertyMap()).copy(),
                in_edges=self._in_edges.get(vid, 0),
                out_edges=self._out_edges.get(vid, 0),
                label=self._labels.get(vid),
            )
            records.append(record)

        self.metrics.incr('ingress.vertex_records', len(records))
        logger.info(f"Assembled {len(records)} vertex records over {self.num_partitions} partitions")
        return records

    def replication_factor(self) -> float:
        """Average number of partitions holding each vertex"""
        if not self._presence:
            return 0.0
        return sum(max(1, len(p)) for p in self._presence.values()) / len(self._presence)


def assign_partitions(vertices: Iterable[Vertex], edges: Iterable[Edge], ingress: Ingress,
                      metrics: Optional[Metrics] = None) -> Tuple[List[VertexRecord], Dict[int, List[Edge]]]:
    """Run the ingress over deduplicated elements; returns (vertex records, edges per partition)"""
    assembler = VertexRecordAssembler(ingress, metrics=metrics)
    assembler.add_all(vertices, edges)
    records = assembler.vertex_records()
    return records, dict(assembler.partition_edges)
