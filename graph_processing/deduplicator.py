"""
Duplicate Graph Element Merging
Collapses duplicate vertices and edges within one key-grouped batch
"""

import logging
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple, Type

from .elements import Edge, EdgeID, PropertyMap, Vertex
from .exceptions import ConfigurationError
from .metrics import Metrics

logger = logging.getLogger(__name__)


class Reducer:
    """
    Folds the property maps of duplicate elements into one accumulator.

    Subclasses implement `reduce(value, accumulator)` and `identity_value()`;
    the identity must be a fresh object on every call.
    """

    name = None

    def reduce(self, value: PropertyMap, accumulator: PropertyMap) -> PropertyMap:
        raise NotImplementedError

    def identity_value(self) -> PropertyMap:
        raise NotImplementedError


class CountReducer(Reducer):
    """Counts how many duplicates were seen"""

    name = 'count'

    def __init__(self, property_name: str = 'count'):
        self.property_name = property_name

    def reduce(self, value: PropertyMap, accumulator: PropertyMap) -> PropertyMap:
        accumulator.set_property(self.property_name,
                                 accumulator.get_property(self.property_name, 0) + 1)
        return accumulator

    def identity_value(self) -> PropertyMap:
        return PropertyMap({self.property_name: 0})


class SumReducer(Reducer):
    """Sums one numeric property across duplicates; missing values count as 0"""

    name = 'sum'

    def __init__(self, property_name: str = 'weight'):
        self.property_name = property_name

    def reduce(self, value: PropertyMap, accumulator: PropertyMap) -> PropertyMap:
        total = accumulator.get_property(self.property_name, 0) + value.get_property(self.property_name, 0)
        accumulator.set_property(self.property_name, total)
        return accumulator

    def identity_value(self) -> PropertyMap:
        return PropertyMap({self.property_name: 0})


REDUCERS: Dict[str, Type[Reducer]] = {
    CountReducer.name: CountReducer,
    SumReducer.name: SumReducer,
}


def get_reducer(config) -> Optional[Reducer]:
    """
    Build a reducer from config

    Args:
        config: None, a reducer name, or a dict {'name': ..., <constructor kwargs>}

    Returns:
        Reducer instance or None
    """
    if config is None:
        return None
    if isinstance(config, str):
        config = {'name': config}
    options = dict(config)
    name = options.pop('name', None)
    if name not in REDUCERS:
        raise ConfigurationError(f"Unknown reducer: {name}. Supported: {', '.join(sorted(REDUCERS))}")
    return REDUCERS[name](**options)


class GraphElementDeduplicator:
    """
    Removes duplicate edges and vertices of one key group.

    Duplicates have their property maps merged (incoming values win) or,
    when a reducer is configured, folded by the reducer. Self edges are
    dropped. With `no_bidirectional` set, an edge whose reverse was already
    kept is dropped, so whichever direction arrives first survives.
    """

    def __init__(self, edge_set: Optional[Dict[EdgeID, PropertyMap]],
                 vertex_set: Optional[Dict[Any, PropertyMap]],
                 vertex_label_map: Optional[Dict[Any, str]] = None,
                 edge_reducer: Optional[Reducer] = None,
                 vertex_reducer: Optional[Reducer] = None,
                 no_bidirectional: bool = False,
                 metrics: Optional[Metrics] = None):
        """
        Args:
            edge_set: Accumulator of merged edges (required)
            vertex_set: Accumulator of merged vertices (required)
            vertex_label_map: Optional first-seen label per vertex
            edge_reducer: Optional reducer for duplicate edges
            vertex_reducer: Optional reducer for duplicate vertices
            no_bidirectional: Collapse A->B / B->A pairs into the first seen
            metrics: Counter handle
        """
        if edge_set is None:
            raise ConfigurationError("GraphElementDeduplicator requires an edge_set accumulator")
        if vertex_set is None:
            raise ConfigurationError("GraphElementDeduplicator requires a vertex_set accumulator")

        self.edge_set = edge_set
        self.vertex_set = vertex_set
        self.vertex_label_map = vertex_label_map
        self.edge_reducer = edge_reducer
        self.vertex_reducer = vertex_reducer
        self.no_bidirectional = no_bidirectional
        self.metrics = metrics if metrics is not None else Metrics()

    def process(self, element):
        if isinstance(element, Edge):
            self.add_edge(element)
        elif isinstance(element, Vertex):
            self.add_vertex(element)
        else:
            raise TypeError(f"Not a graph element: {type(element).__name__}")

    def process_all(self, elements: Iterable):
        for element in elements:
            self.process(element)

    def add_edge(self, edge: Edge):
        if edge.is_self_edge():
            self.metrics.incr('dedup.self_edges_dropped')
            return

        edge_id = edge.edge_id
        if edge_id in self.edge_set:
            self.metrics.incr('dedup.duplicate_edges')
            if self.edge_reducer is not None:
                self.edge_set[edge_id] = self.edge_reducer.reduce(edge.properties, self.edge_set[edge_id])
            else:
                self.edge_set[edge_id].merge_properties(edge.properties)
        elif self.no_bidirectional and edge_id.reverse() in self.edge_set:
            self.metrics.incr('dedup.bidirectional_dropped')
        else:
            if self.edge_reducer is not None:
                self.edge_set[edge_id] = self.edge_reducer.reduce(edge.properties,
                                                                  self.edge_reducer.identity_value())
            else:
                self.edge_set[edge_id] = edge.properties.copy()

    def add_vertex(self, vertex: Vertex):
        vid = vertex.id

        if vertex.label is not None and self.vertex_label_map is not None:
            self.vertex_label_map.setdefault(vid, vertex.label)

        if vid in self.vertex_set:
            self.metrics.incr('dedup.duplicate_vertices')
            if self.vertex_reducer is not None:
                self.vertex_set[vid] = self.vertex_reducer.reduce(vertex.properties, self.vertex_set[vid])
            else:
                self.vertex_set[vid].merge_properties(vertex.properties)
        else:
            if self.vertex_reducer is not None:
                self.vertex_set[vid] = self.vertex_reducer.reduce(vertex.properties,
                                                                  self.vertex_reducer.identity_value())
            else:
                self.vertex_set[vid] = vertex.properties.copy()

    def emit_vertices(self) -> Iterator[Vertex]:
        for vid, properties in self.vertex_set.items():
            label = self.vertex_label_map.get(vid) if self.vertex_label_map is not None else None
            yield Vertex(vid, properties, label)

    def emit_edges(self) -> Iterator[Edge]:
        for edge_id, properties in self.edge_set.items():
            yield Edge(edge_id.source, edge_id.destination, properties, edge_id.label)

    def emit(self) -> Iterator:
        """Merged vertices followed by merged edges"""
        yield from self.emit_vertices()
        yield from self.emit_edges()


def merge_batch(elements: Iterable, edge_reducer: Optional[Reducer] = None,
                vertex_reducer: Optional[Reducer] = None, no_bidirectional: bool = False,
                metrics: Optional[Metrics] = None) -> Tuple[List[Vertex], List[Edge]]:
    """
    Deduplicate one key group with state private to this call

    Returns:
        Tuple of (vertices, edges)
    """
    deduplicator = GraphElementDeduplicator(
        edge_set={},
        vertex_set={},
        vertex_label_map={},
        edge_reducer=edge_reducer,
        vertex_reducer=vertex_reducer,
        no_bidirectional=no_bidirectional,
        metrics=metrics,
    )
    deduplicator.process_all(elements)
    return list(deduplicator.emit_vertices()), list(deduplicator.emit_edges())
