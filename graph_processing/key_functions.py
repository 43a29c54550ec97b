"""
Key Functions
Deterministic grouping keys used to co-locate graph elements between stages
"""

import zlib
from abc import ABC, abstractmethod
from typing import Any, Dict, Type

import numpy as np

from .elements import Edge, Vertex
from .exceptions import ConfigurationError

_MASK_32 = 0xFFFFFFFF


def canonical(value: Any) -> Any:
    """
    Collapse values that compare equal onto one representative

    numpy scalars become Python scalars and integral floats (and bools)
    become ints, applied element-wise to tuples. Ids 5, 5.0 and np.int64(5)
    therefore hash alike.
    """
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, tuple):
        return tuple(canonical(v) for v in value)
    return value


def stable_hash(value: Any) -> int:
    """
    Non-negative 31-bit hash that is identical in every process.

    The builtin hash() is salted per interpreter for str/bytes, so two tasks
    would disagree on keys for the same vertex id. Values that compare equal
    hash equal.
    """
    value = canonical(value)
    if isinstance(value, bytes):
        data = value
    else:
        data = repr(value).encode('utf-8')
    return zlib.crc32(data) & 0x7FFFFFFF


def hash_pair(first: Any, second: Any) -> int:
    """Combine the hashes of two values (boost::hash_combine style)"""
    seed = 0
    for value in (first, second):
        seed = (stable_hash(value) + 0x9E3779B9 + (seed << 6) + (seed >> 2)) & _MASK_32
    return seed


class KeyFunction(ABC):
    """Maps a vertex or an edge to an integer grouping key"""

    name = None

    @abstractmethod
    def edge_key(self, edge: Edge) -> int:
        pass

    def vertex_key(self, vertex: Vertex) -> int:
        return stable_hash(vertex.id)

    def key(self, element) -> int:
        if isinstance(element, Edge):
            return self.edge_key(element)
        if isinstance(element, Vertex):
            return self.vertex_key(element)
        raise TypeError(f"Cannot compute a key for {type(element).__name__}")


class SourceVertexKeyFunction(KeyFunction):
    """Edges keyed by their source vertex id"""

    name = 'source'

    def edge_key(self, edge: Edge) -> int:
        return stable_hash(edge.source)


class DestinationVertexKeyFunction(KeyFunction):
    """Edges keyed by their destination vertex id"""

    name = 'destination'

    def edge_key(self, edge: Edge) -> int:
        return stable_hash(edge.destination)


class FullIdentityKeyFunction(KeyFunction):
    """Edges keyed by (source, destination, label)"""

    name = 'identity'

    def edge_key(self, edge: Edge) -> int:
        return stable_hash((edge.source, edge.destination, edge.label))


class UndirectedPairKeyFunction(KeyFunction):
    """Edges keyed by their unordered endpoint pair, so A->B and B->A share a group"""

    name = 'undirected'

    def edge_key(self, edge: Edge) -> int:
        first, second = sorted((stable_hash(edge.source), stable_hash(edge.destination)))
        return hash_pair(first, second) & 0x7FFFFFFF


KEY_FUNCTIONS: Dict[str, Type[KeyFunction]] = {
    SourceVertexKeyFunction.name: SourceVertexKeyFunction,
    DestinationVertexKeyFunction.name: DestinationVertexKeyFunction,
    FullIdentityKeyFunction.name: FullIdentityKeyFunction,
    UndirectedPairKeyFunction.name: UndirectedPairKeyFunction,
}


def get_key_function(name: str) -> KeyFunction:
    """Instantiate a key function by its configuration name"""
    if name not in KEY_FUNCTIONS:
        raise ConfigurationError(
            f"Unknown key function: {name}. Supported: {', '.join(sorted(KEY_FUNCTIONS))}"
        )
    return KEY_FUNCTIONS[name]()
