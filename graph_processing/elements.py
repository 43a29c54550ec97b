"""
Property Graph Elements
Vertices, edges, property maps and the vertex records produced by ingress
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, StrictInt, ValidationError

from .exceptions import ParseError

# Keys of the vertex record wire format that cannot be used as property names
RESERVED_KEYS = ('id', 'owner', 'mirrors', 'inEdges', 'outEdges', 'label')
# Keys of the edge wire format that cannot be used as property names
EDGE_RESERVED_KEYS = ('source', 'destination', 'label')


class VertexRecordWire(BaseModel):
    """
    Vertex record as it travels between stages.

    Every key beyond the declared fields is a vertex property and is kept
    in `model_extra`.
    """

    model_config = ConfigDict(extra='allow')

    id: Any
    owner: StrictInt
    mirrors: List[StrictInt] = Field(default_factory=list)
    inEdges: StrictInt = 0
    outEdges: StrictInt = 0
    label: Optional[str] = None


class PropertyMap:
    """Mapping of property name to value; merges are last-write-wins per key"""

    def __init__(self, properties: Optional[Dict[str, Any]] = None):
        self._properties: Dict[str, Any] = {}
        if properties:
            for key, value in properties.items():
                self.set_property(key, value)

    def set_property(self, key: str, value: Any):
        self._properties[str(key)] = value

    def get_property(self, key: str, default: Any = None) -> Any:
        return self._properties.get(key, default)

    def remove_property(self, key: str) -> Any:
        """Remove `key` and return its previous value, or None if absent"""
        return self._properties.pop(key, None)

    def property_keys(self) -> List[str]:
        return list(self._properties.keys())

    def merge_properties(self, other: 'PropertyMap') -> 'PropertyMap':
        """
        Incorporate the key/value pairs of another map into this one

        Args:
            other: Incoming property map; its values win on conflicting keys

        Returns:
            This map, for chaining
        """
        for key in other.property_keys():
            self.set_property(key, other.get_property(key))
        return self

    def copy(self) -> 'PropertyMap':
        return PropertyMap(self._properties)

    def to_dict(self) -> Dict[str, Any]:
        return dict(self._properties)

    def __contains__(self, key) -> bool:
        return key in self._properties

    def __iter__(self) -> Iterator[str]:
        return iter(self._properties)

    def __len__(self) -> int:
        return len(self._properties)

    def __eq__(self, other) -> bool:
        if not isinstance(other, PropertyMap):
            return NotImplemented
        return self._properties == other._properties

    def __repr__(self):
        return f"PropertyMap({self._properties!r})"


@dataclass(frozen=True)
class EdgeID:
    """Identity of an edge: (source, destination, label)"""
    source: Any
    destination: Any
    label: Any = None

    def reverse(self) -> 'EdgeID':
        """Same label, source and destination swapped"""
        return EdgeID(self.destination, self.source, self.label)


@dataclass
class Vertex:
    id: Any
    properties: PropertyMap = field(default_factory=PropertyMap)
    label: Optional[str] = None


@dataclass
class Edge:
    source: Any
    destination: Any
    properties: PropertyMap = field(default_factory=PropertyMap)
    label: Optional[str] = None

    @property
    def edge_id(self) -> EdgeID:
        return EdgeID(self.source, self.destination, self.label)

    def is_self_edge(self) -> bool:
        return self.source == self.destination


@dataclass
class VertexRecord:
    """
    A vertex together with its partition placement.

    `owner` is the partition holding the authoritative copy; `mirrors` are the
    other partitions that hold a replica because they have a local edge
    touching the vertex. The owner is never one of the mirrors.
    """
    id: Any
    owner: int = -1
    mirrors: Set[int] = field(default_factory=set)
    properties: PropertyMap = field(default_factory=PropertyMap)
    in_edges: int = 0
    out_edges: int = 0
    label: Optional[str] = None

    def add_mirror(self, pid: int):
        self.mirrors.add(pid)

    def remove_mirror(self, pid: int):
        self.mirrors.discard(pid)

    def mirror_list(self) -> List[int]:
        return sorted(self.mirrors)

    def partitions(self) -> List[int]:
        """Owner followed by every mirror partition"""
        return [self.owner] + self.mirror_list()

    def validate(self, num_partitions: Optional[int] = None):
        """
        Check the owner/mirror invariants

        Raises:
            ParseError: if the owner is unset, is also a mirror, or any
                partition id is outside [0, num_partitions)
        """
        if not isinstance(self.owner, int) or self.owner < 0:
            raise ParseError(f"Vertex {self.id!r} has no owner partition")
        if self.owner in self.mirrors:
            raise ParseError(f"Vertex {self.id!r} lists owner {self.owner} among its mirrors")
        if num_partitions is not None:
            for pid in self.partitions():
                if not 0 <= pid < num_partitions:
                    raise ParseError(
                        f"Vertex {self.id!r} references partition {pid} "
                        f"outside [0, {num_partitions})"
                    )

    def to_dict(self) -> Dict[str, Any]:
        record = {
            'id': self.id,
            'owner': self.owner,
            'mirrors': self.mirror_list(),
            'inEdges': self.in_edges,
            'outEdges': self.out_edges,
        }
        if self.label is not None:
            record['label'] = self.label
        for key in self.properties:
            if key in RESERVED_KEYS:
                raise ValueError(f"Property name '{key}' is reserved in vertex records")
            record[key] = self.properties.get_property(key)
        return record

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    @classmethod
    def from_dict(cls, obj: Dict[str, Any]) -> 'VertexRecord':
        """Build a record from its wire dictionary, raising ParseError if malformed"""
        try:
            wire = VertexRecordWire.model_validate(obj)
        except ValidationError as e:
            raise ParseError(f"Malformed vertex record: {e}") from e
        return cls.from_wire(wire)

    @classmethod
    def from_json(cls, text) -> 'VertexRecord':
        try:
            if isinstance(text, bytes):
                text = text.decode('utf-8')
            wire = VertexRecordWire.model_validate_json(text)
        except UnicodeDecodeError as e:
            raise ParseError(f"Vertex record is not valid UTF-8: {e}") from e
        except ValidationError as e:
            raise ParseError(f"Unparsable vertex record: {e}") from e
        return cls.from_wire(wire)

    @classmethod
    def from_wire(cls, wire: VertexRecordWire) -> 'VertexRecord':
        return cls(
            id=wire.id,
            owner=wire.owner,
            mirrors=set(wire.mirrors),
            properties=PropertyMap(wire.model_extra),
            in_edges=wire.inEdges,
            out_edges=wire.outEdges,
            label=wire.label,
        )
