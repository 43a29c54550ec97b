"""
Graph Tokenizers
Turn one raw input record into property graph vertices and edges
"""

import logging
import re
import xml.etree.ElementTree as ET
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple, Type

import pandas as pd

from .elements import EDGE_RESERVED_KEYS, RESERVED_KEYS, Edge, PropertyMap, Vertex
from .exceptions import ConfigurationError, ParseError

logger = logging.getLogger(__name__)

LINK_PATTERN = re.compile(r"\[\[(.*?)\]\]", re.MULTILINE)
WHITESPACE = re.compile(r"\s")


class GraphTokenizer(ABC):
    """Parses a raw record into (vertices, edges)"""

    name = None

    @abstractmethod
    def parse(self, record) -> Tuple[List[Vertex], List[Edge]]:
        """
        Args:
            record: One raw input record

        Returns:
            Tuple of (vertices, edges)

        Raises:
            ParseError: if the record payload is malformed
        """
        pass


class WikiLinkTokenizer(GraphTokenizer):
    """
    Link graph of a Wikipedia dump: one vertex per page title and per link
    target, one edge from the page to every page it links to.
    """

    name = 'wiki_links'

    def __init__(self, edge_label: Optional[str] = 'links_to'):
        self.edge_label = edge_label

    def parse(self, record) -> Tuple[List[Vertex], List[Edge]]:
        if isinstance(record, bytes):
            record = record.decode('utf-8', errors='replace')
        try:
            page = ET.fromstring(record)
        except ET.ParseError as e:
            raise ParseError(f"Malformed page record: {e}") from e

        title = page.findtext('title')
        if not title or not title.strip():
            raise ParseError("Page record has no title")
        title = WHITESPACE.sub('_', title.strip())
        page_id = page.findtext('id')
        text = page.findtext('revision/text') or ''

        properties = PropertyMap()
        if page_id:
            properties.set_property('page_id', page_id.strip())

        links = self.parse_links(text)
        vertices = [Vertex(title, properties, 'page')]
        vertices.extend(Vertex(link, PropertyMap(), 'page') for link in links)
        edges = [Edge(title, link, PropertyMap(), self.edge_label) for link in links]
        return vertices, edges

    @staticmethod
    def parse_links(text: str) -> List[str]:
        """Targets of [[link|caption]] markup, skipping namespaced links"""
        links = []
        for match in LINK_PATTERN.finditer(text):
            link = match.group(1).split('|')[0]
            if WHITESPACE.sub('', link) and ':' not in link:
                links.append(WHITESPACE.sub('_', link))
        return links


class TableTokenizer(GraphTokenizer):
    """
    Builds graph elements from a table row using column rules.

    Vertex rule: {'id': column, 'label': str, 'properties': [columns]}
    Edge rule:   {'source': column, 'destination': column, 'label': str,
                  'properties': [columns], 'bidirectional': bool}

    Cells that are null produce no element.
    """

    name = 'table'

    def __init__(self, vertex_rules: Optional[List[Dict]] = None,
                 edge_rules: Optional[List[Dict]] = None):
        self.vertex_rules = vertex_rules or []
        self.edge_rules = edge_rules or []
        if not self.vertex_rules and not self.edge_rules:
            raise ConfigurationError("TableTokenizer needs at least one vertex or edge rule")
        for rule in self.vertex_rules:
            if 'id' not in rule:
                raise ConfigurationError(f"Vertex rule without an 'id' column: {rule}")
            self._check_property_columns(rule, RESERVED_KEYS)
        for rule in self.edge_rules:
            if 'source' not in rule or 'destination' not in rule:
                raise ConfigurationError(f"Edge rule needs 'source' and 'destination' columns: {rule}")
            self._check_property_columns(rule, EDGE_RESERVED_KEYS)

    @staticmethod
    def _check_property_columns(rule: Dict, reserved):
        clashing = [column for column in rule.get('properties', []) if column in reserved]
        if clashing:
            raise ConfigurationError(
                f"Property columns {clashing} collide with reserved record keys {list(reserved)}"
            )

    def parse(self, record) -> Tuple[List[Vertex], List[Edge]]:
        if isinstance(record, pd.Series):
            row = record.to_dict()
        elif isinstance(record, dict):
            row = record
        else:
            raise ParseError(f"Table rows must be dicts or pandas Series, got {type(record).__name__}")

        vertices = []
        for rule in self.vertex_rules:
            vid = self._cell(row, rule['id'])
            if vid is None:
                continue
            vertices.append(Vertex(vid, self._properties(row, rule), rule.get('label')))

        edges = []
        for rule in self.edge_rules:
            source = self._cell(row, rule['source'])
            destination = self._cell(row, rule['destination'])
            if source is None or destination is None:
                continue
            properties = self._properties(row, rule)
            edges.append(Edge(source, destination, properties, rule.get('label')))
            if rule.get('bidirectional', False):
                edges.append(Edge(destination, source, properties.copy(), rule.get('label')))
        return vertices, edges

    @staticmethod
    def _cell(row: Dict, column: str) -> Any:
        if column not in row:
            raise ParseError(f"Row has no column '{column}'")
        value = row[column]
        if value is None or (not isinstance(value, (list, dict)) and pd.isna(value)):
            return None
        if hasattr(value, 'item'):
            # numpy scalar -> python scalar so ids hash the same everywhere
            value = value.item()
        return value

    def _properties(self, row: Dict, rule: Dict) -> PropertyMap:
        properties = PropertyMap()
        for column in rule.get('properties', []):
            value = self._cell(row, column)
            if value is not None:
                properties.set_property(column, value)
        return properties


TOKENIZERS: Dict[str, Type[GraphTokenizer]] = {
    WikiLinkTokenizer.name: WikiLinkTokenizer,
    TableTokenizer.name: TableTokenizer,
}


def get_tokenizer(name: str, **options) -> GraphTokenizer:
    """Instantiate a tokenizer by its configuration name"""
    if name not in TOKENIZERS:
        raise ConfigurationError(f"Unknown tokenizer: {name}. Supported: {', '.join(sorted(TOKENIZERS))}")
    return TOKENIZERS[name](**options)
