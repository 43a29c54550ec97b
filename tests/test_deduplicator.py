"""Tests for duplicate graph element merging."""

import pytest

from graph_processing.deduplicator import (
    CountReducer,
    GraphElementDeduplicator,
    SumReducer,
    get_reducer,
    merge_batch,
)
from graph_processing.elements import Edge, EdgeID, PropertyMap, Vertex
from graph_processing.exceptions import ConfigurationError
from graph_processing.metrics import Metrics


def edge(source, destination, label='friend', **properties):
    return Edge(source, destination, PropertyMap(properties), label)


def vertex(vid, label=None, **properties):
    return Vertex(vid, PropertyMap(properties), label)


class TestEdgeMerging:
    """Tests for edge deduplication."""

    def test_self_edges_are_dropped(self):
        metrics = Metrics()
        _, edges = merge_batch([edge('A', 'A'), edge('A', 'B')], metrics=metrics)

        assert [(e.source, e.destination) for e in edges] == [('A', 'B')]
        assert metrics.get('dedup.self_edges_dropped') == 1

    def test_duplicate_edges_merge_last_write_wins(self):
        _, edges = merge_batch([
            edge('A', 'B', since=2001, weight=1),
            edge('A', 'B', weight=5),
        ])

        assert len(edges) == 1
        assert edges[0].properties.to_dict() == {'since': 2001, 'weight': 5}

    def test_remerging_identical_input_is_idempotent(self):
        batch = [edge('A', 'B', weight=1), edge('A', 'B', weight=1), edge('B', 'C', weight=2)]

        _, once = merge_batch(batch)
        _, twice = merge_batch(batch + batch)

        assert once == twice

    def test_edges_with_different_labels_are_distinct(self):
        _, edges = merge_batch([edge('A', 'B', 'friend'), edge('A', 'B', 'colleague')])

        assert len(edges) == 2

    def test_bidirectional_pair_collapses_to_first_seen(self):
        metrics = Metrics()
        _, edges = merge_batch([edge('A', 'B'), edge('B', 'A')], no_bidirectional=True, metrics=metrics)

        assert [e.edge_id for e in edges] == [EdgeID('A', 'B', 'friend')]
        assert metrics.get('dedup.bidirectional_dropped') == 1

    def test_bidirectional_survivor_follows_arrival_order(self):
        _, edges = merge_batch([edge('B', 'A'), edge('A', 'B')], no_bidirectional=True)

        assert [e.edge_id for e in edges] == [EdgeID('B', 'A', 'friend')]

    def test_bidirectional_pair_kept_when_mode_off(self):
        _, edges = merge_batch([edge('A', 'B'), edge('B', 'A')])

        assert len(edges) == 2

    def test_duplicate_of_survivor_still_merges(self):
        _, edges = merge_batch([edge('A', 'B', w=1), edge('B', 'A'), edge('A', 'B', w=2)],
                               no_bidirectional=True)

        assert len(edges) == 1
        assert edges[0].properties.get_property('w') == 2

    def test_input_property_maps_are_not_mutated(self):
        first = edge('A', 'B', weight=1)
        merge_batch([first, edge('A', 'B', weight=9)])

        assert first.properties.get_property('weight') == 1


class TestReducers:

    def test_count_reducer_counts_duplicates(self):
        _, edges = merge_batch([edge('A', 'B'), edge('A', 'B'), edge('A', 'B'), edge('A', 'C')],
                               edge_reducer=CountReducer())

        counts = {e.destination: e.properties.get_property('count') for e in edges}
        assert counts == {'B': 3, 'C': 1}

    def test_sum_reducer_sums_property(self):
        vertices, _ = merge_batch([vertex('v', amount=3), vertex('v', amount=4), vertex('v')],
                                  vertex_reducer=SumReducer('amount'))

        assert vertices[0].properties.to_dict() == {'amount': 7}

    def test_identity_value_is_fresh(self):
        reducer = CountReducer()
        first = reducer.identity_value()
        first.set_property('count', 10)

        assert reducer.identity_value().get_property('count') == 0

    def test_get_reducer(self):
        assert get_reducer(None) is None
        assert isinstance(get_reducer('count'), CountReducer)
        reducer = get_reducer({'name': 'sum', 'property_name': 'amount'})
        assert isinstance(reducer, SumReducer)
        assert reducer.property_name == 'amount'

    def test_unknown_reducer(self):
        with pytest.raises(ConfigurationError):
            get_reducer('median')


class TestVertexMerging:

    def test_duplicate_vertices_merge(self):
        metrics = Metrics()
        vertices, _ = merge_batch([vertex('v', a=1), vertex('v', b=2), vertex('w')], metrics=metrics)

        merged = {v.id: v.properties.to_dict() for v in vertices}
        assert merged == {'v': {'a': 1, 'b': 2}, 'w': {}}
        assert metrics.get('dedup.duplicate_vertices') == 1

    def test_first_label_wins(self):
        vertices, _ = merge_batch([vertex('v'), vertex('v', 'person'), vertex('v', 'company')])

        assert vertices[0].label == 'person'


class TestGraphElementDeduplicator:

    def test_missing_accumulators_fail_fast(self):
        with pytest.raises(ConfigurationError):
            GraphElementDeduplicator(edge_set=None, vertex_set={})
        with pytest.raises(ConfigurationError):
            GraphElementDeduplicator(edge_set={}, vertex_set=None)

    def test_emit_yields_vertices_then_edges(self):
        dedup = GraphElementDeduplicator(edge_set={}, vertex_set={})
        dedup.process_all([edge('A', 'B'), vertex('A')])

        emitted = list(dedup.emit())

        assert isinstance(emitted[0], Vertex)
        assert isinstance(emitted[1], Edge)
        assert emitted[0].label is None

    def test_rejects_non_elements(self):
        dedup = GraphElementDeduplicator(edge_set={}, vertex_set={})

        with pytest.raises(TypeError):
            dedup.process(('A', 'B'))

    def test_at_most_one_entry_per_pair(self):
        batch = [edge(s, d) for s in 'ABC' for d in 'ABC'] * 2
        _, edges = merge_batch(batch, no_bidirectional=True)

        pairs = [frozenset((e.source, e.destination)) for e in edges]
        assert len(pairs) == len(set(pairs)) == 3
