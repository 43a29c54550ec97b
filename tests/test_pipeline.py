"""End-to-end tests for the graph construction pipeline and the CLI."""

import json
import logging
import sys

import pandas as pd
import pytest
import yaml

import main
from graph_processing import GraphConstructionPipeline, Metrics
from graph_processing.deduplicator import SumReducer
from graph_processing.elements import PropertyMap, VertexRecord
from graph_processing.exceptions import ConfigurationError
from graph_processing.ingress import DEFAULT_SEED
from graph_processing.key_functions import SourceVertexKeyFunction, UndirectedPairKeyFunction
from graph_processing.tokenizer import TableTokenizer, WikiLinkTokenizer
from storage import PartitionStore


def page(title, text):
    return f'<page><title>{title}</title><revision><text>{text}</text></revision></page>'


PAGES = '\n'.join([
    '<mediawiki>',
    page('A', '[[B]] [[C]] [[A]] [[B]]'),
    page('B', '[[A]] [[C]]'),
    page('C', '[[D]]'),
    page('A', '[[B]]'),
    '<page><title>Broken</page>',
    '</mediawiki>',
]).encode('utf-8')


@pytest.fixture
def dump(tmp_path):
    path = tmp_path / 'dump.xml'
    path.write_bytes(PAGES)
    return str(path)


def edge_pairs(partition_edges):
    return sorted((e.source, e.destination) for edges in partition_edges.values() for e in edges)


class TestXmlPipeline:
    """Tests for building a partitioned link graph from a page dump."""

    @pytest.mark.parametrize('split_size', [16, 64, 1 << 20])
    def test_build_is_independent_of_split_size(self, dump, split_size):
        metrics = Metrics()
        pipeline = GraphConstructionPipeline(num_partitions=4, tokenizer=WikiLinkTokenizer(), metrics=metrics)

        records, partition_edges = pipeline.build_xml(dump, '<page>', '</page>', split_size=split_size)

        assert sorted(r.id for r in records) == ['A', 'B', 'C', 'D']
        assert edge_pairs(partition_edges) == [('A', 'B'), ('A', 'C'), ('B', 'A'), ('B', 'C'), ('C', 'D')]
        assert metrics.get('reader.records') == 5
        assert metrics.get('tokenizer.records') == 4
        assert metrics.get('tokenizer.parse_errors') == 1
        assert metrics.get('dedup.self_edges_dropped') == 1
        assert metrics.get('dedup.duplicate_edges') == 2

    def test_no_bidirectional_collapses_reverse_pairs(self, dump):
        pipeline = GraphConstructionPipeline(num_partitions=4, tokenizer=WikiLinkTokenizer(),
                                             no_bidirectional=True)

        assert isinstance(pipeline.key_function, UndirectedPairKeyFunction)
        _, partition_edges = pipeline.build_xml(dump, '<page>', '</page>')

        assert edge_pairs(partition_edges) == [('A', 'B'), ('A', 'C'), ('B', 'C'), ('C', 'D')]

    def test_parallel_read_matches_sequential(self, dump):
        sequential = GraphConstructionPipeline(num_partitions=2, tokenizer=WikiLinkTokenizer())
        parallel = GraphConstructionPipeline(num_partitions=2, tokenizer=WikiLinkTokenizer(), num_workers=2)

        assert parallel.read_records(dump, '<page>', '</page>', split_size=32) == \
               sequential.read_records(dump, '<page>', '</page>', split_size=32)

    @pytest.mark.parametrize('ingress_code', [0, 1, 2, 3, 4])
    def test_run_writes_every_partition(self, dump, tmp_path, ingress_code):
        store = PartitionStore(backend_type='json', base_dir=str(tmp_path / 'out'))
        pipeline = GraphConstructionPipeline(num_partitions=3, tokenizer=WikiLinkTokenizer(),
                                             ingress_code=ingress_code, seed=11)

        distributor = pipeline.run_xml(dump, '<page>', '</page>', store=store)

        metadata = distributor.metadata()
        assert sum(m['numOwnVertices'] for m in metadata.values()) == 4
        owners = {}
        edge_count = 0
        for pid in store.list_partitions():
            partition = store.read_partition(pid)
            assert partition['metadata'] == metadata.get(pid, {'numVertices': 0, 'numOwnVertices': 0})
            edge_count += len(partition['edges'])
            for record in partition['records']:
                assert pid in record.partitions()
                if record.owner == pid:
                    owners[record.id] = pid
        assert sorted(owners) == ['A', 'B', 'C', 'D']
        assert edge_count == 5

    def test_split_key_function_warns_under_no_bidirectional(self, caplog):
        with caplog.at_level(logging.WARNING):
            GraphConstructionPipeline(num_partitions=2, tokenizer=WikiLinkTokenizer(),
                                      key_function=SourceVertexKeyFunction(), no_bidirectional=True)

        assert 'splits reverse edge pairs' in caplog.text

    @pytest.mark.parametrize('kwargs', [{'num_partitions': 0}, {'num_partitions': 2, 'ingress_code': 7}])
    def test_configuration_errors(self, kwargs):
        with pytest.raises(ConfigurationError):
            GraphConstructionPipeline(tokenizer=WikiLinkTokenizer(), **kwargs)


class TestTablePipeline:

    def test_weights_are_summed_across_duplicate_rows(self):
        df = pd.DataFrame({
            'src': [1, 1, 2, 2, 3],
            'dst': [2, 2, 1, 3, 3],
            'weight': [1.0, 2.0, 4.0, 1.0, 5.0],
        })
        tokenizer = TableTokenizer(edge_rules=[{'source': 'src', 'destination': 'dst',
                                                'properties': ['weight']}])
        pipeline = GraphConstructionPipeline(num_partitions=2, tokenizer=tokenizer,
                                             edge_reducer=SumReducer('weight'))

        distributor = pipeline.run_table(df)
        records, partition_edges = pipeline.build_table(df)

        weights = {(e.source, e.destination): e.properties.get_property('weight')
                   for edges in partition_edges.values() for e in edges}
        assert weights == {(1, 2): 3.0, (2, 1): 4.0, (2, 3): 1.0}
        assert sorted(r.id for r in records) == [1, 2, 3]
        assert sum(m['numOwnVertices'] for m in distributor.metadata().values()) == 3


class TestCli:
    """Tests for the command line entry point."""

    def write_config(self, tmp_path, dump, backend='json'):
        config = {
            'data': {'input_path': dump, 'input_format': 'xml', 'start_tag': '<page>',
                     'end_tag': '</page>', 'split_size': 64, 'output_dir': str(tmp_path / 'data')},
            'graph_processing': {'num_partitions': 3, 'ingress': 'greedy', 'seed': 5, 'num_workers': 1},
            'tokenizer': {'name': 'wiki_links'},
            'storage': {'backend': backend, 'base_dir': str(tmp_path / 'partitions')},
        }
        path = tmp_path / 'config.yaml'
        path.write_text(yaml.safe_dump(config))
        return str(path)

    def run(self, monkeypatch, config_path, mode):
        monkeypatch.setattr(sys, 'argv', ['graph-ingress', '--config', config_path, '--mode', mode])
        main.main()

    def test_all_mode(self, tmp_path, dump, monkeypatch):
        config_path = self.write_config(tmp_path, dump)

        self.run(monkeypatch, config_path, 'all')

        lines = (tmp_path / 'data' / main.VRECORD_FILE).read_text().splitlines()
        assert sorted(json.loads(line)['id'] for line in lines) == ['A', 'B', 'C', 'D']
        store = PartitionStore(backend_type='json', base_dir=str(tmp_path / 'partitions'))
        owned = sum(store.read_partition(pid)['metadata']['numOwnVertices'] for pid in store.list_partitions())
        assert owned == 4

    def test_build_then_distribute(self, tmp_path, dump, monkeypatch):
        config_path = self.write_config(tmp_path, dump, backend='parquet')

        self.run(monkeypatch, config_path, 'build')
        self.run(monkeypatch, config_path, 'distribute')

        store = PartitionStore(backend_type='parquet', base_dir=str(tmp_path / 'partitions'))
        records = [r for pid in store.list_partitions() for r in store.read_partition(pid)['records']
                   if r.owner == pid]
        assert sorted(r.id for r in records) == ['A', 'B', 'C', 'D']

    def test_create_pipeline_from_config(self, tmp_path, dump):
        config = main.load_config(self.write_config(tmp_path, dump))
        config['graph_processing']['no_bidirectional'] = True
        config['graph_processing']['edge_reducer'] = 'count'

        pipeline = main.create_pipeline(config, Metrics())

        assert pipeline.ingress_code == 1
        assert pipeline.num_partitions == 3
        assert isinstance(pipeline.key_function, UndirectedPairKeyFunction)
        assert pipeline.edge_reducer.name == 'count'


class TestRerunsAndMixedIds:

    @pytest.mark.parametrize('ingress_code', [1, 3])
    def test_greedy_reruns_are_identical_by_default(self, dump, ingress_code):
        def build():
            pipeline = GraphConstructionPipeline(num_partitions=4, tokenizer=WikiLinkTokenizer(),
                                                 ingress_code=ingress_code)
            assert pipeline.seed == DEFAULT_SEED
            return pipeline.build_xml(dump, '<page>', '</page>')

        assert build() == build()

    def test_int_and_float_ids_merge(self):
        df = pd.DataFrame({'src': [1], 'src_f': [1.0], 'dst': [2]})
        tokenizer = TableTokenizer(edge_rules=[
            {'source': 'src', 'destination': 'dst', 'label': 'x'},
            {'source': 'src_f', 'destination': 'dst', 'label': 'x'},
        ])
        metrics = Metrics()
        pipeline = GraphConstructionPipeline(num_partitions=3, tokenizer=tokenizer, metrics=metrics)

        records, partition_edges = pipeline.build_table(df)

        assert sum(len(edges) for edges in partition_edges.values()) == 1
        assert sorted(r.id for r in records) == [1, 2]
        assert metrics.get('dedup.duplicate_edges') == 1


class TestVertexRecordFile:

    def test_unwritable_record_is_logged_and_counted(self, tmp_path, caplog):
        metrics = Metrics()
        bad = VertexRecord('x', owner=0, properties=PropertyMap({'label': 'oops'}))

        with caplog.at_level(logging.ERROR):
            assert main.write_vertex_records([bad], str(tmp_path), metrics) is False

        assert metrics.get('vrecord.write_errors') == 1
        assert not (tmp_path / main.VRECORD_FILE).exists()
        assert 'Vertex records not written' in caplog.text

    def test_records_are_written(self, tmp_path):
        metrics = Metrics()
        records = [VertexRecord('a', owner=1, mirrors={0})]

        assert main.write_vertex_records(records, str(tmp_path), metrics) is True
        assert (tmp_path / main.VRECORD_FILE).read_text() == records[0].to_json() + '\n'
