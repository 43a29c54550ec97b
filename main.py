"""
Main entry point for the Graph Ingress pipeline
Orchestrates record reading, graph construction, vertex-cut ingress and partition output
"""

import os
import yaml
import logging
import argparse
import pandas as pd
from typing import Dict, List, Tuple

from graph_processing import (
    GraphConstructionPipeline,
    VertexRecordDistributor,
    Metrics,
    get_key_function,
    get_reducer,
    get_tokenizer,
    resolve_ingress_code,
)
from graph_processing.ingress import DEFAULT_SEED
from graph_processing.elements import Edge, VertexRecord
from graph_processing.exceptions import WriteError
from storage import PartitionStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

VRECORD_FILE = 'vrecords.jsonl'


def load_config(config_path: str = 'config.yaml') -> Dict:
    """Load configuration from YAML file"""
    with open(config_path, 'r') as f:
        config = yaml.safe_load(f)
    return config or {}


def create_pipeline(config: Dict, metrics: Metrics) -> GraphConstructionPipeline:
    """Build the pipeline from the 'graph_processing' and 'tokenizer' sections"""
    graph_config = config.get('graph_processing', {})
    tokenizer_config = dict(config.get('tokenizer', {'name': 'wiki_links'}))
    tokenizer = get_tokenizer(tokenizer_config.pop('name', 'wiki_links'), **tokenizer_config)

    key_function = graph_config.get('key_function')
    return GraphConstructionPipeline(
        num_partitions=graph_config.get('num_partitions', 4),
        tokenizer=tokenizer,
        ingress_code=resolve_ingress_code(graph_config.get('ingress', 0)),
        key_function=get_key_function(key_function) if key_function else None,
        no_bidirectional=graph_config.get('no_bidirectional', False),
        edge_reducer=get_reducer(graph_config.get('edge_reducer')),
        vertex_reducer=get_reducer(graph_config.get('vertex_reducer')),
        num_workers=graph_config.get('num_workers', 1),
        seed=graph_config.get('seed', DEFAULT_SEED),
        strict_reader=graph_config.get('strict_reader', False),
        metrics=metrics,
    )


def create_store(config: Dict) -> PartitionStore:
    storage_config = config.get('storage', {})
    backend = storage_config.get('backend', 'json')
    kwargs = {'base_dir': storage_config.get('base_dir', './data/partitions')}
    if backend == 'json':
        kwargs['gzip'] = storage_config.get('gzip', False)
    return PartitionStore(backend_type=backend, **kwargs)


def build_graph(config: Dict, pipeline: GraphConstructionPipeline) -> Tuple[List[VertexRecord], Dict[int, List[Edge]]]:
    """Read the input and produce vertex records plus per-partition edges"""
    data_config = config.get('data', {})
    input_path = data_config.get('input_path')
    input_format = data_config.get('input_format', 'xml')

    if input_format == 'xml':
        return pipeline.build_xml(
            input_path,
            data_config.get('start_tag', '<page>'),
            data_config.get('end_tag', '</page>'),
            split_size=data_config.get('split_size', 64 * 1024 * 1024),
        )
    if input_format == 'table':
        logger.info(f"Loading table data from {input_path}")
        df = pd.read_csv(input_path)
        return pipeline.build_table(df)
    raise ValueError(f"Unknown input format: {input_format}")


def save_vertex_records(records: List[VertexRecord], output_dir: str) -> str:
    """
    Write the full vertex record list, one JSON object per line

    Raises:
        WriteError: if the file cannot be written; no partial file is kept
    """
    os.makedirs(output_dir, exist_ok=True)
    path = os.path.join(output_dir, VRECORD_FILE)
    try:
        with open(path, 'w', encoding='utf-8') as f:
            for record in records:
                f.write(record.to_json())
                f.write('\n')
    except (OSError, ValueError, TypeError) as e:
        if os.path.exists(path):
            os.remove(path)
        raise WriteError(f"Failed to write vertex records to {path}: {e}") from e
    logger.info(f"Saved {len(records)} vertex records to {path}")
    return path


def write_vertex_records(records: List[VertexRecord], output_dir: str, metrics: Metrics) -> bool:
    """Save the vertex record list, logging and counting a failure instead of raising"""
    try:
        save_vertex_records(records, output_dir)
    except WriteError as e:
        metrics.incr('vrecord.write_errors')
        logger.error(f"Vertex records not written: {e}")
        return False
    return True


def distribute_records(config: Dict, records, store: PartitionStore, metrics: Metrics,
                       partition_edges: Dict[int, List[Edge]] = None) -> VertexRecordDistributor:
    """Fan vertex records out to their partitions and write each partition"""
    graph_config = config.get('graph_processing', {})
    distributor = VertexRecordDistributor(
        num_partitions=graph_config.get('num_partitions', 4),
        ingress_code=resolve_ingress_code(graph_config.get('ingress', 0)),
        metrics=metrics,
    )
    distributor.distribute(records)
    distributor.write(store, partition_edges)
    for pid, meta in distributor.metadata().items():
        logger.info(f"Partition {pid}: {meta['numVertices']} vertices, {meta['numOwnVertices']} owned")
    return distributor


def main():
    """Main function"""
    parser = argparse.ArgumentParser(description='Graph Ingress Pipeline')
    parser.add_argument('--config', type=str, default='config.yaml',
                        help='Path to configuration file')
    parser.add_argument('--mode', type=str, choices=['build', 'distribute', 'all'],
                        default='all', help='Operation mode')

    args = parser.parse_args()

    # Load configuration
    config = load_config(args.config)
    data_config = config.get('data', {})
    output_dir = data_config.get('output_dir', './data')

    metrics = Metrics()
    pipeline = create_pipeline(config, metrics)
    store = create_store(config)

    if args.mode == 'build':
        records, partition_edges = build_graph(config, pipeline)
        write_vertex_records(records, output_dir, metrics)
        for pid, edges in sorted(partition_edges.items()):
            try:
                store.write_edges(pid, edges)
            except WriteError as e:
                metrics.incr('distributor.write_errors')
                logger.error(f"Partition {pid} edges not written: {e}")

    elif args.mode == 'distribute':
        vrecord_path = data_config.get('vrecord_path', os.path.join(output_dir, VRECORD_FILE))
        logger.info(f"Distributing vertex records from {vrecord_path}")
        with open(vrecord_path, 'r', encoding='utf-8') as f:
            distribute_records(config, (line for line in f if line.strip()), store, metrics)

    else:
        records, partition_edges = build_graph(config, pipeline)
        write_vertex_records(records, output_dir, metrics)
        distribute_records(config, records, store, metrics, partition_edges)

    metrics.log_summary()
    logger.info("Process completed")


if __name__ == '__main__':
    main()
