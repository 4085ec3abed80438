# /mlharness/src/mlharness/dataset/__init__.py

"""
Dataset Builder

Data specification, dataset I/O, synthetic generation, partitioning, weight
emulation and sharding.
"""

from .data_spec import (
    ColumnType,
    ColumnSpec,
    ColumnGuide,
    DataSpecification,
    DataSpecificationGuide,
    infer_data_spec,
    encode_features,
    encode_labels
)
from .io import (
    read_dataset,
    write_dataset,
    parse_typed_path,
    expand_sharded_path,
    supported_formats
)
from .synthetic import SyntheticDatasetOptions, generate_synthetic_dataset
from .builder import (
    DatasetBuilder,
    PreparedDatasets,
    SplitIndices,
    split_indices,
    emulate_weights_with_duplication,
    shard_dataset
)

__all__ = [
    "ColumnType",
    "ColumnSpec",
    "ColumnGuide",
    "DataSpecification",
    "DataSpecificationGuide",
    "infer_data_spec",
    "encode_features",
    "encode_labels",
    "read_dataset",
    "write_dataset",
    "parse_typed_path",
    "expand_sharded_path",
    "supported_formats",
    "SyntheticDatasetOptions",
    "generate_synthetic_dataset",
    "DatasetBuilder",
    "PreparedDatasets",
    "SplitIndices",
    "split_indices",
    "emulate_weights_with_duplication",
    "shard_dataset"
]
