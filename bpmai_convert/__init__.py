"""
bpmai-convert: batch conversion of BPM Academic Initiative (Signavio JSON) model
collections into BPMN 2.0 XML.

The package indexes model collections by the languages declared in their
metadata sidecars, selects subsets of them and converts model trees with a
pluggable transformation engine.
"""

from .filesystem import FileSystem, LocalFileSystem, MemoryFileSystem
from .metadata import (
    MetadataIndexer,
    ModelMetadataRecord,
    NoRecord,
    MetadataParseError,
    load_index,
    save_index,
)
from .filtering import filter_model_files
from .engine import (
    TransformationEngine,
    TransformationError,
    SignavioBpmnEngine,
    CommandEngine,
    create_engine,
)
from .converter import TreeConverter, ConversionStatus
from .config import ConversionConfig, load_config, save_config

__version__ = "1.0.0"
__author__ = "bpmai-convert Team"

__all__ = [
    "FileSystem",
    "LocalFileSystem",
    "MemoryFileSystem",
    "MetadataIndexer",
    "ModelMetadataRecord",
    "NoRecord",
    "MetadataParseError",
    "load_index",
    "save_index",
    "filter_model_files",
    "TransformationEngine",
    "TransformationError",
    "SignavioBpmnEngine",
    "CommandEngine",
    "create_engine",
    "TreeConverter",
    "ConversionStatus",
    "ConversionConfig",
    "load_config",
    "save_config",
]
