"""
Metadata indexing for BPMAI model collections.

A BPMAI model directory holds, per model, ``<id>.json`` (the Signavio model),
``<id>.meta.json`` (the metadata sidecar) and ``<id>.svg`` (the rendered
diagram). The index joins the model files with the languages declared in their
sidecars so that a subset of the collection can be selected for conversion.
"""

import io
import json
import os
from dataclasses import dataclass
from typing import Optional, Union

import pandas as pd
from loguru import logger
from tqdm.auto import tqdm

from .filesystem import FileSystem, LocalFileSystem
from .utils import read_json_file


METADATA_MARKER = '.meta.json'
MODEL_EXTENSION = '.json'

META_FILENAME_COL = 'filename.meta'
FILENAME_COL = 'filename'
LANGUAGE_COL = 'language'
MODEL_LANGUAGE_COL = 'modelLanguage'
INDEX_COLUMNS = [META_FILENAME_COL, FILENAME_COL, LANGUAGE_COL, MODEL_LANGUAGE_COL]


@dataclass(frozen=True)
class ModelMetadataRecord:
    source_path: str
    natural_language: str = ''
    modeling_language: str = ''

    @property
    def metadata_filename(self) -> str:
        return os.path.basename(self.source_path)

    def model_filename(self, metadata_marker: str = METADATA_MARKER) -> str:
        """Sidecar name with the marker removed, e.g. ``42.meta.json`` -> ``42.json``."""
        marker = metadata_marker
        if marker.lower().endswith(MODEL_EXTENSION):
            marker = marker[:-len(MODEL_EXTENSION)]
        if not marker:
            return self.metadata_filename
        return self.metadata_filename.replace(marker, '', 1)


@dataclass(frozen=True)
class NoRecord:
    """The sidecar is valid JSON but carries no ``model`` object."""
    source_path: str


@dataclass(frozen=True)
class MetadataParseError:
    """The sidecar could not be read or is not valid JSON."""
    source_path: str
    error: str


MetadataResult = Union[ModelMetadataRecord, NoRecord, MetadataParseError]


def _as_text(value) -> str:
    if value is None:
        return ''
    return value if isinstance(value, str) else str(value)


def is_metadata_file(name: str, metadata_marker: str = METADATA_MARKER) -> bool:
    return metadata_marker in name


def is_model_file(name: str, metadata_marker: str = METADATA_MARKER) -> bool:
    return os.path.splitext(name)[1].lower() == MODEL_EXTENSION and not is_metadata_file(name, metadata_marker)


class MetadataIndexer:
    """Builds the model index of a single (flat) BPMAI model directory."""

    def __init__(self, model_dir: str, fs: Optional[FileSystem] = None,
                 metadata_marker: str = METADATA_MARKER, show_progress: bool = True):
        self.model_dir = str(model_dir)
        self.fs = fs or LocalFileSystem()
        self.metadata_marker = metadata_marker
        self.show_progress = show_progress

    def parse_metadata_record(self, path) -> MetadataResult:
        """
        Parse one metadata sidecar.

        Returns a ``ModelMetadataRecord`` when the file holds a ``model`` object,
        ``NoRecord`` when it does not and ``MetadataParseError`` when the file is
        unreadable or not JSON. Callers skip both non-record variants.
        """
        path = str(path)
        try:
            data = read_json_file(self.fs, path)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.error(f"Could not parse metadata file {path}: {e}")
            return MetadataParseError(path, str(e))

        model = data.get('model') if isinstance(data, dict) else None
        if not isinstance(model, dict):
            return NoRecord(path)

        return ModelMetadataRecord(
            source_path=path,
            natural_language=_as_text(model.get('naturalLanguage')),
            modeling_language=_as_text(model.get('modelingLanguage')),
        )

    def _list_names(self):
        return self.fs.list_dir(self.model_dir)

    def build_metadata_table(self) -> pd.DataFrame:
        rows = []
        seen = set()
        names = [n for n in self._list_names() if is_metadata_file(n, self.metadata_marker)]
        for name in tqdm(names, desc="Reading metadata", disable=not self.show_progress):
            result = self.parse_metadata_record(os.path.join(self.model_dir, name))
            if not isinstance(result, ModelMetadataRecord):
                continue
            model_filename = result.model_filename(self.metadata_marker)
            if model_filename in seen:
                logger.warning(f"Duplicate metadata for {model_filename}, keeping the first one")
                continue
            seen.add(model_filename)
            rows.append({
                META_FILENAME_COL: result.metadata_filename,
                FILENAME_COL: model_filename,
                LANGUAGE_COL: result.natural_language,
                MODEL_LANGUAGE_COL: result.modeling_language,
            })
        return pd.DataFrame(rows, columns=INDEX_COLUMNS, dtype=str)

    def build_index(self, output_path=None) -> pd.DataFrame:
        """
        Join the model files of ``model_dir`` with their metadata.

        Only models that have both a model file and a parsed sidecar are kept.
        If ``output_path`` is given the index is also written as CSV; a failed
        write is logged and the index is returned regardless.
        """
        model_files = [n for n in self._list_names() if is_model_file(n, self.metadata_marker)]
        df_models = pd.DataFrame({FILENAME_COL: model_files}, dtype=str)
        index = df_models.merge(self.build_metadata_table(), on=FILENAME_COL, how='inner')
        index = index[INDEX_COLUMNS].reset_index(drop=True)
        logger.info(f"Indexed {len(index)} of {len(model_files)} models in {self.model_dir}")

        if output_path is not None:
            try:
                save_index(index, output_path, fs=self.fs)
            except OSError as e:
                logger.error(f"Could not write index to {output_path}: {e}")
        return index


def save_index(index: pd.DataFrame, path, fs: Optional[FileSystem] = None):
    """Write the index as CSV, replacing any existing file."""
    fs = fs or LocalFileSystem()
    fs.write_text(str(path), index.to_csv(index=False))
    logger.info(f"Index with {len(index)} rows written to {path}")


def load_index(path, fs: Optional[FileSystem] = None) -> pd.DataFrame:
    """Read an index written by ``save_index``; every cell is a string, empty cells stay ''."""
    fs = fs or LocalFileSystem()
    text = fs.read_text(str(path), encoding='utf-8')
    index = pd.read_csv(io.StringIO(text), dtype=str, keep_default_na=False)
    missing = {FILENAME_COL, LANGUAGE_COL, MODEL_LANGUAGE_COL} - set(index.columns)
    if missing:
        raise ValueError(f"Index file {path} is missing columns: {sorted(missing)}")
    return index
