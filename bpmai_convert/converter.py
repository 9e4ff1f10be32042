"""
Batch conversion of Signavio model trees into BPMN 2.0 XML.

``TreeConverter`` mirrors a source tree under an output directory, converting
every model file with a ``TransformationEngine`` and copying the rendered
diagram next to each result. Conversion is resumable: an output that already
exists is never recomputed, so an interrupted run can simply be started again.
"""

import os
from collections import Counter
from enum import Enum
from typing import List, Optional

import pandas as pd
from loguru import logger
from tqdm.auto import tqdm

from .engine import SignavioBpmnEngine, TransformationEngine, TransformationError
from .filesystem import FileSystem, LocalFileSystem
from .filtering import filter_model_files
from .metadata import METADATA_MARKER, MetadataIndexer, is_model_file, load_index
from .utils import read_text_file, replace_extension


class ConversionStatus(Enum):
    CONVERTED = 'converted'
    SKIPPED = 'skipped'
    FAILED = 'failed'


class TreeConverter:
    """
    Converts the models below ``models_dir`` into ``output_dir``.

    Args:
        models_dir: Root of the Signavio model collection
        output_dir: Root of the converted tree, created if missing
        engine: Transformation engine, the built-in Signavio converter by default
        fs: Filesystem to work on, the local disk by default
        metadata_marker: Substring identifying metadata sidecars
        output_extension: Extension of converted files
        companion_extension: Extension of the diagram copied next to each output
        coarse_resume: Skip top-level directories whose mirror already exists
        show_progress: Show tqdm progress bars
    """

    def __init__(self, models_dir, output_dir, engine: Optional[TransformationEngine] = None,
                 fs: Optional[FileSystem] = None, metadata_marker: str = METADATA_MARKER,
                 output_extension: str = '.bpmn', companion_extension: str = '.svg',
                 coarse_resume: bool = False, show_progress: bool = True):
        self.models_dir = str(models_dir)
        self.output_dir = str(output_dir)
        self.engine = engine or SignavioBpmnEngine()
        self.fs = fs or LocalFileSystem()
        self.metadata_marker = metadata_marker
        self.output_extension = output_extension
        self.companion_extension = companion_extension
        self.coarse_resume = coarse_resume
        self.show_progress = show_progress
        self.stats = Counter()

        self.fs.make_dir(self.output_dir, exist_ok=True)

    def output_path(self, input_file, output_dir) -> str:
        name = replace_extension(os.path.basename(str(input_file)), self.output_extension)
        return os.path.join(str(output_dir), name)

    def convert_one(self, input_file, output_dir) -> ConversionStatus:
        """Convert a single model into ``output_dir`` unless its output already exists."""
        input_file = str(input_file)
        output_file = self.output_path(input_file, output_dir)
        if self.fs.exists(output_file):
            self.stats['skipped'] += 1
            return ConversionStatus.SKIPPED

        try:
            json_text = read_text_file(self.fs, input_file)
        except OSError as e:
            logger.error(f"Could not read {input_file}: {e}")
            return self._failed()

        try:
            xml = self.engine.transform(json_text)
        except TransformationError as e:
            logger.error(f"Could not transform {input_file}: {e}")
            return self._failed()

        if xml is None or not xml.strip():
            logger.warning(f"Empty transformation result for {input_file}, nothing written")
            return self._failed()

        try:
            self.fs.write_text(output_file, xml)
        except OSError as e:
            logger.error(f"Could not write {output_file}: {e}")
            return self._failed()

        self.stats['converted'] += 1
        logger.debug(f"{input_file} -> {output_file}")
        self.copy_companion(input_file, output_file)
        return ConversionStatus.CONVERTED

    def _failed(self):
        self.stats['failed'] += 1
        return ConversionStatus.FAILED

    def copy_companion(self, input_file, output_file, skip_existing: bool = False) -> bool:
        """
        Copy the diagram that belongs to ``input_file`` next to ``output_file``.

        A missing diagram only produces a warning. With ``skip_existing`` a diagram
        that is already in place counts as copied.
        """
        src = replace_extension(str(input_file), self.companion_extension)
        dst = replace_extension(str(output_file), self.companion_extension)
        if skip_existing and self.fs.exists(dst):
            return True
        try:
            self.fs.copy_file(src, dst)
        except OSError as e:
            self.stats['companion_missing'] += 1
            logger.warning(f"Could not copy diagram {src} to {dst}: {e}")
            return False
        return True

    def walk(self, source_dir, target_dir):
        """Convert ``source_dir`` into ``target_dir``: files first, then each subdirectory."""
        source_dir, target_dir = str(source_dir), str(target_dir)
        try:
            names = self.fs.list_dir(source_dir)
        except OSError as e:
            logger.error(f"Could not list {source_dir}: {e}")
            return

        for name in names:
            path = os.path.join(source_dir, name)
            if is_model_file(name, self.metadata_marker) and self.fs.is_file(path):
                self.convert_one(path, target_dir)

        for name in names:
            path = os.path.join(source_dir, name)
            if not self.fs.is_dir(path):
                continue
            subdir = os.path.join(target_dir, name)
            try:
                self.fs.make_dir(subdir, exist_ok=True)
            except OSError as e:
                logger.error(f"Could not create {subdir}: {e}")
                continue
            self.walk(path, subdir)

    def run_full(self) -> Counter:
        """
        Convert every top-level directory of ``models_dir`` into its mirror
        under ``output_dir``, then remove the directories that stayed empty.
        """
        self.stats = Counter()
        directories = [
            name for name in self.fs.list_dir(self.models_dir)
            if self.fs.is_dir(os.path.join(self.models_dir, name))
        ]
        for name in tqdm(directories, desc="Converting model directories", disable=not self.show_progress):
            target_dir = os.path.join(self.output_dir, name)
            if self.coarse_resume and self.fs.exists(target_dir):
                logger.info(f"Skipping {name}: {target_dir} already exists")
                self.stats['skipped_dirs'] += 1
                continue
            try:
                self.fs.make_dir(target_dir, exist_ok=True)
            except OSError as e:
                logger.error(f"Could not create {target_dir}: {e}")
                continue
            self.walk(os.path.join(self.models_dir, name), target_dir)

        self.stats['pruned'] += self.prune_empty_dirs()
        self._log_summary()
        return self.stats

    def prune_empty_dirs(self, root=None) -> int:
        """Remove, deepest first, every directory below ``root`` that has no entries. ``root`` is kept."""
        root = str(root or self.output_dir)
        removed = 0
        for name in self.fs.list_dir(root):
            path = os.path.join(root, name)
            if not self.fs.is_dir(path):
                continue
            removed += self.prune_empty_dirs(path)
            if not self.fs.list_dir(path):
                try:
                    self.fs.remove_dir(path)
                    removed += 1
                except OSError as e:
                    logger.error(f"Could not remove empty directory {path}: {e}")
        return removed

    def load_or_build_index(self, index_path=None) -> pd.DataFrame:
        if index_path and self.fs.is_file(str(index_path)):
            logger.info(f"Loading index from {index_path}")
            return load_index(index_path, fs=self.fs)
        indexer = MetadataIndexer(self.models_dir, fs=self.fs, metadata_marker=self.metadata_marker,
                                  show_progress=self.show_progress)
        return indexer.build_index(output_path=index_path)

    def run_filtered(self, index: Optional[pd.DataFrame] = None, index_path=None,
                     prefix: str = 'bpmn20', language: str = 'en') -> Counter:
        """
        Convert only the indexed models matching ``language`` and ``prefix``,
        all into ``output_dir`` without mirroring the source tree.
        """
        self.stats = Counter()
        if index is None:
            index = self.load_or_build_index(index_path)
        model_files: List[str] = filter_model_files(index, self.models_dir, prefix, language)

        for model_file in tqdm(model_files, desc="Converting models", disable=not self.show_progress):
            status = self.convert_one(model_file, self.output_dir)
            if status is not ConversionStatus.CONVERTED:
                self.copy_companion(model_file, self.output_path(model_file, self.output_dir), skip_existing=True)

        self._log_summary()
        return self.stats

    def _log_summary(self):
        logger.info(
            f"Converted {self.stats['converted']}, skipped {self.stats['skipped']}, "
            f"failed {self.stats['failed']}, missing diagrams {self.stats['companion_missing']}"
        )
