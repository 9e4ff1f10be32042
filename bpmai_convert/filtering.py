import os
from typing import List

import pandas as pd
from loguru import logger

from .metadata import FILENAME_COL, LANGUAGE_COL, MODEL_LANGUAGE_COL


def select_models(index: pd.DataFrame, prefix: str, language: str = 'en') -> pd.DataFrame:
    """Rows whose language matches case-insensitively and whose model language starts with ``prefix``."""
    languages = index[LANGUAGE_COL].fillna('').astype(str)
    model_languages = index[MODEL_LANGUAGE_COL].fillna('').astype(str)
    mask = languages.str.lower().eq(language.lower()) & model_languages.str.startswith(prefix)
    return index[mask]


def filter_model_files(index: pd.DataFrame, base_path, prefix: str, language: str = 'en') -> List[str]:
    """
    Paths of the indexed models matching ``language`` and ``prefix``.

    Args:
        index: Index as returned by ``MetadataIndexer.build_index`` or ``load_index``
        base_path: Directory the ``filename`` column is relative to
        prefix: Case-sensitive prefix of the ``modelLanguage`` column, e.g. ``bpmn20``
        language: Natural language, compared case-insensitively

    Returns:
        ``base_path/filename`` for every matching row, in index order
    """
    selected = select_models(index, prefix, language)
    logger.info(f"{len(selected)} models match language={language!r} prefix={prefix!r}")
    return [os.path.join(str(base_path), filename) for filename in selected[FILENAME_COL]]
