import json
import os
import sys

from loguru import logger

from .filesystem import FileSystem


LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)


def setup_logging(log_level="INFO", log_file=None):
    """Replace loguru's default sink with a stdout sink and an optional rotating file."""
    logger.remove()
    logger.add(sys.stdout, format=LOG_FORMAT, level=log_level, colorize=True)
    if log_file:
        logger.add(
            str(log_file),
            format=LOG_FORMAT,
            level="DEBUG",
            rotation="50 MB",
            retention="14 days",
            encoding="utf-8"
        )


def read_text_file(fs: FileSystem, path):
    """Read a text file as UTF-8 and fall back to Latin-1 if needed."""
    try:
        return fs.read_text(path, encoding='utf-8')
    except UnicodeDecodeError:
        logger.debug(f"UTF-8 decode error in {path}, trying latin-1...")
        return fs.read_text(path, encoding='latin-1')


def read_json_file(fs: FileSystem, path):
    """Attempt to load a JSON file using UTF-8 and fallback to Latin-1 if needed."""
    return json.loads(read_text_file(fs, path))


def replace_extension(filename, extension):
    """``a/b.json`` + ``.bpmn`` -> ``a/b.bpmn``; only the last suffix is replaced."""
    return os.path.splitext(filename)[0] + extension
