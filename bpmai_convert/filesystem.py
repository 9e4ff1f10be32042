"""
Filesystem access for the indexer and the converter.

Every component receives a ``FileSystem`` instead of touching ``os`` directly,
so a whole conversion run can be replayed against ``MemoryFileSystem``.
"""

import os
import shutil
from typing import Dict, List, Optional, Set


class FileSystem:
    """Minimal set of operations the batch tools need."""

    def list_dir(self, path: str) -> List[str]:
        raise NotImplementedError

    def is_dir(self, path: str) -> bool:
        raise NotImplementedError

    def is_file(self, path: str) -> bool:
        raise NotImplementedError

    def exists(self, path: str) -> bool:
        return self.is_file(path) or self.is_dir(path)

    def read_bytes(self, path: str) -> bytes:
        raise NotImplementedError

    def read_text(self, path: str, encoding: str = 'utf-8') -> str:
        return self.read_bytes(path).decode(encoding)

    def write_text(self, path: str, text: str, encoding: str = 'utf-8'):
        raise NotImplementedError

    def copy_file(self, src: str, dst: str):
        """Copy ``src`` to ``dst``. Never overwrites: raises FileExistsError."""
        raise NotImplementedError

    def make_dir(self, path: str, exist_ok: bool = True):
        raise NotImplementedError

    def remove_dir(self, path: str):
        """Remove an empty directory."""
        raise NotImplementedError


class LocalFileSystem(FileSystem):
    """The real disk."""

    def list_dir(self, path):
        return sorted(os.listdir(path))

    def is_dir(self, path):
        return os.path.isdir(path)

    def is_file(self, path):
        return os.path.isfile(path)

    def read_bytes(self, path):
        with open(path, 'rb') as f:
            return f.read()

    def write_text(self, path, text, encoding='utf-8'):
        with open(path, 'w', encoding=encoding, newline='') as f:
            f.write(text)

    def copy_file(self, src, dst):
        if os.path.exists(dst):
            raise FileExistsError(f"Target already exists: {dst}")
        shutil.copyfile(src, dst)

    def make_dir(self, path, exist_ok=True):
        os.makedirs(path, exist_ok=exist_ok)

    def remove_dir(self, path):
        os.rmdir(path)


class MemoryFileSystem(FileSystem):
    """
    Dictionary-backed filesystem.

    Paths are normalised with ``os.path.normpath``; parent directories of
    files added through ``add_file`` are created implicitly, while
    ``write_text`` and ``copy_file`` require the parent to exist, like a disk.
    """

    def __init__(self, files: Optional[Dict[str, str]] = None):
        self.files: Dict[str, bytes] = {}
        self.dirs: Set[str] = {os.path.normpath(os.sep)}
        self.writes: List[str] = []
        for path, content in (files or {}).items():
            self.add_file(path, content)

    @staticmethod
    def _norm(path) -> str:
        return os.path.normpath(str(path))

    def _add_parents(self, path):
        parent = os.path.dirname(path)
        while parent and parent not in self.dirs:
            self.dirs.add(parent)
            parent = os.path.dirname(parent)

    def _require_parent(self, path):
        parent = os.path.dirname(path)
        if parent and parent not in self.dirs:
            raise FileNotFoundError(f"No such directory: {parent}")

    def add_file(self, path, content=''):
        path = self._norm(path)
        self._add_parents(path)
        self.files[path] = content.encode('utf-8') if isinstance(content, str) else content

    def list_dir(self, path):
        path = self._norm(path)
        if path not in self.dirs:
            raise FileNotFoundError(f"No such directory: {path}")
        names = {
            os.path.basename(p) for p in list(self.files) + list(self.dirs)
            if p != path and os.path.dirname(p) == path
        }
        return sorted(names)

    def is_dir(self, path):
        return self._norm(path) in self.dirs

    def is_file(self, path):
        return self._norm(path) in self.files

    def read_bytes(self, path):
        path = self._norm(path)
        if path not in self.files:
            raise FileNotFoundError(f"No such file: {path}")
        return self.files[path]

    def write_text(self, path, text, encoding='utf-8'):
        path = self._norm(path)
        self._require_parent(path)
        if path in self.dirs:
            raise IsADirectoryError(path)
        self.files[path] = text.encode(encoding)
        self.writes.append(path)

    def copy_file(self, src, dst):
        src, dst = self._norm(src), self._norm(dst)
        if src not in self.files:
            raise FileNotFoundError(f"No such file: {src}")
        self._require_parent(dst)
        if dst in self.files or dst in self.dirs:
            raise FileExistsError(f"Target already exists: {dst}")
        self.files[dst] = self.files[src]

    def make_dir(self, path, exist_ok=True):
        path = self._norm(path)
        if path in self.files:
            raise FileExistsError(path)
        if path in self.dirs and not exist_ok:
            raise FileExistsError(path)
        self._add_parents(path)
        self.dirs.add(path)

    def remove_dir(self, path):
        path = self._norm(path)
        if path not in self.dirs:
            raise FileNotFoundError(path)
        if self.list_dir(path):
            raise OSError(f"Directory not empty: {path}")
        self.dirs.remove(path)
