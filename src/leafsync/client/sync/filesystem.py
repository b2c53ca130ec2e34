"""Async file operations rooted at the sync folder.

Paths are index paths ("/chapters/intro.tex", "/figures/"). Blocking
calls run in a worker thread; missing files surface as FileNotFoundError.
"""

from __future__ import annotations

import asyncio
import os
import shutil
from pathlib import Path


class LocalFileSystem:
    """Byte-level access to files under a root directory."""

    def __init__(self, root: Path) -> None:
        self._root = Path(root).resolve()

    @property
    def root(self) -> Path:
        return self._root

    def resolve(self, path: str) -> Path:
        """Absolute location of an index path."""
        relative = path.strip("/")
        return self._root / relative if relative else self._root

    def to_index_path(self, absolute: Path | str, is_dir: bool = False) -> str | None:
        """Index path for an absolute location, or None outside the root."""
        try:
            relative = Path(absolute).resolve().relative_to(self._root)
        except ValueError:
            return None
        text = "/" if relative == Path(".") else "/" + relative.as_posix()
        if is_dir and not text.endswith("/"):
            text += "/"
        return text

    async def read(self, path: str) -> bytes:
        return await asyncio.to_thread(self.resolve(path).read_bytes)

    async def write(self, path: str, content: bytes) -> None:
        target = self.resolve(path)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)

        await asyncio.to_thread(_write)

    async def stat(self, path: str) -> os.stat_result:
        return await asyncio.to_thread(self.resolve(path).stat)

    async def is_dir(self, path: str) -> bool:
        return await asyncio.to_thread(self.resolve(path).is_dir)

    async def exists(self, path: str) -> bool:
        return await asyncio.to_thread(self.resolve(path).exists)

    async def create_directory(self, path: str) -> None:
        await asyncio.to_thread(self.resolve(path).mkdir, parents=True, exist_ok=True)

    async def delete(self, path: str, recursive: bool = True) -> None:
        target = self.resolve(path)

        def _delete() -> None:
            if target.is_dir() and not target.is_symlink():
                if recursive:
                    shutil.rmtree(target)
                else:
                    target.rmdir()
            else:
                target.unlink()

        await asyncio.to_thread(_delete)

    async def rename(self, old: str, new: str) -> None:
        source = self.resolve(old)
        target = self.resolve(new)

        def _rename() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            source.rename(target)

        await asyncio.to_thread(_rename)

    async def walk_files(self) -> list[str]:
        """Index paths of every regular file under the root."""

        def _walk() -> list[str]:
            paths: list[str] = []
            for dirpath, _dirnames, filenames in os.walk(self._root):
                for filename in filenames:
                    full = Path(dirpath) / filename
                    if full.is_symlink():
                        continue
                    paths.append("/" + full.relative_to(self._root).as_posix())
            return sorted(paths)

        return await asyncio.to_thread(_walk)
