"""In-memory package <-> file index built from the package inventory."""

from __future__ import annotations

import logging
import os
import threading
from typing import Iterator, Mapping, Sequence

from .workers import WorkerPool, chunked

LOGGER = logging.getLogger(__name__)

INDEX_CONCURRENCY = 4
INDEX_CHUNK_SIZE = 32


class PackageIndex:
    """Read-only mapping between packages and the files they own.

    Built once per command and shared by every worker thread afterwards.
    Only the basename index is computed lazily, under a lock, the first
    time a caller asks for it.
    """

    def __init__(self, files_by_package: Mapping[str, Sequence[str]]):
        self._files: dict[str, tuple[str, ...]] = {pkg: tuple(paths) for pkg, paths in files_by_package.items()}
        self._owners: dict[str, str] = {}
        for pkg, paths in self._files.items():
            for path in paths:
                self._owners[path] = pkg
        self._by_basename: dict[str, tuple[str, ...]] | None = None
        self._lock = threading.Lock()

    @classmethod
    def build(
        cls,
        manager,
        concurrency: int = INDEX_CONCURRENCY,
        chunk_size: int = INDEX_CHUNK_SIZE,
    ) -> "PackageIndex":
        packages = manager.local_packages()
        pool = WorkerPool(concurrency, manager.list_files, name="pkg-files")
        files: dict[str, tuple[str, ...]] = {pkg: () for pkg in packages}
        for part in pool.map(chunked(packages, chunk_size)):
            files.update(part)
        index = cls(files)
        LOGGER.debug("index_built packages=%s files=%s", len(files), len(index))
        return index

    def __len__(self) -> int:
        return len(self._owners)

    def __contains__(self, path: object) -> bool:
        return path in self._owners

    @property
    def packages(self) -> list[str]:
        return list(self._files)

    def package_for(self, path: str) -> str | None:
        return self._owners.get(path)

    def files_for(self, package: str) -> tuple[str, ...]:
        return self._files.get(package, ())

    def iter_files(self) -> Iterator[tuple[str, str]]:
        for pkg, paths in self._files.items():
            for path in paths:
                yield pkg, path

    def packages_for_basename(self, name: str) -> tuple[str, ...]:
        """Packages shipping any file called ``name``, e.g. to guess the
        origin of a deleted executable from its process name."""
        if self._by_basename is None:
            with self._lock:
                if self._by_basename is None:
                    self._by_basename = self._basename_index()
        return self._by_basename.get(name, ())

    def _basename_index(self) -> dict[str, tuple[str, ...]]:
        found: dict[str, list[str]] = {}
        for pkg, path in self.iter_files():
            owners = found.setdefault(os.path.basename(path), [])
            if pkg not in owners:
                owners.append(pkg)
        return {name: tuple(pkgs) for name, pkgs in found.items()}
