"""Batch library resolution through the dynamic-linker inspector."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Iterable, Iterator

from .config import CruftConfig
from .probes import LDD_NOT_FOUND
from .workers import WorkerPool, chunked

NOT_FOUND = None
LDD_CHUNK_SIZE = 64


@dataclass(frozen=True, slots=True)
class LibraryRecord:
    soname: str
    path: str | None = NOT_FOUND

    @property
    def found(self) -> bool:
        return self.path is not NOT_FOUND


def parse_triples(triples: Iterable[tuple[str, str, str]]) -> dict[str, list[LibraryRecord]]:
    deps: dict[str, list[LibraryRecord]] = {}
    for exe, soname, resolved in triples:
        if resolved == LDD_NOT_FOUND or not resolved:
            record = LibraryRecord(soname, NOT_FOUND)
        else:
            record = LibraryRecord(soname, os.path.abspath(resolved))
        deps.setdefault(exe, []).append(record)
    return deps


class LibraryResolver:
    def __init__(self, inspector, config: CruftConfig, chunk_size: int = LDD_CHUNK_SIZE):
        self.inspector = inspector
        self.config = config
        self.chunk_size = chunk_size

    def _probe(self, batch: list[str]) -> dict[str, list[LibraryRecord]]:
        return parse_triples(self.inspector.inspect(batch))

    def resolve(self, paths: Iterable[str]) -> Iterator[tuple[str, list[LibraryRecord]]]:
        """Yield ``(exe, dependencies)`` as batches complete, in no
        particular order across batches."""
        wanted = (p for p in paths if not self.config.is_ignored(p, self.config.ignore_ldd))
        pool = WorkerPool(self.config.concurrency, self._probe, name="ldd")
        for deps in pool.map(chunked(wanted, self.chunk_size)):
            yield from deps.items()
