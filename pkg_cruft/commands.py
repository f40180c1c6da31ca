"""Subcommands and the probes they are wired to."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Callable, Iterator

from .config import CruftConfig
from .detectors import (
    defunct_packages,
    library_cruft,
    stale_processes,
    unmanaged_files,
    unreferenced_directories,
)
from .libraries import LibraryResolver
from .package_index import PackageIndex
from .probes import LinkerInspector, PackageManager, ProcessTool
from .processes import ProcessInspector
from .workers import Deferred


class Command(str, enum.Enum):
    CHECKRESTART = "checkrestart"
    LIBCHECK = "libcheck"
    FILES = "files"
    DIRS = "dirs"
    DEFUNCT = "defunct"


@dataclass
class Toolbox:
    packages: PackageManager = field(default_factory=PackageManager)
    linker: LinkerInspector = field(default_factory=LinkerInspector)
    processes: ProcessTool = field(default_factory=ProcessTool)


def _defunct_set(tools: Toolbox) -> set[str]:
    return defunct_packages(tools.packages.local_packages(), tools.packages.remote_packages())


def audit_defunct(config: CruftConfig, tools: Toolbox) -> Iterator[str]:
    yield from sorted(_defunct_set(tools))


def audit_files(config: CruftConfig, tools: Toolbox) -> Iterator[str]:
    yield from unmanaged_files(PackageIndex.build(tools.packages), config)


def audit_dirs(config: CruftConfig, tools: Toolbox) -> Iterator[str]:
    yield from unreferenced_directories(PackageIndex.build(tools.packages), config)


def audit_libcheck(config: CruftConfig, tools: Toolbox) -> Iterator[str]:
    defunct = Deferred(_defunct_set, tools, name="defunct")
    index = PackageIndex.build(tools.packages)
    resolver = LibraryResolver(tools.linker, config)
    yield from library_cruft(index, resolver, defunct.wait(), config)


def audit_checkrestart(config: CruftConfig, tools: Toolbox) -> Iterator[str]:
    index = Deferred(PackageIndex.build, tools.packages, name="pkg-index")
    yield from stale_processes(index, ProcessInspector(tools.processes), tools.packages.which)


AUDITS: dict[Command, Callable[[CruftConfig, Toolbox], Iterator[str]]] = {
    Command.CHECKRESTART: audit_checkrestart,
    Command.LIBCHECK: audit_libcheck,
    Command.FILES: audit_files,
    Command.DIRS: audit_dirs,
    Command.DEFUNCT: audit_defunct,
}


def run_audit(command: Command, config: CruftConfig, tools: Toolbox | None = None) -> Iterator[str]:
    return AUDITS[command](config, tools or Toolbox())
