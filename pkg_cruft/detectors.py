"""Cruft detection algorithms.

Each detector consumes a built :class:`PackageIndex` (and, where needed,
the defunct set or a probe) and yields one human-readable finding per
cruft instance. Findings carry no ordering guarantee.
"""

from __future__ import annotations

import logging
import os
import re
import stat
from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator, Mapping, Sequence

from .config import CruftConfig
from .libraries import LibraryRecord, LibraryResolver
from .package_index import PackageIndex
from .processes import ProcessInspector
from .workers import Deferred

LOGGER = logging.getLogger(__name__)

SHLIB_RE = re.compile(r"\.so(\.[0-9]+)*$")
COMPAT_SEGMENT = "/compat/"
UNKNOWN_REFS = -1
UNPACKAGED = "unpackaged"
ELF_MAGIC = b"\x7fELF"


# ------------------------------- Packages ----------------------------------- #


def defunct_packages(local: Iterable[str], remote: Iterable[str]) -> set[str]:
    return set(local) - set(remote)


# ------------------------------ Unmanaged files ----------------------------- #


def _scan_sorted(path: str) -> list[os.DirEntry[str]]:
    with os.scandir(path) as it:
        return sorted(it, key=lambda e: e.name)


def _is_dir(entry: os.DirEntry[str]) -> bool:
    try:
        return entry.is_dir(follow_symlinks=False)
    except OSError:
        return False


def unmanaged_files(index: PackageIndex, config: CruftConfig) -> Iterator[str]:
    """Depth-first walk of the prefix yielding entries no package owns.

    Ignored directories are pruned, never descended into.
    """
    stack = [config.prefix]
    while stack:
        current = stack.pop()
        try:
            entries = _scan_sorted(current)
        except OSError as exc:
            LOGGER.warning("dir_unreadable path=%s err=%s", current, exc)
            continue

        subdirs = []
        for entry in entries:
            if config.is_ignored(entry.path, config.ignore_unpackaged):
                continue
            if _is_dir(entry):
                subdirs.append(entry.path)
            elif entry.path not in index:
                yield entry.path
        stack.extend(reversed(subdirs))


# ---------------------------- Empty directories ----------------------------- #


@dataclass
class DirectoryNode:
    path: str
    refs: int = 0
    children: list["DirectoryNode"] = field(default_factory=list)


def build_tree(path: str, index: PackageIndex, config: CruftConfig) -> DirectoryNode:
    """Count packaged files beneath ``path``, bottom-up.

    An unreadable directory gets ``UNKNOWN_REFS`` and counts as referenced
    in its parent. Ignored entries count as references too.
    """
    node = DirectoryNode(path)
    try:
        entries = _scan_sorted(path)
    except OSError as exc:
        LOGGER.warning("dir_unreadable path=%s err=%s", path, exc)
        node.refs = UNKNOWN_REFS
        return node

    for entry in entries:
        if config.is_ignored(entry.path, config.ignore_unpackaged):
            node.refs += 1
        elif _is_dir(entry):
            child = build_tree(entry.path, index, config)
            node.children.append(child)
            node.refs += child.refs if child.refs >= 0 else 1
        elif entry.path in index:
            node.refs += 1
    return node


def empty_directories(node: DirectoryNode) -> Iterator[str]:
    # Anything beneath an unreferenced directory is unreferenced as well.
    if node.refs == 0:
        yield node.path
        return
    for child in node.children:
        yield from empty_directories(child)


def unreferenced_directories(index: PackageIndex, config: CruftConfig) -> Iterator[str]:
    yield from empty_directories(build_tree(config.prefix, index, config))


# ------------------------------ Library cruft ------------------------------- #


def library_index(index: PackageIndex) -> dict[str, list[tuple[str, str]]]:
    libs: dict[str, list[tuple[str, str]]] = {}
    for pkg, path in index.iter_files():
        name = os.path.basename(path)
        if SHLIB_RE.search(name):
            libs.setdefault(name, []).append((pkg, path))
    return libs


def _is_elf(path: str) -> bool:
    try:
        with open(path, "rb") as fh:
            return fh.read(len(ELF_MAGIC)) == ELF_MAGIC
    except OSError:
        return False


def packaged_objects(index: PackageIndex, config: CruftConfig) -> Iterator[str]:
    """Packaged ELF files under the prefix that ldd could load:
    anything executable, plus shared libraries. Scripts are skipped."""
    for _, path in index.iter_files():
        if not config.under_prefix(path):
            continue
        try:
            st = os.lstat(path)
        except OSError:
            continue
        if not stat.S_ISREG(st.st_mode):
            continue
        if not (st.st_mode & 0o111 or SHLIB_RE.search(os.path.basename(path))):
            continue
        if _is_elf(path):
            yield path


class LibraryCheck:
    """Apply the library rules to one dependency at a time.

    Rules are tried in order and the first match wins:
    missing library, foreign compat library, unpackaged library,
    defunct library.
    """

    def __init__(
        self,
        index: PackageIndex,
        libraries: Mapping[str, Sequence[tuple[str, str]]],
        defunct: set[str],
        config: CruftConfig,
    ):
        self.index = index
        self.libraries = libraries
        self.defunct = defunct
        self.config = config

    def classify(self, exe: str, record: LibraryRecord) -> str | None:
        exe_pkg = self.index.package_for(exe) or UNPACKAGED
        head = f"{exe_pkg}: {exe}"

        if not record.found:
            candidates = self.libraries.get(record.soname, ())
            if not candidates:
                return f"{head} missing library {record.soname}"
            owners = list(dict.fromkeys(pkg for pkg, _ in candidates))
            if exe_pkg in owners:
                return None
            return f"{head} missing library {record.soname}, private to {', '.join(owners)}"

        path = record.path
        owner = self.index.package_for(path)
        if COMPAT_SEGMENT in path and owner != exe_pkg:
            return f"{head} using {owner or UNPACKAGED} compat library {path}"
        if owner is None and self.config.under_prefix(path):
            return f"{head} using unpackaged library {path}"
        if owner is not None and owner in self.defunct:
            return f"{head} using defunct library {path} from {owner}"
        return None


def library_cruft(
    index: PackageIndex,
    resolver: LibraryResolver,
    defunct: set[str],
    config: CruftConfig,
) -> Iterator[str]:
    check = LibraryCheck(index, library_index(index), defunct, config)
    for exe, deps in resolver.resolve(packaged_objects(index, config)):
        for record in deps:
            finding = check.classify(exe, record)
            if finding:
                yield finding


# ----------------------------- Stale processes ------------------------------ #


def describe_process(index: PackageIndex, proc, which: Callable[[str], str | None] | None = None) -> str:
    tail = f"running as {proc.pid} ({proc.name})"
    if proc.path:
        # procstat reports the resolved path; packages may list a symlink to it.
        owner = index.package_for(proc.path) or (which(proc.path) if which else None)
        return f"{proc.path} ({owner or UNPACKAGED}) {tail}"
    guesses = index.packages_for_basename(proc.name)
    label = ", ".join(guesses) if guesses else "unknown package"
    return f"[MISSING EXECUTABLE] ({label})? {tail}"


def stale_processes(
    index_task: Deferred[PackageIndex],
    inspector: ProcessInspector,
    which: Callable[[str], str | None] | None = None,
) -> Iterator[str]:
    """Correlate processes holding deleted executable mappings with the
    package index, which is built in the background meanwhile."""
    procs = list(inspector.scan())
    index = index_task.wait()
    for proc in procs:
        yield describe_process(index, proc, which)
