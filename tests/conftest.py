"""Shared fakes standing in for pkg, ldd and procstat."""

from __future__ import annotations

import logging
import threading
from typing import Mapping, Sequence

import pytest

from pkg_cruft.commands import Toolbox
from pkg_cruft.config import CruftConfig
from pkg_cruft.probes import ProbeError


class FakePackageManager:
    def __init__(
        self,
        files: Mapping[str, Sequence[str]],
        remote: Sequence[str] | None = None,
        fail_on: str | None = None,
    ):
        self.files = {pkg: tuple(paths) for pkg, paths in files.items()}
        self.remote = list(self.files) if remote is None else list(remote)
        self.fail_on = fail_on
        self.owners: dict[str, str] = {}
        self.batches: list[list[str]] = []
        self._lock = threading.Lock()

    def local_packages(self) -> list[str]:
        return list(self.files)

    def remote_packages(self) -> list[str]:
        return list(self.remote)

    def list_files(self, packages: Sequence[str]) -> dict[str, tuple[str, ...]]:
        with self._lock:
            self.batches.append(list(packages))
        if self.fail_on in packages:
            raise ProbeError(["pkg", "query"], 70, "pkg: database corrupt")
        return {pkg: self.files[pkg] for pkg in packages if self.files[pkg]}

    def which(self, path: str) -> str | None:
        return self.owners.get(path)


class FakeLinker:
    def __init__(self, deps: Mapping[str, Sequence[tuple[str, str]]]):
        self.deps = deps
        self.calls: list[list[str]] = []
        self._lock = threading.Lock()

    def inspect(self, paths):
        paths = list(paths)
        with self._lock:
            self.calls.append(paths)
        triples = []
        for exe in paths:
            for soname, resolved in self.deps.get(exe, ()):
                triples.append((exe, soname, resolved))
        return triples


class FakeProcessTool:
    def __init__(self, mappings: str = "", binaries: Mapping[int, object] | None = None, names=None):
        self.mappings = mappings
        self.binaries = dict(binaries or {})
        self.names = dict(names or {})

    def vm_mappings(self) -> str:
        return self.mappings

    def binary(self, pid: int) -> str:
        value = self.binaries.get(pid)
        if isinstance(value, Exception):
            raise value
        if value is None:
            raise ProbeError(["procstat"], 1, f"procstat: {pid}: No such process")
        return value

    def command_name(self, pid: int) -> str:
        value = self.names.get(pid)
        if isinstance(value, Exception):
            raise value
        if value is None:
            raise ProbeError(["ps"], 1)
        return value


def mapping_line(pid: int, prot: str = "r-x", kind: str = "vn", path: str = "") -> str:
    return f"{pid:>6} 0x200000 0x201000 {prot}  1  3  2  1 CN--- {kind} {path}".rstrip()


VM_HEADER = "  PID              START                END PRT  RES PRES REF SHD FLAG  TP PATH"


@pytest.fixture
def prefix(tmp_path):
    root = tmp_path / "usr" / "local"
    root.mkdir(parents=True)
    return root


@pytest.fixture
def config(prefix) -> CruftConfig:
    return CruftConfig(prefix=str(prefix), concurrency=4)


@pytest.fixture
def make_tools():
    def _make(files=None, remote=None, deps=None, procs=None) -> Toolbox:
        return Toolbox(
            packages=FakePackageManager(files or {}, remote),
            linker=FakeLinker(deps or {}),
            processes=procs or FakeProcessTool(VM_HEADER),
        )

    return _make


@pytest.fixture(autouse=True)
def _reset_app_logger():
    yield
    logger = logging.getLogger("pkg_cruft")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
