"""Tests for library resolution and ldd output normalisation."""

from __future__ import annotations

import pytest

from pkg_cruft.config import CruftConfig
from pkg_cruft.libraries import NOT_FOUND, LibraryRecord, LibraryResolver, parse_triples
from pkg_cruft.probes import ProbeError

from conftest import FakeLinker


def test_not_found_is_never_a_path():
    deps = parse_triples(
        [
            ("/usr/local/bin/foo", "libbar.so.1", "not found"),
            ("/usr/local/bin/foo", "libz.so.6", "/lib/../lib/libz.so.6"),
        ]
    )

    bar, z = deps["/usr/local/bin/foo"]
    assert bar == LibraryRecord("libbar.so.1", NOT_FOUND)
    assert not bar.found
    assert z.path == "/lib/libz.so.6"
    assert z.found


def test_resolve_groups_by_executable_across_batches():
    exes = [f"/usr/local/bin/tool{i}" for i in range(10)]
    linker = FakeLinker({exe: [("libc.so.7", "/lib/libc.so.7")] for exe in exes})
    resolver = LibraryResolver(linker, CruftConfig(concurrency=3), chunk_size=4)

    resolved = dict(resolver.resolve(exes))

    assert sorted(resolved) == exes
    assert all(deps == [LibraryRecord("libc.so.7", "/lib/libc.so.7")] for deps in resolved.values())
    assert sorted(len(c) for c in linker.calls) == [2, 4, 4]


def test_ignored_paths_never_reach_the_inspector():
    config = CruftConfig(ignore_ldd=("share/*/testdata",))
    linker = FakeLinker({})
    paths = ["/usr/local/bin/foo", "/usr/local/share/go/testdata/elf.so.1"]

    list(LibraryResolver(linker, config).resolve(paths))

    assert linker.calls == [["/usr/local/bin/foo"]]


def test_batch_failure_propagates():
    class BrokenLinker:
        def inspect(self, paths):
            raise ProbeError(["ldd"], 1, "ldd: cannot exec")

    with pytest.raises(ProbeError):
        list(LibraryResolver(BrokenLinker(), CruftConfig()).resolve(["/usr/local/bin/foo"]))
