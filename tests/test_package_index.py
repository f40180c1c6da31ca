"""Tests for PackageIndex construction and lookups."""

from __future__ import annotations

import threading

import pytest

from pkg_cruft.package_index import PackageIndex
from pkg_cruft.probes import ProbeError

from conftest import FakePackageManager


def _inventory(count: int) -> dict[str, list[str]]:
    return {
        f"pkg{i}-1.{i}": [f"/usr/local/bin/tool{i}", f"/usr/local/share/doc/pkg{i}/README"]
        for i in range(count)
    }


def test_build_queries_in_groups_of_32():
    manager = FakePackageManager(_inventory(70))

    index = PackageIndex.build(manager)

    assert sorted(len(b) for b in manager.batches) == [6, 32, 32]
    assert len(index) == 140
    assert index.package_for("/usr/local/bin/tool42") == "pkg42-1.42"


def test_packages_without_files_are_kept():
    index = PackageIndex.build(FakePackageManager({"meta-1.0": [], "foo-2.0": ["/usr/local/bin/foo"]}))

    assert set(index.packages) == {"meta-1.0", "foo-2.0"}
    assert index.files_for("meta-1.0") == ()


def test_each_file_has_at_most_one_owner():
    index = PackageIndex(_inventory(5))

    for pkg, path in index.iter_files():
        assert index.package_for(path) == pkg
    assert index.package_for("/usr/local/bin/nothing") is None
    assert "/usr/local/bin/tool3" in index
    assert "/usr/local/bin/nothing" not in index


def test_files_for_preserves_order():
    index = PackageIndex({"foo-1.0": ["/usr/local/b", "/usr/local/a"]})
    assert index.files_for("foo-1.0") == ("/usr/local/b", "/usr/local/a")
    assert index.files_for("missing-1.0") == ()


def test_build_fails_when_probe_fails():
    manager = FakePackageManager(_inventory(40), fail_on="pkg35-1.35")

    with pytest.raises(ProbeError):
        PackageIndex.build(manager)


def test_basename_index_lists_every_shipping_package():
    index = PackageIndex(
        {
            "openssl-3.0": ["/usr/local/lib/libssl.so.3", "/usr/local/bin/openssl"],
            "openssl111-1.1": ["/usr/local/lib/openssl111/libssl.so.3"],
            "foo-1.0": ["/usr/local/bin/foo"],
        }
    )

    assert index.packages_for_basename("libssl.so.3") == ("openssl-3.0", "openssl111-1.1")
    assert index.packages_for_basename("foo") == ("foo-1.0",)
    assert index.packages_for_basename("bar") == ()


def test_basename_index_is_built_once_under_concurrent_use(monkeypatch):
    index = PackageIndex(_inventory(50))
    calls = []
    original = index._basename_index

    def counting():
        calls.append(1)
        return original()

    monkeypatch.setattr(index, "_basename_index", counting)
    start = threading.Barrier(8)
    seen = []

    def lookup():
        start.wait()
        seen.append(index.packages_for_basename("tool7"))

    threads = [threading.Thread(target=lookup) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(calls) == 1
    assert seen == [("pkg7-1.7",)] * 8
