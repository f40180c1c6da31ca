"""Thin wrappers around the external tools pkg-cruft consumes.

Every probe shells out to one tool and hands back parsed text. The
algorithms never call subprocess directly, which keeps them testable with
plain fake objects:
- pkg(8) for the local/remote inventory and file ownership
- ldd(1) with a machine-parsable format for library resolution
- procstat(1) and ps(1) for process mappings and identity
"""

from __future__ import annotations

import logging
import subprocess
from typing import Iterable, Sequence

LOGGER = logging.getLogger(__name__)

LDD_FORMAT = "%A\t%o\t%p\n"
LDD_NOT_FOUND = "not found"


class ProbeError(RuntimeError):
    """An external tool exited unsuccessfully."""

    def __init__(self, cmd: Sequence[str], returncode: int, stderr: str = ""):
        self.cmd = list(cmd)
        self.returncode = returncode
        self.stderr = (stderr or "").strip()
        detail = f": {self.stderr}" if self.stderr else ""
        super().__init__(f"{self.cmd[0]} exited with status {returncode}{detail}")


def run_cmd(cmd: list[str]) -> subprocess.CompletedProcess[str]:
    try:
        return subprocess.run(cmd, check=False, text=True, capture_output=True)
    except FileNotFoundError:
        return subprocess.CompletedProcess(cmd, 127, "", f"command not found: {cmd[0]}")
    except OSError as exc:
        return subprocess.CompletedProcess(cmd, 126, "", str(exc))


def checked_output(cmd: list[str]) -> str:
    cp = run_cmd(cmd)
    if cp.returncode != 0:
        LOGGER.debug("probe_failed cmd=%s rc=%s", cmd[0], cp.returncode)
        raise ProbeError(cmd, cp.returncode, cp.stderr)
    return cp.stdout or ""


def _lines(text: str) -> list[str]:
    return [x.strip() for x in text.splitlines() if x.strip()]


class PackageManager:
    """Inventory queries against pkg(8)."""

    def __init__(self, pkg: str = "pkg"):
        self.pkg = pkg

    def local_packages(self) -> list[str]:
        return _lines(checked_output([self.pkg, "query", "-a", "%n-%v"]))

    def remote_packages(self) -> list[str]:
        return _lines(checked_output([self.pkg, "rquery", "-a", "%n-%v"]))

    def list_files(self, packages: Sequence[str]) -> dict[str, tuple[str, ...]]:
        out = checked_output([self.pkg, "query", "%n-%v\t%Fp", *packages])
        files: dict[str, list[str]] = {}
        for line in out.splitlines():
            name, sep, path = line.partition("\t")
            if not sep or not path:
                continue
            files.setdefault(name, []).append(path)
        return {name: tuple(paths) for name, paths in files.items()}

    def which(self, path: str) -> str | None:
        cp = run_cmd([self.pkg, "which", "-q", path])
        if cp.returncode != 0:
            return None
        found = _lines(cp.stdout or "")
        return found[0] if found else None


class LinkerInspector:
    """Dynamic-linker dependency listing via ``ldd -f``."""

    def __init__(self, ldd: str = "ldd"):
        self.ldd = ldd

    def inspect(self, paths: Iterable[str]) -> list[tuple[str, str, str]]:
        cmd = [self.ldd, "-f", LDD_FORMAT, *paths]
        cp = run_cmd(cmd)
        triples = []
        for line in (cp.stdout or "").splitlines():
            parts = line.split("\t")
            if len(parts) != 3:
                continue
            triples.append((parts[0], parts[1], parts[2].strip()))

        # ldd complains per argument for scripts and static binaries. Those
        # lines are skipped; anything else fails a batch with no output.
        args = set(cmd[3:])
        complaints = _lines(cp.stderr or "")
        fatal = []
        for err in complaints:
            if _complaint_about(err) in args:
                LOGGER.debug("ldd_skipped detail=%s", err)
            else:
                fatal.append(err)
        if cp.returncode != 0 and not triples and (fatal or not complaints):
            raise ProbeError(cmd[:1], cp.returncode, "\n".join(fatal))
        return triples


def _complaint_about(line: str) -> str | None:
    """Path named by an ``ldd: <path>: <reason>`` diagnostic."""
    _, sep, rest = line.partition(": ")
    if not sep:
        return None
    path, sep, _ = rest.rpartition(": ")
    return path if sep else None


class ProcessTool:
    """Process introspection via procstat(1), with ps(1) as a fallback."""

    def __init__(self, procstat: str = "procstat", ps: str = "ps"):
        self.procstat = procstat
        self.ps = ps

    def vm_mappings(self) -> str:
        cmd = [self.procstat, "-a", "-v"]
        cp = run_cmd(cmd)
        # Processes exiting mid-scan make procstat complain without
        # invalidating the rest of the listing.
        if cp.returncode != 0 and not cp.stdout:
            raise ProbeError(cmd, cp.returncode, cp.stderr)
        return cp.stdout or ""

    def binary(self, pid: int) -> str:
        return checked_output([self.procstat, "-h", "-b", str(pid)])

    def command_name(self, pid: int) -> str:
        return checked_output([self.ps, "-o", "comm=", "-p", str(pid)]).strip()
