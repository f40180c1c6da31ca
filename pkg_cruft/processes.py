"""Find processes still mapping executable files that were deleted."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Iterator

from .probes import ProbeError

LOGGER = logging.getLogger(__name__)

UNKNOWN_NAME = "?"


@dataclass(frozen=True, slots=True)
class ProcessRecord:
    pid: int
    name: str
    path: str | None = None


def parse_vm_mappings(text: str) -> Counter[int]:
    """Count executable, vnode-backed, pathless mappings per pid.

    Columns follow ``procstat -v``:
    PID START END PRT RES PRES REF SHD FLAG TP PATH
    """
    flagged: Counter[int] = Counter()
    for line in text.splitlines():
        fields = line.split(None, 10)
        if len(fields) < 10:
            continue
        try:
            pid = int(fields[0])
        except ValueError:
            continue
        prot, kind = fields[3], fields[9]
        path = fields[10].strip() if len(fields) > 10 else ""
        if "x" in prot and kind == "vn" and not path:
            flagged[pid] += 1
    return flagged


def parse_binary(text: str) -> ProcessRecord | None:
    # procstat -b columns: PID COMM OSREL PATH
    for line in text.splitlines():
        fields = line.split(None, 3)
        if len(fields) < 2:
            continue
        try:
            pid = int(fields[0])
        except ValueError:
            continue
        path = fields[3].strip() if len(fields) > 3 else ""
        if path in {"", "-"}:
            path = None
        return ProcessRecord(pid=pid, name=fields[1], path=path)
    return None


class ProcessInspector:
    def __init__(self, tool):
        self.tool = tool

    def anonymous_executable_mappings(self) -> Counter[int]:
        return parse_vm_mappings(self.tool.vm_mappings())

    def identify(self, pid: int) -> ProcessRecord:
        """Resolve a pid's executable. Never raises: a process that exits
        or hides its path mid-scan yields a name-only record."""
        try:
            record = parse_binary(self.tool.binary(pid))
            if record is not None:
                return record
        except (ProbeError, OSError) as exc:
            LOGGER.warning("pid_lookup_degraded pid=%s err=%s", pid, exc)

        try:
            name = self.tool.command_name(pid) or UNKNOWN_NAME
        except (ProbeError, OSError) as exc:
            LOGGER.warning("pid_name_unavailable pid=%s err=%s", pid, exc)
            name = UNKNOWN_NAME
        return ProcessRecord(pid=pid, name=name)

    def scan(self) -> Iterator[ProcessRecord]:
        for pid in sorted(self.anonymous_executable_mappings()):
            yield self.identify(pid)
