from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from typing import Callable, Iterable

import psutil

log = logging.getLogger(__name__)

RELOAD_FLAG = "-R"
RELOAD_FLAGS = {RELOAD_FLAG, "--reload"}

# cli.py is installed (and checked out) next to the dps package.
SHIM_SCRIPT = os.path.realpath(os.path.join(os.path.dirname(__file__), os.pardir, "cli.py"))


@dataclass(frozen=True)
class ShimProcess:
    pid: int
    cmdline: tuple[str, ...]
    cwd: str | None = None

    def reload_cmdline(self) -> list[str]:
        return [*self.cmdline, RELOAD_FLAG]


def _is_shim(cmdline: list[str], cwd: str | None, markers: Iterable[str], scripts: set[str]) -> bool:
    """True for `dps-shim ...`, `python dps-shim ...` or `python <our cli.py> ...`."""
    for part in cmdline[:2]:
        if os.path.basename(part) in markers:
            return True
        if part.endswith(".py"):
            path = part if os.path.isabs(part) or cwd is None else os.path.join(cwd, part)
            if os.path.realpath(path) in scripts:
                return True
    return False


def find_instances(
    markers: Iterable[str],
    exclude_pid: int | None = None,
    processes: Iterable[psutil.Process] | None = None,
    scripts: Iterable[str] = (SHIM_SCRIPT,),
) -> list[ShimProcess]:
    """Running shim instances, excluding this process and reload runs."""
    markers = set(markers)
    scripts = {os.path.realpath(s) for s in scripts}
    exclude_pid = os.getpid() if exclude_pid is None else exclude_pid
    found: list[ShimProcess] = []
    for proc in processes if processes is not None else psutil.process_iter(["pid", "cmdline", "cwd"]):
        try:
            info = proc.info
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
        cmdline = info.get("cmdline") or []
        cwd = info.get("cwd")
        if info.get("pid") == exclude_pid or not cmdline:
            continue
        if not _is_shim(cmdline, cwd, markers, scripts):
            continue
        if RELOAD_FLAGS.intersection(cmdline) or "resync" in cmdline or "serve" in cmdline:
            continue
        found.append(ShimProcess(pid=info["pid"], cmdline=tuple(cmdline), cwd=cwd))
    return found


def resync(
    markers: Iterable[str],
    dry_run: bool = False,
    spawn: Callable[..., object] = subprocess.Popen,
    processes: Iterable[psutil.Process] | None = None,
    scripts: Iterable[str] = (SHIM_SCRIPT,),
) -> list[ShimProcess]:
    """Re-run each instance's original command with the reload flag appended.

    Existing instances are left untouched; each spawned copy runs in the
    original's working directory, registers once and exits.
    """
    instances = find_instances(markers, processes=processes, scripts=scripts)
    for inst in instances:
        cmd = inst.reload_cmdline()
        if dry_run:
            log.info("Would reload pid %d: %s", inst.pid, " ".join(cmd))
            continue
        log.info("Reloading pid %d: %s", inst.pid, " ".join(cmd))
        spawn(cmd, cwd=inst.cwd)
    if not instances:
        log.info("No running shim instances found")
    return instances
