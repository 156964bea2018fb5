"""Process helpers shared by the DHCP client launchers.

These cover starting a client program, finding a running one through
``/proc``, signalling it and collecting its exit status. They also hold the
option list and parameter types the launchers pass around.
"""

from __future__ import annotations

import contextlib
import enum
import logging
import os
import re
import signal
import time
from dataclasses import dataclass
from pathlib import Path

log = logging.getLogger(__name__)

COLLECT_WAIT_INTERVAL_MS = 4
MSECS_IN_SEC = 1000
RETURN_PID_TIMEOUT_MS = 5 * MSECS_IN_SEC
RETURN_PID_INTERVAL_MS = MSECS_IN_SEC // 2
INTF_V6LL_TIMEOUT_MS = 5 * MSECS_IN_SEC
INTF_V6LL_INTERVAL_MS = MSECS_IN_SEC // 2

_CMDLINE_SIZE = 512
_PROC_NAME_MAX = 255
_RUNNING_STATES = frozenset("RSD")
_STAT_RE = re.compile(r"\s*[-+]?\d+\s*\((\S+)\s+(\S)")

_DEFAULT_SIGNAL_NAMES = (
    "SIGHUP", "SIGINT", "SIGQUIT", "SIGILL", "SIGTRAP", "SIGABRT", "SIGFPE",
    "SIGBUS", "SIGSEGV", "SIGSYS", "SIGPIPE", "SIGALRM", "SIGTERM",
    "SIGUSR1", "SIGUSR2", "SIGCHLD", "SIGPWR", "SIGWINCH", "SIGURG",
    "SIGIO", "SIGTSTP", "SIGCONT", "SIGTTIN", "SIGTTOU", "SIGVTALRM",
    "SIGPROF", "SIGXCPU", "SIGXFSZ",
)


class IfaceType(enum.IntEnum):
    """Whether the WAN interface is local or belongs to a remote device."""

    WAN_LOCAL_IFACE = 1
    WAN_REMOTE_IFACE = 2


@dataclass
class DhcpParams:
    """Interface-specific arguments for starting or stopping a DHCP client."""

    ifname: str | None
    base_iface: str | None = None
    if_type: IfaceType = IfaceType.WAN_LOCAL_IFACE
    is_release_required: bool = False


@dataclass
class DhcpOption:
    """A DHCP option code with an optional value."""

    opt: int
    value: str | None = None


class DhcpClientError(Exception):
    """Raised when a DHCP client process cannot be started, found or handled."""


def signal_process(pid, sig):
    """Send signal ``sig`` to process ``pid``."""
    if pid <= 0 or sig < 0:
        raise ValueError(f"invalid pid {pid} or signal {sig}")
    log.info("Sending signal %d to pid %d", sig, pid)
    try:
        os.kill(pid, sig)
    except OSError as exc:
        raise DhcpClientError(f"invalid pid {pid} or signal {sig}") from exc


def collect_waiting_process(pid, timeout):
    """Reap child ``pid``, waiting up to ``timeout`` milliseconds.

    A timeout of 0 blocks until the child exits. Returns the pid collected.
    """
    options = os.WNOHANG if timeout > 0 else 0
    remaining = timeout + 1 if timeout <= 1 else timeout
    while remaining > 0:
        try:
            collected, _status = os.waitpid(pid, options)
        except ChildProcessError as exc:
            log.info("Could not collect child pid %d, possibly stolen by SIGCHLD handler?", pid)
            raise DhcpClientError(f"could not collect child pid {pid}") from exc
        except OSError as exc:
            log.info("bad pid %d, errno=%d", pid, exc.errno)
            raise DhcpClientError(f"bad pid {pid}") from exc
        if collected > 0:
            return collected
        if remaining > 1:
            step = min(COLLECT_WAIT_INTERVAL_MS, remaining - 1)
            time.sleep(step / 1000)
            remaining -= step
        else:
            remaining = 0
    raise DhcpClientError(f"child pid {pid} not ready within {timeout} ms")


def _as_bytes(value):
    return value.encode() if isinstance(value, str) else bytes(value)


def find_strstr(haystack, needle):
    """Return True if ``needle`` occurs in ``haystack``, NUL bytes included.

    The haystack must be strictly longer than the needle.
    """
    if haystack is None or needle is None:
        return False
    haystack = _as_bytes(haystack)
    needle = _as_bytes(needle)
    if len(haystack) <= len(needle):
        return False
    return needle in haystack


def parse_args(cmd, args):
    """Build an argv list: the basename of ``cmd`` then the space-separated ``args``."""
    argv = [cmd.rsplit("/", 1)[-1]]
    if args:
        argv.extend(part for part in args.split(" ") if part)
    return argv


def _read_stat(stat_path):
    try:
        text = stat_path.read_text(errors="replace")
    except OSError:
        return None
    match = _STAT_RE.match(text)
    if match is None:
        return None
    name = match.group(1)[:_PROC_NAME_MAX]
    if name.endswith(")"):
        name = name[:-1]
    return name, match.group(2)


def _check_proc_entry_for_pid(name, args, proc_root):
    root = Path(proc_root)
    try:
        entries = [e for e in os.scandir(root) if e.name.isdigit() and e.is_dir(follow_symlinks=False)]
    except OSError:
        log.info("could not open %s", root)
        return 0

    for entry in sorted(entries, key=lambda e: int(e.name)):
        pid = int(entry.name)
        stat = _read_stat(root / entry.name / "stat")
        if stat is None:
            continue
        proc_name, state = stat
        if proc_name != name:
            continue
        if state not in _RUNNING_STATES:
            log.info("%s running, but is in %s mode", name, state)
            continue
        if args is None:
            return pid
        try:
            with open(root / entry.name / "cmdline", "rb") as fh:
                cmdline = fh.read(_CMDLINE_SIZE - 1)
        except OSError:
            continue
        if cmdline and find_strstr(cmdline.ljust(_CMDLINE_SIZE, b"\0"), args):
            return pid
    return 0


def get_process_pid(name, args=None, wait_for_proc_entry=False, proc_root="/proc"):
    """Return the pid of a running ``name`` whose command line holds ``args``, or 0.

    With ``wait_for_proc_entry`` the lookup is retried for up to five seconds.
    """
    if name is None:
        raise ValueError("process name is required")
    pid = 0
    if wait_for_proc_entry:
        wait_time = RETURN_PID_TIMEOUT_MS
        while wait_time > 1:
            pid = _check_proc_entry_for_pid(name, args, proc_root)
            if pid:
                break
            time.sleep(RETURN_PID_INTERVAL_MS / 1000)
            wait_time -= RETURN_PID_INTERVAL_MS
    else:
        pid = _check_proc_entry_for_pid(name, args, proc_root)
    log.info("%s running, in pid %d", name, pid)
    return pid


def _default_signals():
    return [sig for sig in (getattr(signal, n, None) for n in _DEFAULT_SIGNAL_NAMES) if sig is not None]


def start_exe(exe, args):
    """Start ``exe`` with ``args`` detached from stdio and return its pid."""
    if exe is None or args is None:
        raise ValueError("executable and arguments are required")
    log.info("exe:%s buff %s", exe, args)
    argv = parse_args(exe, args)
    file_actions = [
        (os.POSIX_SPAWN_OPEN, fd, os.devnull, os.O_RDWR, 0) for fd in (0, 1, 2)
    ]
    try:
        return os.posix_spawn(
            exe,
            argv,
            dict(os.environ),
            file_actions=file_actions,
            setsigdef=_default_signals(),
        )
    except OSError as exc:
        raise DhcpClientError(f"failed to start {exe}: {exc.strerror}") from exc


def add_dhcp_opt_to_list(opt_list, opt, opt_val=None):
    """Put a new option at the front of ``opt_list`` and return it."""
    if opt_list is None or opt <= 0:
        raise ValueError(f"invalid option list or option {opt}")
    option = DhcpOption(opt, opt_val)
    opt_list.insert(0, option)
    return option


def create_dir_path(dirpath):
    """Create ``dirpath`` if it is not already a directory."""
    if dirpath is None:
        return
    if not os.path.isdir(dirpath):
        with contextlib.suppress(OSError):
            os.mkdir(dirpath, 0o644)