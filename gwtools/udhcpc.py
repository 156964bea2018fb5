"""Start and stop the udhcpc DHCPv4 client for a WAN interface."""

from __future__ import annotations

import enum
import logging
import signal
import time
from dataclasses import dataclass

from gwtools.procutil import (
    MSECS_IN_SEC,
    DhcpClientError,
    collect_waiting_process,
    get_process_pid,
    signal_process,
    start_exe,
)

log = logging.getLogger(__name__)

UDHCPC_CLIENT = "udhcpc"
UDHCPC_CLIENT_PATH = "/sbin/" + UDHCPC_CLIENT
UDHCP_PIDFILE = "/tmp/udhcpc.{}.pid"
UDHCPC_SERVICE_SCRIPT_FILE = "/etc/udhcpc.script"
UDHCPC_SERVICE_EXE = "/usr/bin/service_udhcpc"
UDHCPC_TERMINATE_TIMEOUT_MS = 10 * MSECS_IN_SEC

DHCPV4_OPT_2 = 2  # time zone offset
DHCPV4_OPT_42 = 42  # NTP servers
DHCPV4_OPT_60 = 60  # vendor class identifier

_BUFF_SIZE = 512
_REQ_ARG_SIZE = 16
_SEND_ARG_SIZE = 128
_IFNAME_ARG_SIZE = 16
_PATH_ARG_SIZE = 32
_FLAG_RESERVE = 8
_CMDARG_SIZE = 32


class RunMode(enum.Enum):
    """How udhcpc behaves when no lease is obtained."""

    DEFAULT = ""
    FOREGROUND = "-f "
    BACKGROUND = "-b "
    EXIT_ON_FAILURE = "-n "


@dataclass(frozen=True)
class UdhcpcConfig:
    """Build-time choices for launching udhcpc."""

    run_mode: RunMode = RunMode.DEFAULT
    use_script_file: bool = False
    tx_release_on_exit: bool = False
    raspberry_pi: bool = False
    client_path: str = UDHCPC_CLIENT_PATH
    proc_root: str = "/proc"
    release_delay: float = 1.0
    terminate_timeout: int = UDHCPC_TERMINATE_TIMEOUT_MS


def _clip(text, size):
    """Keep what fits in a buffer of ``size`` bytes including its terminator."""
    return text[: size - 1]


def _append_req(buff, req_opts):
    for option in req_opts:
        if option.opt == DHCPV4_OPT_2:
            arg = "-O timezone "
        elif option.opt == DHCPV4_OPT_42:
            arg = "-O ntpsrv "
        else:
            arg = f"-O {option.opt} "
        arg = _clip(arg, _REQ_ARG_SIZE - 1)
        if len(buff) < _BUFF_SIZE - _REQ_ARG_SIZE:
            buff += arg
        else:
            log.info("Insufficient buff size")
    log.info("get req args - %s", buff)
    return buff


def _append_send(buff, send_opts):
    for option in send_opts:
        if option.value is None:
            break
        if option.opt == DHCPV4_OPT_60:
            arg = f"-V {option.value} "
        else:
            arg = f"-x 0x{option.opt:02X}:{option.value} "
        arg = _clip(arg, _SEND_ARG_SIZE)
        if len(buff) < _BUFF_SIZE - _SEND_ARG_SIZE:
            buff += arg
        else:
            log.info("Insufficient buff size")
    return buff


def _append_other(buff, params, config):
    if params is None:
        raise ValueError("interface parameters are required")

    if params.ifname is not None:
        ifname_opt = _clip(f"-i {params.ifname} ", _IFNAME_ARG_SIZE)
        if len(buff) >= _BUFF_SIZE - _IFNAME_ARG_SIZE:
            raise DhcpClientError("no room for the interface argument")
        buff += ifname_opt

        pidfile = _clip(f"-p {UDHCP_PIDFILE.format(params.ifname)} ", _PATH_ARG_SIZE)
        if len(buff) >= _BUFF_SIZE - _PATH_ARG_SIZE:
            raise DhcpClientError("no room for the pidfile argument")
        buff += pidfile

    script = UDHCPC_SERVICE_SCRIPT_FILE if config.use_script_file else UDHCPC_SERVICE_EXE
    servicefile = _clip(f"-s {script} ", _PATH_ARG_SIZE)
    if len(buff) >= _BUFF_SIZE - _PATH_ARG_SIZE:
        raise DhcpClientError("no room for the service file argument")
    buff += servicefile

    if len(buff) > _BUFF_SIZE - _FLAG_RESERVE:
        raise DhcpClientError("insufficient buffer size")

    buff += config.run_mode.value
    if config.tx_release_on_exit:
        buff += "-R "
    return buff


def build_req_options(req_opts):
    """Return the ``-O`` arguments requesting each option in ``req_opts``."""
    return _append_req("", req_opts or ())


def build_send_options(send_opts):
    """Return the ``-x``/``-V`` arguments sending each valued option, up to the first without a value."""
    return _append_send("", send_opts or ())


def build_other_args(params, config=None):
    """Return the interface, pidfile, service script and behaviour arguments."""
    return _append_other("", params, config or UdhcpcConfig())


def build_udhcpc_args(params, req_opts=None, send_opts=None, config=None):
    """Return the whole udhcpc argument string for ``params``."""
    config = config or UdhcpcConfig()
    buff = ""
    if req_opts:
        buff = _append_req(buff, req_opts)
    if send_opts:
        buff = _append_send(buff, send_opts)
    return _append_other(buff, params, config)


def _require_ifname(params):
    if params is None or params.ifname is None:
        raise ValueError("interface name is required")


def start_udhcpc(params, req_opts=None, send_opts=None, config=None):
    """Start udhcpc on ``params.ifname`` and return its pid."""
    _require_ifname(params)
    config = config or UdhcpcConfig()

    if get_process_pid(UDHCPC_CLIENT, params.ifname, False, config.proc_root) > 0:
        raise DhcpClientError(f"another instance of {UDHCPC_CLIENT} running on {params.ifname}")

    args = build_udhcpc_args(params, req_opts, send_opts, config)
    log.info("Starting udhcpc.")
    pid = start_exe(config.client_path, args)

    if config.run_mode is RunMode.BACKGROUND:
        # udhcpc daemonises a child, so the exited parent is reaped here.
        try:
            collect_waiting_process(pid, config.terminate_timeout)
        except DhcpClientError:
            log.info("unable to collect pid for %d", pid)
        pid = get_process_pid(UDHCPC_CLIENT, None, True, config.proc_root)
        log.info("Started udhcpc, returning pid %d", pid)
    return pid


def stop_udhcpc(params, config=None):
    """Stop the udhcpc running on ``params.ifname`` and return the pid collected."""
    _require_ifname(params)
    config = config or UdhcpcConfig()

    cmdarg = _clip(params.ifname, _CMDARG_SIZE)
    pid = get_process_pid(UDHCPC_CLIENT, cmdarg, False, config.proc_root)
    if pid <= 0:
        raise DhcpClientError(f"unable to get pid of {UDHCPC_CLIENT}")

    if config.tx_release_on_exit:
        if config.raspberry_pi or not params.is_release_required:
            signal_process(pid, signal.SIGTERM)
        else:
            signal_process(pid, signal.SIGUSR2)
    else:
        if params.is_release_required:
            signal_process(pid, signal.SIGUSR2)
            log.info("Successfully released V4 IP address %d", pid)
        time.sleep(config.release_delay)
        signal_process(pid, signal.SIGTERM)
        log.info("Successfully exited V4 daemon %d", pid)

    return collect_waiting_process(pid, config.terminate_timeout)