"""Start and stop the ti_udhcpc and ti_dhcp6c DHCP clients."""

from __future__ import annotations

import logging
import signal

from gwtools.procutil import (
    MSECS_IN_SEC,
    DhcpClientError,
    collect_waiting_process,
    get_process_pid,
    signal_process,
    start_exe,
)

log = logging.getLogger(__name__)

TI_UDHCPC_CLIENT = "ti_udhcpc"
TI_UDHCPC_CLIENT_PATH = "/bin/" + TI_UDHCPC_CLIENT
TI_UDHCPC_TERMINATE_TIMEOUT_MS = 10 * MSECS_IN_SEC

TI_DHCP6C_CLIENT = "ti_dhcp6c"
TI_DHCP6C_CLIENT_PATH = "/bin/" + TI_DHCP6C_CLIENT
TI_DHCP6C_TERMINATE_TIMEOUT_MS = 10 * MSECS_IN_SEC

_ARGS_SIZE = 256


def ti_udhcpc_args(ifname):
    """Return the ti_udhcpc argument string for ``ifname``."""
    args = (
        f"-plugin /lib/libert_dhcpv4_plugin.so -i {ifname} -H DocsisGateway "
        f"-p /var/run/eRT_ti_udhcpc_{ifname}.pid -B -b 4"
    )
    return args[: _ARGS_SIZE - 1]


def ti_dhcp6c_args(ifname):
    """Return the ti_dhcp6c argument string for ``ifname``."""
    args = f"-i {ifname} -p /var/run/{ifname}_dhcp6c.pid -plugin /fss/gw/lib/libgw_dhcp6plg.so"
    return args[: _ARGS_SIZE - 1]


def _start(path, name, args, timeout):
    pid = start_exe(path, args)
    try:
        collect_waiting_process(pid, timeout)
    except DhcpClientError:
        log.info("unable to collect pid for %d.", pid)
    log.info("Started %s. returning pid..", name)
    return get_process_pid(name, None, True)


def _stop(name, params):
    if params is None or params.ifname is None:
        raise ValueError("interface name is required")
    pid = get_process_pid(name, params.ifname, False)
    if pid <= 0:
        raise DhcpClientError(f"unable to get pid of {name}")
    signal_process(pid, signal.SIGTERM)


def start_ti_udhcpc(params):
    """Start ti_udhcpc on ``params.ifname`` and return the daemon's pid."""
    if params is None:
        raise ValueError("interface parameters are required")
    return _start(
        TI_UDHCPC_CLIENT_PATH, TI_UDHCPC_CLIENT,
        ti_udhcpc_args(params.ifname), TI_UDHCPC_TERMINATE_TIMEOUT_MS,
    )


def stop_ti_udhcpc(params):
    """Send SIGTERM to the ti_udhcpc running on ``params.ifname``."""
    _stop(TI_UDHCPC_CLIENT, params)


def start_ti_dhcp6c(params):
    """Start ti_dhcp6c on ``params.ifname`` and return the daemon's pid."""
    if params is None:
        raise ValueError("interface parameters are required")
    return _start(
        TI_DHCP6C_CLIENT_PATH, TI_DHCP6C_CLIENT,
        ti_dhcp6c_args(params.ifname), TI_DHCP6C_TERMINATE_TIMEOUT_MS,
    )


def stop_ti_dhcp6c(params):
    """Send SIGTERM to the ti_dhcp6c running on ``params.ifname``."""
    _stop(TI_DHCP6C_CLIENT, params)