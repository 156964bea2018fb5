"""Configure, start and stop the dibbler DHCPv6 client for a WAN interface."""

from __future__ import annotations

import contextlib
import logging
import os
import shutil
import signal
import time
from dataclasses import dataclass
from pathlib import Path

from gwtools.procutil import (
    MSECS_IN_SEC,
    DhcpClientError,
    IfaceType,
    collect_waiting_process,
    get_process_pid,
    signal_process,
    start_exe,
)

log = logging.getLogger(__name__)

DIBBLER_CLIENT = "dibbler-client"
DIBBLER_CLIENT_PATH = "/usr/sbin/" + DIBBLER_CLIENT
DIBBLER_CLIENT_RUN_CMD = "start"
DIBBLER_DFT_PATH = "/etc/dibbler/"
DIBBLER_CLIENT_CONFIG_FILE = "client.conf"
DIBBLER_TMP_CONFIG_FILE = "/tmp/dibbler/client-tmp.conf"
DIBBLER_DEFAULT_CONFIG_FILE = "/tmp/dibbler/client.conf"
DIBBLER_CLIENT_TERMINATE_TIMEOUT_MS = 10 * MSECS_IN_SEC
DIBBLER_CLIENT_TERMINATE_INTERVAL_MS = MSECS_IN_SEC // 2
DIBBLER_SCRIPT_FILE = "/lib/rdk/client-notify.sh"
DIBBLER_LOG_CONFIG = "log-level 7\nlog-mode full\n"
DIBBLER_DUID_LL_CONFIG = "duid-type duid-ll\n"
DIBBLER_TMP_DIR_PATH = "/var/lib/dibbler"
DIBBLER_RADVD_FILE = "/etc/dibbler/radvd.conf"
DIBBLER_RADVD_FILE_OLD = "/etc/dibbler/radvd.conf.old"

DHCPV6_OPT_5 = 5  # IA_NA
DHCPV6_OPT_15 = 15  # user class
DHCPV6_OPT_20 = 20  # reconfigure accept
DHCPV6_OPT_23 = 23  # DNS servers
DHCPV6_OPT_24 = 24  # domain list
DHCPV6_OPT_25 = 25  # IA_PD
DHCPV6_OPT_64 = 64  # AFTR name
DHCPV6_OPT_95 = 95  # MAP-T container

_LINE_SIZE = 128
_ARGS_SIZE = 512
_PATH_SIZE = 128
_CMD_ARGS_SIZE = 256
_CMDARG_SIZE = 32
_OPTION15_SIZE = 32


@dataclass(frozen=True)
class DibblerPaths:
    """Locations and timings used when running dibbler-client."""

    dft_path: str = DIBBLER_DFT_PATH
    tmp_config_file: str = DIBBLER_TMP_CONFIG_FILE
    default_config_file: str = DIBBLER_DEFAULT_CONFIG_FILE
    radvd_file: str = DIBBLER_RADVD_FILE
    radvd_file_old: str = DIBBLER_RADVD_FILE_OLD
    client_path: str = DIBBLER_CLIENT_PATH
    proc_root: str = "/proc"
    config_dir_mode: int = 0o644
    terminate_timeout: int = DIBBLER_CLIENT_TERMINATE_TIMEOUT_MS
    terminate_interval: int = DIBBLER_CLIENT_TERMINATE_INTERVAL_MS
    mapt_enabled: bool = True


def _clip(text, size):
    """Keep what fits in a buffer of ``size`` bytes including its terminator."""
    return text[: size - 1]


def encode_option15(value):
    """Encode a user-class value as dibbler hex: a length word then the bytes and a NUL."""
    if value is None:
        raise ValueError("option 15 needs a value")
    data = value.encode()[: _OPTION15_SIZE - 1] + b"\0"
    return f"0x{len(data):04X}" + data.hex().upper()


def _req_line(option, mapt_enabled):
    opt = option.opt
    if opt == DHCPV6_OPT_5:
        return f"\n\t{option.value if option.value is not None else 'ia'} \n"
    if opt == DHCPV6_OPT_23:
        return "\n\toption dns-server \n"
    if opt == DHCPV6_OPT_25:
        return f"\n\t{option.value if option.value is not None else 'pd'} \n"
    if opt == DHCPV6_OPT_24:
        return "\n\toption domain \n"
    if opt == DHCPV6_OPT_95:
        return f"\n\toption 00{opt} hex \n" if mapt_enabled else None
    if opt == DHCPV6_OPT_64:
        return "\n\toption aftr\n"
    return f"\n\toption 00{opt} hex \n"


def _send_line(option):
    opt = option.opt
    if opt == DHCPV6_OPT_15:
        return f"\n\toption 00{opt} hex {encode_option15(option.value)}\n"
    if opt == DHCPV6_OPT_25:
        return f"\n\tpd  {option.value}\n"
    if option.value is not None:
        return f"\n\toption 00{opt} hex {option.value}\n"
    return f"\n\toption 00{opt} hex \n"


def render_config(params, req_opts=None, send_opts=None, mapt_enabled=True):
    """Return the dibbler-client configuration text for ``params``."""
    if params is None:
        raise ValueError("interface parameters are required")
    parts = [
        _clip(f'script "{DIBBLER_SCRIPT_FILE}"\n', _LINE_SIZE),
        DIBBLER_LOG_CONFIG,
        DIBBLER_DUID_LL_CONFIG,
        _clip(f"iface {params.ifname} {{\n", _LINE_SIZE),
    ]
    reconfigure_accept = False
    if params.if_type == IfaceType.WAN_LOCAL_IFACE:
        for option in req_opts or ():
            line = _req_line(option, mapt_enabled)
            if line is not None:
                parts.append(_clip(line, _ARGS_SIZE))
        for option in send_opts or ():
            if option.opt == DHCPV6_OPT_20:
                reconfigure_accept = True
                continue
            parts.append(_clip(_send_line(option), _ARGS_SIZE))

    parts.append("\n}")
    parts.append("skip-confirm\n")
    parts.append('downlink-prefix-ifaces "brlan0"\n')
    if reconfigure_accept:
        parts.append("\nreconfigure-accept 1\n")
    return "".join(parts)


def prepare_config(params, req_opts=None, send_opts=None, paths=None, mapt_enabled=None):
    """Write the client configuration for ``params`` and return its directory."""
    if params is None:
        raise ValueError("interface parameters are required")
    paths = paths or DibblerPaths()
    if mapt_enabled is None:
        mapt_enabled = paths.mapt_enabled

    for radvd in (paths.radvd_file_old, paths.radvd_file):
        with contextlib.suppress(OSError):
            open(radvd, "a").close()

    content = render_config(params, req_opts, send_opts, mapt_enabled)
    try:
        Path(paths.tmp_config_file).write_text(content)
    except OSError as exc:
        raise DhcpClientError(f"unable to open tmp file: {paths.tmp_config_file}") from exc

    config_path = _clip(f"{paths.dft_path}{params.ifname}", _PATH_SIZE)
    try:
        os.mkdir(config_path, paths.config_dir_mode)
        log.info("created directory %s", config_path)
    except OSError:
        log.info("Directory already exists / not created %s", config_path)

    file_path = _clip(f"{config_path}/{DIBBLER_CLIENT_CONFIG_FILE}", _PATH_SIZE)
    try:
        shutil.copyfile(paths.tmp_config_file, file_path)
    except OSError as exc:
        raise DhcpClientError(
            f"unable to copy {paths.tmp_config_file} to {file_path}: {exc.strerror}"
        ) from exc
    log.info("successfully copied content from %s to %s", paths.tmp_config_file, file_path)

    # dibbler-client derives its DUID from the default config, so link it to the tmp file.
    if os.path.exists(paths.default_config_file):
        log.info("link already exists, continuing")
        return config_path
    try:
        os.link(paths.tmp_config_file, paths.default_config_file)
    except OSError as exc:
        raise DhcpClientError(f"unable to create link: {exc.strerror}") from exc
    log.info("link created successfully")
    return config_path


def start_dibbler(params, req_opts=None, send_opts=None, paths=None):
    """Configure and start dibbler-client for ``params`` and return the daemon's pid."""
    if params is None:
        raise ValueError("interface parameters are required")
    paths = paths or DibblerPaths()

    config_path = prepare_config(params, req_opts, send_opts, paths)
    log.info("Starting dibbler with config %s", config_path)

    cmd_args = _clip(f"{DIBBLER_CLIENT_RUN_CMD} -w {config_path}", _CMD_ARGS_SIZE)
    pid = start_exe(paths.client_path, cmd_args)
    if pid <= 0:
        raise DhcpClientError(f"unable to start {DIBBLER_CLIENT} {pid}")

    # dibbler-client daemonises a child, so the exited parent is reaped here.
    try:
        collect_waiting_process(pid, paths.terminate_timeout)
    except DhcpClientError:
        log.info("unable to collect pid for %d.", pid)

    log.info("Started dibbler-client. returning pid..")
    return get_process_pid(DIBBLER_CLIENT, None, True, paths.proc_root)


def stop_dibbler(params, paths=None):
    """Terminate the dibbler-client serving ``params.ifname`` and wait for it to exit."""
    if params is None or params.ifname is None:
        raise ValueError("interface name is required")
    paths = paths or DibblerPaths()

    cmdarg = _clip(f"{paths.dft_path}{params.ifname}", _CMDARG_SIZE)
    pid = get_process_pid(DIBBLER_CLIENT, cmdarg, False, paths.proc_root)
    if pid <= 0:
        raise DhcpClientError(f"unable to get pid of {DIBBLER_CLIENT}")

    signal_process(pid, signal.SIGTERM)

    proc_entry = Path(paths.proc_root) / str(pid)
    wait_time = paths.terminate_timeout
    while wait_time > 0:
        try:
            proc_entry.stat()
        except FileNotFoundError:
            log.info("dibbler-client exited")
            break
        except OSError:
            pass
        time.sleep(paths.terminate_interval / 1000)
        wait_time -= paths.terminate_interval

    if wait_time <= 0:
        raise DhcpClientError(
            f"waited for {paths.terminate_timeout} millisec, {DIBBLER_CLIENT} still running"
        )