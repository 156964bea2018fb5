import os
import signal
import subprocess

import pytest

from gwtools import dibbler
from gwtools.dibbler import (
    DHCPV6_OPT_15,
    DHCPV6_OPT_20,
    DHCPV6_OPT_23,
    DHCPV6_OPT_24,
    DHCPV6_OPT_25,
    DHCPV6_OPT_5,
    DHCPV6_OPT_64,
    DHCPV6_OPT_95,
    DibblerPaths,
    encode_option15,
    prepare_config,
    render_config,
    start_dibbler,
    stop_dibbler,
)
from gwtools.procutil import DhcpClientError, DhcpOption, DhcpParams, IfaceType

HEADER = (
    'script "/lib/rdk/client-notify.sh"\n'
    "log-level 7\nlog-mode full\n"
    "duid-type duid-ll\n"
)
FOOTER = '\n}skip-confirm\ndownlink-prefix-ifaces "brlan0"\n'


def make_proc(root, pid, name, state="S", cmdline=b""):
    entry = root / str(pid)
    entry.mkdir(parents=True)
    (entry / "stat").write_text(f"{pid} ({name}) {state} 1 1 1 0 -1\n")
    (entry / "cmdline").write_bytes(cmdline)
    return entry


def make_paths(tmp_path, **kwargs):
    etc = tmp_path / "etc"
    etc.mkdir(exist_ok=True)
    tmpdir = tmp_path / "tmpdibbler"
    tmpdir.mkdir(exist_ok=True)
    defaults = dict(
        dft_path=str(etc) + "/",
        tmp_config_file=str(tmpdir / "client-tmp.conf"),
        default_config_file=str(tmpdir / "client.conf"),
        radvd_file=str(etc / "radvd.conf"),
        radvd_file_old=str(etc / "radvd.conf.old"),
        proc_root=str(tmp_path / "proc"),
        config_dir_mode=0o755,
    )
    defaults.update(kwargs)
    return DibblerPaths(**defaults)


def test_encode_option15_worked_example():
    assert encode_option15("abc") == "0x000461626300"


def test_encode_option15_empty_value():
    assert encode_option15("") == "0x000100"


def test_encode_option15_length_invariant():
    value = "user-class"
    encoded = encode_option15(value)
    assert encoded.startswith("0x")
    assert int(encoded[2:6], 16) == len(value) + 1
    assert bytes.fromhex(encoded[6:]) == value.encode() + b"\0"


def test_encode_option15_truncates_long_values():
    encoded = encode_option15("x" * 40)
    assert int(encoded[2:6], 16) == 32
    assert bytes.fromhex(encoded[6:]) == b"x" * 31 + b"\0"


def test_encode_option15_requires_value():
    with pytest.raises(ValueError):
        encode_option15(None)


def test_render_config_dns_request():
    params = DhcpParams("erouter0")
    text = render_config(params, [DhcpOption(DHCPV6_OPT_23)], [])
    assert text == HEADER + "iface erouter0 {\n" + "\n\toption dns-server \n" + FOOTER


def test_render_config_request_options():
    params = DhcpParams("erouter0")
    req = [
        DhcpOption(DHCPV6_OPT_5),
        DhcpOption(DHCPV6_OPT_25, "pd 1 { }"),
        DhcpOption(DHCPV6_OPT_24),
        DhcpOption(DHCPV6_OPT_64),
        DhcpOption(17),
    ]
    text = render_config(params, req, [])
    assert "\n\tia \n" in text
    assert "\n\tpd 1 { } \n" in text
    assert "\n\toption domain \n" in text
    assert "\n\toption aftr\n" in text
    assert "\n\toption 0017 hex \n" in text
    assert text.index("\n\tia \n") < text.index("\n\toption domain \n")


def test_render_config_mapt_switch():
    params = DhcpParams("erouter0")
    req = [DhcpOption(DHCPV6_OPT_95)]
    assert "\n\toption 0095 hex \n" in render_config(params, req, [], True)
    assert "0095" not in render_config(params, req, [], False)


def test_render_config_send_options():
    params = DhcpParams("erouter0")
    send = [
        DhcpOption(DHCPV6_OPT_15, "abc"),
        DhcpOption(DHCPV6_OPT_25, "prefix"),
        DhcpOption(16, "0a0b"),
        DhcpOption(39),
    ]
    text = render_config(params, [], send)
    assert f"\n\toption 0015 hex {encode_option15('abc')}\n" in text
    assert "\n\tpd  prefix\n" in text
    assert "\n\toption 0016 hex 0a0b\n" in text
    assert "\n\toption 0039 hex \n" in text
    assert "reconfigure-accept" not in text


def test_render_config_option20_adds_reconfigure_accept():
    params = DhcpParams("erouter0")
    text = render_config(params, [], [DhcpOption(DHCPV6_OPT_20)])
    assert text.endswith(FOOTER + "\nreconfigure-accept 1\n")
    assert "0020" not in text


def test_render_config_remote_iface_has_no_options():
    params = DhcpParams("erouter1", if_type=IfaceType.WAN_REMOTE_IFACE)
    text = render_config(params, [DhcpOption(DHCPV6_OPT_23)], [DhcpOption(DHCPV6_OPT_20)])
    assert text == HEADER + "iface erouter1 {\n" + FOOTER


def test_render_config_requires_params():
    with pytest.raises(ValueError):
        render_config(None)


def test_prepare_config_writes_files(tmp_path):
    paths = make_paths(tmp_path)
    params = DhcpParams("erouter0")
    req = [DhcpOption(DHCPV6_OPT_23)]
    config_path = prepare_config(params, req, [], paths)

    assert config_path == paths.dft_path + "erouter0"
    expected = render_config(params, req, [], True)
    with open(os.path.join(config_path, "client.conf")) as fh:
        assert fh.read() == expected
    with open(paths.tmp_config_file) as fh:
        assert fh.read() == expected
    assert os.path.samefile(paths.default_config_file, paths.tmp_config_file)
    assert os.path.exists(paths.radvd_file)
    assert os.path.exists(paths.radvd_file_old)


def test_prepare_config_uses_paths_mapt_setting(tmp_path):
    paths = make_paths(tmp_path, mapt_enabled=False)
    params = DhcpParams("erouter0")
    config_path = prepare_config(params, [DhcpOption(DHCPV6_OPT_95)], [], paths)
    with open(os.path.join(config_path, "client.conf")) as fh:
        assert "0095" not in fh.read()


def test_prepare_config_keeps_existing_default(tmp_path):
    paths = make_paths(tmp_path)
    with open(paths.default_config_file, "w") as fh:
        fh.write("existing\n")
    config_path = prepare_config(DhcpParams("erouter0"), [], [], paths)
    assert config_path.endswith("erouter0")
    with open(paths.default_config_file) as fh:
        assert fh.read() == "existing\n"


def test_prepare_config_fails_without_tmp_dir(tmp_path):
    paths = make_paths(tmp_path, tmp_config_file=str(tmp_path / "missing" / "client-tmp.conf"))
    with pytest.raises(DhcpClientError):
        prepare_config(DhcpParams("erouter0"), [], [], paths)


def test_start_dibbler_runs_client(tmp_path):
    out = tmp_path / "args.txt"
    script = tmp_path / "dibbler-client"
    script.write_text(f'#!/bin/sh\necho "$@" > {out}\n')
    script.chmod(0o755)
    paths = make_paths(tmp_path, client_path=str(script))
    make_proc(tmp_path / "proc", 4242, "dibbler-client")

    pid = start_dibbler(DhcpParams("erouter0"), [DhcpOption(DHCPV6_OPT_23)], [], paths)

    assert pid == 4242
    config_path = paths.dft_path + "erouter0"
    assert out.read_text().strip() == f"start -w {config_path}"
    assert os.path.exists(os.path.join(config_path, "client.conf"))


def test_start_dibbler_requires_params():
    with pytest.raises(ValueError):
        start_dibbler(None)


def test_stop_dibbler_requires_ifname():
    with pytest.raises(ValueError):
        stop_dibbler(DhcpParams(None))


def test_stop_dibbler_without_running_client(tmp_path):
    paths = make_paths(tmp_path)
    (tmp_path / "proc").mkdir()
    with pytest.raises(DhcpClientError):
        stop_dibbler(DhcpParams("erouter0"), paths)


def test_stop_dibbler_signals_and_times_out(tmp_path):
    paths = make_paths(tmp_path, terminate_timeout=100, terminate_interval=50)
    proc = subprocess.Popen(["sleep", "30"])
    try:
        cmdline = b"dibbler-client\0start\0-w\0" + (paths.dft_path + "erouter0").encode() + b"\0"
        make_proc(tmp_path / "proc", proc.pid, "dibbler-client", cmdline=cmdline)
        with pytest.raises(DhcpClientError):
            stop_dibbler(DhcpParams("erouter0"), paths)
        assert proc.wait(timeout=5) == -signal.SIGTERM
    finally:
        if proc.poll() is None:
            proc.kill()
            proc.wait()


def test_default_paths_follow_source_layout():
    paths = DibblerPaths()
    assert paths.client_path == "/usr/sbin/dibbler-client"
    assert paths.tmp_config_file == "/tmp/dibbler/client-tmp.conf"
    assert dibbler.DIBBLER_CLIENT_TERMINATE_TIMEOUT_MS == paths.terminate_timeout