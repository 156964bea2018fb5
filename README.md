# gwtools

Helpers for a Linux home gateway: starting and stopping DHCP clients
(udhcpc, dibbler-client, ti_udhcpc, ti_dhcp6c), writing the
parental-control device block list, and building multipart webconfig
documents out of JSON and binary files.

## Installation

```
pip install .
```

Tests need the `test` extra:

```
pip install ".[test]"
pytest
```

## Commands

### `parcon`

Writes the list of blocked devices to `/tmp/.pcmd`, holding an exclusive
lock on the file while it writes, then runs `sysevent set firewall-restart`.

```
parcon 02:00:00:00:00:01 02:00:00:00:00:02
```

The first line of the list file is the number of addresses given; each
address with colons in the places a MAC address has them follows on its own
line. Anything else is reported in `/rdklogs/logs/Parcon.txt` and left out.
Entry, exit and a timestamp are also appended to that log. Run with no
arguments to clear the list.

### `multipart-root`

Builds a multipart webconfig document and writes it to
`/nvram/multipart.bin`.

```
multipart-root <root-version> <subdoc> [<subdoc> ...]
```

Each subdoc argument is a comma separated spec:

- `version,name,file.json` — the JSON file is packed to msgpack and written
  beside it as `file.bin`; that becomes the part's body;
- `version,name,file.json,blob` — the same, with the first string named
  `value` parsed as JSON and packed as an embedded msgpack string;
- `version,doc:wrapper:rootparam,file1:param1,file2:param2` — the two files
  are packed as a list of `Name`/`Value` maps under `wrapper` and wrapped in a
  root document whose single parameter is `rootparam`. The root document is
  written to `/tmp/testUtilityTemp.bin` and used as the part's body; the
  wrapped list, with `subdoc_name`, `version` and a random `transaction_id`
  appended to its map, is written base64 encoded to `/tmp/b64output.bin`.

Each part carries `Content-type: application/msgpack`, `Etag: <version>` and
`Namespace: <name>` headers, and the parts are separated by a random
boundary. With no arguments the command prints a usage line and exits
with status 1.

## Library use

### DHCP clients

`gwtools.procutil` holds the shared pieces: `DhcpParams` (interface name,
base interface, `IfaceType`, whether a release is wanted), `DhcpOption`
(option code and optional value), `add_dhcp_opt_to_list`, and process
helpers — `start_exe`, `get_process_pid` (searches `/proc`, optionally
retrying for five seconds), `signal_process`, `collect_waiting_process`,
`parse_args`, `find_strstr` and `create_dir_path`.

```python
from gwtools.procutil import DhcpOption, DhcpParams, IfaceType
from gwtools.udhcpc import RunMode, UdhcpcConfig, build_udhcpc_args, start_udhcpc, stop_udhcpc

params = DhcpParams(ifname="erouter0", base_iface="eth0", if_type=IfaceType.WAN_LOCAL_IFACE)
req = [DhcpOption(42), DhcpOption(2)]
send = [DhcpOption(60, "vendor")]

print(build_udhcpc_args(params, req, send, UdhcpcConfig(run_mode=RunMode.BACKGROUND)))
pid = start_udhcpc(params, req, send, UdhcpcConfig(run_mode=RunMode.BACKGROUND))
```

- `gwtools.udhcpc` — `build_req_options`, `build_send_options`,
  `build_other_args`, `build_udhcpc_args`, `start_udhcpc`, `stop_udhcpc`.
  `UdhcpcConfig` chooses the run mode, the service script, whether release
  is sent on exit, and the timeouts.
- `gwtools.dibbler` — `render_config` returns the dibbler-client
  configuration text without touching the file system; `prepare_config`
  writes it; `start_dibbler` and `stop_dibbler` run and stop the client.
  `DibblerPaths` sets the file locations and timings; `encode_option15`
  gives the hex form of a user-class value.
- `gwtools.ti_clients` — `ti_udhcpc_args`, `ti_dhcp6c_args`,
  `start_ti_udhcpc`, `stop_ti_udhcpc`, `start_ti_dhcp6c`, `stop_ti_dhcp6c`.

Missing arguments raise `ValueError`; a client that cannot be started,
found, signalled or collected raises `DhcpClientError`.

### Encoding

`gwtools.encoding` packs JSON as msgpack maps (`pack_json`,
`convert_json_to_msgpack`, `convert_json_to_blob`, `decode_blob`,
`process_encoding`). Numbers are packed as integers clamped to the 32-bit
signed range. It also packs webconfig documents: `DataItem`, `pack_doc`,
`pack_rootdoc`, `pack_appenddoc`, `append_encoded_data`, `append_wifi_doc`
and `generate_random_id`.

`gwtools.multipart` assembles the multipart response: `Subdoc`,
`split_param_name`, `split_doc_name`, `process_packing`,
`parse_subdoc_arguments`, `generate_boundary`, `subdoc_buffer` and
`generate_multipart_buffer`.

## What it does not do

The DHCP helpers start and stop one given client; they do not choose which
client to run, nor collect DHCP options from the platform, the gateway's
configuration store or its event bus. The caller supplies the option lists
and the configuration choices.