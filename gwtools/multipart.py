"""Build a multipart webconfig document from JSON and blob files.

Each subdoc argument has the form ``version,name,file[,blob|file2]``. A plain
JSON file is packed as msgpack. With ``blob`` its first ``value`` string is
packed as an embedded document. With a second file the two files are wrapped
as a parameter list inside a root document, and ``name`` is then
``docname:wrapper:rootparam`` while each file is given as ``path:param``.
"""

from __future__ import annotations

import random
import re
import string
import sys
from dataclasses import dataclass
from pathlib import Path

from gwtools.encoding import (
    DataItem,
    append_wifi_doc,
    generate_random_id,
    pack_doc,
    pack_rootdoc,
    process_encoding,
)

MULTIPART_DOC = "/nvram/multipart.bin"
OUTFILE = "/tmp/testUtilityTemp.bin"
B64OUTFILE = "/tmp/b64output.bin"

BOUNDARY_SIZE = 50
BOUNDARY_CHARSET = string.digits + "+" + string.ascii_uppercase + string.ascii_lowercase

_OUTFILE_SIZE = 128
_STRTOUL_RE = re.compile(r"\s*([-+]?)(0[xX][0-9a-fA-F]+|0[0-7]*|[1-9][0-9]*)")


@dataclass
class Subdoc:
    """One part of the multipart document."""

    name: str
    version: str
    data: bytes = b""

    @property
    def length(self):
        return len(self.data)


def _fields(text):
    return [part for part in text.split(":") if part]


def split_param_name(text):
    """Split ``file:param`` into ``(file, param)``; missing parts are None."""
    parts = _fields(text) + [None, None]
    return parts[0], parts[1]


def split_doc_name(text):
    """Split ``doc:wrapper:rootparam`` into its three parts; missing parts are None."""
    parts = _fields(text) + [None, None, None]
    return parts[0], parts[1], parts[2]


def _strtoul(text):
    match = _STRTOUL_RE.match(text)
    if match is None:
        return 0
    sign, digits = match.groups()
    value = int(digits, 0) if not digits.startswith("0") or len(digits) == 1 or digits[1] in "xX" else int(digits, 8)
    if sign == "-":
        value = -value
    return value & 0xFFFFFFFF


def _bin_name(filename):
    stem = filename.lstrip(".").split(".", 1)[0]
    return f"{stem}.bin"[: _OUTFILE_SIZE - 1]


def process_packing(spec1, spec2, version, subdoc_name, wrapper_name, root_param_name,
                    b64_out=None, out_file=None):
    """Pack two ``path:param`` files into a root document and write it to ``out_file``.

    The wrapped parameter list, with subdoc metadata appended, is written base64
    encoded to ``b64_out``. Returns the root document bytes.
    """
    b64_out = B64OUTFILE if b64_out is None else b64_out
    out_file = OUTFILE if out_file is None else out_file

    fname1, param1 = split_param_name(spec1)
    fname2, param2 = split_param_name(spec2)
    if fname1 is None or fname2 is None:
        raise ValueError("both file specifications need a file name")
    data1 = Path(fname1).read_bytes()
    data2 = Path(fname2).read_bytes()

    items = [DataItem(param1, data1), DataItem(param2, data2)]
    packed = pack_doc(items, wrapper_name)

    encoded = append_wifi_doc(subdoc_name, version, generate_random_id(), packed)
    Path(b64_out).write_bytes(encoded)

    root = pack_rootdoc(packed, root_param_name)
    Path(out_file).write_bytes(root)
    return root


def _parse_one(arg):
    fields = arg.split(",", 3)
    if len(fields) < 3:
        raise ValueError(f"subdoc argument needs version,name,file: {arg!r}")
    version_text, name, file1 = fields[0], fields[1], fields[2]
    extra = fields[3].split(",", 1)[0] if len(fields) > 3 else None
    version = _strtoul(version_text)

    if extra is None or extra == "blob":
        is_blob = extra == "blob"
        written = process_encoding(file1, "M", is_blob)
        out_path = written if written is not None else Path(_bin_name(file1))
        try:
            data = Path(out_path).read_bytes()
        except OSError:
            data = b""
        return Subdoc(name=name, version=version_text, data=data)

    doc_name, wrapper_name, root_param_name = split_doc_name(name)
    process_packing(file1, extra, version, doc_name, wrapper_name, root_param_name)
    try:
        data = Path(OUTFILE).read_bytes()
    except OSError:
        data = b""
    return Subdoc(name=doc_name, version=version_text, data=data)


def parse_subdoc_arguments(args):
    """Encode each ``version,name,file[,blob|file2]`` argument and return the subdocs."""
    return [_parse_one(arg) for arg in args]


def generate_boundary(length=BOUNDARY_SIZE):
    """Return a random boundary for a buffer of ``length`` bytes, terminator included."""
    return "".join(random.choice(BOUNDARY_CHARSET) for _ in range(max(length - 1, 0)))


def _header(name, value):
    return f"{name}{value}\r\n".encode()


def subdoc_buffer(subdoc):
    """Return the headers and body of one multipart part."""
    return b"".join((
        _header("Content-type: ", "application/msgpack"),
        _header("Etag: ", subdoc.version),
        _header("Namespace: ", subdoc.name),
        b"\r\n",
        bytes(subdoc.data),
        b"\r\n",
    ))


def generate_multipart_buffer(root_version, subdocs, boundary=None):
    """Return the full multipart response holding ``subdocs``."""
    if boundary is None:
        boundary = generate_boundary()
    parts = [
        b"HTTP 200 OK\r\n",
        _header("Content-type: multipart/mixed; boundary=", boundary),
        _header("Etag: ", root_version),
        b"\n",
    ]
    for subdoc in subdocs:
        parts.append(_header("--", boundary))
        parts.append(subdoc_buffer(subdoc))
    parts.append(f"--{boundary}--\r\n".encode())
    return b"".join(parts)


def main(argv=None):
    """Build the multipart document from a root version and subdoc arguments."""
    if argv is None:
        argv = sys.argv[1:]
    argv = list(argv)
    if not argv:
        print("usage: multipartRoot <root-version> <version,name,file[,blob|file2]>...",
              file=sys.stderr)
        return 1

    root_version = argv[0]
    print(f"rootVersion: {root_version}")
    print(f"subDocCount: {len(argv) - 1}")
    try:
        subdocs = parse_subdoc_arguments(argv[1:])
    except (OSError, ValueError) as exc:
        print(f"{exc}", file=sys.stderr)
        return 0

    buffer = generate_multipart_buffer(root_version, subdocs)
    print(f"Multipart buffer length is {len(buffer)}")
    try:
        Path(MULTIPART_DOC).write_bytes(buffer)
    except OSError:
        print(f"{MULTIPART_DOC} File not Found", file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())