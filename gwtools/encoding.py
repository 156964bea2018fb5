"""Encode JSON documents and webconfig blobs as msgpack and base64.

A JSON document is packed as a msgpack map the way the gateway's webconfig
tools expect: numbers are packed as 32-bit integers, and in blob mode the
first string named ``value`` holds a JSON document that is itself packed and
embedded as a msgpack string.
"""

from __future__ import annotations

import base64
import json
import logging
import os
import struct
from dataclasses import dataclass
from pathlib import Path

import msgpack

log = logging.getLogger(__name__)

WIFI_METADATA_MAP_SIZE = 3
ROOT_DATA_TYPE = 12
INT_MAX = 2**31 - 1
INT_MIN = -(2**31)

_OUTFILE_SIZE = 128
_FIXMAP_MAX = 15
_PACKER = msgpack.Packer()


@dataclass
class DataItem:
    """A named parameter value to be packed into a webconfig document."""

    name: str | None
    value: bytes | str | None
    type: int = ROOT_DATA_TYPE


class _JsonObject(list):
    """Key/value pairs of a JSON object in document order, duplicates kept."""


def _reject_constant(name):
    raise ValueError(f"invalid JSON constant {name}")


_DECODER = json.JSONDecoder(object_pairs_hook=_JsonObject, parse_constant=_reject_constant)


def _parse(text):
    if isinstance(text, (bytes, bytearray)):
        text = bytes(text).decode("utf-8", "surrogateescape")
    try:
        value, _end = _DECODER.raw_decode(text.lstrip())
    except ValueError as exc:
        raise ValueError(f"Failed to parse JSON: {exc}") from exc
    return value


def _as_bytes(data):
    if isinstance(data, str):
        return data.encode("utf-8", "surrogateescape")
    return bytes(data)


def _pack_str(out, data):
    body = _as_bytes(data)
    size = len(body)
    if size < 32:
        out.append(0xA0 | size)
    elif size < 0x100:
        out += bytes((0xD9, size))
    elif size < 0x10000:
        out += b"\xda" + struct.pack(">H", size)
    else:
        out += b"\xdb" + struct.pack(">I", size)
    out += body


def _to_int(number):
    if number >= INT_MAX:
        return INT_MAX
    if number <= INT_MIN:
        return INT_MIN
    return int(number)


def _pairs(obj):
    return obj.items() if isinstance(obj, dict) else obj


class _Encoder:
    def __init__(self, is_blob, blob_used=False):
        self.is_blob = is_blob
        self.blob_used = blob_used
        self.out = bytearray()

    def _key(self, key):
        if key is not None:
            _pack_str(self.out, key)

    def value(self, key, value):
        if isinstance(value, (dict, _JsonObject)):
            self.object(key, value)
        elif isinstance(value, bool) or value is None:
            self._key(key)
            self.out += msgpack.packb(value)
        elif isinstance(value, str):
            if key == "value" and self.is_blob and not self.blob_used:
                self.blob_used = True
                self._blob(key, value)
            else:
                self._key(key)
                _pack_str(self.out, value)
        elif isinstance(value, (int, float)):
            self._key(key)
            self.out += msgpack.packb(_to_int(value))
        elif isinstance(value, (list, tuple)):
            self._key(key)
            self.out += _PACKER.pack_array_header(len(value))
            for item in value:
                self.value(None, item)
        else:
            raise TypeError(f"cannot pack {type(value).__name__}")

    def object(self, key, obj):
        self._key(key)
        if isinstance(obj, (dict, _JsonObject)):
            pairs = list(_pairs(obj))
            self.out += _PACKER.pack_map_header(len(pairs))
            for child_key, child in pairs:
                self.value(child_key, child)
        elif isinstance(obj, (list, tuple)):
            # A non-object root is walked child by child, as the packer does.
            self.out += _PACKER.pack_map_header(len(obj))
            for child in obj:
                self.value(None, child)
        else:
            self.out += _PACKER.pack_map_header(0)

    def _blob(self, key, text):
        inner = b""
        if text:
            try:
                inner = _Encoder(self.is_blob, blob_used=True).document(_parse(text))
            except ValueError:
                log.info("Failed to parse JSON")
        _pack_str(self.out, key)
        _pack_str(self.out, inner)

    def document(self, value):
        self.object(None, value)
        return bytes(self.out)


def pack_json(value, is_blob=False):
    """Pack a parsed JSON document as a msgpack map."""
    return _Encoder(is_blob).document(value)


def convert_json_to_msgpack(text, is_blob=False):
    """Parse JSON ``text`` and return it packed as msgpack."""
    return pack_json(_parse(text), is_blob)


def convert_json_to_blob(text, is_blob=False):
    """Parse JSON ``text``, pack it as msgpack and return it base64 encoded."""
    packed = convert_json_to_msgpack(text, is_blob)
    return base64.b64encode(packed)


def decode_blob(blob):
    """Return the msgpack bytes held in a base64 ``blob``."""
    return base64.b64decode(blob, validate=True)


def _output_name(filename):
    stem = filename.lstrip(".").split(".", 1)[0]
    if not stem:
        raise ValueError(f"cannot derive an output name from {filename!r}")
    return f"{stem}.bin"[: _OUTFILE_SIZE - 1]


def process_encoding(filename, encoding, is_blob=False):
    """Encode the JSON file ``filename`` and write it next to it as ``<stem>.bin``.

    ``encoding`` is ``"M"`` for msgpack or ``"B"`` for base64 of msgpack.
    Returns the path written, or None if nothing could be encoded.
    """
    data = Path(filename).read_bytes()
    if encoding == "B":
        convert = convert_json_to_blob
    elif encoding == "M":
        convert = convert_json_to_msgpack
    else:
        return None
    try:
        encoded = convert(data, is_blob)
    except ValueError as exc:
        log.info("%s", exc)
        return None
    out_path = Path(_output_name(str(filename)))
    log.info("Encoding is success. Hence writing encoded data to %s", out_path)
    out_path.write_bytes(encoded)
    return out_path


def generate_random_id():
    """Return a random 16-bit transaction id."""
    return int.from_bytes(os.urandom(2), "little")


def pack_appenddoc(subdoc_name, version, transaction_id):
    """Pack the subdoc name, version and transaction id as bare key/value pairs."""
    out = bytearray()
    if subdoc_name is not None:
        _pack_str(out, "subdoc_name")
        _pack_str(out, subdoc_name)
    _pack_str(out, "version")
    out += msgpack.packb(version & 0xFFFFFFFF)
    _pack_str(out, "transaction_id")
    out += msgpack.packb(transaction_id & 0xFFFF)
    return bytes(out)


def append_encoded_data(encoded, metadata):
    """Append ``metadata`` pairs to the fixmap ``encoded`` and grow its size by three."""
    buf = bytearray(encoded) + bytes(metadata)
    if not buf:
        raise ValueError("nothing to append to")
    if buf[0] % 0x10 == _FIXMAP_MAX:
        raise ValueError("Msgpack Map (fixmap) is already at its MAX size i.e. 15")
    buf[0] = (buf[0] + WIFI_METADATA_MAP_SIZE) & 0xFF
    return bytes(buf)


def append_wifi_doc(subdoc_name, version, trans_id, blob):
    """Add subdoc metadata to the packed map ``blob`` and return it base64 encoded."""
    metadata = pack_appenddoc(subdoc_name, version, trans_id)
    return base64.b64encode(append_encoded_data(blob, metadata))


def pack_doc(items, wrapper_name):
    """Pack ``items`` as a list of Name/Value maps under ``wrapper_name``."""
    items = list(items)
    if not items:
        raise ValueError("parameters is NULL")
    if wrapper_name is None:
        raise ValueError("a wrapper name is required")
    out = bytearray(_PACKER.pack_map_header(1))
    _pack_str(out, wrapper_name)
    out += _PACKER.pack_array_header(len(items))
    for item in items:
        out += _PACKER.pack_map_header(2)
        if item.name is not None:
            _pack_str(out, "Name")
            _pack_str(out, item.name)
        if item.value is not None:
            _pack_str(out, "Value")
            _pack_str(out, item.value)
    return bytes(out)


def pack_rootdoc(blob, root_param_name):
    """Pack ``blob`` as the single root parameter named ``root_param_name``."""
    if blob is None:
        raise ValueError("parameters is NULL")
    out = bytearray(_PACKER.pack_map_header(1))
    _pack_str(out, "parameters")
    out += _PACKER.pack_array_header(1)
    out += _PACKER.pack_map_header(3)
    if root_param_name is not None:
        _pack_str(out, "name")
        _pack_str(out, root_param_name)
    _pack_str(out, "value")
    _pack_str(out, blob)
    _pack_str(out, "dataType")
    out += msgpack.packb(ROOT_DATA_TYPE)
    return bytes(out)