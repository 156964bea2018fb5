import base64
import json

import msgpack
import pytest

from gwtools import multipart
from gwtools.multipart import (
    BOUNDARY_CHARSET,
    Subdoc,
    generate_boundary,
    generate_multipart_buffer,
    main,
    parse_subdoc_arguments,
    process_packing,
    split_doc_name,
    split_param_name,
    subdoc_buffer,
)


@pytest.fixture
def redirect_outputs(tmp_path, monkeypatch):
    monkeypatch.setattr(multipart, "OUTFILE", str(tmp_path / "root.bin"))
    monkeypatch.setattr(multipart, "B64OUTFILE", str(tmp_path / "b64.bin"))
    monkeypatch.setattr(multipart, "MULTIPART_DOC", str(tmp_path / "multipart.bin"))
    return tmp_path


def _write_json(path, value):
    path.write_text(json.dumps(value))
    return str(path)


def test_split_param_name():
    assert split_param_name("a.json:Device.X") == ("a.json", "Device.X")
    assert split_param_name("a.json") == ("a.json", None)
    assert split_param_name("::a::b") == ("a", "b")


def test_split_doc_name():
    assert split_doc_name("doc:wrap:root") == ("doc", "wrap", "root")
    assert split_doc_name("doc") == ("doc", None, None)


def test_generate_boundary_length_and_charset():
    boundary = generate_boundary(50)
    assert len(boundary) == 49
    assert set(boundary) <= set(BOUNDARY_CHARSET)
    assert generate_boundary(1) == ""


def test_subdoc_buffer_layout():
    data = b"\x81\xa1a\x01"
    buf = subdoc_buffer(Subdoc(name="wan", version="123", data=data))
    assert buf == (
        b"Content-type: application/msgpack\r\n"
        b"Etag: 123\r\n"
        b"Namespace: wan\r\n"
        b"\r\n" + data + b"\r\n"
    )


def test_generate_multipart_buffer_structure():
    docs = [Subdoc("a", "1", b"\x80"), Subdoc("b", "2", b"\x90")]
    buf = generate_multipart_buffer("7", docs, boundary="XYZ")
    assert buf.startswith(
        b"HTTP 200 OK\r\nContent-type: multipart/mixed; boundary=XYZ\r\nEtag: 7\r\n\n"
    )
    assert buf.endswith(b"--XYZ--\r\n")
    for doc in docs:
        assert b"--XYZ\r\n" + subdoc_buffer(doc) in buf
    assert buf.count(b"--XYZ\r\n") == 2


def test_generate_multipart_buffer_random_boundary():
    buf = generate_multipart_buffer("1", [])
    header = buf.split(b"\r\n")[1]
    boundary = header.split(b"boundary=")[1].decode()
    assert len(boundary) == 49
    assert buf.endswith(f"--{boundary}--\r\n".encode())


def test_parse_plain_json(tmp_path):
    path = _write_json(tmp_path / "doc.json", {"a": 1, "b": "x"})
    (subdoc,) = parse_subdoc_arguments([f"1,portforwarding,{path}"])
    assert subdoc.name == "portforwarding"
    assert subdoc.version == "1"
    assert msgpack.unpackb(subdoc.data) == {"a": 1, "b": "x"}
    assert (tmp_path / "doc.bin").read_bytes() == subdoc.data
    assert subdoc.length == len(subdoc.data)


def test_parse_blob_json(tmp_path):
    path = _write_json(tmp_path / "blob.json", {"value": json.dumps({"x": True})})
    (subdoc,) = parse_subdoc_arguments([f"2,doc,{path},blob"])
    outer = msgpack.unpackb(subdoc.data, raw=True)
    assert msgpack.unpackb(outer[b"value"]) == {"x": True}


def test_parse_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        parse_subdoc_arguments([f"1,doc,{tmp_path / 'missing.json'}"])


def test_parse_too_few_fields():
    with pytest.raises(ValueError):
        parse_subdoc_arguments(["1,doc"])


def test_process_packing_writes_outputs(tmp_path):
    f1 = tmp_path / "one.txt"
    f2 = tmp_path / "two.txt"
    f1.write_bytes(b"first")
    f2.write_bytes(b"second")
    b64_out = tmp_path / "b64.bin"
    out_file = tmp_path / "root.bin"
    root = process_packing(f"{f1}:P1", f"{f2}:P2", 5, "wifi", "wrap", "root",
                           str(b64_out), str(out_file))
    assert out_file.read_bytes() == root

    top = msgpack.unpackb(root, raw=True)
    (param,) = top[b"parameters"]
    assert param[b"name"] == b"root"
    assert param[b"dataType"] == 12
    inner = msgpack.unpackb(param[b"value"])
    assert inner == {"wrap": [{"Name": "P1", "Value": "first"},
                              {"Name": "P2", "Value": "second"}]}

    meta = msgpack.unpackb(base64.b64decode(b64_out.read_bytes()), raw=True)
    assert meta[b"subdoc_name"] == b"wifi"
    assert meta[b"version"] == 5
    assert 0 <= meta[b"transaction_id"] <= 0xFFFF
    assert meta[b"wrap"] == inner["wrap"] or len(meta) == 4


def test_process_packing_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        process_packing(f"{tmp_path / 'no'}:P", f"{tmp_path / 'no2'}:Q", 1, "d", "w", "r",
                        str(tmp_path / "a"), str(tmp_path / "b"))


def test_parse_two_files(redirect_outputs):
    tmp_path = redirect_outputs
    f1 = tmp_path / "gre.txt"
    f2 = tmp_path / "vap.txt"
    f1.write_bytes(b"aaa")
    f2.write_bytes(b"bbb")
    (subdoc,) = parse_subdoc_arguments([f"3,wifi:wrap:root,{f1}:P1,{f2}:P2"])
    assert subdoc.name == "wifi"
    assert subdoc.version == "3"
    assert subdoc.data == (tmp_path / "root.bin").read_bytes()
    top = msgpack.unpackb(subdoc.data, raw=True)
    assert top[b"parameters"][0][b"name"] == b"root"


def test_main_writes_document(redirect_outputs):
    tmp_path = redirect_outputs
    path = _write_json(tmp_path / "doc.json", {"k": 1})
    assert main(["9", f"1,doc,{path}"]) == 0
    out = (tmp_path / "multipart.bin").read_bytes()
    assert out.startswith(b"HTTP 200 OK\r\n")
    assert b"Namespace: doc\r\n" in out
    assert b"Etag: 9\r\n" in out


def test_main_without_arguments():
    assert main([]) == 1