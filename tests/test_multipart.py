import pytest

from filedrop.multipart import (
    MultipartError,
    get_boundary,
    parse_header_params,
    parse_multipart,
)


def test_fields_and_file(multipart):
    body, ctype = multipart(
        fields={"password": "hunter2"},
        files={"uploadfile": ("notes.txt", b"hello\r\nworld")},
    )
    form = parse_multipart(ctype, body)
    assert form.fields == {"password": "hunter2"}
    uploaded = form.files["uploadfile"]
    assert uploaded.filename == "notes.txt"
    assert uploaded.data == b"hello\r\nworld"
    assert uploaded.content_type == "application/octet-stream"


def test_binary_payload_kept_byte_exact(multipart):
    payload = bytes(range(256)) * 64 + b"\r\n--not-the-boundary\r\n"
    body, ctype = multipart(files={"uploadfile": ("blob.bin", payload)})
    assert parse_multipart(ctype, body).files["uploadfile"].data == payload


def test_empty_file(multipart):
    body, ctype = multipart(files={"uploadfile": ("empty.txt", b"")})
    assert parse_multipart(ctype, body).files["uploadfile"].data == b""


def test_quoted_boundary_and_preamble():
    body = (
        b"preamble\r\n"
        b"--xyz\r\n"
        b'Content-Disposition: form-data; name="a"\r\n\r\n'
        b"1\r\n"
        b"--xyz--\r\n"
    )
    form = parse_multipart('multipart/form-data; boundary="xyz"', body)
    assert form.fields == {"a": "1"}


def test_first_value_wins():
    body = (
        b"--b\r\n"
        b'Content-Disposition: form-data; name="password"\r\n\r\n'
        b"first\r\n"
        b"--b\r\n"
        b'Content-Disposition: form-data; name="password"\r\n\r\n'
        b"second\r\n"
        b"--b--\r\n"
    )
    assert parse_multipart("multipart/form-data; boundary=b", body).fields == {
        "password": "first"
    }


def test_filename_with_semicolon():
    body = (
        b"--b\r\n"
        b'Content-Disposition: form-data; name="uploadfile"; filename="a;b.txt"\r\n\r\n'
        b"x\r\n"
        b"--b--\r\n"
    )
    form = parse_multipart("multipart/form-data; boundary=b", body)
    assert form.files["uploadfile"].filename == "a;b.txt"


@pytest.mark.parametrize(
    "content_type",
    [None, "", "application/x-www-form-urlencoded", "multipart/form-data"],
)
def test_bad_content_type(content_type):
    with pytest.raises(MultipartError):
        get_boundary(content_type)


@pytest.mark.parametrize(
    "body",
    [
        b"",
        b"no boundary here",
        b'--b\r\nContent-Disposition: form-data; name="a"\r\n\r\nunterminated',
        b"--b\r\nnot a header line\r\n\r\nx\r\n--b--\r\n",
    ],
)
def test_malformed_bodies(body):
    with pytest.raises(MultipartError):
        parse_multipart("multipart/form-data; boundary=b", body)


def test_header_params():
    main, params = parse_header_params('form-data; name="f"; filename="x \\"y\\".txt"')
    assert main == "form-data"
    assert params == {"name": "f", "filename": 'x "y".txt'}
