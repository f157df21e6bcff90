"""Tests for request assembly: item application, method inference, finalize."""

import io
import json
from urllib.parse import parse_qsl, urlsplit

import pytest

from reqline.items import parse_items
from reqline.request import (
    AssemblyError,
    FileReadError,
    FormModeRequiredError,
    InvalidJsonError,
    JsonModeRequiredError,
    RawJson,
    RequestOptions,
    StdinConflictError,
    StringValue,
    build_request,
    build_state,
    canonical_header_key,
    encode_json_object,
    finalize,
    infer_method,
    merge_query,
    normalize_url,
)

JSON = RequestOptions(json=True)
FORM = RequestOptions(form=True)
PLAIN = RequestOptions()


def _build(tokens, options=PLAIN, method=None, url="http://foo.com", stdin=None):
    return build_request(parse_items(tokens), options, method, url, stdin)


# ── Headers, query and JSON ──────────────────────────────────────────────


class TestJsonAssembly:
    def test_headers_query_and_json_values(self):
        req = _build(
            [
                "h1:hval1",
                "h2:hval2",
                "u1==uval1",
                "u2==uval2.1",
                "u2==uval2.2",
                "j1=123",
                "j2:=123",
                "j3=",
                "j4:=[1,2,3]",
            ],
            JSON,
        )
        assert req.method == "POST"
        assert req.headers["H1"] == ["hval1"]
        assert req.headers["H2"] == ["hval2"]
        assert req.headers["Content-Type"] == ["application/json"]
        assert req.url == "http://foo.com?u1=uval1&u2=uval2.1&u2=uval2.2"
        assert json.loads(req.body) == {"j1": "123", "j2": 123, "j3": "", "j4": [1, 2, 3]}

    def test_string_values_always_quoted(self):
        req = _build(["j1=123"], JSON)
        assert req.body == b'{"j1":"123"}'

    def test_raw_json_emitted_verbatim(self):
        req = _build(["a:=[1, 2,  3]", "b:=true"], JSON)
        assert req.body == b'{"a":[1, 2,  3],"b":true}'

    def test_later_json_key_replaces_earlier(self):
        req = _build(["a=1", "a:=2"], JSON)
        assert req.body == b'{"a":2}'

    def test_explicit_content_type_kept(self):
        req = _build(["h1:hval1", "Content-Type:application/foobar", "j1=123"], JSON)
        assert req.headers["Content-Type"] == ["application/foobar"]
        assert req.body == b'{"j1":"123"}'

    def test_lowercase_content_type_item_kept(self):
        req = _build(["content-type:text/plain", "j1=1"], JSON)
        assert req.headers["Content-Type"] == ["text/plain"]

    def test_json_mode_without_fields_sets_content_type(self):
        req = _build([], JSON)
        assert req.method == "GET"
        assert req.header("Content-Type") == "application/json"
        assert req.body == b""

    def test_json_value_requires_json_mode(self):
        with pytest.raises(JsonModeRequiredError, match="'j2'"):
            _build(["j2:=123"])

    @pytest.mark.parametrize("literal", ["{", "tru", "NaN", "Infinity", "1 2", ""])
    def test_invalid_json_literal(self, literal):
        with pytest.raises(InvalidJsonError, match="invalid JSON in key 'k'"):
            _build([f"k:={literal}"], JSON)


class TestHeaders:
    def test_multi_valued_headers_keep_order(self):
        req = _build(["X-Thing:a", "x-thing:b", "X-THING:c"])
        assert req.headers == {"X-Thing": ["a", "b", "c"]}

    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("h1", "H1"),
            ("content-type", "Content-Type"),
            ("X-REQUEST-ID", "X-Request-Id"),
            ("weird name", "weird name"),
        ],
    )
    def test_canonical_header_key(self, name, expected):
        assert canonical_header_key(name) == expected

    def test_value_whitespace_trimmed(self):
        req = _build(["Accept: application/json", "X-Tab:\tv1 \t"])
        assert req.headers["Accept"] == ["application/json"]
        assert req.headers["X-Tab"] == ["v1"]

    def test_inner_whitespace_kept(self):
        req = _build(["X-Note:  a  b "])
        assert req.headers["X-Note"] == ["a  b"]

    def test_header_items_do_not_change_method(self):
        assert _build(["h:v", "q==v"]).method == "GET"


# ── Form encoding ────────────────────────────────────────────────────────


class TestFormAssembly:
    def test_form_values_in_insertion_order(self):
        req = _build(["j1=123", "j2=", "j2=another"])
        assert req.method == "POST"
        assert req.body == b"j1=123&j2=&j2=another"
        assert req.headers["Content-Type"] == ["application/x-www-form-urlencoded"]

    def test_form_values_are_escaped(self):
        req = _build(["q=a b&c"])
        assert req.body == b"q=a+b%26c"

    def test_explicit_method_overrides_post(self):
        req = _build(["j1=123"], method="put")
        assert req.method == "PUT"
        assert req.body == b"j1=123"

    def test_form_file_upload(self, tmp_path):
        upload = tmp_path / "notes.txt"
        upload.write_bytes(b"hello file")
        req = _build(["title=Notes", f"doc@{upload}"], FORM)
        ctype = req.header("Content-Type")
        assert ctype.startswith("multipart/form-data; boundary=")
        assert b'name="title"' in req.body
        assert b'name="doc"; filename="notes.txt"' in req.body
        assert b"Content-Type: text/plain" in req.body
        assert b"hello file" in req.body

    def test_form_file_requires_form_mode(self, tmp_path):
        upload = tmp_path / "a.bin"
        upload.write_bytes(b"x")
        with pytest.raises(FormModeRequiredError, match="'doc'"):
            _build([f"doc@{upload}"])

    def test_json_and_form_modes_exclusive(self):
        with pytest.raises(AssemblyError, match="mutually exclusive"):
            _build(["a=1"], RequestOptions(json=True, form=True))


# ── File-backed items ────────────────────────────────────────────────────


class TestFileValues:
    @pytest.fixture
    def json_file(self, tmp_path):
        f = tmp_path / "value.json"
        f.write_text('{"x":true}')
        return f

    def test_form_value_from_file(self, json_file):
        req = _build([f"j1=@{json_file}"])
        assert parse_qsl(req.body.decode()) == [("j1", '{"x":true}')]

    def test_json_values_from_file(self, json_file):
        state = build_state(
            parse_items([f"u1=@{json_file}", f"u2:=@{json_file}"]),
            JSON,
            None,
            "http://foo.com",
        )
        assert state.method == "POST"
        assert state.json_fields == {
            "u1": StringValue('{"x":true}'),
            "u2": RawJson('{"x":true}'),
        }

    def test_binary_file_form_value(self, tmp_path):
        blob = tmp_path / "blob.bin"
        blob.write_bytes(b"\xff\xfe\x00a")
        req = _build([f"k=@{blob}"])
        assert req.body == b"k=%FF%FE%00a"

    def test_binary_file_json_value(self, tmp_path):
        blob = tmp_path / "blob.bin"
        blob.write_bytes(b"\xff\xfe\x00a")
        req = _build([f"k=@{blob}"], JSON)
        assert req.body == b'{"k":"\xff\xfe\\u0000a"}'

    def test_binary_file_multipart_value(self, tmp_path):
        blob = tmp_path / "blob.bin"
        blob.write_bytes(b"\xff\xfe")
        req = _build([f"k=@{blob}", f"doc@{blob}"], FORM)
        assert req.body.count(b"\xff\xfe") == 2

    def test_crlf_preserved(self, tmp_path):
        crlf = tmp_path / "crlf.txt"
        crlf.write_bytes(b"a\r\nb")
        assert _build([f"k=@{crlf}"], JSON).body == b'{"k":"a\\r\\nb"}'
        assert _build([f"k=@{crlf}"]).body == b"k=a%0D%0Ab"

    def test_json_file_with_crlf_kept_verbatim(self, tmp_path):
        doc = tmp_path / "doc.json"
        doc.write_bytes(b'{\r\n"x": 1.50\r\n}')
        req = _build([f"pkg:=@{doc}"], JSON)
        assert req.body == b'{"pkg":{\r\n"x": 1.50\r\n}}'

    def test_missing_file(self, tmp_path):
        missing = tmp_path / "nope.txt"
        with pytest.raises(FileReadError, match="'essay'"):
            _build([f"essay=@{missing}"])

    def test_json_file_requires_json_mode_before_reading(self, tmp_path):
        with pytest.raises(JsonModeRequiredError):
            _build([f"pkg:=@{tmp_path / 'missing.json'}"])

    def test_invalid_json_file(self, tmp_path):
        bad = tmp_path / "bad.json"
        bad.write_text("{nope")
        with pytest.raises(InvalidJsonError):
            _build([f"pkg:=@{bad}"], JSON)


# ── Method inference ─────────────────────────────────────────────────────


class TestInferMethod:
    def test_no_items_is_get(self):
        assert infer_method(None, []) == "GET"

    def test_data_item_is_post(self):
        assert infer_method(None, parse_items(["h:v", "d=1"])) == "POST"

    def test_explicit_method_uppercased(self):
        assert infer_method("GeT", parse_items(["d=1"])) == "GET"


# ── Query merging ────────────────────────────────────────────────────────


class TestMergeQuery:
    def test_existing_params_preserved_first(self):
        url = merge_query("http://foo.com/foo?z=zval", {"x": ["xval1", "xval2"], "y": ["yval"]})
        assert urlsplit(url).query == "z=zval&x=xval1&x=xval2&y=yval"
        assert urlsplit(url).path == "/foo"

    def test_no_params_leaves_url_untouched(self):
        assert merge_query("http://foo.com/a?b=%20", {}) == "http://foo.com/a?b=%20"

    def test_params_encoded(self):
        url = merge_query("http://foo.com/", {"q": ["a b"]})
        assert url == "http://foo.com/?q=a+b"


# ── Stdin body ───────────────────────────────────────────────────────────


class TestStdinBody:
    def test_stdin_body_for_post(self):
        req = _build([], RequestOptions(stdin=True), method="POST", stdin=io.BytesIO(b"raw body"))
        assert req.body == b"raw body"
        assert req.header("Content-Type") is None

    def test_stdin_ignored_for_get(self):
        req = _build([], RequestOptions(stdin=True), stdin=io.BytesIO(b"raw body"))
        assert req.method == "GET"
        assert req.body == b""

    def test_stdin_with_json_mode(self):
        opts = RequestOptions(json=True, stdin=True)
        req = _build([], opts, method="PUT", stdin=io.BytesIO(b'{"a":1}'))
        assert req.body == b'{"a":1}'
        assert req.header("Content-Type") == "application/json"

    def test_stdin_and_data_items_conflict(self, tmp_path):
        """Rejected before any item is applied, so no file is read."""
        with pytest.raises(StdinConflictError, match="stdin"):
            _build([f"a=@{tmp_path / 'missing'}"], RequestOptions(stdin=True))

    def test_stdin_with_header_items_allowed(self):
        req = _build(["X-A:1"], RequestOptions(stdin=True), method="POST", stdin=io.BytesIO(b"x"))
        assert req.body == b"x"
        assert req.headers["X-A"] == ["1"]


# ── Finalize ─────────────────────────────────────────────────────────────


class TestFinalize:
    def test_empty_request(self):
        req = _build([])
        assert req.method == "GET"
        assert req.body == b""
        assert req.headers == {}

    def test_default_header_does_not_override_item(self):
        state = build_state(parse_items(["Accept:text/html"]), PLAIN, None, "http://foo.com")
        state.set_default_header("accept", "application/json")
        state.set_default_header("X-Extra", "1")
        req = finalize(state, PLAIN)
        assert req.headers["Accept"] == ["text/html"]
        assert req.headers["X-Extra"] == ["1"]

    def test_set_header_overrides(self):
        state = build_state(parse_items(["Authorization:x"]), PLAIN, None, "http://foo.com")
        state.set_header("authorization", "Basic abc")
        assert finalize(state, PLAIN).headers["Authorization"] == ["Basic abc"]

    def test_encode_json_object_unicode(self):
        body = encode_json_object({"name": StringValue("café"), "n": RawJson("1")})
        assert body == '{"name":"café","n":1}'


# ── URL normalisation ────────────────────────────────────────────────────


class TestNormalizeUrl:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("http://foo.com/", "http://foo.com/"),
            ("https://foo.com/x?y=1", "https://foo.com/x?y=1"),
            ("foo.com", "http://foo.com"),
            (":8080/foo", "http://localhost:8080/foo"),
            (":/foo", "http://localhost/foo"),
            (":foo", "http://localhost:foo"),
            ("/foo", "http://localhost/foo"),
        ],
    )
    def test_normalize(self, raw, expected):
        assert normalize_url(raw) == expected

    def test_base_url_for_paths(self):
        assert normalize_url("/api/users", "http://api.test/") == "http://api.test/api/users"

    def test_base_url_ignored_for_absolute(self):
        assert normalize_url("http://other.test/x", "http://api.test") == "http://other.test/x"
