"""reqline request - assemble request items into a single outbound request."""

import json
import mimetypes
import re
from pathlib import Path
from typing import BinaryIO, NamedTuple
from urllib.parse import urlencode, urlsplit, urlunsplit

from urllib3 import encode_multipart_formdata

from reqline.items import RequestItem, Separator

JSON_CONTENT_TYPE = "application/json"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"

# File contents are decoded with surrogateescape so arbitrary bytes survive
# the round trip back into the request body.
FILE_ERRORS = "surrogateescape"

_METHOD_RE = re.compile(r"^[A-Za-z]+$")
_HEADER_TOKEN_RE = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")


class RequestOptions(NamedTuple):
    """Body-mode switches threaded through parsing and assembly."""

    json: bool = False
    form: bool = False
    stdin: bool = False


# ── Errors ───────────────────────────────────────────────────────────────


class AssemblyError(ValueError):
    """A request item could not be applied to the request."""


class FileReadError(AssemblyError):
    def __init__(self, key: str, path: str, cause: OSError):
        self.key = key
        self.path = path
        reason = cause.strerror or str(cause)
        super().__init__(f"cannot read file {path!r} for key {key!r}: {reason}")


class JsonModeRequiredError(AssemblyError):
    def __init__(self, key: str):
        self.key = key
        super().__init__(
            f"cannot specify non-string key {key!r} unless --json is specified",
        )


class InvalidJsonError(AssemblyError):
    def __init__(self, key: str, cause: ValueError):
        self.key = key
        super().__init__(f"invalid JSON in key {key!r}: {cause}")


class FormModeRequiredError(AssemblyError):
    def __init__(self, key: str):
        self.key = key
        super().__init__(f"cannot upload file for key {key!r} unless --form is specified")


class StdinConflictError(AssemblyError):
    def __init__(self):
        super().__init__(
            "cannot read body from stdin when form or JSON body is specified",
        )


# ── JSON field values ────────────────────────────────────────────────────


class StringValue(NamedTuple):
    text: str

    def to_json(self) -> str:
        return json.dumps(self.text, ensure_ascii=False)


class RawJson(NamedTuple):
    text: str

    def to_json(self) -> str:
        return self.text


def _reject_constant(name: str):
    raise ValueError(f"{name} is not valid JSON")


def validate_json(text: str) -> None:
    """Raise ValueError unless text is a single JSON value.

    Numbers are left as text so oversized values do not fail conversion.
    """
    json.loads(text, parse_int=str, parse_float=str, parse_constant=_reject_constant)


def encode_json_object(fields: dict) -> str:
    """Serialize {key: StringValue | RawJson} as a compact JSON object."""
    members = [f"{json.dumps(k, ensure_ascii=False)}:{v.to_json()}" for k, v in fields.items()]
    return "{" + ",".join(members) + "}"


# ── Headers ──────────────────────────────────────────────────────────────


def canonical_header_key(name: str) -> str:
    """Canonical MIME header form: "content-type" -> "Content-Type".

    Names containing characters outside the HTTP token set are returned
    unchanged.
    """
    if not _HEADER_TOKEN_RE.match(name):
        return name
    return "-".join(part[:1].upper() + part[1:].lower() for part in name.split("-"))


# ── URL / method helpers ─────────────────────────────────────────────────


def is_method(s: str) -> bool:
    return bool(_METHOD_RE.match(s))


def normalize_url(raw: str, base_url: str | None = None) -> str:
    """Turn a command-line URL into an absolute http(s) URL.

    - ``/path`` with a configured base_url -> base_url + path
    - ``:3000/foo`` -> ``http://localhost:3000/foo``
    - ``:/foo`` -> ``http://localhost/foo``
    - no scheme -> ``http://`` prepended; empty host -> localhost
    """
    url = raw
    if base_url and url.startswith("/"):
        url = base_url.rstrip("/") + url
    if url.startswith(":"):
        if url.startswith(":/"):
            url = "http://localhost" + url[1:]
        else:
            url = "http://localhost" + url
    if not url.startswith(("http:", "https:")):
        url = "http://" + url
    parts = urlsplit(url)
    if not parts.netloc:
        parts = parts._replace(netloc="localhost")
    return urlunsplit(parts)


def infer_method(method: str | None, items: list[RequestItem]) -> str:
    """Explicit method wins; otherwise POST if any item sends data, else GET."""
    if method:
        return method.upper()
    if any(item.sends_data for item in items):
        return "POST"
    return "GET"


# ── Request state ────────────────────────────────────────────────────────


class RequestState:
    """Mutable accumulator for one request-building pass.

    Header values are trimmed of surrounding spaces and tabs.
    """

    def __init__(self, method: str, url: str):
        self.method = method
        self.url = url
        self.headers: dict[str, list[str]] = {}
        self.query: dict[str, list[str]] = {}
        self.form: dict[str, list[str]] = {}
        self.files: dict[str, list[tuple[str, bytes, str]]] = {}
        self.json_fields: dict[str, StringValue | RawJson] = {}

    def add_header(self, name: str, value: str) -> None:
        self.headers.setdefault(canonical_header_key(name), []).append(value.strip(" \t"))

    def set_header(self, name: str, value: str) -> None:
        self.headers[canonical_header_key(name)] = [value.strip(" \t")]

    def set_default_header(self, name: str, value: str) -> None:
        """Set a header only if no item has supplied it."""
        self.headers.setdefault(canonical_header_key(name), [value.strip(" \t")])

    def has_header(self, name: str) -> bool:
        return canonical_header_key(name) in self.headers


class OutboundRequest(NamedTuple):
    method: str
    url: str
    headers: dict[str, list[str]]
    body: bytes = b""

    def header(self, name: str) -> str | None:
        values = self.headers.get(canonical_header_key(name))
        return values[0] if values else None


# ── Item application ─────────────────────────────────────────────────────


def _read_text(key: str, path: str) -> str:
    """File contents, byte for byte, as a str (no newline translation)."""
    try:
        data = Path(path).read_bytes()
    except OSError as e:
        raise FileReadError(key, path, e) from e
    return data.decode("utf-8", FILE_ERRORS)


def _add_data_string(state, options, key, value):
    if options.json:
        state.json_fields[key] = StringValue(value)
    else:
        state.form.setdefault(key, []).append(value)


def _add_json_value(state, options, key, value):
    if not options.json:
        raise JsonModeRequiredError(key)
    try:
        validate_json(value)
    except ValueError as e:
        raise InvalidJsonError(key, e) from e
    state.json_fields[key] = RawJson(value)


def _add_form_file(state, options, key, value):
    if not options.form:
        raise FormModeRequiredError(key)
    path = Path(value)
    try:
        data = path.read_bytes()
    except OSError as e:
        raise FileReadError(key, value, e) from e
    mime = mimetypes.guess_type(str(path))[0] or "application/octet-stream"
    state.files.setdefault(key, []).append((path.name, data, mime))


def apply_item(state: RequestState, item: RequestItem, options: RequestOptions) -> None:
    """Apply one parsed request item to the request state."""
    key, sep, value = item
    if sep is Separator.HEADER:
        state.add_header(key, value)
    elif sep is Separator.QUERY:
        state.query.setdefault(key, []).append(value)
    elif sep is Separator.DATA_STRING:
        _add_data_string(state, options, key, value)
    elif sep is Separator.DATA_FILE:
        _add_data_string(state, options, key, _read_text(key, value))
    elif sep is Separator.JSON_VALUE:
        _add_json_value(state, options, key, value)
    elif sep is Separator.JSON_FILE:
        if not options.json:
            raise JsonModeRequiredError(key)
        _add_json_value(state, options, key, _read_text(key, value))
    elif sep is Separator.FORM_FILE:
        _add_form_file(state, options, key, value)
    else:
        raise AssemblyError(f"key value type separator {sep.value!r} not recognized")


def build_state(
    items: list[RequestItem],
    options: RequestOptions,
    method: str | None,
    url: str,
) -> RequestState:
    """Infer the method and apply every item, in argument order."""
    if options.json and options.form:
        raise AssemblyError("--json and --form are mutually exclusive")
    if options.stdin and any(item.sends_data for item in items):
        raise StdinConflictError()
    state = RequestState(infer_method(method, items), url)
    for item in items:
        apply_item(state, item, options)
    return state


# ── Finalize ─────────────────────────────────────────────────────────────


def _pairs(multimap: dict[str, list[str]]) -> list[tuple[str, str]]:
    return [(k, v) for k, values in multimap.items() for v in values]


def merge_query(url: str, query: dict[str, list[str]]) -> str:
    """Append query parameters after any already present in the URL."""
    if not query:
        return url
    parts = urlsplit(url)
    encoded = urlencode(_pairs(query), errors=FILE_ERRORS)
    raw_query = f"{parts.query}&{encoded}" if parts.query else encoded
    return urlunsplit(parts._replace(query=raw_query))


def _multipart_body(state: RequestState) -> tuple[bytes, str]:
    fields: list = [(k, v.encode("utf-8", FILE_ERRORS)) for k, v in _pairs(state.form)]
    for key, uploads in state.files.items():
        fields.extend((key, upload) for upload in uploads)
    return encode_multipart_formdata(fields)


def finalize(
    state: RequestState,
    options: RequestOptions,
    stdin: BinaryIO | None = None,
) -> OutboundRequest:
    """Materialize the accumulated state as an OutboundRequest.

    Body priority: form fields/files, then JSON fields, then stdin (only
    for methods other than GET/HEAD), else empty. An explicit Content-Type
    header item is never overwritten.
    """
    url = merge_query(state.url, state.query)
    headers = {k: list(v) for k, v in state.headers.items()}
    content_type = None
    body = b""

    if state.files:
        body, content_type = _multipart_body(state)
    elif state.form:
        body = urlencode(_pairs(state.form), errors=FILE_ERRORS).encode("ascii")
        content_type = FORM_CONTENT_TYPE
    elif state.json_fields:
        body = encode_json_object(state.json_fields).encode("utf-8", FILE_ERRORS)
        content_type = JSON_CONTENT_TYPE
    elif state.method not in ("GET", "HEAD") and stdin is not None:
        try:
            body = stdin.read()
        except OSError as e:
            raise AssemblyError(f"error reading stdin: {e}") from e
        if isinstance(body, str):
            body = body.encode("utf-8")

    if content_type is None and options.json:
        content_type = JSON_CONTENT_TYPE
    if content_type is not None:
        headers.setdefault("Content-Type", [content_type])

    return OutboundRequest(state.method, url, headers, body)


def build_request(
    items: list[RequestItem],
    options: RequestOptions,
    method: str | None,
    url: str,
    stdin: BinaryIO | None = None,
) -> OutboundRequest:
    return finalize(build_state(items, options, method, url), options, stdin)
