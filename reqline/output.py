"""reqline output - response rendering with JSON re-indentation."""

import re
import shutil
from typing import BinaryIO, Callable

import click
import requests
import urllib3

from reqline.request import canonical_header_key, validate_json

JSON_MEDIA_TYPE = "application/json"

_TOKEN = r"[!#$%&'*+\-.^_`|~0-9A-Za-z]+"
_MEDIA_TYPE_RE = re.compile(rf"^{_TOKEN}(/{_TOKEN})?$")
_PARAM_RE = re.compile(rf'^{_TOKEN}=({_TOKEN}|"(?:[^"\\]|\\.)*")$')

_READ_ERRORS = (OSError, requests.RequestException, urllib3.exceptions.HTTPError)


class RenderError(Exception):
    """The response body could not be read."""


def warn(message: str) -> None:
    click.echo(f"WARNING: {message}", err=True)


def parse_media_type(value: str) -> str:
    """Return the lower-cased media type of a Content-Type value.

    Parameters are validated but discarded. Raises ValueError if the
    value is not a well-formed media type.
    """
    media, _, params = value.partition(";")
    media = media.strip().lower()
    if not _MEDIA_TYPE_RE.match(media):
        raise ValueError(f"invalid media type {media!r}")
    for param in params.split(";"):
        param = param.strip()
        if param and not _PARAM_RE.match(param):
            raise ValueError(f"invalid media parameter {param!r}")
    return media


def sorted_headers(headers: list[tuple[str, str]]) -> list[tuple[str, str]]:
    """Sort by canonical header name; values of one name keep their order."""
    return sorted(headers, key=lambda h: canonical_header_key(h[0]))


def get_header(headers: list[tuple[str, str]], name: str) -> str | None:
    lower = name.lower()
    for k, v in headers:
        if k.lower() == lower:
            return v
    return None


def is_json_response(headers: list[tuple[str, str]], warn_fn: Callable = warn) -> bool:
    ctype = get_header(headers, "Content-Type")
    if not ctype:
        return False
    try:
        return parse_media_type(ctype) == JSON_MEDIA_TYPE
    except ValueError:
        warn_fn(f"invalid content type {ctype!r} in response")
        return False


def _reindent(text: str) -> str:
    out: list[str] = []
    depth = 0
    i, n = 0, len(text)
    while i < n:
        ch = text[i]
        if ch == '"':
            j = i + 1
            while text[j] != '"':
                j += 2 if text[j] == "\\" else 1
            out.append(text[i : j + 1])
            i = j + 1
            continue
        if ch in " \t\r\n":
            i += 1
            continue
        if ch in "{[":
            k = i + 1
            while text[k] in " \t\r\n":
                k += 1
            if text[k] in "}]":
                out.append(ch + text[k])
                i = k + 1
                continue
            depth += 1
            out.append(ch + "\n" + "\t" * depth)
        elif ch in "}]":
            depth -= 1
            out.append("\n" + "\t" * depth + ch)
        elif ch == ",":
            out.append(",\n" + "\t" * depth)
        elif ch == ":":
            out.append(": ")
        else:
            out.append(ch)
        i += 1
    return "".join(out)


def indent_json(data: bytes) -> bytes:
    """Re-indent a JSON document with tabs and one trailing newline.

    Only whitespace between tokens changes: strings, numbers and
    duplicate keys are written exactly as received. Raises ValueError
    if data is not JSON.
    """
    text = data.decode("utf-8")
    validate_json(text)
    return (_reindent(text) + "\n").encode("utf-8")


def format_status_block(result) -> bytes:
    lines = [f"{result.http_version} {result.status}"]
    lines.extend(
        f"{canonical_header_key(name)}: {value}"
        for name, value in sorted_headers(result.headers)
    )
    return ("\n".join(lines) + "\n\n").encode("utf-8")


def render_response(
    result,  # RequestResult from executor.py
    out: BinaryIO,
    raw: bool = False,
    show_headers: bool = False,
    show_body: bool = True,
    warn_fn: Callable = warn,
) -> None:
    """Write the response to `out`.

    JSON bodies (Content-Type application/json) are buffered and
    re-indented unless `raw` is set; anything else is streamed through
    unmodified.
    """
    if show_headers:
        out.write(format_status_block(result))
    if not show_body or result.stream is None:
        return

    if raw or not is_json_response(result.headers, warn_fn):
        try:
            shutil.copyfileobj(result.stream, out)
        except _READ_ERRORS as e:
            raise RenderError(f"failed to read response body: {e}") from e
        return

    try:
        data = result.stream.read()
    except _READ_ERRORS as e:
        raise RenderError(f"failed to read response body: {e}") from e
    if not data:
        return
    try:
        out.write(indent_json(data))
    except ValueError as e:
        warn_fn(f"cannot pretty print JSON response: {e}")
        out.write(data)
