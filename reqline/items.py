"""reqline items - request item parsing (key<sep>value tokens)."""

from enum import Enum
from typing import NamedTuple


class Separator(str, Enum):
    """Request item separators. The value is the literal separator text."""

    HEADER = ":"
    QUERY = "=="
    DATA_STRING = "="
    DATA_FILE = "=@"
    JSON_VALUE = ":="
    JSON_FILE = ":=@"
    FORM_FILE = "@"


# Scan order matters: shorter separators are prefixes of longer ones,
# so the most specific candidate must be tested first.
SEPARATORS: tuple[Separator, ...] = (
    Separator.JSON_FILE,
    Separator.JSON_VALUE,
    Separator.HEADER,
    Separator.QUERY,
    Separator.DATA_FILE,
    Separator.DATA_STRING,
    Separator.FORM_FILE,
)

DATA_SEPARATORS = frozenset(
    {
        Separator.DATA_STRING,
        Separator.DATA_FILE,
        Separator.JSON_VALUE,
        Separator.JSON_FILE,
        Separator.FORM_FILE,
    },
)


class ParseError(ValueError):
    """A request item could not be split into key, separator and value."""

    reason = "invalid request item"

    def __init__(self, token: str):
        self.token = token
        super().__init__(f"cannot parse {token!r}: {self.reason}")


class EmptyKeyError(ParseError):
    reason = "empty key"


class NoSeparatorError(ParseError):
    reason = "no key-pair separator found"


class RequestItem(NamedTuple):
    key: str
    separator: Separator
    value: str

    @property
    def sends_data(self) -> bool:
        """True if this item contributes to the request body."""
        return self.separator in DATA_SEPARATORS


def parse_item(token: str) -> RequestItem:
    """Split a raw command-line token into a RequestItem.

    A backslash escapes the following character into the key, so
    ``field\\:name=value`` has key ``field:name``. The value is taken
    verbatim. Raises EmptyKeyError or NoSeparatorError.
    """
    key: list[str] = []
    escaped = False
    for i, ch in enumerate(token):
        if escaped:
            key.append(ch)
            escaped = False
            continue
        if ch == "\\":
            escaped = True
            continue
        for sep in SEPARATORS:
            if not token.startswith(sep.value, i):
                continue
            if not key:
                raise EmptyKeyError(token)
            return RequestItem("".join(key), sep, token[i + len(sep.value) :])
        key.append(ch)
    raise NoSeparatorError(token)


def parse_items(tokens) -> list[RequestItem]:
    return [parse_item(t) for t in tokens]
