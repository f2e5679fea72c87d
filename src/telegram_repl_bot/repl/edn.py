"""EDN parsing helpers on top of edn_format."""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence, Set
from typing import Any

import edn_format

from .errors import DecodeError

# edn_format cannot read these reader tags; they are stripped before parsing.
INCOMPATIBLE_MARKERS = (
    "#:clojure.error",
    "#:clojure.spec.alpha",
    "#object",
)

# edn_format cannot read hex literals; they are requoted as escaped strings,
# which is valid inside the printed values that prepl wraps in strings.
_HEX_LITERAL = re.compile(r"(0x[0-9a-fA-F]+)")


def cleanse(text: str) -> str:
    """Neutralize printed forms that edn_format fails on.

    This is a compatibility shim for known REPL output, not a general
    rewriting strategy.
    """
    for marker in INCOMPATIBLE_MARKERS:
        text = text.replace(marker, "")
    return _HEX_LITERAL.sub(r'\\"\1\\"', text)


def to_plain(value: Any) -> Any:
    """Convert edn_format values into plain Python values.

    Keywords and symbols become their names, maps become dicts with string
    keys, vectors/lists/sets become lists.
    """
    if isinstance(value, (edn_format.Keyword, edn_format.Symbol)):
        return value.name
    if isinstance(value, Mapping):
        return {_key(k): to_plain(v) for k, v in value.items()}
    if isinstance(value, (Sequence, Set)) and not isinstance(value, (str, bytes)):
        return [to_plain(v) for v in value]
    return value


def _key(key: Any) -> str:
    plain = to_plain(key)
    return plain if isinstance(plain, str) else str(plain)


def loads(text: str) -> Any:
    """Parse one EDN value into plain Python values.

    Unknown tagged literals (`#error {...}`, record literals) are reported as
    `DecodeError` like any other unreadable input.
    """
    try:
        return to_plain(edn_format.loads(text))
    except (
        edn_format.EDNDecodeError,
        NotImplementedError,  # unknown tag
        RecursionError,
        ValueError,
        TypeError,
    ) as e:
        raise DecodeError(f"invalid EDN: {e}") from e


def to_text(value: Any) -> str:
    """Printable text of a decoded wire value.

    Strings pass through unquoted; collections and other scalars are printed
    as EDN.
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return edn_format.dumps(value)
