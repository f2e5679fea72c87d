"""Bencode encoding as used by nREPL.

Strings are ``<length>:<bytes>``, integers ``i<digits>e``, lists ``l...e`` and
dictionaries ``d...e`` with byte-sorted keys. nREPL writes several top-level
values back to back on the socket, so decoding works on a stream.
"""

from __future__ import annotations

from typing import Any, Iterator

from .errors import DecodeError


def encode(value: Any) -> bytes:
    """Encode a Python value (str, bytes, int, list, dict) to bencode."""
    out: list[bytes] = []
    _encode_into(value, out)
    return b"".join(out)


def _encode_into(value: Any, out: list[bytes]) -> None:
    if isinstance(value, bool):
        value = int(value)
    if isinstance(value, int):
        out.append(b"i%de" % value)
    elif isinstance(value, (str, bytes)):
        raw = value.encode("utf-8") if isinstance(value, str) else value
        out.append(b"%d:" % len(raw))
        out.append(raw)
    elif isinstance(value, (list, tuple)):
        out.append(b"l")
        for item in value:
            _encode_into(item, out)
        out.append(b"e")
    elif isinstance(value, dict):
        out.append(b"d")
        keys = {
            (k.encode("utf-8") if isinstance(k, str) else k): v
            for k, v in value.items()
        }
        for key in sorted(keys):
            _encode_into(key, out)
            _encode_into(keys[key], out)
        out.append(b"e")
    else:
        raise TypeError(f"cannot bencode {type(value).__name__}")


def iter_decode(data: bytes) -> Iterator[Any]:
    """Yield every top-level value in ``data``, in order."""
    pos = 0
    while pos < len(data):
        # Stray whitespace between messages is not part of the encoding
        if data[pos : pos + 1].isspace():
            pos += 1
            continue
        try:
            value, pos = decode_one(data, pos)
        except RecursionError:
            raise DecodeError(f"value at offset {pos} is nested too deeply") from None
        yield value


def decode_one(data: bytes, pos: int = 0) -> tuple[Any, int]:
    """Decode one value starting at ``pos``; return it with the next offset."""
    if pos >= len(data):
        raise DecodeError(f"unexpected end of data at offset {pos}")

    marker = data[pos : pos + 1]
    if marker == b"i":
        end = data.find(b"e", pos)
        if end < 0:
            raise DecodeError(f"unterminated integer at offset {pos}")
        try:
            return int(data[pos + 1 : end]), end + 1
        except ValueError:
            raise DecodeError(f"invalid integer at offset {pos}") from None

    if marker == b"l":
        items = []
        pos += 1
        while data[pos : pos + 1] != b"e":
            if pos >= len(data):
                raise DecodeError("unterminated list")
            item, pos = decode_one(data, pos)
            items.append(item)
        return items, pos + 1

    if marker == b"d":
        entries: dict[str, Any] = {}
        pos += 1
        while data[pos : pos + 1] != b"e":
            if pos >= len(data):
                raise DecodeError("unterminated dictionary")
            key, pos = decode_one(data, pos)
            if not isinstance(key, str):
                raise DecodeError(f"dictionary key must be a string, got {key!r}")
            entries[key], pos = decode_one(data, pos)
        return entries, pos + 1

    if marker.isdigit():
        colon = data.find(b":", pos)
        if colon < 0:
            raise DecodeError(f"unterminated string length at offset {pos}")
        try:
            length = int(data[pos:colon])
        except ValueError:
            raise DecodeError(f"invalid string length at offset {pos}") from None
        start = colon + 1
        end = start + length
        if end > len(data):
            raise DecodeError(
                f"string at offset {pos} needs {length} bytes, "
                f"only {len(data) - start} available"
            )
        return data[start:end].decode("utf-8", errors="replace"), end

    raise DecodeError(f"unexpected byte {marker!r} at offset {pos}")
