"""Map decoded wire values to records and render record batches as text."""

from __future__ import annotations

import logging
from typing import Any, Iterable

from pydantic import ValidationError

from . import edn
from .errors import DecodeError
from .models import (
    ExceptionValue,
    ResponseRecord,
    WireList,
    WireMap,
    WireScalar,
    WireValue,
)

logger = logging.getLogger(__name__)


def wire_value(decoded: Any) -> WireValue:
    """Tag a decoded top-level value by its shape."""
    if isinstance(decoded, dict):
        return WireMap(entries=decoded)
    if isinstance(decoded, list):
        return WireList(items=decoded)
    return WireScalar(value=decoded)


def record_from_wire(wire: WireValue, fields: dict[str, str]) -> ResponseRecord:
    """Build a record from one decoded top-level value.

    Map keys are looked up in ``fields`` (wire key -> record field); unknown
    keys are ignored. Scalars and lists carry their text as printed output.

    Raises:
        DecodeError: a known key holds a value of the wrong type
    """
    if isinstance(wire, WireMap):
        data = {fields[k]: v for k, v in wire.entries.items() if k in fields}
        try:
            record = ResponseRecord.model_validate(data)
        except ValidationError as e:
            raise DecodeError(f"unexpected response field values: {e}") from e
        return _derive(record)
    if isinstance(wire, WireList):
        text = "\n".join(edn.to_text(item) for item in wire.items)
        return ResponseRecord(tag="out", out=text, value=text)
    if isinstance(wire, WireScalar):
        text = edn.to_text(wire.value)
        return ResponseRecord(tag="out", out=text, value=text)
    raise TypeError(f"unknown wire value: {type(wire).__name__}")


def _derive(record: ResponseRecord) -> ResponseRecord:
    """Fill the tag and printed text fields that a protocol leaves implicit."""
    update: dict[str, Any] = {}
    tag = record.tag
    if not tag:
        if record.value or (record.namespace and not (record.out or record.err)):
            tag = "ret"
        elif record.out:
            tag = "out"
        elif record.err:
            tag = "err"
        else:
            tag = "status"
        update["tag"] = tag
    if tag == "out" and not record.out:
        update["out"] = record.value
    elif tag == "err" and not record.err:
        update["err"] = record.value
    return record.model_copy(update=update) if update else record


def parse_exception(value: str) -> ExceptionValue:
    """Parse the printed exception map carried in a record's value."""
    parsed = edn.loads(value)
    if not isinstance(parsed, dict):
        raise DecodeError(f"exception value is not a map: {value[:80]!r}")
    return ExceptionValue(
        cause=edn.to_text(parsed.get("cause")),
        phase=edn.to_text(parsed.get("phase")),
    )


def _status_text(record: ResponseRecord) -> str:
    statuses = ", ".join(record.error_status)
    if not record.ex:
        return statuses
    if not record.root_ex or record.ex == record.root_ex:
        return f"{statuses}: {record.ex}"
    return f"{statuses}: {record.ex} ({record.root_ex})"


def _tag_text(record: ResponseRecord) -> str | None:
    if record.tag == "ret":
        return f"{record.namespace}=> {record.value.strip()}"
    if record.tag == "out":
        return record.out
    if record.tag == "err":
        return record.err
    if record.tag == "tap":
        return record.value
    return None


def render(records: Iterable[ResponseRecord]) -> str:
    """Render records, in arrival order, as one reply text."""
    msgs: list[str] = []

    for r in records:
        if r.exception:
            try:
                msgs.append(parse_exception(r.value).cause.strip())
                continue
            except DecodeError as e:
                err_str = f"failed to parse exception value: {e}"
                logger.warning(err_str)

            text = _tag_text(r)
            msgs.append(err_str if text is None else text.strip())
            continue

        if r.error_status:
            msgs.append(_status_text(r).strip())
            continue

        if r.tag == "status":
            continue

        text = _tag_text(r)
        if text is None:
            text = f"unhandled `{r.tag}` response: {r.model_dump(exclude_defaults=True)}"
            logger.warning(text)
        msgs.append(text.strip())

    return "\n".join(msgs)
