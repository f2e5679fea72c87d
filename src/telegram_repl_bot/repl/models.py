"""Pydantic models for REPL requests and normalized responses.

Both wire protocols are mapped onto the same record:
- prepl streams one EDN map per printable event (``:ret``, ``:out``, ``:err``, ``:tap``)
- nREPL sends bencoded maps carrying ``value``/``out``/``err`` and ``status`` tokens
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .edn import to_text

OP_EVAL = "eval"
OP_CLONE = "clone"

# Status tokens that only terminate a message sequence
BENIGN_STATUS = frozenset({"done"})


# ============================================================================
# Request
# ============================================================================


class ReplRequest(BaseModel):
    """One operation sent to the REPL."""

    model_config = ConfigDict(frozen=True)

    op: str = Field(OP_EVAL, description="Operation tag")
    code: str = Field("", description="Code to evaluate")


# ============================================================================
# Response
# ============================================================================


class ResponseRecord(BaseModel):
    """A normalized unit of REPL output."""

    tag: str = Field("", description="Event tag: ret, out, err, tap")
    namespace: str = Field("", description="Namespace the code was evaluated in")
    value: str = Field("", description="Returned value (printed form)")
    out: str = Field("", description="Captured stdout")
    err: str = Field("", description="Captured stderr")
    exception: bool = Field(False, description="True if evaluation threw")
    ex: str = Field("", description="Exception class")
    root_ex: str = Field("", description="Root exception class")
    status: List[str] = Field(default_factory=list, description="Status tokens")
    ms: Optional[int] = Field(None, description="Evaluation time in milliseconds")
    form: str = Field("", description="Form that was evaluated")
    op: str = Field("", description="Operation the response belongs to")
    id: str = Field("", description="Message id")
    session: str = Field("", description="Session id")
    new_session: str = Field("", description="Session created by a clone request")
    message: str = Field("", description="Free-form message from the REPL")

    @field_validator(
        "tag",
        "namespace",
        "value",
        "out",
        "err",
        "ex",
        "root_ex",
        "form",
        "op",
        "id",
        "session",
        "new_session",
        "message",
        mode="before",
    )
    @classmethod
    def _coerce_text(cls, v: Any) -> str:
        return to_text(v)

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, (str, bytes)):
            return [to_text(v)]
        return [to_text(s) for s in v]

    @property
    def error_status(self) -> list[str]:
        """Status tokens that signal a protocol-level failure."""
        return [s for s in self.status if s not in BENIGN_STATUS]

    @property
    def has_error(self) -> bool:
        return self.exception or bool(self.error_status)


class ExceptionValue(BaseModel):
    """Cause and phase parsed out of an exception's printed value."""

    cause: str = ""
    phase: str = ""


# ============================================================================
# Wire key -> record field tables
# ============================================================================

PREPL_FIELDS: dict[str, str] = {
    "tag": "tag",
    "val": "value",
    "ns": "namespace",
    "ms": "ms",
    "form": "form",
    "exception": "exception",
    "message": "message",
}

NREPL_FIELDS: dict[str, str] = {
    "ns": "namespace",
    "out": "out",
    "err": "err",
    "value": "value",
    "ex": "ex",
    "root-ex": "root_ex",
    "status": "status",
    "op": "op",
    "id": "id",
    "session": "session",
    "new-session": "new_session",
}


# ============================================================================
# Decoded top-level wire values
# ============================================================================


@dataclass(frozen=True)
class WireScalar:
    value: Any


@dataclass(frozen=True)
class WireList:
    items: list[Any] = field(default_factory=list)


@dataclass(frozen=True)
class WireMap:
    entries: dict[str, Any] = field(default_factory=dict)


WireValue = Union[WireScalar, WireList, WireMap]
