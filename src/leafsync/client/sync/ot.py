"""Whole-text OT diff and sequential OT application."""

from __future__ import annotations

from collections.abc import Iterable

from leafsync.client.protocol import OtOp
from leafsync.client.sync.types import OTApplyError

_UTF16 = "utf-16-le"


def diff(old: str, new: str) -> list[OtOp]:
    """Ops transforming old into new.

    Replaces the whole text: a delete of old at 0 followed by an insert of
    new at 0, each omitted when empty. Equal texts yield no ops.
    """
    if old == new:
        return []
    ops: list[OtOp] = []
    if old:
        ops.append(OtOp(p=0, d=old))
    if new:
        ops.append(OtOp(p=0, i=new))
    return ops


def apply(text: str, ops: Iterable[OtOp]) -> str:
    """Apply ops in order, each against the result of the previous one.

    Positions and lengths are UTF-16 code units, so a character outside
    the Basic Multilingual Plane occupies two positions. An op carrying
    both d and i is applied as delete then insert.

    Raises:
        OTApplyError: If a position falls outside the buffer or splits a
            surrogate pair.
    """
    buffer = text.encode(_UTF16)
    for op in ops:
        length = len(buffer) // 2
        if op.p < 0 or op.p > length:
            raise OTApplyError(f"Position {op.p} outside document of length {length}")
        start = op.p * 2
        if op.d is not None:
            removed = op.d.encode(_UTF16)
            end = start + len(removed)
            if end > len(buffer):
                raise OTApplyError(
                    f"Delete of {len(removed) // 2} units at {op.p} exceeds length {length}"
                )
            buffer = buffer[:start] + buffer[end:]
        if op.i is not None:
            buffer = buffer[:start] + op.i.encode(_UTF16) + buffer[start:]
    try:
        return buffer.decode(_UTF16)
    except UnicodeDecodeError as e:
        raise OTApplyError(f"Ops split a surrogate pair: {e}") from e
