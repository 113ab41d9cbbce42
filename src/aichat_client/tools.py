"""Tool invocation normalizer.

Raw tool-call records arrive from the stream in whatever shape the upstream
produced. This module is the single place where they are narrowed into
:class:`ToolInvocationResult`; everything downstream works on that form only.
"""

from typing import Any

from .core import CALL, PARTIAL_CALL, RESULT, UNKNOWN, ToolInvocationResult, generate_id

# Lifecycle order; "unknown" has no rank.
_STATE_RANK = {PARTIAL_CALL: 0, CALL: 1, RESULT: 2}


def is_record(value: Any) -> bool:
    return isinstance(value, dict)


def resolve_state(raw_state: Any) -> str:
    """Map a raw discriminator to a lifecycle state; unrecognised → unknown."""
    if isinstance(raw_state, str) and raw_state in _STATE_RANK:
        return raw_state
    return UNKNOWN


def infer_error(invocation: dict) -> bool:
    """True if the envelope flags an error or the result carries an ``error`` string."""
    result = invocation.get("result")
    return bool(invocation.get("isError")) or (
        is_record(result) and isinstance(result.get("error"), str)
    )


def normalize_tool_invocation(invocation: Any) -> ToolInvocationResult | None:
    """Normalize one raw tool-call record, or return None if it is not a record."""
    if not is_record(invocation):
        return None

    call_id = invocation.get("toolCallId")
    generic_id = invocation.get("id")
    if isinstance(call_id, str) and call_id:
        invocation_id = call_id
    elif isinstance(generic_id, str) and generic_id:
        invocation_id = generic_id
    else:
        invocation_id = generate_id()

    tool_name = invocation.get("toolName")
    name = invocation.get("name")
    if not (isinstance(tool_name, str) and tool_name):
        tool_name = name if isinstance(name, str) and name else "tool"

    args = invocation.get("args")
    return ToolInvocationResult(
        id=invocation_id,
        tool_name=tool_name,
        state=resolve_state(invocation.get("state")),
        args=args if is_record(args) else None,
        result=invocation.get("result"),
        is_error=infer_error(invocation),
    )


def normalize_tool_invocations(invocations: Any) -> list[ToolInvocationResult] | None:
    """Normalize a batch of raw records.

    Returns None, never an empty list, when there is nothing to report, so
    a message without tool calls serialises without the field at all.
    """
    if not isinstance(invocations, list) or not invocations:
        return None

    normalized = [normalize_tool_invocation(i) for i in invocations]
    normalized = [n for n in normalized if n is not None]
    return normalized or None


def advance_state(current: str, incoming: str) -> str:
    """Return the later of two lifecycle states.

    States only move forward through partial-call → call → result. An
    ``unknown`` update never replaces a known state.
    """
    if incoming == UNKNOWN:
        return current
    if current == UNKNOWN:
        return incoming
    return incoming if _STATE_RANK[incoming] > _STATE_RANK[current] else current


def merge_tool_invocation(previous: ToolInvocationResult, update: ToolInvocationResult) -> ToolInvocationResult:
    """Fold a later observation of the same invocation into the earlier one.

    The update wins for payload fields it carries; state never regresses and
    ``is_error`` stays set once observed.
    """
    return ToolInvocationResult(
        id=previous.id,
        tool_name=update.tool_name if update.tool_name != "tool" else previous.tool_name,
        state=advance_state(previous.state, update.state),
        args=update.args if update.args is not None else previous.args,
        result=update.result if update.result is not None else previous.result,
        is_error=previous.is_error or update.is_error,
    )


def dedupe_tool_invocations(invocations: list[ToolInvocationResult]) -> list[ToolInvocationResult] | None:
    """Collapse repeated observations by id, keeping first-seen order."""
    merged: dict[str, ToolInvocationResult] = {}
    for invocation in invocations:
        previous = merged.get(invocation.id)
        merged[invocation.id] = merge_tool_invocation(previous, invocation) if previous else invocation
    return list(merged.values()) or None
