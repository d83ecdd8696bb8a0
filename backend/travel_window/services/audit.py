from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from travel_window.schemas.actors import Actor
from travel_window.schemas.bookings import Booking, ProgressHistoryEntry
from travel_window.utils import now_utc


def _safe_json(v: Any, max_len: int = 2000) -> Any:
    """Make sure audit payload stays light; truncate long strings."""
    if v is None:
        return None
    if isinstance(v, (int, float, bool)):
        return v
    if isinstance(v, str):
        return v if len(v) <= max_len else v[:max_len] + "…"
    if isinstance(v, datetime):
        return v.isoformat()
    if isinstance(v, (list, tuple)):
        return [_safe_json(x, max_len=max_len) for x in v][:200]
    if isinstance(v, dict):
        out: dict[str, Any] = {}
        for k, val in list(v.items())[:200]:
            out[str(k)] = _safe_json(val, max_len=max_len)
        return out

    # fallback to string
    s = str(v)
    return s if len(s) <= max_len else s[:max_len] + "…"


# Keys that change on every write and carry no audit value.
_DIFF_IGNORED = {"_id", "id", "revision", "updatedAt", "progressHistory"}


def shallow_diff(before: Optional[dict[str, Any]], after: Optional[dict[str, Any]]) -> dict[str, Any]:
    """Return only changed fields (top-level) as {field: {before, after}}.

    We keep this intentionally shallow to avoid huge audit docs.
    """
    b = before or {}
    a = after or {}

    keys = set(b.keys()) | set(a.keys())
    diff: dict[str, Any] = {}
    for k in sorted(keys):
        if k in _DIFF_IGNORED:
            continue
        bv = b.get(k)
        av = a.get(k)
        if bv != av:
            diff[k] = {"before": _safe_json(bv), "after": _safe_json(av)}
    return diff


def record_progress(
    booking: Booking,
    action: str,
    actor: Actor,
    changes: Optional[dict[str, Any]] = None,
    remarks: str = "",
    timestamp: Optional[datetime] = None,
) -> ProgressHistoryEntry:
    """Prepend a progress history entry (most recent first).

    Existing entries are never touched; the list is only ever grown at the
    front.
    """

    entry = ProgressHistoryEntry(
        action=action,
        performed_by=actor.id,
        performed_by_name=actor.name,
        timestamp=timestamp or now_utc(),
        changes=_safe_json(changes or {}),
        remarks=remarks or "",
    )
    booking.progress_history = [entry, *booking.progress_history]
    return entry


def build_audit_log(
    *,
    actor: Actor,
    action: str,
    booking_id: str,
    revision: int,
    diff: dict[str, Any],
    remarks: str = "",
    correlation_id: Optional[str] = None,
) -> dict[str, Any]:
    """Document mirrored into `audit_logs` once a booking write has committed."""

    return {
        "actor": {
            "actor_type": "user",
            "actor_id": actor.id,
            "name": actor.name,
            "role": actor.role,
        },
        "action": action,
        "target": {"type": "booking", "id": booking_id},
        "revision": revision,
        "diff": diff,
        "remarks": remarks,
        "correlation_id": correlation_id or "",
        "created_at": now_utc(),
    }
