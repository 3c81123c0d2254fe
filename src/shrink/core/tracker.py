"""Tracks saved space across sessions."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from shrink.models.candidate import StateKind
from shrink.models.compression_result import CompressionResult
from shrink.storage import load_history, save_history

log = logging.getLogger(__name__)


class Tracker:
    """Tracks and persists compression statistics."""

    def __init__(self) -> None:
        self._session_results: list[CompressionResult] = []
        self._session_removed: list[int] = []

    @property
    def session_bytes_saved(self) -> int:
        """Bytes saved by compression and deletes in the current session."""
        return sum(r.saved_bytes for r in self._session_results) + sum(self._session_removed)

    def record(self, results: list[CompressionResult]) -> None:
        """Record compression results for the current session."""
        self._session_results.extend(results)

    def record_removal(self, freed_bytes: int) -> None:
        """Record a manual delete for the current session."""
        self._session_removed.append(freed_bytes)

    def get_last_session_time(self) -> str | None:
        """Return ISO timestamp of the most recent session, or None."""
        sessions = load_history().get("sessions", [])
        return sessions[-1]["timestamp"] if sessions else None

    def save_session(self) -> None:
        """Persist the current session to history."""
        if not self._session_results and not self._session_removed:
            return

        history = load_history()
        session_entry = self._build_session_entry()
        history["sessions"].append(session_entry)
        save_history(history)

        log.info(
            "Saved session: %d bytes saved over %d results",
            _session_saved(session_entry),
            len(session_entry["details"]),
        )
        self._session_results.clear()
        self._session_removed.clear()

    def get_stats(self, period: str = "all") -> dict[str, Any]:
        """Get aggregated statistics for a time period.

        Args:
            period: One of 'today', 'week', 'month', 'all'.
        """
        all_sessions = load_history().get("sessions", [])

        match period:
            case "today":
                cutoff = _start_of_today()
            case "week":
                cutoff = _start_of_today() - timedelta(days=7)
            case "month":
                cutoff = _start_of_today() - timedelta(days=30)
            case _:
                cutoff = None

        if cutoff is not None:
            sessions = [s for s in all_sessions if datetime.fromisoformat(s["timestamp"]) >= cutoff]
        else:
            sessions = all_sessions

        details = [d for s in sessions for d in s.get("details", [])]
        return {
            "period": period,
            "bytes_saved": sum(_session_saved(s) for s in sessions),
            "original_bytes": sum(d.get("original_bytes", 0) for d in details),
            "compressed_bytes": sum(d.get("compressed_bytes", 0) for d in details),
            "removed_bytes": sum(s.get("removed_bytes", 0) for s in sessions),
            "files_compressed": sum(1 for d in details if d.get("state") == StateKind.COMPRESSED.value),
            "session_count": len(sessions),
            "lifetime_bytes_saved": sum(_session_saved(s) for s in all_sessions),
            "per_state": self._aggregate_state_counts(details),
        }

    def _build_session_entry(self) -> dict[str, Any]:
        """Build a session record from current results."""
        details = [
            {
                "state": r.state.kind.value,
                "reason": r.state.reason,
                "original_bytes": r.original_size,
                "compressed_bytes": r.compressed_size,
                "saved_bytes": r.saved_bytes,
            }
            for r in self._session_results
        ]
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "details": details,
            "removed_bytes": sum(self._session_removed),
        }

    @staticmethod
    def _aggregate_state_counts(details: list[dict[str, Any]]) -> dict[str, int]:
        totals: dict[str, int] = {}
        for detail in details:
            state = detail.get("state", "unknown")
            totals[state] = totals.get(state, 0) + 1
        return totals


def _session_saved(session: dict[str, Any]) -> int:
    """Derive total bytes saved from a session's details."""
    compressed = sum(d.get("saved_bytes", 0) for d in session.get("details", []))
    return compressed + session.get("removed_bytes", 0)


def _start_of_today() -> datetime:
    """Return the start of the current UTC day."""
    now = datetime.now(timezone.utc)
    return now.replace(hour=0, minute=0, second=0, microsecond=0)
