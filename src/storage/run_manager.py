# src/storage/run_manager.py - v2
"""Run identifiers and creation.

run_id format: yyyymmdd_hhmmss_{uuid4_short}, sortable by creation time.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from suitegate.core.models import Run, RunStatus


def generate_run_id(timestamp: datetime | None = None) -> str:
    """Generate a run_id: yyyymmdd_hhmmss_{uuid4_short}."""
    ts = timestamp or datetime.now(timezone.utc)
    short_uuid = uuid.uuid4().hex[:8]
    return f"{ts.strftime('%Y%m%d_%H%M%S')}_{short_uuid}"


def new_run(story_text: str, created_at: datetime | None = None) -> Run:
    """Build a fresh in_progress Run positioned at the first phase.

    Raises:
        ValueError: If the story text is empty.
    """
    if not story_text.strip():
        raise ValueError("story text must be non-empty")
    ts = created_at or datetime.now(timezone.utc)
    return Run(
        run_id=generate_run_id(ts),
        story_text=story_text,
        created_at=ts,
        updated_at=ts,
        status=RunStatus.IN_PROGRESS,
        phase_cursor=0,
    )
