"""Append-only activity trail.

Writes here are best-effort: a failure is logged and swallowed so that it
can never undo the business operation that triggered it.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from sqlalchemy.orm import Session

from app.models.activity import ActivityLog
from app.schemas.activity import ActivityEvent
from app.services.common import apply_ordering, apply_pagination, coerce_uuid

logger = logging.getLogger(__name__)


def _to_row(event: ActivityEvent) -> ActivityLog:
    return ActivityLog(
        actor_id=event.actor_id,
        action=event.action,
        entity_type=event.entity_type,
        entity_id=event.entity_id,
        description=event.description,
        isp_id=event.isp_id,
        metadata_=event.metadata,
    )


class ActivityRecorder:
    @staticmethod
    def record(db: Session, event: ActivityEvent) -> ActivityLog | None:
        entries = ActivityRecorder.record_many(db, [event])
        return entries[0] if entries else None

    @staticmethod
    def record_many(db: Session, events: Iterable[ActivityEvent]) -> list[ActivityLog]:
        """Persist events in one commit; returns an empty list on failure."""
        events = list(events)
        if not events:
            return []
        try:
            entries = [_to_row(event) for event in events]
            db.add_all(entries)
            db.commit()
            return entries
        except Exception:
            db.rollback()
            logger.exception(
                "Failed to record %d activity entr%s (first action=%s)",
                len(events),
                "y" if len(events) == 1 else "ies",
                events[0].action,
            )
            return []

    @staticmethod
    def list(
        db: Session,
        isp_id: str | None,
        entity_type: str | None,
        action: str | None,
        order_by: str,
        order_dir: str,
        limit: int,
        offset: int,
    ):
        query = db.query(ActivityLog)
        if isp_id:
            query = query.filter(ActivityLog.isp_id == coerce_uuid(isp_id))
        if entity_type:
            query = query.filter(ActivityLog.entity_type == entity_type)
        if action:
            query = query.filter(ActivityLog.action == action)
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {"created_at": ActivityLog.created_at, "action": ActivityLog.action},
        )
        return apply_pagination(query, limit, offset).all()


activity_recorder = ActivityRecorder()
