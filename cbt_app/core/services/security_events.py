"""Sink for client-reported anti-cheating events."""

from __future__ import annotations

import logging

from cbt_app.core import document_store as collections
from cbt_app.core.clock import Clock, system_clock
from cbt_app.core.document_store import DocumentStore
from cbt_app.core.models import SecurityEvent, SecurityEventType, Severity

logger = logging.getLogger(__name__)


class SecurityEventLog:
    """Stores security events for later review.

    Events are recorded and logged only; they never change session state.
    """

    def __init__(self, store: DocumentStore, clock: Clock = system_clock) -> None:
        self._store = store
        self._clock = clock

    def record_event(
        self,
        session_id: str,
        event_type: SecurityEventType,
        severity: Severity,
        description: str,
    ) -> SecurityEvent:
        session = self._store.require(collections.SESSIONS, session_id, "Test session")
        event = SecurityEvent(
            session_id=session_id,
            student_id=session.student_id,
            type=event_type,
            severity=severity,
            description=description,
            timestamp=self._clock(),
        )
        stored = self._store.insert(collections.SECURITY_EVENTS, event)
        logger.warning(
            "Security event in test session %s: %s (%s) %s",
            session_id,
            event_type.value,
            severity.value,
            description,
        )
        return stored

    def list_events(self, session_id: str, unresolved_only: bool = False) -> list[SecurityEvent]:
        return self._store.find(
            collections.SECURITY_EVENTS,
            lambda event: event.session_id == session_id and not (unresolved_only and event.resolved),
            sort_key=lambda event: event.timestamp,
        )

    def resolve_event(self, event_id: str, resolved_by: str, notes: str | None = None) -> SecurityEvent:
        event = self._store.require(collections.SECURITY_EVENTS, event_id, "Security event")
        event.resolved = True
        event.resolved_by = resolved_by
        event.resolution_notes = notes
        return self._store.save(collections.SECURITY_EVENTS, event)
