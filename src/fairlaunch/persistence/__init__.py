"""Persistence — audit event log and JSON state store."""

from fairlaunch.persistence.event_log import EventKind, EventLog, EventRecord
from fairlaunch.persistence.state_store import StateStore

__all__ = ["EventKind", "EventLog", "EventRecord", "StateStore"]
