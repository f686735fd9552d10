"""Inbound event validation, deduplication and enqueueing."""

from __future__ import annotations

from .models import DiscardReason, InboundEvent, IngestResult, IngestStatus

__all__ = ["DiscardReason", "InboundEvent", "IngestResult", "IngestStatus"]
