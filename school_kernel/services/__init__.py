"""Kernel infrastructure services (flush-only)."""

from school_kernel.services.base import BaseService
from school_kernel.services.sequence_service import SequenceCounter, SequenceService

__all__ = ["BaseService", "SequenceCounter", "SequenceService"]
