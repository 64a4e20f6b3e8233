"""Message processing engine.

This package provides the classification pipeline:
- Envelope normalization and mailing-list gating
- Reference propagation across reply chains
- Rule engine mapping triggers to record mutations
- Ingest engine running one message end to end
"""

from woof.engine.envelope import Envelope, is_list_message, normalize_envelope, normalize_id
from woof.engine.ingest import IngestEngine, IngestResult, IngestSummary
from woof.engine.propagation import propagate_references
from woof.engine.rules import Decision, classify, is_patch_subject, parse_change_spec

__all__ = [
    # Envelope
    "Envelope",
    "is_list_message",
    "normalize_envelope",
    "normalize_id",
    # Propagation
    "propagate_references",
    # Rules
    "Decision",
    "classify",
    "is_patch_subject",
    "parse_change_spec",
    # Ingest
    "IngestEngine",
    "IngestResult",
    "IngestSummary",
]
