"""Pipeline error taxonomy.

Engines and the store raise these. The service boundary catches
PipelineError and turns it into a failed ServiceResult carrying the
error kind, so callers can branch on kind without parsing messages.

- NotFound / InvalidInput: client errors, surfaced as-is.
- Conflict: the caller should re-fetch current state. Never overwritten.
- UpstreamUnavailable: a required dependency (sibling answers, the store)
  could not be read. Optional dependencies degrade instead of raising.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for all pipeline errors."""
    kind = "pipeline_error"


class NotFound(PipelineError):
    kind = "not_found"


class Conflict(PipelineError):
    kind = "conflict"


class UpstreamUnavailable(PipelineError):
    kind = "upstream_unavailable"


class InvalidInput(PipelineError):
    kind = "invalid_input"
