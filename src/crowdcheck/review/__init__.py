"""Review module — escalation queue for human review."""

from crowdcheck.review.queue import ReviewQueue

__all__ = ["ReviewQueue"]
