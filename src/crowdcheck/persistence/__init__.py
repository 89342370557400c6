"""Persistence layer — relational schema and the pipeline store."""

from crowdcheck.persistence.schema import Base
from crowdcheck.persistence.store import PipelineStore, VerdictWrite

__all__ = ["Base", "PipelineStore", "VerdictWrite"]
