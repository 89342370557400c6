"""Trust module — bounded contributor trust scores and their audit trail."""

from crowdcheck.trust.ledger import TrustScoreLedger

__all__ = ["TrustScoreLedger"]
