"""Quality module — agreement, majority vote, model confidence and the validator."""

from crowdcheck.quality.agreement import AgreementScorer
from crowdcheck.quality.model_confidence import ConfidenceProvider, ModelConfidenceClient
from crowdcheck.quality.validator import MultiLayerValidator

__all__ = [
    "AgreementScorer",
    "ConfidenceProvider",
    "ModelConfidenceClient",
    "MultiLayerValidator",
]
