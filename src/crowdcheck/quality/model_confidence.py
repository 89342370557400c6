"""Client for the optional external scoring model.

The model is an opaque collaborator: POST {question, answer} and read back
{confidence, model}. The pipeline never trains or interprets it.

This is the only network call in the scoring path. It always runs under a
timeout and never raises: any transport error, HTTP error or malformed
body degrades to "signal absent" (None) and scoring carries on without it.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol

import httpx

from crowdcheck.models.validation import ModelConfidence

logger = logging.getLogger(__name__)


class ConfidenceProvider(Protocol):
    def confidence(self, question_text: str, answer_text: str) -> Optional[ModelConfidence]:
        ...


class ModelConfidenceClient:
    """HTTP client for an external model-confidence endpoint.

    Usage:
        client = ModelConfidenceClient("http://model:8080/confidence", timeout=2.0)
        result = client.confidence("What is 2+2?", "4")   # None if unavailable
    """

    def __init__(
        self,
        endpoint: str,
        timeout: float = 2.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._endpoint = endpoint
        self._timeout = timeout
        self._client = client or httpx.Client(timeout=timeout)

    def confidence(self, question_text: str, answer_text: str) -> Optional[ModelConfidence]:
        try:
            response = self._client.post(
                self._endpoint,
                json={"question": question_text, "answer": answer_text},
                timeout=self._timeout,
            )
            response.raise_for_status()
            body = response.json()
            score = float(body["confidence"])
        except httpx.HTTPError as e:
            logger.warning("Model confidence unavailable from %s: %s", self._endpoint, e)
            return None
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Malformed model confidence response from %s: %s", self._endpoint, e)
            return None

        return ModelConfidence(
            score=max(0.0, min(100.0, score)),
            model=str(body.get("model", "external")),
        )

    def close(self) -> None:
        self._client.close()
