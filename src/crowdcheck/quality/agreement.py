"""Agreement scoring — how closely one answer matches its peers.

Pure computation: the score depends only on the candidate, its siblings
and the policy. Safe to re-run.

Free text:
  agreement = mean over siblings of Jaccard(tokens(candidate), tokens(sibling))
  Tokens are lowercased word characters; tokens shorter than
  min_token_length are dropped unless that would leave nothing, so
  short answers ("yes", "no") still compare. When both answers are at
  most fuzzy_max_tokens long, the character-level ratio is used if it is
  higher, so "Nairobi" and "Nairobbi" are near-duplicates.

Closed form (rating, multiple choice):
  agreement = percentage of siblings whose normalized value equals the
  candidate's.

No siblings → the configured neutral score. The first answer to a
question cannot be judged against zero peers, and must not block.
"""

from __future__ import annotations

import re
from typing import Optional, Sequence

from rapidfuzz import fuzz

from crowdcheck.models.answer import QuestionType
from crowdcheck.policy.resolver import PolicyResolver
from crowdcheck.quality.majority import normalize_closed

_WORD_RE = re.compile(r"\w+", re.UNICODE)


class AgreementScorer:
    """Computes a 0-100 agreement score for one answer against its siblings.

    Usage:
        scorer = AgreementScorer(resolver)
        score = scorer.score("Paris", ["paris", "Paris, France"])
    """

    def __init__(self, resolver: PolicyResolver) -> None:
        self._resolver = resolver

    def score(
        self,
        candidate_text: str,
        sibling_texts: Sequence[str],
        question_type: Optional[QuestionType] = None,
    ) -> float:
        """Score the candidate. The candidate must not be among its siblings."""
        if not sibling_texts:
            return self._resolver.neutral_agreement_score()

        if question_type is not None and question_type.is_closed_form:
            return self._exact_match_ratio(candidate_text, sibling_texts, question_type)

        similarities = [
            self.text_similarity(candidate_text, other) for other in sibling_texts
        ]
        return sum(similarities) / len(similarities)

    def text_similarity(self, text_a: str, text_b: str) -> float:
        """Jaccard similarity of the two token sets, on a 0-100 scale."""
        tokens_a = self._tokens(text_a)
        tokens_b = self._tokens(text_b)

        if not tokens_a and not tokens_b:
            # Both blank after tokenizing (e.g. punctuation only).
            return 100.0 if text_a.strip() == text_b.strip() else 0.0
        if not tokens_a or not tokens_b:
            return 0.0

        union = tokens_a | tokens_b
        jaccard = 100.0 * len(tokens_a & tokens_b) / len(union)

        if max(len(tokens_a), len(tokens_b)) <= self._resolver.fuzzy_max_tokens():
            # One-word answers: a typo should not read as total disagreement.
            ratio = fuzz.ratio(" ".join(sorted(tokens_a)), " ".join(sorted(tokens_b)))
            return max(jaccard, float(ratio))
        return jaccard

    # ------------------------------------------------------------------
    # Private
    # ------------------------------------------------------------------

    def _tokens(self, text: str) -> set[str]:
        words = _WORD_RE.findall(text.lower())
        min_len = self._resolver.min_token_length()
        long_words = {w for w in words if len(w) >= min_len}
        return long_words or set(words)

    @staticmethod
    def _exact_match_ratio(
        candidate_text: str,
        sibling_texts: Sequence[str],
        question_type: QuestionType,
    ) -> float:
        target = normalize_closed(candidate_text, question_type)
        matches = sum(
            1 for t in sibling_texts
            if normalize_closed(t, question_type) == target
        )
        return 100.0 * matches / len(sibling_texts)
