# agents/critic_agent.py

"""Critic agent: scores approved proposals before they are applied."""

from __future__ import annotations

import threading
from typing import Any

import structlog
from pydantic import ValidationError

from config import settings
from core.errors import MalformedResponseError
from core.generation_client import GenerationClient, generation_client
from models import CandidateSet, Critique
from prompt_renderer import render_prompt

logger = structlog.get_logger(__name__)

CRITIQUE_DIMENSIONS = ("completeness", "specificity", "utility", "structure")


def parse_critique(raw: Any) -> Critique:
    """Build a ``Critique`` from a model response.

    Raises:
        MalformedResponseError: ``overallScore`` is not a number in [0, 10] or a
            dimension score is missing or out of range.
    """
    if not isinstance(raw, dict):
        raise MalformedResponseError("Critique response is not an object")
    overall = raw.get("overallScore")
    if isinstance(overall, bool) or not isinstance(overall, (int, float)):
        raise MalformedResponseError(f"Critique has no numeric overallScore: {overall!r}")
    if not 0 <= overall <= 10:
        raise MalformedResponseError(f"Critique overallScore out of range: {overall}")
    dimensions = raw.get("dimensions")
    if not isinstance(dimensions, dict) or any(
        key not in dimensions for key in CRITIQUE_DIMENSIONS
    ):
        raise MalformedResponseError("Critique is missing dimension scores")
    try:
        return Critique.model_validate(raw)
    except ValidationError as exc:
        raise MalformedResponseError(f"Critique failed validation: {exc}") from exc


class CriticAgent:
    """Scores completeness, specificity, utility and structure of a proposal."""

    def __init__(self, client: GenerationClient | None = None) -> None:
        self.name = "Critic"
        self.enabled = True
        self.client = client or generation_client
        self._stats_lock = threading.Lock()
        self.stats: dict[str, Any] = {
            "total_critiques": 0,
            "errors": 0,
            "score_total": 0.0,
            "scored": 0,
            "dimension_totals": dict.fromkeys(CRITIQUE_DIMENSIONS, 0.0),
        }
        logger.info("CriticAgent initialized")

    async def critique(
        self,
        candidate_set: CandidateSet,
        graph_context: list[dict[str, Any]] | None = None,
    ) -> Critique:
        """Score ``candidate_set`` against recent graph entities.

        Never raises: any failure yields ``Critique.degraded_default``.
        """
        with self._stats_lock:
            self.stats["total_critiques"] += 1
        context = list(graph_context or [])[: settings.CRITIC_CONTEXT_PROMPT_LIMIT]
        try:
            prompt = render_prompt(
                "critic_agent/critique_proposal.j2",
                {
                    "graph_context": context,
                    "proposal": candidate_set.to_prompt_dict(),
                },
            )
            raw = await self.client.generate(
                prompt, temperature=settings.TEMPERATURE_CRITIC
            )
            result = parse_critique(raw)
        except Exception as exc:
            with self._stats_lock:
                self.stats["errors"] += 1
            logger.warning("Critic failed, using degraded critique", error=str(exc))
            return Critique.degraded_default(str(exc))

        self._record_scores(result)
        logger.info(f"Critique complete: {result.overall_score}/10")
        return result

    def _record_scores(self, result: Critique) -> None:
        with self._stats_lock:
            self.stats["scored"] += 1
            self.stats["score_total"] += float(result.overall_score)
            if result.dimensions is not None:
                for key in CRITIQUE_DIMENSIONS:
                    self.stats["dimension_totals"][key] += getattr(
                        result.dimensions, key
                    )

    def get_metrics(self) -> dict[str, Any]:
        with self._stats_lock:
            scored = self.stats["scored"]
            return {
                "agent": self.name,
                "total_critiques": self.stats["total_critiques"],
                "errors": self.stats["errors"],
                "avg_quality_score": (
                    round(self.stats["score_total"] / scored, 2) if scored else 0.0
                ),
                "dimension_averages": {
                    key: round(total / scored, 2) if scored else 0.0
                    for key, total in self.stats["dimension_totals"].items()
                },
            }


class DisabledCriticAgent(CriticAgent):
    """Stand-in used when the critic is switched off; makes no model calls."""

    def __init__(self) -> None:
        super().__init__()
        self.client = None
        self.enabled = False

    async def critique(
        self,
        candidate_set: CandidateSet,
        graph_context: list[dict[str, Any]] | None = None,
    ) -> Critique:
        return Critique.disabled()
