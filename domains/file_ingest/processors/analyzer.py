"""
Insight analyzer.

Turns extracted (and redacted) text into structured insights by asking the
LLM to respond with a JSON array, using a system prompt chosen by the
source's analysis lens.
"""

from __future__ import annotations

import json
import re
from typing import Any, List

from loguru import logger
from pydantic import ValidationError

from app.models.schemas import Insight
from app.utils.errors import InvalidResponseError
from app.utils.llm import LLMBridge

DEFAULT_LENS = "general"

LENS_PROMPTS = {
    "philosopher": (
        "You are a philosophical analyst. Look for underlying assumptions, "
        "arguments, values and open questions in the material."
    ),
    "architect": (
        "You are a technical architect. Look for system structure, design "
        "decisions, trade-offs, dependencies and technical risks."
    ),
    "somatic": (
        "You are a somatic awareness analyst. Look for references to the body, "
        "energy, emotion, habits and embodied experience."
    ),
    "analyst": (
        "You are a data analyst. Look for measurable facts, trends, anomalies "
        "and claims that could be verified with data."
    ),
    "general": (
        "You are a general knowledge analyst. Extract the most useful facts, "
        "patterns, ideas and references from the material."
    ),
}

RESPONSE_INSTRUCTIONS = """Respond with a JSON array only. Each element must be an object with:
- "title": short title
- "content": one or two sentences
- "category": one of "knowledge", "pattern", "observation", "idea", "reference"
- "confidence": number between 0 and 1
- "tags": list of short strings
- "relatedConcepts": list of short strings
Return [] if the material holds nothing worth keeping."""

_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)


def build_system_prompt(lens: str) -> str:
    """System prompt for ``lens``; unknown lenses use the general analyst."""
    persona = LENS_PROMPTS.get(lens, LENS_PROMPTS[DEFAULT_LENS])
    return f"{persona}\n\n{RESPONSE_INSTRUCTIONS}"


def parse_insights(raw: str) -> List[Insight]:
    """
    Parse an LLM response into insights.

    Tolerates markdown code fences and prose around the array. Elements
    that fail validation are skipped.

    Raises:
        InvalidResponseError: if no JSON array can be recovered
    """
    payload = _load_json_array(raw)

    insights: List[Insight] = []
    for index, item in enumerate(payload):
        try:
            insights.append(Insight.model_validate(item))
        except ValidationError as e:
            logger.warning(f"Skipping invalid insight #{index}: {e.error_count()} validation errors")
    return insights


def _load_json_array(raw: str) -> List[Any]:
    text = raw.strip()
    fenced = _FENCE.search(text)
    if fenced:
        text = fenced.group(1).strip()

    start, end = text.find("["), text.rfind("]")
    if start == -1 or end < start:
        raise InvalidResponseError("Analyzer response holds no JSON array")

    try:
        payload = json.loads(text[start:end + 1])
    except json.JSONDecodeError as e:
        raise InvalidResponseError(f"Analyzer response is not valid JSON: {e}") from e

    if not isinstance(payload, list):
        raise InvalidResponseError("Analyzer response is not a JSON array")
    return payload


class InsightAnalyzer:
    """LLM-backed ``analyze(text, lens)`` capability."""

    def __init__(self, llm: LLMBridge, max_content_chars: int = 48000):
        self.llm = llm
        self.max_content_chars = max_content_chars

    def analyze(self, text: str, lens: str = DEFAULT_LENS) -> List[Insight]:
        """
        Extract insights from ``text`` through the given lens.

        Args:
            text: Redacted document text
            lens: Analysis lens name

        Returns:
            Parsed insights (possibly empty)
        """
        if len(text) > self.max_content_chars:
            logger.debug(f"Truncating content from {len(text)} to {self.max_content_chars} chars")
            text = text[:self.max_content_chars]

        response = self.llm.generate(
            prompt=f"Analyze the following material:\n\n{text}",
            system=build_system_prompt(lens),
        )
        insights = parse_insights(response.text)
        logger.debug(
            f"Analyzer produced {len(insights)} insights "
            f"(lens={lens}, tokens in={response.usage.input} out={response.usage.output})"
        )
        return insights

    def generate_embedding(self, text: str) -> List[float]:
        return self.llm.embed(text)

    @property
    def embedding_dimension(self) -> int:
        return self.llm.get_embedding_dimension()

    def close(self):
        self.llm.close()

