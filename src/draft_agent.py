"""
Draft Agent — uses the Anthropic Python SDK to draft EDPS / DVP / DFMEA
documents from a short free-text description.

This is the alternative to the SAI template service (SMARTDOC_AI_PROVIDER=
anthropic). Claude returns one JSON object per call, which then goes through
the same field extraction as template responses.
"""

from __future__ import annotations

import json
import logging
import os
import re
from typing import Any, Protocol, Union

import anthropic

from doc_schema import DocKind
from errors import ServiceNotConfigured, UpstreamServiceError
from prompts import SYSTEM_PROMPTS
from settings import Settings
from template_client import TemplateClient

logger = logging.getLogger(__name__)


class DraftGenerator(Protocol):
    def execute(self, kind: DocKind, description: str) -> Any: ...

    def status(self) -> dict[str, Any]: ...


class DraftAgent:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    @property
    def configured(self) -> bool:
        return bool(os.environ.get("ANTHROPIC_API_KEY"))

    def status(self) -> dict[str, Any]:
        return {
            "provider": "anthropic",
            "configured": self.configured,
            "model": self.settings.anthropic_model,
        }

    def execute(self, kind: DocKind, description: str) -> dict[str, Any]:
        """
        Draft one document of `kind` with Claude.

        Returns:
            The JSON object Claude produced (raw keys, not yet extracted).

        Raises:
            ServiceNotConfigured: ANTHROPIC_API_KEY is not set.
            UpstreamServiceError: on API failures or unparseable output.
        """
        if not self.configured:
            raise ServiceNotConfigured(
                "Anthropic API key not configured. Please set ANTHROPIC_API_KEY environment variable."
            )
        if kind not in SYSTEM_PROMPTS:
            raise ValueError(f"Unknown document kind: {kind!r}")

        client = anthropic.Anthropic()
        logger.info("Calling %s to draft a %s document", self.settings.anthropic_model, kind)
        try:
            message = client.messages.create(
                model=self.settings.anthropic_model,
                max_tokens=2048,
                system=SYSTEM_PROMPTS[kind],
                messages=[
                    {"role": "user", "content": description},
                ],
            )
        except anthropic.APIStatusError as e:
            raise UpstreamServiceError(str(e.message), status_code=e.status_code, details=e.body) from e
        except anthropic.APIError as e:
            raise UpstreamServiceError(f"Anthropic API error: {e}") from e

        raw_content = message.content[0].text.strip()
        logger.info("Received draft response (%d chars). Parsing...", len(raw_content))
        return _parse_json_object(raw_content)


def _parse_json_object(raw: str) -> dict[str, Any]:
    """
    Extract the JSON object from Claude's response.

    Claude is instructed to return only the object, but may occasionally
    include markdown fences. This function handles both cases.
    """
    cleaned = re.sub(r"^```(?:json)?\s*", "", raw, flags=re.MULTILINE)
    cleaned = re.sub(r"\s*```$", "", cleaned, flags=re.MULTILINE)
    cleaned = cleaned.strip()

    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end == -1:
        raise UpstreamServiceError(
            "Claude response does not contain a JSON object.",
            details=raw[:500],
        )

    json_str = cleaned[start : end + 1]
    try:
        parsed = json.loads(json_str)
    except json.JSONDecodeError as e:
        raise UpstreamServiceError(f"Failed to parse JSON from Claude response: {e}", details=json_str[:500]) from e

    if not isinstance(parsed, dict):
        raise UpstreamServiceError(f"Expected a JSON object, got {type(parsed).__name__}")
    return parsed


def build_generator(settings: Settings) -> Union[TemplateClient, DraftAgent]:
    """The draft generator selected by SMARTDOC_AI_PROVIDER."""
    if settings.ai_provider == "anthropic":
        return DraftAgent(settings)
    return TemplateClient(settings)
