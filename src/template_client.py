"""
SAI Library template client — outbound calls to the external AI
template-execution service.

Each document kind has a pre-registered template that takes one free-text
input. The raw upstream response is returned untouched; field extraction
happens in extraction.py.

No retry and, unless SAI_TIMEOUT is set, no timeout: a hung upstream call
blocks only the request that made it.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import requests

from doc_schema import DocKind
from errors import ServiceNotConfigured, UpstreamServiceError
from settings import Settings

logger = logging.getLogger(__name__)

# Name of the single input each template expects.
TEMPLATE_INPUTS: dict[str, str] = {
    "edps": "norma",
    "dfmea": "DFMEA",
    "dvp": "teste",
}


def _body(response: requests.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class TemplateClient:
    """
    Pass a custom `session` in tests to intercept HTTP calls without making
    real network requests.
    """

    def __init__(self, settings: Settings, session: Optional[requests.Session] = None) -> None:
        self.settings = settings
        self._session = session

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
        return self._session

    @property
    def configured(self) -> bool:
        return bool(self.settings.sai_api_key)

    def status(self) -> dict[str, Any]:
        return {
            "provider": "sai",
            "configured": self.configured,
            "templates": dict(self.settings.templates),
        }

    def execute(self, kind: DocKind, description: str) -> Any:
        """
        Run the template registered for `kind` with `description` as input.

        Raises:
            ServiceNotConfigured: SAI_API_KEY is not set.
            UpstreamServiceError: network failure or non-2xx answer; the
                upstream status and body are preserved.
        """
        if not self.configured:
            raise ServiceNotConfigured(
                "SAI API key not configured. Please set SAI_API_KEY environment variable."
            )
        if kind not in TEMPLATE_INPUTS:
            raise ValueError(f"Unknown document kind: {kind!r}")

        url = f"{self.settings.sai_base_url}/{self.settings.templates[kind]}/execute"
        logger.info("Executing SAI template for %s (%d chars of input)", kind, len(description))
        try:
            response = self.session.post(
                url,
                headers={"X-Api-Key": self.settings.sai_api_key},
                json={"inputs": {TEMPLATE_INPUTS[kind]: description}},
                timeout=self.settings.sai_timeout,
            )
        except requests.RequestException as e:
            logger.error("SAI Library %s request failed: %s", kind, e)
            raise UpstreamServiceError(f"AI template service unreachable: {e}") from e

        body = _body(response)
        if not response.ok:
            message = body.get("message") if isinstance(body, dict) else None
            logger.error("SAI Library %s error %s: %s", kind, response.status_code, body)
            raise UpstreamServiceError(
                message or f"AI template service returned HTTP {response.status_code}",
                status_code=response.status_code,
                details=body,
            )

        logger.debug("SAI %s response: %r", kind, body)
        return body
