"""
SmartDoc error taxonomy.

Every domain failure is a SmartDocError carrying the HTTP status the API
layer should answer with. User-correctable kinds (missing fields, unknown ids,
dangling links) are raised by the document service; PersistenceFault is
fatal and surfaces as a generic internal error.
"""

from __future__ import annotations

from typing import Any, Optional


class SmartDocError(Exception):
    """Base class for all SmartDoc failures."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class MissingRequiredField(SmartDocError):
    """Client input omits one or more mandatory fields."""

    status_code = 400

    def __init__(self, fields: list[str]) -> None:
        self.fields = list(fields)
        super().__init__(f"{' and '.join(self.fields)} {'is' if len(self.fields) == 1 else 'are'} required")


class NotFound(SmartDocError):
    """An id does not resolve in the addressed collection."""

    status_code = 404

    def __init__(self, kind: str, record_id: str) -> None:
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind} not found: {record_id}")


class LinkTargetNotFound(SmartDocError):
    """A cross-reference id (edpsId / dvpId) does not resolve."""

    status_code = 400

    def __init__(self, kind: str, missing_id: str) -> None:
        self.kind = kind
        self.missing_id = missing_id
        super().__init__(f"{kind} with ID {missing_id} not found")


class UpstreamServiceError(SmartDocError):
    """The external AI generation service failed or answered non-2xx."""

    status_code = 502

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.upstream_status = status_code
        self.details = details
        if status_code is not None and status_code >= 400:
            self.status_code = status_code


class ServiceNotConfigured(SmartDocError):
    """A required external-service setting (e.g. an API key) is absent."""

    status_code = 503


class PersistenceFault(SmartDocError):
    """Reading or writing a backing file failed. Not user-correctable."""

    status_code = 500
