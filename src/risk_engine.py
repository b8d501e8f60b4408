"""
Risk Engine — RPN derivation and cross-document link handling for DFMEA
entries.

Prevention controls point at EDPS norms and detection controls at DVP test
procedures, by id only. Links are checked when an analysis is created and
resolved (embedded) when it is read; a link whose target was deleted later
simply resolves to nothing.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from doc_schema import (
    RATING_FIELDS,
    DetectionControl,
    FailureAnalysis,
    Norm,
    PreventionControl,
    ResolvedFailureAnalysis,
    TestProcedure,
    classify_risk,
    compute_rpn,
)
from errors import LinkTargetNotFound
from record_store import RecordStore

logger = logging.getLogger(__name__)

__all__ = ["RiskEngine", "classify_risk", "compute_rpn"]


class RiskEngine:
    def __init__(self, norms: RecordStore, test_procedures: RecordStore) -> None:
        self.norms = norms
        self.test_procedures = test_procedures

    def validate_link_targets(
        self,
        prevention_control: Optional[PreventionControl] = None,
        detection_control: Optional[DetectionControl] = None,
    ) -> None:
        """
        Check that every linked id currently exists.

        Raises:
            LinkTargetNotFound: naming the first id that does not resolve.
        """
        if prevention_control is not None and prevention_control.edps_id:
            if self.norms.get_by_id(prevention_control.edps_id) is None:
                raise LinkTargetNotFound("EDPS norm", prevention_control.edps_id)
        if detection_control is not None and detection_control.dvp_id:
            if self.test_procedures.get_by_id(detection_control.dvp_id) is None:
                raise LinkTargetNotFound("DVP procedure", detection_control.dvp_id)

    def resolve_links(self, analysis: FailureAnalysis) -> ResolvedFailureAnalysis:
        """Embed the linked Norm / TestProcedure. The stored record is not touched."""
        data = analysis.model_dump()

        prevention = data.get("prevention_control")
        if prevention and prevention.get("edps_id"):
            norm = self.norms.get_by_id(prevention["edps_id"])
            if norm is not None:
                prevention["edps_data"] = Norm.model_validate(norm)
            else:
                logger.warning("DFMEA %s links missing EDPS norm %s", analysis.id, prevention["edps_id"])

        detection = data.get("detection_control")
        if detection and detection.get("dvp_id"):
            procedure = self.test_procedures.get_by_id(detection["dvp_id"])
            if procedure is not None:
                detection["dvp_data"] = TestProcedure.model_validate(procedure)
            else:
                logger.warning("DFMEA %s links missing DVP procedure %s", analysis.id, detection["dvp_id"])

        return ResolvedFailureAnalysis.model_validate(data)

    @staticmethod
    def recompute_rpn(existing: dict[str, Any], changes: dict[str, Any]) -> Optional[int]:
        """
        RPN after applying `changes` (snake_case names) on top of the stored
        record, or None if no rating is part of the change.
        """
        if not any(name in changes for name in RATING_FIELDS):
            return None
        merged = [changes[name] if name in changes else existing.get(name) for name in RATING_FIELDS]
        return compute_rpn(*merged)
