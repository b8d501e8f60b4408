"""
SmartDoc Data Models — Pydantic schemas for norms, test procedures and
failure analyses.

Documents are persisted with camelCase keys (normNumber, carPart, ...), so
every model uses a camelCase alias generator and accepts both spellings.

RPN (Risk Priority Number) = Severity × Occurrence × Detection, where a
missing rating contributes 0. Risk level thresholds follow AIAG-VDA FMEA
(2019) guidance:
  - none:     RPN 0 (not yet rated)
  - low:      RPN < 100
  - medium:   RPN 100–199
  - high:     RPN 200–399
  - critical: RPN ≥ 400
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_serializer, model_validator
from pydantic.alias_generators import to_camel

DocKind = Literal["edps", "dvp", "dfmea"]
RiskLevel = Literal["none", "low", "medium", "high", "critical"]

DEFAULT_STATUS = "active"
DEFAULT_PROCEDURE_TYPE = "FUNCIONAL"

Rating = Optional[int]


def new_id() -> str:
    """128-bit random identifier."""
    return str(uuid.uuid4())


def utc_now() -> str:
    """Current time as an ISO 8601 UTC string, e.g. 2026-02-18T09:30:00.000Z."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def compute_rpn(severity: Rating, occurrence: Rating, detection: Rating) -> int:
    """RPN = S × O × D; an absent rating counts as 0."""
    return (severity or 0) * (occurrence or 0) * (detection or 0)


def classify_risk(rpn: int) -> RiskLevel:
    """Classify RPN into risk level per AIAG-VDA FMEA thresholds."""
    if rpn <= 0:
        return "none"
    elif rpn >= 400:
        return "critical"
    elif rpn >= 200:
        return "high"
    elif rpn >= 100:
        return "medium"
    else:
        return "low"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_record(self, **kwargs: Any) -> dict[str, Any]:
        """Dump with the persisted (camelCase) key names."""
        return self.model_dump(by_alias=True, **kwargs)


# ── Controls ──────────────────────────────────────────────────────────────────

class PreventionControl(CamelModel):
    """Link from a failure analysis to the EDPS norm that prevents it."""
    type: Literal["EDPS"] = "EDPS"
    edps_id: Optional[str] = Field(default=None, description="Id of the linked Norm")
    description: str = ""


class DetectionControl(CamelModel):
    """Link from a failure analysis to the DVP test that detects it."""
    type: Literal["DVP"] = "DVP"
    dvp_id: Optional[str] = Field(default=None, description="Id of the linked TestProcedure")
    description: str = ""


# ── Stored documents ──────────────────────────────────────────────────────────

class Norm(CamelModel):
    """EDPS engineering norm."""
    id: str
    norm_number: str
    title: str
    description: str = ""
    target: str = ""
    car_part: str = ""
    images: list[str] = Field(default_factory=list, description="Ordered image-data references")
    status: str = DEFAULT_STATUS
    created_at: str
    updated_at: str


class TestProcedure(CamelModel):
    """DVP design-validation test procedure."""
    __test__ = False  # keep pytest from collecting this as a test class

    id: str
    procedure_id: str
    procedure_type: str = DEFAULT_PROCEDURE_TYPE
    performance_objective: str = ""
    test_name: str
    acceptance_criteria: str = ""
    responsible: str = ""
    parameter_range: str = ""
    car_part: str = ""
    status: str = DEFAULT_STATUS
    created_at: str
    updated_at: str


class FailureAnalysis(CamelModel):
    """DFMEA entry. rpn is always derived from the three ratings."""
    id: str
    generic_failure: str
    failure_mode: str
    cause: str = ""
    car_part: str = ""
    prevention_control: Optional[PreventionControl] = None
    detection_control: Optional[DetectionControl] = None
    severity: Rating = Field(default=None, ge=1, le=10, description="Severity rating 1-10")
    occurrence: Rating = Field(default=None, ge=1, le=10, description="Occurrence rating 1-10")
    detection: Rating = Field(default=None, ge=1, le=10, description="Detection rating 1-10")
    rpn: int = Field(default=0, ge=0, le=1000, description="Risk Priority Number = S × O × D")
    status: str = DEFAULT_STATUS
    created_at: str
    updated_at: str

    @model_validator(mode="after")
    def validate_rpn_consistency(self) -> "FailureAnalysis":
        expected_rpn = compute_rpn(self.severity, self.occurrence, self.detection)
        if self.rpn != expected_rpn:
            raise ValueError(
                f"RPN {self.rpn} does not match S×O×D = "
                f"{self.severity}×{self.occurrence}×{self.detection} = {expected_rpn}"
            )
        return self

    @property
    def risk_level(self) -> RiskLevel:
        return classify_risk(self.rpn)


# ── Create inputs ─────────────────────────────────────────────────────────────
# Everything is optional here so that absent mandatory fields are reported as
# MissingRequiredField by the service rather than as a schema error.

class NormInput(CamelModel):
    norm_number: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    target: Optional[str] = None
    car_part: Optional[str] = None
    images: Optional[list[str]] = None


class TestProcedureInput(CamelModel):
    __test__ = False

    procedure_id: Optional[str] = None
    procedure_type: Optional[str] = None
    performance_objective: Optional[str] = None
    test_name: Optional[str] = None
    acceptance_criteria: Optional[str] = None
    responsible: Optional[str] = None
    parameter_range: Optional[str] = None
    car_part: Optional[str] = None


class FailureAnalysisInput(CamelModel):
    generic_failure: Optional[str] = None
    failure_mode: Optional[str] = None
    cause: Optional[str] = None
    car_part: Optional[str] = None
    prevention_control: Optional[PreventionControl] = None
    detection_control: Optional[DetectionControl] = None
    severity: Rating = Field(default=None, ge=1, le=10)
    occurrence: Rating = Field(default=None, ge=1, le=10)
    detection: Rating = Field(default=None, ge=1, le=10)


# ── Patches ───────────────────────────────────────────────────────────────────
# Only the fields a client actually sent are applied (exclude_unset). Text
# fields may be omitted but not sent as null; links and ratings may be cleared.

def _reject_null(value: Any) -> Any:
    if value is None:
        raise ValueError("may not be null")
    return value


class NormPatch(CamelModel):
    norm_number: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    target: Optional[str] = None
    car_part: Optional[str] = None
    images: Optional[list[str]] = None
    status: Optional[str] = None

    @field_validator(
        "norm_number", "title", "description", "target", "car_part", "images", "status"
    )
    @classmethod
    def not_null(cls, value: Any) -> Any:
        return _reject_null(value)


class TestProcedurePatch(CamelModel):
    __test__ = False

    procedure_id: Optional[str] = None
    procedure_type: Optional[str] = None
    performance_objective: Optional[str] = None
    test_name: Optional[str] = None
    acceptance_criteria: Optional[str] = None
    responsible: Optional[str] = None
    parameter_range: Optional[str] = None
    car_part: Optional[str] = None
    status: Optional[str] = None

    @field_validator(
        "procedure_id", "procedure_type", "performance_objective", "test_name",
        "acceptance_criteria", "responsible", "parameter_range", "car_part", "status",
    )
    @classmethod
    def not_null(cls, value: Any) -> Any:
        return _reject_null(value)


RATING_FIELDS = ("severity", "occurrence", "detection")


class FailureAnalysisPatch(CamelModel):
    generic_failure: Optional[str] = None
    failure_mode: Optional[str] = None
    cause: Optional[str] = None
    car_part: Optional[str] = None
    prevention_control: Optional[PreventionControl] = None
    detection_control: Optional[DetectionControl] = None
    severity: Rating = Field(default=None, ge=1, le=10)
    occurrence: Rating = Field(default=None, ge=1, le=10)
    detection: Rating = Field(default=None, ge=1, le=10)
    status: Optional[str] = None

    @field_validator("generic_failure", "failure_mode", "cause", "car_part", "status")
    @classmethod
    def not_null(cls, value: Any) -> Any:
        return _reject_null(value)

    def touches_ratings(self) -> bool:
        return any(name in self.model_fields_set for name in RATING_FIELDS)


# ── Read views ────────────────────────────────────────────────────────────────

class ResolvedPreventionControl(PreventionControl):
    edps_data: Optional[Norm] = None

    @model_serializer(mode="wrap")
    def _omit_unresolved(self, handler):
        data = handler(self)
        if self.edps_data is None:
            data.pop("edpsData", None)
            data.pop("edps_data", None)
        return data


class ResolvedDetectionControl(DetectionControl):
    dvp_data: Optional[TestProcedure] = None

    @model_serializer(mode="wrap")
    def _omit_unresolved(self, handler):
        data = handler(self)
        if self.dvp_data is None:
            data.pop("dvpData", None)
            data.pop("dvp_data", None)
        return data


class ResolvedFailureAnalysis(FailureAnalysis):
    """A FailureAnalysis with its linked Norm / TestProcedure embedded for reading."""
    prevention_control: Optional[ResolvedPreventionControl] = None
    detection_control: Optional[ResolvedDetectionControl] = None


# ── Collection summary ────────────────────────────────────────────────────────

class RiskSummary(BaseModel):
    """Aggregate statistics over a set of failure analyses."""
    total_entries: int
    unrated_count: int
    critical_count: int
    high_count: int
    medium_count: int
    low_count: int
    max_rpn: int
    avg_rpn: float

    @classmethod
    def from_entries(cls, entries: list[FailureAnalysis]) -> "RiskSummary":
        if not entries:
            return cls(
                total_entries=0,
                unrated_count=0,
                critical_count=0,
                high_count=0,
                medium_count=0,
                low_count=0,
                max_rpn=0,
                avg_rpn=0.0,
            )
        levels = [e.risk_level for e in entries]
        rated = [e.rpn for e in entries if e.rpn > 0]
        return cls(
            total_entries=len(entries),
            unrated_count=levels.count("none"),
            critical_count=levels.count("critical"),
            high_count=levels.count("high"),
            medium_count=levels.count("medium"),
            low_count=levels.count("low"),
            max_rpn=max(rated, default=0),
            avg_rpn=round(sum(rated) / len(rated), 2) if rated else 0.0,
        )
