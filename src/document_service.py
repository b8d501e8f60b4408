"""
Document Service — CRUD orchestration for EDPS norms, DVP test procedures and
DFMEA failure analyses.

The three document kinds share one shape: presence checks on create, typed
partial updates, NotFound for unknown ids. DFMEA adds link validation on
create, RPN recomputation on update, and link resolution on read.

All failures are raised as SmartDocError subclasses (see errors.py).
"""

from __future__ import annotations

import logging
from typing import Any, Literal, Mapping, Optional, Union

from pydantic import BaseModel

from doc_schema import (
    CamelModel,
    DEFAULT_PROCEDURE_TYPE,
    DEFAULT_STATUS,
    FailureAnalysis,
    FailureAnalysisInput,
    FailureAnalysisPatch,
    Norm,
    NormInput,
    NormPatch,
    ResolvedFailureAnalysis,
    RiskSummary,
    TestProcedure,
    TestProcedureInput,
    TestProcedurePatch,
    new_id,
    utc_now,
)
from errors import MissingRequiredField, NotFound
from record_store import RecordStore, StoreSet
from risk_engine import RiskEngine, compute_rpn

logger = logging.getLogger(__name__)

SearchScope = Literal["all", "edps", "dvp", "dfmea"]

NORM = "Norm"
TEST_PROCEDURE = "Procedure"
FAILURE_ANALYSIS = "DFMEA entry"


class SearchResult(CamelModel):
    id: str
    type: Literal["edps", "dvp", "dfmea"]
    title: str
    subtitle: str
    description: str
    status: str
    created_at: str
    updated_at: str


def _coerce(model: type[BaseModel], data: Union[BaseModel, Mapping[str, Any]]):
    if isinstance(data, model):
        return data
    if isinstance(data, BaseModel):
        data = data.model_dump(exclude_unset=True)
    return model.model_validate(dict(data))


def _require(**values: Any) -> None:
    # Empty strings count as absent.
    missing = [name for name, value in values.items() if not value]
    if missing:
        raise MissingRequiredField(missing)


class DocumentService:
    def __init__(self, stores: StoreSet) -> None:
        self.stores = stores
        self.risk = RiskEngine(stores.norms, stores.test_procedures)

    # ── Shared helpers ───────────────────────────────────────────────────────

    @staticmethod
    def _fetch(store: RecordStore, kind: str, record_id: str) -> dict[str, Any]:
        record = store.get_by_id(record_id)
        if record is None:
            raise NotFound(kind, record_id)
        return record

    def _patch(
        self,
        store: RecordStore,
        kind: str,
        model: type[BaseModel],
        record_id: str,
        changes: dict[str, Any],
        existing: Optional[dict[str, Any]] = None,
    ):
        """Apply `changes` only if the merged record still validates as `model`."""
        if existing is None:
            existing = self._fetch(store, kind, record_id)
        model.model_validate({**existing, **changes})
        updated = store.update(record_id, changes)
        if updated is None:
            raise NotFound(kind, record_id)
        return model.model_validate(updated)

    @staticmethod
    def _delete(store: RecordStore, kind: str, record_id: str) -> None:
        if not store.delete(record_id):
            raise NotFound(kind, record_id)

    # ── EDPS norms ───────────────────────────────────────────────────────────

    def list_norms(self) -> list[Norm]:
        return [Norm.model_validate(r) for r in self.stores.norms.list()]

    def get_norm(self, norm_id: str) -> Norm:
        return Norm.model_validate(self._fetch(self.stores.norms, NORM, norm_id))

    def create_norm(self, data: Union[NormInput, Mapping[str, Any]]) -> Norm:
        inp: NormInput = _coerce(NormInput, data)
        _require(normNumber=inp.norm_number, title=inp.title)

        now = utc_now()
        norm = Norm(
            id=new_id(),
            norm_number=inp.norm_number,
            title=inp.title,
            description=inp.description or "",
            target=inp.target or "",
            car_part=inp.car_part or "",
            images=inp.images or [],
            status=DEFAULT_STATUS,
            created_at=now,
            updated_at=now,
        )
        self.stores.norms.create(norm.to_record())
        return norm

    def update_norm(self, norm_id: str, data: Union[NormPatch, Mapping[str, Any]]) -> Norm:
        patch: NormPatch = _coerce(NormPatch, data)
        return self._patch(self.stores.norms, NORM, Norm, norm_id, patch.to_record(exclude_unset=True))

    def delete_norm(self, norm_id: str) -> None:
        # No cascade: DFMEA entries linking this norm keep a dangling edpsId.
        self._delete(self.stores.norms, NORM, norm_id)

    # ── DVP test procedures ──────────────────────────────────────────────────

    def list_test_procedures(self) -> list[TestProcedure]:
        return [TestProcedure.model_validate(r) for r in self.stores.test_procedures.list()]

    def get_test_procedure(self, procedure_id: str) -> TestProcedure:
        return TestProcedure.model_validate(self._fetch(self.stores.test_procedures, TEST_PROCEDURE, procedure_id))

    def create_test_procedure(self, data: Union[TestProcedureInput, Mapping[str, Any]]) -> TestProcedure:
        inp: TestProcedureInput = _coerce(TestProcedureInput, data)
        _require(procedureId=inp.procedure_id, testName=inp.test_name)

        now = utc_now()
        procedure = TestProcedure(
            id=new_id(),
            procedure_id=inp.procedure_id,
            procedure_type=inp.procedure_type or DEFAULT_PROCEDURE_TYPE,
            performance_objective=inp.performance_objective or "",
            test_name=inp.test_name,
            acceptance_criteria=inp.acceptance_criteria or "",
            responsible=inp.responsible or "",
            parameter_range=inp.parameter_range or "",
            car_part=inp.car_part or "",
            status=DEFAULT_STATUS,
            created_at=now,
            updated_at=now,
        )
        self.stores.test_procedures.create(procedure.to_record())
        return procedure

    def update_test_procedure(
        self, procedure_id: str, data: Union[TestProcedurePatch, Mapping[str, Any]]
    ) -> TestProcedure:
        patch: TestProcedurePatch = _coerce(TestProcedurePatch, data)
        return self._patch(
            self.stores.test_procedures, TEST_PROCEDURE, TestProcedure, procedure_id, patch.to_record(exclude_unset=True)
        )

    def delete_test_procedure(self, procedure_id: str) -> None:
        self._delete(self.stores.test_procedures, TEST_PROCEDURE, procedure_id)

    # ── DFMEA failure analyses ───────────────────────────────────────────────

    def list_failure_analyses(self) -> list[FailureAnalysis]:
        return [FailureAnalysis.model_validate(r) for r in self.stores.failure_analyses.list()]

    def get_failure_analysis(self, analysis_id: str) -> ResolvedFailureAnalysis:
        record = self._fetch(self.stores.failure_analyses, FAILURE_ANALYSIS, analysis_id)
        return self.risk.resolve_links(FailureAnalysis.model_validate(record))

    def create_failure_analysis(
        self, data: Union[FailureAnalysisInput, Mapping[str, Any]]
    ) -> FailureAnalysis:
        inp: FailureAnalysisInput = _coerce(FailureAnalysisInput, data)
        _require(genericFailure=inp.generic_failure, failureMode=inp.failure_mode)
        self.risk.validate_link_targets(inp.prevention_control, inp.detection_control)

        now = utc_now()
        analysis = FailureAnalysis(
            id=new_id(),
            generic_failure=inp.generic_failure,
            failure_mode=inp.failure_mode,
            cause=inp.cause or "",
            car_part=inp.car_part or "",
            prevention_control=inp.prevention_control,
            detection_control=inp.detection_control,
            severity=inp.severity,
            occurrence=inp.occurrence,
            detection=inp.detection,
            rpn=compute_rpn(inp.severity, inp.occurrence, inp.detection),
            status=DEFAULT_STATUS,
            created_at=now,
            updated_at=now,
        )
        self.stores.failure_analyses.create(analysis.to_record())
        logger.info("DFMEA %s created with RPN %d", analysis.id, analysis.rpn)
        return analysis

    def update_failure_analysis(
        self, analysis_id: str, data: Union[FailureAnalysisPatch, Mapping[str, Any]]
    ) -> FailureAnalysis:
        patch: FailureAnalysisPatch = _coerce(FailureAnalysisPatch, data)
        store = self.stores.failure_analyses
        existing = self._fetch(store, FAILURE_ANALYSIS, analysis_id)

        changes = patch.to_record(exclude_unset=True)
        rpn = self.risk.recompute_rpn(existing, changes)
        if rpn is not None:
            changes["rpn"] = rpn
            logger.info("DFMEA %s RPN recomputed: %s -> %d", analysis_id, existing.get("rpn"), rpn)

        return self._patch(store, FAILURE_ANALYSIS, FailureAnalysis, analysis_id, changes, existing)

    def delete_failure_analysis(self, analysis_id: str) -> None:
        self._delete(self.stores.failure_analyses, FAILURE_ANALYSIS, analysis_id)

    def failure_analysis_summary(self) -> RiskSummary:
        return RiskSummary.from_entries(self.list_failure_analyses())

    # ── Search ───────────────────────────────────────────────────────────────

    def search(self, query: str = "", scope: SearchScope = "all") -> list[SearchResult]:
        """Case-insensitive substring search over titles, subtitles and descriptions."""
        results: list[SearchResult] = []
        if scope in ("all", "edps"):
            results += [
                SearchResult(
                    id=n.id,
                    type="edps",
                    title=f"{n.norm_number} - {n.title}",
                    subtitle=n.norm_number,
                    description=n.description,
                    status=n.status,
                    created_at=n.created_at,
                    updated_at=n.updated_at,
                )
                for n in self.list_norms()
            ]
        if scope in ("all", "dvp"):
            results += [
                SearchResult(
                    id=p.id,
                    type="dvp",
                    title=f"{p.procedure_id} - {p.test_name}",
                    subtitle=p.procedure_id,
                    description=f"{p.procedure_type} - {p.acceptance_criteria}",
                    status=p.status,
                    created_at=p.created_at,
                    updated_at=p.updated_at,
                )
                for p in self.list_test_procedures()
            ]
        if scope in ("all", "dfmea"):
            results += [
                SearchResult(
                    id=a.id,
                    type="dfmea",
                    title=f"{a.generic_failure} - {a.failure_mode}",
                    subtitle=f"RPN: {a.rpn}",
                    description=a.cause,
                    status=a.status,
                    created_at=a.created_at,
                    updated_at=a.updated_at,
                )
                for a in self.list_failure_analyses()
            ]

        needle = query.strip().lower()
        if not needle:
            return results
        return [
            r for r in results
            if needle in r.title.lower() or needle in r.subtitle.lower() or needle in r.description.lower()
        ]

