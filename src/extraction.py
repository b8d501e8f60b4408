"""
Draft field extraction from AI template responses.

The template service answers in several shapes (a JSON object, a JSON string
inside markdown fences, wrapped in response/output/result envelopes) and with
English or Portuguese key names. Each document field has an ordered list of
key aliases; the first alias with a non-empty value wins. A field with no
match yields FIELD_NOT_FOUND, never a silent default, so callers can tell
extraction failures apart from real values.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

from doc_schema import DocKind

ENVELOPE_KEYS = ("response", "output", "result")
TEXT_KEY = "text"


class _FieldNotFound:
    _instance: Optional["_FieldNotFound"] = None

    def __new__(cls) -> "_FieldNotFound":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "FIELD_NOT_FOUND"

    def __bool__(self) -> bool:
        return False


FIELD_NOT_FOUND = _FieldNotFound()


def _as_text(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return "\n".join(str(v) for v in value if v not in (None, ""))
    if isinstance(value, (dict, bool)):
        return FIELD_NOT_FOUND
    return str(value).strip()


def _as_rating(value: Any) -> Any:
    match = re.search(r"\d+", str(value))
    if not match:
        return FIELD_NOT_FOUND
    rating = int(match.group())
    return rating if 1 <= rating <= 10 else FIELD_NOT_FOUND


@dataclass(frozen=True)
class ExtractionRule:
    """Named field plus the payload keys that may carry it, in priority order."""
    field: str
    aliases: tuple[str, ...]
    convert: Callable[[Any], Any] = _as_text

    def apply(self, payload: Mapping[str, Any]) -> Any:
        for alias in self.aliases:
            value = payload.get(alias)
            if value is None or value == "":
                continue
            converted = self.convert(value)
            if converted is not FIELD_NOT_FOUND and converted != "":
                return converted
        return FIELD_NOT_FOUND


# Note: the template service spells "Potencial" with one 't' (Portuguese).
RULES: dict[str, tuple[ExtractionRule, ...]] = {
    "dfmea": (
        ExtractionRule("genericFailure", (
            "Generic_failure", "generic_failure", "genericFailure", "falha_generica", "falha_genérica",
            "system", "sistema", "component", "componente",
        )),
        ExtractionRule("failureMode", (
            "Potencial_failure_modes", "Potential_failure_modes", "potential_failure_modes",
            "failureMode", "failure_mode", "modo_de_falha", "mode", "falha", TEXT_KEY,
        )),
        ExtractionRule("cause", (
            "Potencial_effect(s)_of_failure", "Potential_effect(s)_of_failure",
            "Potential_effects_of_failure", "potential_effects_of_failure",
            "cause", "causa", "rootCause", "root_cause", "causa_raiz", "effects", "effect",
        )),
        ExtractionRule("severity", ("severity", "severidade", "severidad"), _as_rating),
        ExtractionRule("occurrence", ("occurrence", "ocorrencia", "ocorrência", "ocurrencia"), _as_rating),
        ExtractionRule("detection", ("detection", "deteccao", "detecção", "deteccion"), _as_rating),
    ),
    "edps": (
        ExtractionRule("normNumber", ("normNumber", "numero_da_norma", "number", "numero")),
        ExtractionRule("title", ("title", "titulo", "título", "nome_da_norma", "name", "nome")),
        ExtractionRule("description", (
            "description", "descricao", "descrição", "descrição_da_norma", "procedimento",
            "content", "conteudo", "conteúdo", TEXT_KEY,
        )),
        ExtractionRule("target", ("target", "objetivo", "target_da_norma", "objective", "meta")),
    ),
    "dvp": (
        ExtractionRule("procedureId", ("number_item", "procedureId", "procedure_id", "id", "numero")),
        ExtractionRule("procedureType", ("procedureType", "procedure_type", "tipo", "type")),
        ExtractionRule("performanceObjective", (
            "performance_objective", "performanceObjective", "objective", "objetivo",
        )),
        ExtractionRule("testName", (
            "teste_name_procedure", "testName", "test_name", "nome_do_teste", "name", "nome", TEXT_KEY,
        )),
        ExtractionRule("acceptanceCriteria", (
            "acceptance_criteria", "acceptanceCriteria", "criterios", "criteria",
            "criterios_de_aceitacao", "critérios_de_aceitação",
        )),
        ExtractionRule("responsible", (
            "teste_responsabillity", "teste_responsibility", "responsible", "responsavel",
            "responsável", "responsable",
        )),
        ExtractionRule("parameterRange", (
            "parameterRange", "parameter_range", "faixa", "range", "faixa_de_parametros",
        )),
    ),
}

_FENCE_RE = re.compile(r"```(?:json)?\s*|\s*```")
_RANGE_RE = re.compile(r"(\d+\s*[A-Za-z]+)\s*(?:e|a|-|até)\s*(\d+\s*[A-Za-z]+)")


def unwrap_payload(payload: Any) -> dict[str, Any]:
    """
    Normalise a raw template response into a flat mapping.

    Strings are parsed as JSON after stripping markdown fences; text that is
    not JSON is kept under the "text" key. Envelope keys are followed.
    """
    if isinstance(payload, str):
        cleaned = _FENCE_RE.sub("", payload).strip()
        try:
            payload = json.loads(cleaned)
        except json.JSONDecodeError:
            return {TEXT_KEY: cleaned} if cleaned else {}

    if isinstance(payload, list):
        payload = next((item for item in payload if isinstance(item, (dict, str))), {})
        return unwrap_payload(payload)

    if not isinstance(payload, dict):
        return {}

    for key in ENVELOPE_KEYS:
        inner = payload.get(key)
        if inner:
            return unwrap_payload(inner)
    return payload


def extract_parameter_range(text: str) -> Any:
    """Find a range such as "50N - 100N" or "entre 50N e 100N" in free text."""
    match = _RANGE_RE.search(text or "")
    if not match:
        return FIELD_NOT_FOUND
    return f"{match.group(1)} - {match.group(2)}"


@dataclass
class ExtractionResult:
    fields: dict[str, Any]
    missing: list[str]

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)


def extract_draft(kind: DocKind, payload: Any) -> ExtractionResult:
    """Apply the rules for `kind` to a raw template response."""
    if kind not in RULES:
        raise ValueError(f"Unknown document kind: {kind!r}")
    flat = unwrap_payload(payload)

    fields: dict[str, Any] = {}
    missing: list[str] = []
    for rule in RULES[kind]:
        value = rule.apply(flat)
        if value is FIELD_NOT_FOUND and rule.field == "parameterRange":
            value = extract_parameter_range(str(fields.get("acceptanceCriteria", "")))
        if value is FIELD_NOT_FOUND:
            missing.append(rule.field)
        else:
            fields[rule.field] = value
    return ExtractionResult(fields=fields, missing=missing)
