"""
Conversational form — a finite-state machine that walks a user through
creating an EDPS norm, a DVP test procedure or a DFMEA entry, with an
optional AI shortcut.

The machine is pure: transition(state, event) returns the next state plus a
list of effects (plain data). ChatSession is the only part that talks to the
document service and the draft generator; it executes effects and feeds the
results back as events.

All free-text heuristics live in classify_intent().
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Literal, Mapping, Optional, Union

from pydantic import ValidationError

from doc_schema import DocKind, compute_rpn
from errors import SmartDocError
from extraction import extract_draft

logger = logging.getLogger(__name__)

Intent = Literal["create", "use_ai", "view", "yes", "no", "excel", "pdf", "another", "home", "unknown"]

# Order matters: the first matching pattern wins.
_INTENT_PATTERNS: list[tuple[Intent, re.Pattern]] = [
    ("create", re.compile(r"\b(create|new|criar|novo|nova|manual(?:ly|mente)?)\b")),
    ("use_ai", re.compile(r"(🤖|\bai\b|\bia\b)")),
    ("view", re.compile(r"\b(view|existing|list|ver|existentes?|listar)\b")),
    ("excel", re.compile(r"\b(excel|xlsx)\b")),
    ("pdf", re.compile(r"\bpdf\b")),
    ("another", re.compile(r"\b(another|outr[oa]|again|start over)\b")),
    ("home", re.compile(r"\b(home|in[ií]cio|back|voltar)\b")),
    ("no", re.compile(r"\b(no|n[aã]o|skip|pular|cancel|cancelar)\b")),
    ("yes", re.compile(r"\b(yes|sim|save|salvar|link|vincular|ok|review|revisar)\b")),
]


def classify_intent(text: str) -> Intent:
    lowered = text.strip().lower()
    for intent, pattern in _INTENT_PATTERNS:
        if pattern.search(lowered):
            return intent
    return "unknown"


# ── Flow definitions ─────────────────────────────────────────────────────────

FieldKind = Literal["text", "required", "rating", "link"]


@dataclass(frozen=True)
class FieldStep:
    name: str
    prompt: str
    kind: FieldKind = "text"
    label: str = ""


FLOWS: dict[str, tuple[FieldStep, ...]] = {
    "dfmea": (
        FieldStep("genericFailure", "Please describe the generic failure or system.", "required", "Generic Failure"),
        FieldStep("failureMode", "What is the specific failure mode?", "required", "Failure Mode"),
        FieldStep("cause", "What is the cause of this failure mode?", "text", "Cause"),
        FieldStep("preventionControl", "Would you like to add a prevention control (EDPS norm)?", "link", "Prevention Control"),
        FieldStep("detectionControl", "Would you like to add a detection control (DVP test)?", "link", "Detection Control"),
        FieldStep("severity", "On a scale of 1-10, what is the Severity?", "rating", "Severity"),
        FieldStep("occurrence", "What is the Occurrence rating (1-10)?", "rating", "Occurrence"),
        FieldStep("detection", "What is the Detection rating (1-10)?", "rating", "Detection"),
    ),
    "edps": (
        FieldStep("normNumber", "What is the norm number (e.g. NP-001)?", "required", "Norm Number"),
        FieldStep("title", "What is the title of the norm?", "required", "Title"),
        FieldStep("description", "Describe the norm (procedure / design practice).", "text", "Description"),
        FieldStep("target", "What is the target of this norm?", "text", "Target"),
        FieldStep("carPart", "Which car part does it apply to?", "text", "Car Part"),
    ),
    "dvp": (
        FieldStep("procedureId", "What is the procedure ID (e.g. 3.42)?", "required", "Procedure ID"),
        FieldStep("testName", "What is the name of the test?", "required", "Test Name"),
        FieldStep("procedureType", "What is the procedure type (e.g. FUNCIONAL)?", "text", "Procedure Type"),
        FieldStep("performanceObjective", "What is the performance objective of this test?", "text", "Performance Objective"),
        FieldStep("acceptanceCriteria", "What are the acceptance criteria?", "text", "Acceptance Criteria"),
        FieldStep("responsible", "Who is responsible for this test?", "text", "Responsible"),
        FieldStep("parameterRange", "What is the parameter range (e.g. 50N - 100N)?", "text", "Parameter Range"),
    ),
}

DOC_LABELS = {"dfmea": "DFMEA entry", "edps": "EDPS norm", "dvp": "DVP test procedure"}

# For each link step: which collection to offer and how the link is stored.
LINK_TARGETS: dict[str, dict[str, str]] = {
    "preventionControl": {"kind": "edps", "type": "EDPS", "id_key": "edpsId", "label": "norm"},
    "detectionControl": {"kind": "dvp", "type": "DVP", "id_key": "dvpId", "label": "test"},
}

START_REPLIES = ("Create new", "Use AI Tool 🤖", "View existing")
LIST_PREVIEW = 5


# ── States, events, effects ──────────────────────────────────────────────────

Step = Literal["initial", "aiInput", "generating", "field", "selectLink", "confirm", "saving", "export", "complete", "finished"]


@dataclass(frozen=True)
class LinkCandidate:
    id: str
    code: str
    label: str


@dataclass(frozen=True)
class ChatState:
    kind: DocKind
    step: Step = "initial"
    field_index: int = 0
    form: Mapping[str, Any] = field(default_factory=dict)
    candidates: tuple[LinkCandidate, ...] = ()
    document_id: Optional[str] = None


@dataclass(frozen=True)
class UserText:
    text: str


@dataclass(frozen=True)
class ItemsListed:
    items: tuple[LinkCandidate, ...]


@dataclass(frozen=True)
class ListFailed:
    message: str


@dataclass(frozen=True)
class DraftReady:
    fields: Mapping[str, Any]
    missing: tuple[str, ...] = ()


@dataclass(frozen=True)
class DraftFailed:
    message: str


@dataclass(frozen=True)
class Saved:
    document_id: str


@dataclass(frozen=True)
class SaveFailed:
    message: str


Event = Union[UserText, ItemsListed, ListFailed, DraftReady, DraftFailed, Saved, SaveFailed]


@dataclass(frozen=True)
class Say:
    text: str


@dataclass(frozen=True)
class Offer:
    replies: tuple[str, ...]


@dataclass(frozen=True)
class ListItems:
    kind: DocKind


@dataclass(frozen=True)
class GenerateDraft:
    kind: DocKind
    description: str


@dataclass(frozen=True)
class Save:
    kind: DocKind
    form: Mapping[str, Any]


@dataclass(frozen=True)
class Export:
    kind: DocKind
    document_id: str
    fmt: Literal["xlsx", "pdf"]


@dataclass(frozen=True)
class Finish:
    pass


Effect = Union[Say, Offer, ListItems, GenerateDraft, Save, Export, Finish]
Transition = tuple[ChatState, list[Effect]]


# ── Helpers ──────────────────────────────────────────────────────────────────

def _parse_rating(text: str) -> Optional[int]:
    match = re.fullmatch(r"\s*(\d{1,2})\s*", text)
    if not match:
        return None
    value = int(match.group(1))
    return value if 1 <= value <= 10 else None


def _format_value(step: FieldStep, value: Any) -> str:
    if step.kind == "link":
        if not value:
            return "Not linked"
        return value.get("description") or value.get(LINK_TARGETS[step.name]["id_key"]) or "Not linked"
    if step.kind == "rating":
        return str(value) if value else "Not rated"
    return str(value) if value else "(empty)"


def summarize(kind: DocKind, form: Mapping[str, Any]) -> str:
    lines = [f"**{s.label}:** {_format_value(s, form.get(s.name))}" for s in FLOWS[kind]]
    if kind == "dfmea":
        rpn = compute_rpn(form.get("severity"), form.get("occurrence"), form.get("detection"))
        lines.append(f"**RPN:** {rpn}")
    return "\n".join(lines)


def _find_candidate(candidates: tuple[LinkCandidate, ...], text: str) -> Optional[LinkCandidate]:
    for candidate in candidates:
        if candidate.id in text or (candidate.code and candidate.code in text):
            return candidate
    return None


def _ask(state: ChatState, index: int, prefix: str = "") -> Transition:
    """Move to field `index`, or to confirmation once every field is collected."""
    steps = FLOWS[state.kind]
    if index >= len(steps):
        return _confirm(replace(state, step="confirm", field_index=index, candidates=()), prefix)
    step = steps[index]
    effects: list[Effect] = [Say(f"{prefix}{step.prompt}")]
    if step.kind == "link":
        label = LINK_TARGETS[step.name]["label"]
        effects.append(Offer((f"Yes, link {label}", "No, skip")))
    elif step.kind == "text":
        effects.append(Offer(("Skip",)))
    return replace(state, step="field", field_index=index, candidates=()), effects


def _confirm(state: ChatState, prefix: str = "") -> Transition:
    text = f"{prefix}Here's a summary:\n{summarize(state.kind, state.form)}\n\nWould you like to save this {DOC_LABELS[state.kind]}?"
    return state, [Say(text), Offer(("Yes, save it", "No, cancel"))]


def _restart(state: ChatState, text: str) -> Transition:
    return ChatState(kind=state.kind), [Say(text), Offer(START_REPLIES)]


def start(kind: DocKind) -> Transition:
    """Initial state and greeting for a new conversation."""
    state = ChatState(kind=kind)
    return state, [
        Say(f"Hi! I can help you create a new {DOC_LABELS[kind]}, draft one with the AI tool, or view existing ones."),
        Offer(START_REPLIES),
    ]


# ── Transition function ──────────────────────────────────────────────────────

def transition(state: ChatState, event: Event) -> Transition:
    """Pure: no I/O, no mutation of `state`."""
    handler = _HANDLERS.get(state.step)
    if handler is None:
        return state, []
    return handler(state, event)


def _on_initial(state: ChatState, event: Event) -> Transition:
    if isinstance(event, ItemsListed):
        if not event.items:
            return state, [Say(f"No existing {DOC_LABELS[state.kind]}s found. Would you like to create one?"), Offer(START_REPLIES)]
        lines = [f"Found {len(event.items)} existing {DOC_LABELS[state.kind]}(s):", ""]
        lines += [f"• **{c.code}** - {c.label}" for c in event.items[:LIST_PREVIEW]]
        return state, [Say("\n".join(lines)), Offer(START_REPLIES)]
    if isinstance(event, ListFailed):
        return state, [Say(f"❌ Error fetching documents: {event.message}"), Offer(START_REPLIES)]
    if not isinstance(event, UserText):
        return state, []

    intent = classify_intent(event.text)
    if intent in ("create", "another"):
        return _ask(replace(state, form={}), 0, "Great! Let's start. ")
    if intent == "use_ai":
        return replace(state, step="aiInput"), [Say(f"Describe the {DOC_LABELS[state.kind]} you need and the AI tool will draft it.")]
    if intent == "view":
        return state, [Say("Fetching existing documents..."), ListItems(state.kind)]
    if intent == "home":
        return replace(state, step="finished"), [Finish()]
    return state, [Say(f"I can help you create a new {DOC_LABELS[state.kind]} or view existing ones. What would you like to do?"), Offer(START_REPLIES)]


def _on_ai_input(state: ChatState, event: Event) -> Transition:
    if not isinstance(event, UserText) or not event.text.strip():
        return state, [Say("Please describe what the AI tool should draft.")]
    return replace(state, step="generating"), [Say("Generating a draft with the AI tool..."), GenerateDraft(state.kind, event.text.strip())]


def _on_generating(state: ChatState, event: Event) -> Transition:
    if isinstance(event, DraftFailed):
        return _restart(state, f"❌ AI generation failed: {event.message}. You can create the document manually.")
    if not isinstance(event, DraftReady):
        return state, []

    form = {**state.form, **event.fields}
    state = replace(state, form=form)
    missing_note = f"Not found in the AI response: {', '.join(event.missing)}.\n" if event.missing else ""
    for index, step in enumerate(FLOWS[state.kind]):
        if step.kind == "required" and not form.get(step.name):
            return _ask(state, index, f"✅ Draft generated.\n{missing_note}")
    return _confirm(replace(state, step="confirm", field_index=len(FLOWS[state.kind])), f"✅ Draft generated.\n{missing_note}")


def _on_field(state: ChatState, event: Event) -> Transition:
    step = FLOWS[state.kind][state.field_index]
    target = LINK_TARGETS.get(step.name)

    if isinstance(event, ItemsListed) and target is not None:
        if not event.items:
            return _ask(state, state.field_index + 1, f"No {target['kind'].upper()} documents found, skipping this link. ")
        lines = [f"Available {target['kind'].upper()} documents:", ""]
        lines += [f"• **{c.code}** - {c.label}" for c in event.items[:LIST_PREVIEW]]
        lines += ["", f"Please type the code of the {target['label']} you want to link."]
        return replace(state, step="selectLink", candidates=event.items), [Say("\n".join(lines)), Offer(("Skip",))]
    if isinstance(event, ListFailed) and target is not None:
        return _ask(state, state.field_index + 1, f"❌ Error fetching documents: {event.message}. Skipping this link. ")
    if not isinstance(event, UserText):
        return state, []

    text = event.text.strip()
    if step.kind == "link":
        if classify_intent(text) == "yes":
            return state, [ListItems(target["kind"])]
        return _ask(state, state.field_index + 1)

    if step.kind == "rating":
        rating = _parse_rating(text)
        if rating is None:
            return state, [Say(f"Please enter a whole number from 1 to 10. {step.prompt}")]
        state = replace(state, form={**state.form, step.name: rating})
        return _ask(state, state.field_index + 1, f"{step.label} set to {rating}. ")

    if step.kind == "required" and not text:
        return state, [Say(f"{step.label} is required. {step.prompt}")]
    if step.kind == "text" and text.lower() in ("skip", "pular", "-"):
        text = ""
    state = replace(state, form={**state.form, step.name: text})
    return _ask(state, state.field_index + 1, f"{step.label} set to: \"{text}\". " if text else "")


def _on_select_link(state: ChatState, event: Event) -> Transition:
    if not isinstance(event, UserText):
        return state, []
    step = FLOWS[state.kind][state.field_index]
    target = LINK_TARGETS[step.name]

    candidate = _find_candidate(state.candidates, event.text)
    if candidate is None:
        if classify_intent(event.text) == "no":
            return _ask(state, state.field_index + 1)
        return state, [Say(f"Could not find that {target['label']}. Please try again or skip."), Offer(("Skip",))]

    link = {"type": target["type"], target["id_key"]: candidate.id, "description": candidate.label}
    state = replace(state, form={**state.form, step.name: link})
    return _ask(state, state.field_index + 1, f"✅ Linked {candidate.code} - {candidate.label}. ")


def _on_confirm(state: ChatState, event: Event) -> Transition:
    if not isinstance(event, UserText):
        return state, []
    if classify_intent(event.text) == "yes":
        return replace(state, step="saving"), [Save(state.kind, dict(state.form))]
    return _restart(state, f"{DOC_LABELS[state.kind].capitalize()} creation cancelled. Would you like to start over?")


def _on_saving(state: ChatState, event: Event) -> Transition:
    if isinstance(event, SaveFailed):
        return _restart(state, f"❌ Error saving: {event.message}")
    if not isinstance(event, Saved):
        return state, []
    state = replace(state, document_id=event.document_id)
    text = f"✅ {DOC_LABELS[state.kind].capitalize()} created with ID {event.document_id}."
    if state.kind == "dfmea":
        return replace(state, step="export"), [Say(f"{text} Would you like to export it?"), Offer(("Export as Excel", "Export as PDF", "No, continue"))]
    return replace(state, step="complete"), [Say(text), Offer((f"Create another {state.kind.upper()}", "Go back to home"))]


def _on_export(state: ChatState, event: Event) -> Transition:
    if not isinstance(event, UserText):
        return state, []
    intent = classify_intent(event.text)
    effects: list[Effect] = []
    if intent == "excel":
        effects = [Export(state.kind, state.document_id, "xlsx"), Say("✅ Downloading Excel file...")]
    elif intent == "pdf":
        effects = [Export(state.kind, state.document_id, "pdf"), Say("✅ Downloading PDF file...")]
    effects.append(Offer((f"Create another {state.kind.upper()}", "Go back to home")))
    return replace(state, step="complete"), effects


def _on_complete(state: ChatState, event: Event) -> Transition:
    if not isinstance(event, UserText):
        return state, []
    if classify_intent(event.text) in ("another", "create"):
        return _restart(state, f"Let's create another {DOC_LABELS[state.kind]}! What would you like to do?")
    return replace(state, step="finished"), [Finish()]


_HANDLERS: dict[str, Callable[[ChatState, Event], Transition]] = {
    "initial": _on_initial,
    "aiInput": _on_ai_input,
    "generating": _on_generating,
    "field": _on_field,
    "selectLink": _on_select_link,
    "confirm": _on_confirm,
    "saving": _on_saving,
    "export": _on_export,
    "complete": _on_complete,
}


# ── Runner ───────────────────────────────────────────────────────────────────

class ChatSession:
    """
    Drives the state machine against real collaborators.

    `generator` is the AI draft generator (TemplateClient or DraftAgent) and
    `on_export(kind, document_id, fmt)` is called for Export effects. Only
    Say, Offer, Export and Finish effects are returned to the caller.
    """

    def __init__(self, kind: DocKind, service, generator=None, on_export=None) -> None:
        self.service = service
        self.generator = generator
        self.on_export = on_export
        self.state, effects = start(kind)
        self._initial = effects

    @property
    def finished(self) -> bool:
        return self.state.step == "finished"

    def greeting(self) -> list[Effect]:
        return list(self._initial)

    def send(self, text: str) -> list[Effect]:
        return self._dispatch(UserText(text))

    def _dispatch(self, event: Event) -> list[Effect]:
        self.state, effects = transition(self.state, event)
        visible: list[Effect] = []
        for effect in effects:
            follow_up = self._execute(effect)
            if follow_up is None:
                visible.append(effect)
            else:
                visible.extend(self._dispatch(follow_up))
        return visible

    def _execute(self, effect: Effect) -> Optional[Event]:
        if isinstance(effect, ListItems):
            return self._list(effect.kind)
        if isinstance(effect, GenerateDraft):
            return self._generate(effect)
        if isinstance(effect, Save):
            return self._save(effect)
        if isinstance(effect, Export) and self.on_export is not None:
            self.on_export(effect.kind, effect.document_id, effect.fmt)
        return None

    def _list(self, kind: DocKind) -> Event:
        try:
            if kind == "edps":
                items = tuple(LinkCandidate(n.id, n.norm_number, n.title) for n in self.service.list_norms())
            elif kind == "dvp":
                items = tuple(LinkCandidate(p.id, p.procedure_id, p.test_name) for p in self.service.list_test_procedures())
            else:
                items = tuple(
                    LinkCandidate(a.id, a.generic_failure, f"{a.failure_mode} (RPN: {a.rpn})")
                    for a in self.service.list_failure_analyses()
                )
        except SmartDocError as e:
            logger.error("Listing %s failed: %s", kind, e)
            return ListFailed(e.message)
        return ItemsListed(items)

    def _generate(self, effect: GenerateDraft) -> Event:
        if self.generator is None:
            return DraftFailed("AI tool is not available")
        try:
            raw = self.generator.execute(effect.kind, effect.description)
        except SmartDocError as e:
            logger.error("Draft generation failed: %s", e)
            return DraftFailed(e.message)
        result = extract_draft(effect.kind, raw)
        return DraftReady(result.fields, tuple(result.missing))

    def _save(self, effect: Save) -> Event:
        create = {
            "edps": self.service.create_norm,
            "dvp": self.service.create_test_procedure,
            "dfmea": self.service.create_failure_analysis,
        }[effect.kind]
        try:
            document = create(dict(effect.form))
        except ValidationError as e:
            return SaveFailed(f"invalid field values ({e.error_count()} error(s))")
        except SmartDocError as e:
            if e.status_code >= 500:
                raise
            return SaveFailed(e.message)
        return Saved(document.id)
