#!/usr/bin/env python3
"""
PD-SmartDoc — CLI entrypoint.

Usage:
  python src/main.py serve                          # Run the HTTP API (default port 3001)
  python src/main.py seed                           # Load the built-in brake system example
  python src/main.py chat dfmea                     # Guided console form (edps | dvp | dfmea)
  python src/main.py generate dvp "brake pedal force test"
                                                    # Draft a document with the AI tool, print JSON
  python src/main.py export <dfmea-id> --format pdf --output-dir ./out
  python src/main.py export-all --format xlsx --output-dir ./out

Configuration comes from the environment or a .env file:
  SMARTDOC_DATA_DIR   directory holding edps.json, dvp.json, dfmea.json (default ./data)
  SAI_API_KEY         key for the SAI Library template service
  SMARTDOC_AI_PROVIDER=anthropic plus ANTHROPIC_API_KEY to draft with Claude instead
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

# Allow running from the repository root as well as src/
sys.path.insert(0, str(Path(__file__).parent))

from chat_flow import ChatSession, Offer, Say
from doc_schema import RiskSummary
from document_service import DocumentService
from draft_agent import build_generator
from errors import SmartDocError
from exporter import failure_analyses_xlsx, failure_analysis_pdf, failure_analysis_xlsx
from extraction import extract_draft
from logging_config import setup_logging
from record_store import StoreSet
from settings import Settings, load_settings
from ui.renderer import render_html_report


# ── Built-in example: Automotive Disc Brake System ────────────────────────────
EXAMPLE_NORM = {
    "normNumber": "NP-001",
    "title": "Caliper Bolt Torque Spec",
    "description": "Caliper mounting bolts M12x1.5 tightened to 110 Nm ± 10 Nm with thread-locking compound.",
    "target": "Prevent loss of clamp load under thermal cycling from -40°C to +300°C.",
    "carPart": "Brake Caliper",
}
EXAMPLE_PROCEDURE = {
    "procedureId": "3.42",
    "procedureType": "DURABILIDADE",
    "performanceObjective": "Caliper bolts keep clamp load over 300,000 braking cycles.",
    "testName": "Caliper Bolt Vibration Endurance",
    "acceptanceCriteria": "Residual torque between 90 Nm e 120 Nm after the test.",
    "responsible": "Chassis Validation",
    "carPart": "Brake Caliper",
}
EXAMPLE_ANALYSIS = {
    "genericFailure": "Brake Caliper",
    "failureMode": "Mounting bolt loosening",
    "cause": "Insufficient clamp load after thermal cycling",
    "carPart": "Brake Caliper",
    "severity": 9,
    "occurrence": 3,
    "detection": 4,
}


def _log(message: str) -> None:
    print(f"[SmartDoc] {message}", file=sys.stderr)


def _service(settings: Settings) -> DocumentService:
    return DocumentService(StoreSet.from_directory(settings.data_dir))


def _write(output_dir: Path, name: str, payload) -> Path:
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / name
    if isinstance(payload, str):
        path.write_text(payload, encoding="utf-8")
    else:
        path.write_bytes(payload.getvalue())
    return path


def export_one(service: DocumentService, analysis_id: str, fmt: str, output_dir: Path) -> Path:
    entry = service.get_failure_analysis(analysis_id)
    if fmt == "xlsx":
        payload = failure_analysis_xlsx(entry)
    elif fmt == "pdf":
        payload = failure_analysis_pdf(entry)
    else:
        payload = render_html_report([entry], RiskSummary.from_entries([entry]))
    return _write(output_dir, f"DFMEA_{entry.id}.{fmt}", payload)


# ── Subcommands ───────────────────────────────────────────────────────────────

def cmd_serve(args, settings: Settings) -> None:
    from api import create_app

    app = create_app(settings)
    _log(f"PD-SmartDoc API running on http://{args.host or settings.host}:{args.port or settings.port}")
    app.run(host=args.host or settings.host, port=args.port or settings.port)


def cmd_seed(args, settings: Settings) -> None:
    service = _service(settings)
    norm = service.create_norm(EXAMPLE_NORM)
    procedure = service.create_test_procedure(EXAMPLE_PROCEDURE)
    analysis = service.create_failure_analysis({
        **EXAMPLE_ANALYSIS,
        "preventionControl": {"type": "EDPS", "edpsId": norm.id, "description": norm.title},
        "detectionControl": {"type": "DVP", "dvpId": procedure.id, "description": procedure.test_name},
    })
    _log(f"Seeded EDPS {norm.norm_number}, DVP {procedure.procedure_id}, DFMEA {analysis.id} (RPN {analysis.rpn})")
    print(json.dumps({"edps": norm.id, "dvp": procedure.id, "dfmea": analysis.id}, indent=2))


def cmd_generate(args, settings: Settings) -> None:
    raw = build_generator(settings).execute(args.kind, args.description)
    draft = extract_draft(args.kind, raw)
    if draft.missing:
        _log(f"Fields not found in the AI response: {', '.join(draft.missing)}")
    print(json.dumps({"draft": draft.fields, "missing": draft.missing, "raw": raw}, indent=2, ensure_ascii=False))


def cmd_export(args, settings: Settings) -> None:
    path = export_one(_service(settings), args.id, args.format, Path(args.output_dir))
    _log(f"Export saved: {path}")


def cmd_export_all(args, settings: Settings) -> None:
    service = _service(settings)
    entries = service.list_failure_analyses()
    summary = RiskSummary.from_entries(entries)
    if args.format == "xlsx":
        payload = failure_analyses_xlsx(entries, summary)
    else:
        payload = render_html_report([service.risk.resolve_links(e) for e in entries], summary)
    path = _write(Path(args.output_dir), f"DFMEA_All.{args.format}", payload)
    _log(f"Exported {len(entries)} DFMEA entries: {path}")

    print("\n" + "=" * 60, file=sys.stderr)
    print(f"  Total entries  : {summary.total_entries}", file=sys.stderr)
    print(f"  Critical (≥400): {summary.critical_count}", file=sys.stderr)
    print(f"  High (200–399) : {summary.high_count}", file=sys.stderr)
    print(f"  Medium (100–199): {summary.medium_count}", file=sys.stderr)
    print(f"  Low (<100)     : {summary.low_count}", file=sys.stderr)
    print(f"  Not rated      : {summary.unrated_count}", file=sys.stderr)
    print(f"  Max RPN        : {summary.max_rpn}", file=sys.stderr)
    print(f"  Avg RPN        : {summary.avg_rpn}", file=sys.stderr)
    print("=" * 60, file=sys.stderr)


def cmd_chat(args, settings: Settings) -> None:
    service = _service(settings)
    output_dir = Path(args.output_dir)

    def on_export(kind, document_id, fmt):
        path = export_one(service, document_id, fmt, output_dir)
        _log(f"Export saved: {path}")

    session = ChatSession(
        args.kind,
        service,
        generator=build_generator(settings) if settings.ai_configured else None,
        on_export=on_export,
    )

    def show(effects) -> list[str]:
        replies: list[str] = []
        for effect in effects:
            if isinstance(effect, Say):
                print(f"\nassistant> {effect.text}")
            elif isinstance(effect, Offer):
                replies = list(effect.replies)
                for i, reply in enumerate(replies, 1):
                    print(f"  [{i}] {reply}")
        return replies

    replies = show(session.greeting())
    while not session.finished:
        try:
            text = input("\nyou> ").strip()
        except EOFError:
            break
        if text.isdigit() and 1 <= int(text) <= len(replies) and session.state.step != "field":
            text = replies[int(text) - 1]
        replies = show(session.send(text))
    _log("Bye!")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="PD-SmartDoc — EDPS / DVP / DFMEA document manager",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--env-file", default=None, help="Path to a .env file (default: ./.env if present)")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)
    serve.set_defaults(func=cmd_serve)

    seed = sub.add_parser("seed", help="Create the built-in brake system example documents")
    seed.set_defaults(func=cmd_seed)

    chat = sub.add_parser("chat", help="Guided console form")
    chat.add_argument("kind", choices=["edps", "dvp", "dfmea"])
    chat.add_argument("--output-dir", default=".", help="Where exports requested in the chat are written")
    chat.set_defaults(func=cmd_chat)

    generate = sub.add_parser("generate", help="Draft a document with the AI tool")
    generate.add_argument("kind", choices=["edps", "dvp", "dfmea"])
    generate.add_argument("description")
    generate.set_defaults(func=cmd_generate)

    export = sub.add_parser("export", help="Export one DFMEA entry")
    export.add_argument("id")
    export.add_argument("--format", choices=["xlsx", "pdf", "html"], default="xlsx")
    export.add_argument("--output-dir", default=".")
    export.set_defaults(func=cmd_export)

    export_all = sub.add_parser("export-all", help="Export every DFMEA entry")
    export_all.add_argument("--format", choices=["xlsx", "html"], default="xlsx")
    export_all.add_argument("--output-dir", default=".")
    export_all.set_defaults(func=cmd_export_all)

    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    settings = load_settings(args.env_file)
    setup_logging(settings.log_level, settings.log_dir)

    try:
        args.func(args, settings)
    except SmartDocError as e:
        print(f"ERROR: {e.message}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
