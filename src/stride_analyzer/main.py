from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict

from stride_analyzer.agents.orchestrator import Orchestrator
from stride_analyzer.clients.errors import PipelineError
from stride_analyzer.clients.llm_factory import build_llm_client
from stride_analyzer.telemetry import init_telemetry
from stride_analyzer.utils.config import load_settings


def _apply_overrides(settings: Dict[str, Any], args: argparse.Namespace) -> None:
    pipeline = settings.setdefault("pipeline", {})
    if getattr(args, "batch_size", None):
        pipeline["batch_size"] = args.batch_size
    if getattr(args, "top_k", None):
        pipeline["top_k"] = args.top_k
    if args.artifacts_dir:
        settings.setdefault("analysis", {})["artifacts_dir"] = args.artifacts_dir


def _read_input(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    return Path(path).read_text(encoding="utf-8")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="STRIDE threat analysis of architecture descriptions")
    parser.add_argument("--settings", default="config/settings.yaml", help="Settings YAML path")
    parser.add_argument("--artifacts-dir", help="Directory for run artifacts and event logs")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    analyze = sub.add_parser("analyze", help="Produce a consolidated STRIDE report")
    analyze.add_argument("input", help="Architecture description file ('-' for stdin)")
    analyze.add_argument("-o", "--output", help="Write the report JSON here instead of stdout")
    analyze.add_argument("--batch-size", type=int, help="Reports per consolidation request")

    chunks = sub.add_parser("chunks", help="Split text into overlapping chunks")
    chunks.add_argument("input", help="Text file ('-' for stdin)")
    chunks.add_argument("--query", help="Return only the chunks most relevant to this query")
    chunks.add_argument("--top-k", type=int, help="Number of chunks to return with --query")
    return parser


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    settings = load_settings(args.settings)
    _apply_overrides(settings, args)
    init_telemetry(settings)
    text = _read_input(args.input)

    if args.command == "chunks":
        llm_client = build_llm_client(settings) if args.query else None
        orchestrator = Orchestrator(settings, llm_client=llm_client)
        try:
            print(json.dumps(orchestrator.process_text(text, query=args.query), indent=2))
        finally:
            if llm_client is not None:
                llm_client.close()
        return

    llm_client = build_llm_client(settings)
    if llm_client is None:
        parser.error("llm.enabled is false; analysis requires the remote model.")
    orchestrator = Orchestrator(settings, llm_client=llm_client)
    try:
        outcome = orchestrator.analyze_security(text)
    except PipelineError as exc:
        print(f"Analysis failed during {exc.stage}: {exc.cause}", file=sys.stderr)
        sys.exit(1)
    finally:
        llm_client.close()

    body = json.dumps(outcome.to_response(), indent=2)
    if args.output:
        Path(args.output).write_text(body, encoding="utf-8")
        print(f"Report written to {args.output} ({outcome.processed_chunks}/{outcome.total_chunks} segments)")
    else:
        print(body)
    if outcome.error:
        print(outcome.error, file=sys.stderr)


if __name__ == "__main__":
    main()
