"""CLI entrypoint for document-to-video runs."""
import argparse
import json
import sys
from typing import Any, Dict, Optional

from .errors import PipelineError, PipelineFailed, RenderTimeout
from .pipeline import Orchestrator


def _read_document(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


def _print_progress(stage: str, ready: int, total: int) -> None:
    if total:
        print(f"[pipeline] {stage} {ready}/{total}", flush=True)
    else:
        print(f"[pipeline] {stage}", flush=True)


def _print_warning(advisory: RenderTimeout) -> None:
    links = {str(idx): url for idx, url in sorted(advisory.pending.items()) if url}
    print(f"[pipeline] warning: {advisory}", flush=True)
    if links:
        print(f"[pipeline] still rendering: {json.dumps(links)}", flush=True)


def run_page_by_page(args: argparse.Namespace, orch: Optional[Orchestrator] = None) -> Dict[str, Any]:
    orch = orch or Orchestrator()
    document = _read_document(args.document)
    full_text, page_count = orch.pages.extract_text(document)
    output_path = orch.run_page_by_page_pipeline(
        document,
        full_text,
        page_count,
        progress=_print_progress,
        on_warning=_print_warning,
    )
    return {"mode": "page-by-page", "page_count": page_count, "output_path": output_path}


def run_summary(args: argparse.Namespace, orch: Optional[Orchestrator] = None) -> Dict[str, Any]:
    orch = orch or Orchestrator()
    full_text, page_count = orch.pages.extract_text(_read_document(args.document))
    output_path = orch.run_summary_pipeline(
        full_text,
        tone=args.tone,
        max_length_seconds=args.max_length,
        progress=_print_progress,
        on_warning=_print_warning,
    )
    return {"mode": "summary", "page_count": page_count, "output_path": output_path}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Turn a PDF into a narrated talking-head video")
    sub = parser.add_subparsers(dest="command", required=True)

    pages = sub.add_parser("page-by-page", help="Narrate every page over its rendered image")
    pages.add_argument("--document", required=True, help="Path to a PDF document")
    pages.set_defaults(handler=run_page_by_page)

    summary = sub.add_parser("summary", help="Single summary clip for the whole document")
    summary.add_argument("--document", required=True, help="Path to a PDF document")
    summary.add_argument("--tone", choices=["professional", "casual", "educational"], default=None)
    summary.add_argument("--max-length", type=int, default=None, help="Target length in seconds")
    summary.set_defaults(handler=run_summary)
    return parser


def main(argv: Optional[list] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        result = args.handler(args)
    except PipelineFailed as exc:
        print(json.dumps({"error": exc.payload}, ensure_ascii=True), file=sys.stderr)
        return 1
    except PipelineError as exc:
        # Text extraction runs before the pipeline and raises its own kinds.
        print(json.dumps({"error": {"reason": exc.reason, "message": str(exc)}}, ensure_ascii=True), file=sys.stderr)
        return 1
    print(json.dumps(result, ensure_ascii=True, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
