"""Command-line interface for docqa.

Usage:
    docqa ingest report.pdf notes.md      # Index documents
    docqa ingest draft.txt --source-id v2 # Index under an explicit source id
    docqa remove report.pdf               # Remove a source
    docqa stats                           # Show index statistics
    docqa ask "What are cats?" --stream   # Ask a question
    docqa serve --port 5000               # Run the HTTP API
"""
import argparse
import asyncio
import sys
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional

import structlog
from hypercorn.asyncio import serve as hypercorn_serve
from hypercorn.config import Config

from docqa import config
from docqa.errors import DocQAError
from docqa.log_config import configure_logging
from docqa.main import create_app
from docqa.models import Citation
from docqa.rag.orchestrator import CitationsEvent, CompletionEvent, ErrorEvent, TokenEvent
from docqa.service import DocumentQAService

logger = structlog.get_logger()

ServiceFactory = Callable[[], DocumentQAService]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="docqa",
        description="Answer questions from your own documents",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help=f"Log level (default: {config.LOG_LEVEL})",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    ingest = subparsers.add_parser("ingest", help="Index one or more documents")
    ingest.add_argument("paths", nargs="+", type=Path, help="Files to index (.pdf, .md, .txt)")
    ingest.add_argument(
        "--source-id",
        default=None,
        help="Source id (only with a single path; default: file name)",
    )

    remove = subparsers.add_parser("remove", help="Remove every fragment of a source")
    remove.add_argument("source_id")

    subparsers.add_parser("stats", help="Show index statistics")

    ask = subparsers.add_parser("ask", help="Ask a question")
    ask.add_argument("question")
    ask.add_argument("--stream", action="store_true", help="Print the answer as it is generated")
    ask.add_argument(
        "--top-k",
        type=int,
        default=None,
        help=f"Fragments to retrieve (default: {config.RETRIEVAL_TOP_K})",
    )
    ask.add_argument(
        "--floor",
        type=float,
        default=None,
        help=f"Minimum similarity (default: {config.SIMILARITY_FLOOR})",
    )
    ask.add_argument(
        "--lenient",
        action="store_true",
        help="Allow answers beyond the literal document text",
    )
    ask.add_argument("--source", default=None, help="Restrict retrieval to one source")

    serve = subparsers.add_parser("serve", help="Run the HTTP API with hypercorn")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=5000)

    return parser


def print_citations(citations: List[Citation]) -> None:
    if not citations:
        return
    print("\n📚 Sources:")
    for citation in citations:
        page = f" p.{citation.page}" if citation.page else ""
        print(f"   [{citation.rank}] {citation.source_id}{page} (similarity {citation.similarity:.4f})")


async def run_ingest(service: DocumentQAService, args: argparse.Namespace) -> int:
    if args.source_id and len(args.paths) > 1:
        print("\n❌ Error: --source-id can only be used with a single path\n")
        return 1

    started = datetime.now()
    failed = 0
    total_fragments = 0

    for number, path in enumerate(args.paths, 1):
        print(f"  ({number}/{len(args.paths)}) {path.name} ... ", end="", flush=True)
        try:
            result = await service.ingest_file(path, source_id=args.source_id)
        except DocQAError as e:
            failed += 1
            print(f"failed: {e.message}")
            logger.error("cli_ingest_failed", path=str(path), **e.log_context())
            continue

        total_fragments += result.fragment_count
        print(f"{result.fragment_count} fragments")

    elapsed = (datetime.now() - started).total_seconds()
    print(f"\n  📝 Fragments created: {total_fragments}")
    print(f"  ❌ Files failed:      {failed}")
    print(f"  ⏱️  Time elapsed:      {elapsed:.1f}s\n")

    return 1 if failed else 0


async def run_remove(service: DocumentQAService, args: argparse.Namespace) -> int:
    result = await service.remove_source(args.source_id)
    print(f"Removed {result.removed_count} fragments from {result.source_id}")
    return 0


async def run_stats(service: DocumentQAService, args: argparse.Namespace) -> int:
    stats = service.get_stats()
    print(f"Total fragments: {stats.total_fragments}")
    print(f"Dimension:       {stats.dimension if stats.dimension is not None else '-'}")
    for source_id, count in stats.per_source.items():
        print(f"  {source_id}: {count}")
    return 0


async def run_ask(service: DocumentQAService, args: argparse.Namespace) -> int:
    strict = False if args.lenient else None

    if not args.stream:
        answer = await service.query(
            args.question,
            top_k=args.top_k,
            similarity_floor=args.floor,
            strict=strict,
            source_filter=args.source,
        )
        print(answer.raw_text)
        print_citations(answer.citations)
        return 0

    events = service.query_stream(
        args.question,
        top_k=args.top_k,
        similarity_floor=args.floor,
        strict=strict,
        source_filter=args.source,
    )

    citations: List[Citation] = []
    status = 0
    async for event in events:
        if isinstance(event, CitationsEvent):
            citations = event.citations
        elif isinstance(event, TokenEvent):
            print(event.text, end="", flush=True)
        elif isinstance(event, CompletionEvent):
            print()
            print_citations(citations)
        elif isinstance(event, ErrorEvent):
            print(f"\n❌ Error: {event.message}\n")
            status = 1

    return status


COMMANDS = {
    "ingest": run_ingest,
    "remove": run_remove,
    "stats": run_stats,
    "ask": run_ask,
}


async def run_command(args: argparse.Namespace, service_factory: ServiceFactory) -> int:
    service = service_factory()
    await service.start()
    return await COMMANDS[args.command](service, args)


async def serve(host: str, port: int) -> None:
    hypercorn_config = Config()
    hypercorn_config.bind = [f"{host}:{port}"]
    await hypercorn_serve(create_app(), hypercorn_config)


def main(argv: Optional[List[str]] = None, service_factory: ServiceFactory = None) -> int:
    """Entry point for the docqa command."""
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    try:
        for warning in config.validate_config():
            print(f"⚠️  {warning}")

        if args.command == "serve":
            config.ensure_directories()
            asyncio.run(serve(args.host, args.port))
            return 0

        if service_factory is None:
            config.ensure_directories()
            service_factory = DocumentQAService.build

        return asyncio.run(run_command(args, service_factory))

    except KeyboardInterrupt:
        print("\n\n⚠️  Cancelled by user.\n")
        return 1

    except (DocQAError, ValueError) as e:
        print(f"\n❌ Error: {e}\n")
        logger.error("cli_command_failed", command=args.command, error=str(e), error_type=type(e).__name__)
        return 1


if __name__ == "__main__":
    sys.exit(main())
