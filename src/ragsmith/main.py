"""
Command-line entry point: build the index or ask a question, printing JSON.
"""

import argparse
import asyncio
import json
import sys

from .config.container import setup_container
from .config.settings import get_settings
from .errors import RagError
from .observability.logging import get_logger, setup_logging
from .rag.engine import AskOptions
from .rag.selection import SearchFilters

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ragsmith", description="Answer questions from your documents")
    parser.add_argument("--version", action="store_true", help="Show version")
    subparsers = parser.add_subparsers(dest="command")

    index = subparsers.add_parser("index", help="Build or update the index")
    index.add_argument(
        "--mode",
        choices=["full", "incremental"],
        default=None,
        help="Index mode (default from settings)",
    )

    ask = subparsers.add_parser("ask", help="Ask a question")
    ask.add_argument("question", help="Question to answer")
    ask.add_argument("--source", action="append", dest="sources", default=None, help="Allowed source (repeatable)")
    ask.add_argument("--source-prefix", default=None, help="Only use sources under this path prefix")
    ask.add_argument("--must-include", nargs="+", default=None, help="Keywords every passage must contain")
    ask.add_argument("--any", action="store_true", help="Require any (not all) of the keywords")
    ask.add_argument("--debug", action="store_true", default=None, help="Include the debug payload")

    return parser


async def run(args: argparse.Namespace) -> dict:
    settings = get_settings()
    container = setup_container(settings)

    async with container.lifespan():
        engine = await container.get_async("engine")

        if args.command == "index":
            report = await engine.reindex(args.mode)
            return report.to_dict()

        filters = None
        if args.sources or args.source_prefix:
            filters = SearchFilters(sources=args.sources, source_prefix=args.source_prefix)
        options = AskOptions(
            filters=filters,
            must_include=args.must_include,
            must_include_mode="any" if args.any else "all",
            debug=args.debug,
        )
        result = await engine.ask(args.question, options)
        return result.to_dict()


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        from . import __version__

        print(f"ragsmith v{__version__}")
        return 0

    if args.command is None:
        parser.print_help()
        return 2

    setup_logging(get_settings().observability.log_level)
    output = asyncio.run(run(args))
    print(json.dumps(output, indent=2, ensure_ascii=False))
    return 0


def cli_main():
    """CLI entry point."""
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        sys.exit(130)
    except RagError as e:
        logger.error(f"Request failed: {e}", status=e.status_code)
        print(json.dumps({"error": str(e), "status": e.status_code}), file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    cli_main()
