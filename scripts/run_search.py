import argparse
import asyncio
import json
import logging
import sys
from datetime import date
from typing import List, Optional

from dotenv import load_dotenv

from models.schema import SearchRequest
from search.errors import SearchConfigurationError
from search.orchestrator import SearchContext, SearchOrchestrator

# Load environment variables
load_dotenv()


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Expected YYYY-MM-DD, got '{value}'")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Search for events in a target country and date window.")
    parser.add_argument("query", help='Base query, e.g. \'(compliance OR "legal tech")\'')
    parser.add_argument("--country", help="Target country (code or name). Defaults to SEARCH_DEFAULT_COUNTRY.")
    parser.add_argument("--city", help="Target city, used for tier A augmentation.")
    parser.add_argument("--locale", help="Scaffold/date locale override, e.g. de, fr, en-US.")
    parser.add_argument("--from", dest="date_from", type=_parse_date, help="Window start (YYYY-MM-DD).")
    parser.add_argument("--to", dest="date_to", type=_parse_date, help="Window end (YYYY-MM-DD).")
    parser.add_argument("--limit", type=int, help="Max results per provider call.")
    parser.add_argument("--allow-global-lists", action="store_true", default=None,
                        help="Admit generic event listing pages.")
    parser.add_argument("--allow-undated", action="store_true", default=None,
                        help="Admit events without a parseable date.")
    parser.add_argument("--urls-only", action="store_true",
                        help="Stop after URL-level search; skip extraction and scope filtering.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    return parser


async def run(args: argparse.Namespace) -> dict:
    request = SearchRequest(
        query=args.query,
        country=args.country,
        city=args.city,
        locale=args.locale,
        date_from=args.date_from,
        date_to=args.date_to,
        limit=args.limit,
        allow_global_lists=args.allow_global_lists,
        allow_undated=args.allow_undated,
    )
    orchestrator = SearchOrchestrator(SearchContext.from_env())

    if args.urls_only:
        response = await orchestrator.execute_search(request)
    else:
        response = await orchestrator.execute_enhanced_search(request)
    return response.model_dump(mode="json")


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        result = asyncio.run(run(args))
    except SearchConfigurationError as e:
        print(f"❌ Configuration error: {e}", file=sys.stderr)
        return 2
    except ValueError as e:
        print(f"❌ Invalid request: {e}", file=sys.stderr)
        return 2

    print(json.dumps(result, indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    sys.exit(main())
