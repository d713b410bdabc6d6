"""Command-line interface for TrackBack.

This module provides the CLI commands for scoring reports, importing them,
rescanning the store, and reviewing matches.
"""

import json
import sys
from pathlib import Path
from typing import Optional

from loguru import logger
from pydantic import ValidationError

from trackback.config import Config, get_config
from trackback.errors import InvalidStateTransition, ItemNotFound, MatchingError, MatchNotFound
from trackback.models.item import Item, ItemKind
from trackback.models.match import Match, MatchStatus
from trackback.services.matching_engine import MatchingEngine
from trackback.services.similarity_scorer import ScoringConfig, SimilarityScorer
from trackback.version import format_version_string

__all__ = ["cli_main"]


def print_version() -> None:
    """Print version information."""
    print(format_version_string())


def _load_json(path: str):
    return json.loads(Path(path).read_text(encoding="utf-8"))


def _build_engine(config: Config) -> MatchingEngine:
    from trackback.main import build_engine, configure_logging

    configure_logging(config)
    return build_engine(config)


def _format_match(match: Match) -> str:
    line = f"{match.id}  {match.score:>3}  {match.status.value:<9}  {match.lost_item_id} ↔ {match.found_item_id}"
    if match.verified_by:
        line += f"  (by {match.verified_by})"
    return line


def cmd_score(lost_path: str, found_path: str, config: Config) -> int:
    """Score two item reports stored as JSON files.

    The files may be given in either order.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    try:
        first = Item.model_validate(_load_json(lost_path))
        second = Item.model_validate(_load_json(found_path))
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        print(f"✗ Could not read item: {e}")
        return 1

    if first.kind is ItemKind.FOUND and second.kind is ItemKind.LOST:
        first, second = second, first
    if first.kind is not ItemKind.LOST or second.kind is not ItemKind.FOUND:
        print("✗ Need one lost and one found item")
        return 1

    result = SimilarityScorer(ScoringConfig.from_config(config)).evaluate(first, second)
    print(f"Score: {result.score}/100  ({first.id} ↔ {second.id})")
    print()
    for signal, contribution in result.breakdown().items():
        print(f"  {signal:<10} {result.similarities[signal]:.2f}  → {contribution:6.2f}")
    for note in result.degraded:
        print(f"  ! {note}")

    verdict = "would create a pending match" if result.score >= config.generation_threshold else "below threshold"
    print()
    print(f"{verdict} (threshold {config.generation_threshold})")
    return 0


def cmd_import(path: str, config: Config) -> int:
    """Add item reports from a JSON file (one object or a list) and match them.

    Returns:
        Exit code (0 for success, 1 if any item failed)
    """
    try:
        payload = _load_json(path)
    except (OSError, json.JSONDecodeError) as e:
        print(f"✗ Could not read {path}: {e}")
        return 1
    records = payload if isinstance(payload, list) else [payload]

    engine = _build_engine(config)
    failures = 0
    with engine:
        for record in records:
            try:
                item = engine.item_store.add_item(Item.model_validate(record))
            except (ValidationError, ValueError, MatchingError) as e:
                failures += 1
                print(f"✗ Skipped item {record.get('id', '?') if isinstance(record, dict) else '?'}: {e}")
                continue
            print(f"✓ Imported {item.kind.value} item {item.id}")

    counts = engine.get_statistics()["matches"]
    print()
    print(f"Imported {len(records) - failures}/{len(records)} item(s); {counts['pending']} pending match(es)")
    return 1 if failures else 0


def cmd_rescan(config: Config) -> int:
    """Rebuild the candidate index and match every active item."""
    engine = _build_engine(config)
    try:
        summary = engine.rescan()
    except MatchingError as e:
        logger.exception("Rescan failed")
        print(f"✗ Rescan failed: {e}")
        return 1
    finally:
        engine.stop()

    print(f"✓ Rescanned {summary['processed']} active item(s): {summary['created']} new match(es)")
    return 0


def cmd_matches(status: str | None, config: Config) -> int:
    """List matches in review order."""
    try:
        status_filter = MatchStatus(status.lower()) if status else None
    except ValueError:
        print(f"✗ Unknown status: {status}")
        return 1

    engine = _build_engine(config)
    matches = engine.list_matches(status=status_filter)
    if not matches:
        print("No matches")
        return 0
    for match in matches:
        print(_format_match(match))
    print()
    print(f"{len(matches)} match(es)")
    return 0


def cmd_decide(action: str, match_id: str, verifier_id: str, config: Config) -> int:
    """Confirm or reject a pending match."""
    engine = _build_engine(config)
    decide = engine.confirm_match if action == "confirm" else engine.reject_match
    try:
        match = decide(match_id, verifier_id)
    except (MatchNotFound, ItemNotFound, InvalidStateTransition, ValueError) as e:
        print(f"✗ {e}")
        return 1

    print(f"✓ Match {match.id} {match.status.value}")
    return 0


def cmd_suggest(config: Config) -> int:
    """Print the optimal one-match-per-item review order."""
    engine = _build_engine(config)
    suggestion = engine.suggest_assignments()
    if not suggestion.suggested:
        print("No pending matches")
        return 0

    print("Suggested:")
    for match in suggestion.suggested:
        print(f"  {_format_match(match)}")
    if suggestion.deferred:
        print("Deferred:")
        for match in suggestion.deferred:
            print(f"  {_format_match(match)}")
    print()
    print(f"Total score: {suggestion.total_score}")
    return 0


def cmd_stats(config: Config) -> int:
    """Print item and match counts."""
    engine = _build_engine(config)
    print(json.dumps(engine.get_statistics(), indent=2, sort_keys=True))
    return 0


def cmd_serve() -> int:
    """Start the review API server.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    try:
        from trackback.main import main as run_app
        run_app()
        return 0
    except KeyboardInterrupt:
        print("\n✓ TrackBack stopped")
        return 0
    except Exception as e:
        logger.exception("Server error")
        print(f"✗ Server error: {e}", file=sys.stderr)
        return 1


def print_help() -> None:
    """Print CLI help message."""
    print_version()
    print()
    print("Usage: trackback [COMMAND] [ARGS]")
    print()
    print("Commands:")
    print("  score LOST.json FOUND.json   Score two item reports")
    print("  import ITEMS.json            Add item reports and match them")
    print("  rescan                       Re-run matching for every active item")
    print("  matches [STATUS]             List matches (pending, confirmed, rejected)")
    print("  confirm MATCH_ID VERIFIER    Confirm a pending match")
    print("  reject MATCH_ID VERIFIER     Reject a pending match")
    print("  suggest                      Show the optimal review order")
    print("  stats                        Show item and match counts")
    print("  serve                        Start the review API server")
    print("  version                      Show version information")
    print("  help                         Show this help message")
    print()
    print("Examples:")
    print("  trackback score lost.json found.json")
    print("  trackback matches pending")
    print("  trackback confirm 3f2a... moderator-7")
    print()


def _usage_error(message: str) -> int:
    print(f"✗ {message}")
    print()
    print_help()
    return 1


def cli_main(args: Optional[list[str]] = None, config: Config | None = None) -> int:
    """Main CLI entry point.

    Args:
        args: Command-line arguments (defaults to sys.argv[1:])
        config: Settings to use (global config when omitted)

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    if args is None:
        args = sys.argv[1:]

    # No command or help
    if not args or args[0] in ("help", "-h", "--help"):
        print_help()
        return 0

    command = args[0].lower()
    params = args[1:]

    if command == "version":
        print_version()
        return 0
    if command == "serve":
        return cmd_serve()

    config = config or get_config()

    if command == "score":
        if len(params) != 2:
            return _usage_error("score needs LOST.json and FOUND.json")
        return cmd_score(params[0], params[1], config)
    elif command == "import":
        if len(params) != 1:
            return _usage_error("import needs ITEMS.json")
        return cmd_import(params[0], config)
    elif command == "rescan":
        return cmd_rescan(config)
    elif command == "matches":
        return cmd_matches(params[0] if params else None, config)
    elif command in ("confirm", "reject"):
        if len(params) != 2:
            return _usage_error(f"{command} needs MATCH_ID and VERIFIER")
        return cmd_decide(command, params[0], params[1], config)
    elif command == "suggest":
        return cmd_suggest(config)
    elif command == "stats":
        return cmd_stats(config)
    else:
        return _usage_error(f"Unknown command: {command}")
