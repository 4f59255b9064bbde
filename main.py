#!/usr/bin/env python3
"""Newsletter digest: clusters the news in your inbox into trending stories.

This CLI tool pulls newsletters from Gmail, extracts news items with an
LLM, groups them into stories across newsletters and scores what is
trending.

Commands:
    run         Process new newsletters (once or continuously)
    status      Show configuration and database statistics
    trending    Stories referenced by several newsletters
    voices      Latest headline from each prioritised source
    consensus   Items from different newsletters grouped by similarity
    digest      Synthesize a digest for a period
    rescore     Recompute trending scores for recent stories
    sources     Manage tracked newsletter sources
    story       Show one story with its member items

Examples:
    python main.py run                        # Single run
    python main.py run -c                     # Continuous polling
    python main.py trending --hours 48        # Last 48 hours
    python main.py sources add news@a16z.com --name a16z --priority 8
    python main.py digest --days 7

Environment:
    OPENAI_API_KEY: Required for the default models
    GMAIL_ACCESS_TOKEN (or client id/secret/refresh token): Required by 'run'
    See config.py for all configuration options
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime, timedelta, timezone

from config import Config
from database import Database
from observability.logging import setup_logging

logger = logging.getLogger(__name__)


def _print_json(payload: dict) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def cmd_run(args: argparse.Namespace, config: Config) -> int:
    """Process new newsletters once, or poll continuously with -c."""
    from pipeline import run_continuous, run_once

    if args.interval:
        config.poll_interval_seconds = args.interval

    try:
        if args.continuous:
            logger.info("Starting continuous mode...")
            asyncio.run(run_continuous(config))
            return 0
        stats = asyncio.run(run_once(config))
        logger.info("Run complete | stats=%s", json.dumps(stats))
        _print_json(stats)
        return 0
    except KeyboardInterrupt:
        logger.info("Stopped by user (Ctrl+C)")
        return 130


def cmd_status(args: argparse.Namespace, config: Config) -> int:
    """Display configuration and database statistics."""
    with Database(config.db_path) as db:
        db_stats = db.stats(config.user_id)
        failures = db.processing_logs(config.user_id, limit=5)

    status = {
        "config": {
            "user_id": config.user_id,
            "extraction_model": config.extraction_model,
            "analysis_model": config.analysis_model,
            "summary_model": config.summary_model,
            "embedding_model": config.embedding_model,
            "gmail_query": config.gmail_query,
            "gmail_credentials": config.has_gmail_credentials,
            "story_window_hours": config.story_window_hours,
            "similarity_threshold": config.similarity_threshold,
            "poll_interval": config.poll_interval_seconds,
            "enable_logfire": config.enable_logfire,
        },
        "database": {"path": str(config.db_path), **db_stats},
        "recent_failures": failures,
    }
    _print_json(status)
    return 0


def cmd_trending(args: argparse.Namespace, config: Config) -> int:
    """Top referenced stories in the period."""
    from headlines import top_referenced

    with Database(config.db_path) as db:
        result = top_referenced(
            db, config.user_id,
            period_hours=args.hours, min_mentions=args.min_mentions, limit=args.limit,
        )
    _print_json(result)
    return 0


def cmd_voices(args: argparse.Namespace, config: Config) -> int:
    """Latest headline per prioritised source."""
    from headlines import voice_updates

    with Database(config.db_path) as db:
        result = voice_updates(
            db, config.user_id,
            period_hours=args.hours, min_priority=args.min_priority, limit=args.limit,
        )
    _print_json(result)
    return 0


def cmd_consensus(args: argparse.Namespace, config: Config) -> int:
    """Group the period's items by embedding similarity."""
    from headlines import consensus_feed

    period_end = datetime.now(timezone.utc)
    period_start = period_end - timedelta(hours=args.hours)
    with Database(config.db_path) as db:
        result = consensus_feed(
            db, config.user_id, period_start, period_end,
            threshold=args.threshold if args.threshold is not None else config.consensus_threshold,
            max_per_query=args.max_per_query or config.consensus_max_per_query,
            min_mentions=args.min_mentions or config.consensus_min_mentions,
            persist=not args.no_save,
        )
    _print_json(result)
    return 0


def cmd_digest(args: argparse.Namespace, config: Config) -> int:
    """Synthesize and store the digest for the last N days."""
    from pipeline import generate_digest

    period_end = datetime.now(timezone.utc)
    period_start = period_end - timedelta(days=args.days)
    with Database(config.db_path) as db:
        digest, path = asyncio.run(generate_digest(config, db, period_start, period_end))

    print(digest.summary_content)
    if path:
        print(f"\nDigest written: {path}")
    return 0


def cmd_rescore(args: argparse.Namespace, config: Config) -> int:
    """Recompute trending and velocity scores for the story window."""
    from clustering.matcher import StoryWindow
    from pipeline import rescore_window

    window = StoryWindow(config.story_window_hours, config.story_window_limit)
    with Database(config.db_path) as db:
        count = rescore_window(db, config.user_id, window, datetime.now(timezone.utc))
    print(f"Rescored {count} stories.")
    return 0


def _print_sources(db: Database, config: Config) -> None:
    sources = db.list_sources(config.user_id)
    if not sources:
        print("No sources tracked. All senders are processed.")
        return

    print(f"\n=== Newsletter Sources ({len(sources)}) ===\n")
    for source in sources:
        state = "active" if source.is_active else "inactive"
        print(f"{source.email_address}  [{state}]")
        if source.name:
            print(f"   Name: {source.name}")
        print(f"   Priority: {source.voice_priority}  Credibility: {source.credibility_score:.2f}")
        if source.last_content_at:
            print(
                f"   Last content: {source.last_content_at:%Y-%m-%d %H:%M}  "
                f"Frequency: {source.content_frequency}/week"
            )
        if source.expertise_keywords:
            print(f"   Expertise: {', '.join(source.expertise_keywords)}")
        print()


def cmd_sources(args: argparse.Namespace, config: Config) -> int:
    """List, add, remove, prioritise or profile tracked sources."""
    from models.newsletter import NewsletterSource

    with Database(config.db_path) as db:
        if args.action == "list":
            _print_sources(db, config)
            return 0

        if args.action == "add":
            source = db.upsert_source(NewsletterSource(
                user_id=config.user_id,
                email_address=args.email,
                name=args.name,
                category=args.category,
                description=args.description,
                voice_priority=args.priority,
                credibility_score=args.credibility,
            ))
            print(f"Tracking {source.email_address} (id={source.id})")
            return 0

        if args.action == "remove":
            if not db.deactivate_source(config.user_id, args.email):
                print(f"Unknown source: {args.email}", file=sys.stderr)
                return 1
            print(f"Stopped tracking {args.email.lower()}")
            return 0

        if args.action == "priority":
            if not db.set_voice_priority(config.user_id, args.email, args.priority):
                print(f"Unknown source: {args.email}", file=sys.stderr)
                return 1
            print(f"Priority of {args.email.lower()} set to {args.priority}")
            return 0

        if args.action == "profile":
            from agents.analyst import StoryAnalyst
            from agents.completion import AgentCompleter
            from pipeline import profile_sources

            analyst = StoryAnalyst(AgentCompleter(config.analysis_model))
            profiles = asyncio.run(profile_sources(db, analyst, config.user_id, args.email))
            _print_json(profiles)
            return 0

    return 1


def cmd_story(args: argparse.Namespace, config: Config) -> int:
    """Show one story and the news items it groups."""
    with Database(config.db_path) as db:
        story = db.get_story(args.id)
        if story is None or story.user_id != config.user_id:
            print(f"Story not found: {args.id}", file=sys.stderr)
            return 1
        items = db.news_items_by_ids(story.news_item_ids)

    print(f"\n=== {story.canonical_title} ===\n")
    print(f"Cluster: {story.cluster_id}")
    print(f"Mentions: {story.mention_count}  Importance: {story.importance_score:.2f}  "
          f"Trending: {story.trending_score:.2f}  Velocity: {story.velocity_score:.2f}")
    print(f"First seen: {story.first_mentioned_at:%Y-%m-%d %H:%M}  "
          f"Last seen: {story.last_mentioned_at:%Y-%m-%d %H:%M}")
    if story.canonical_summary:
        print(f"\n{story.canonical_summary}")
    if story.trend_analysis:
        print(f"\nTrend: {story.trend_analysis}")
    if story.impact_assessment:
        print(f"Impact: {story.impact_assessment}")

    print("\nMentions:")
    for item in items:
        print(f"  - {item.title}")
        print(f"    {item.source.name} <{item.source.email}>  {item.created_at:%Y-%m-%d %H:%M}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Newsletter digest: trending stories from your inbox",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # run command
    run_parser = subparsers.add_parser("run", help="Process new newsletters")
    run_parser.add_argument(
        "-c", "--continuous",
        action="store_true",
        help="Run continuously with polling",
    )
    run_parser.add_argument(
        "--interval",
        type=int,
        help="Poll interval in seconds (continuous mode)",
    )

    # status command
    subparsers.add_parser("status", help="Show status and statistics")

    # trending command
    trending_parser = subparsers.add_parser("trending", help="Top referenced stories")
    trending_parser.add_argument("--hours", type=int, default=24, help="Period in hours (default: 24)")
    trending_parser.add_argument("--min-mentions", type=int, default=2, help="Minimum mentions (default: 2)")
    trending_parser.add_argument("--limit", type=int, default=10, help="Maximum stories (default: 10)")

    # voices command
    voices_parser = subparsers.add_parser("voices", help="Latest updates from prioritised sources")
    voices_parser.add_argument("--hours", type=int, default=24, help="Period in hours (default: 24)")
    voices_parser.add_argument("--min-priority", type=int, default=0, help="Minimum voice priority (default: 0)")
    voices_parser.add_argument("--limit", type=int, default=10, help="Maximum sources (default: 10)")

    # consensus command
    consensus_parser = subparsers.add_parser("consensus", help="Consensus feed for a period")
    consensus_parser.add_argument("--hours", type=int, default=24, help="Period in hours (default: 24)")
    consensus_parser.add_argument("--threshold", type=float, help="Similarity threshold (default: CONSENSUS_THRESHOLD)")
    consensus_parser.add_argument("--max-per-query", type=int, help="Maximum items per group")
    consensus_parser.add_argument("--min-mentions", type=int, help="Minimum items per group")
    consensus_parser.add_argument("--no-save", action="store_true", help="Do not persist the groups")

    # digest command
    digest_parser = subparsers.add_parser("digest", help="Synthesize a digest for a period")
    digest_parser.add_argument("--days", type=int, default=7, help="Period in days (default: 7)")

    # rescore command
    subparsers.add_parser("rescore", help="Recompute trending scores")

    # sources command
    sources_parser = subparsers.add_parser("sources", help="Manage tracked sources")
    sources_sub = sources_parser.add_subparsers(dest="action", required=True)
    sources_sub.add_parser("list", help="List tracked sources")
    add_parser = sources_sub.add_parser("add", help="Track a sender address or domain")
    add_parser.add_argument("email", help="Sender address (news@a16z.com) or bare domain (a16z.com)")
    add_parser.add_argument("--name", default="", help="Display name")
    add_parser.add_argument("--category", default="", help="Category label")
    add_parser.add_argument("--description", default="", help="Description")
    add_parser.add_argument("--priority", type=int, default=0, choices=range(0, 11), metavar="0-10",
                            help="Voice priority (default: 0)")
    add_parser.add_argument("--credibility", type=float, default=0.5, help="Credibility 0-1 (default: 0.5)")
    remove_parser = sources_sub.add_parser("remove", help="Stop tracking a source")
    remove_parser.add_argument("email")
    priority_parser = sources_sub.add_parser("priority", help="Set a source's voice priority")
    priority_parser.add_argument("email")
    priority_parser.add_argument("priority", type=int, help="Voice priority 0-10")
    profile_parser = sources_sub.add_parser("profile", help="Refresh expertise keywords with the LLM")
    profile_parser.add_argument("email", nargs="?", help="Only this source")

    # story command
    story_parser = subparsers.add_parser("story", help="Show one story")
    story_parser.add_argument("id", type=int, help="Story id")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Returns:
        Exit code
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = Config.load()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    setup_logging(config, verbose=args.verbose)

    if config.enable_logfire:
        from observability.tracing import setup_tracing
        setup_tracing(enabled=True, service_name="newsdigest", token=config.logfire_token)

    # Validate configuration for commands that call models or Gmail
    if args.command in ("run", "digest") or (args.command == "sources" and args.action == "profile"):
        error = config.validate()
        if error is None and args.command == "run":
            error = config.validate_mailbox()
        if error:
            print(f"Configuration error: {error}", file=sys.stderr)
            return 1

    commands = {
        "run": cmd_run,
        "status": cmd_status,
        "trending": cmd_trending,
        "voices": cmd_voices,
        "consensus": cmd_consensus,
        "digest": cmd_digest,
        "rescore": cmd_rescore,
        "sources": cmd_sources,
        "story": cmd_story,
    }

    if args.command in commands:
        try:
            return commands[args.command](args, config)
        except KeyboardInterrupt:
            logger.info("Interrupted | cmd=%s", args.command)
            return 130
        except Exception as e:
            logger.error("Command failed | cmd=%s error=%s", args.command, e, exc_info=True)
            print(f"Error: {e}", file=sys.stderr)
            return 1

    parser.print_help()
    return 0


def cli() -> None:
    """Console script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    cli()
