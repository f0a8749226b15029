"""
Command-line interface for chat-context.
"""

import argparse
import asyncio
import logging
import sys

import structlog

from .config import Settings, get_settings
from .context.types import MemoryType
from .scheduler import CleanupScheduler
from .service import ContextMemoryService

logger = structlog.get_logger()


def configure_logging(level: str = "INFO") -> None:
    """Route structlog through stdlib logging with a console renderer."""
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level.upper())
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chat-context",
        description="chat-context - conversation state and long-term user memory",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    config_parser = subparsers.add_parser("config", help="Show configuration")
    config_parser.add_argument("--check", action="store_true", help="Check configuration validity")

    subparsers.add_parser("cleanup", help="Delete sessions idle past their retention period")

    memory_parser = subparsers.add_parser("memory", help="List a user's memory fragments")
    memory_parser.add_argument("user_id", help="User to inspect")
    memory_parser.add_argument("--type", choices=[t.value for t in MemoryType], help="Only this fragment type")

    search_parser = subparsers.add_parser("search", help="Search a user's memory")
    search_parser.add_argument("user_id", help="User to search")
    search_parser.add_argument("query", help="Search text")
    search_parser.add_argument("--limit", type=int, default=None, help="Maximum number of results")

    subparsers.add_parser("scheduler", help="Run the periodic session cleanup in the foreground")

    return parser


def main() -> None:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    settings = get_settings()
    configure_logging(settings.log_level)

    if args.command == "config":
        show_config(settings, args.check)
    elif args.command == "cleanup":
        asyncio.run(run_cleanup(settings))
    elif args.command == "memory":
        asyncio.run(show_memory(settings, args.user_id, args.type))
    elif args.command == "search":
        asyncio.run(search_memory(settings, args.user_id, args.query, args.limit))
    elif args.command == "scheduler":
        try:
            asyncio.run(run_scheduler(settings))
        except KeyboardInterrupt:
            logger.info("Scheduler interrupted")
    else:
        parser.print_help()


def show_config(settings: Settings, check: bool) -> None:
    """Print the effective configuration."""
    print(f"App: {settings.app_name}")
    print(f"Database: {settings.database_url}")
    print(f"Log level: {settings.log_level}")
    print("Session defaults:")
    for key, value in settings.default_session_config().items():
        print(f"  {key}: {value}")
    print("Cache tiers:")
    print(f"  session: {settings.session_cache_max_size} entries, "
          f"{settings.session_cache_ttl_seconds}s, {settings.session_cache_policy}")
    print(f"  memory: {settings.memory_cache_max_size} entries, "
          f"{settings.memory_cache_ttl_seconds}s, {settings.memory_cache_policy}")
    print(f"  compression: {settings.compression_cache_max_size} entries, "
          f"{settings.compression_cache_ttl_seconds}s, {settings.compression_cache_policy}")
    print(f"Cleanup schedule: {settings.cleanup_cron}")

    if check:
        from croniter import croniter

        issues = []
        if not settings.database_url.startswith(("sqlite+aiosqlite", "postgresql+asyncpg", "mysql+aiomysql")):
            issues.append("database_url should use an async driver")
        if not croniter.is_valid(settings.cleanup_cron):
            issues.append(f"cleanup_cron is not a valid cron expression: {settings.cleanup_cron}")

        if issues:
            print("\nConfiguration issues:")
            for issue in issues:
                print(f"  - {issue}")
            sys.exit(1)
        print("\nConfiguration OK")


async def run_cleanup(settings: Settings) -> None:
    service = await ContextMemoryService.from_settings(settings)
    try:
        cleaned = await service.cleanup_expired_sessions()
        print(f"Removed {cleaned} expired sessions")
    finally:
        await service.close()


async def show_memory(settings: Settings, user_id: str, fragment_type: str | None) -> None:
    service = await ContextMemoryService.from_settings(settings)
    try:
        fragments = await service.get_user_memory(user_id, fragment_type)
        if not fragments:
            print("No memories stored.")
            return
        for fragment in fragments:
            tags = f" [{', '.join(fragment.tags)}]" if fragment.tags else ""
            print(f"{fragment.created_at:%Y-%m-%d} {fragment.type.value:<12} {fragment.content}{tags}")
    finally:
        await service.close()


async def search_memory(settings: Settings, user_id: str, query: str, limit: int | None) -> None:
    service = await ContextMemoryService.from_settings(settings)
    try:
        results = await service.search_memory(user_id, query, limit)
        if not results:
            print("No relevant memories.")
            return
        for fragment in results:
            print(f"- ({fragment.type.value}) {fragment.content}")
    finally:
        await service.close()


async def run_scheduler(settings: Settings) -> None:
    service = await ContextMemoryService.from_settings(settings)
    scheduler = CleanupScheduler(service.cleanup_expired_sessions, settings.cleanup_cron)
    scheduler.start()
    try:
        await asyncio.Event().wait()
    finally:
        scheduler.stop()
        await service.close()


if __name__ == "__main__":
    main()
