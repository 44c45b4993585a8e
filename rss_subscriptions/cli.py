"""Command-line interface for the rss_subscriptions service."""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import pprint
from pathlib import Path
from typing import List, Optional

from . import subscriptions
from .config import parse_app_config
from .jobs import refresh_all_feeds, refresh_favicon_hash
from .renderers import build_result_html, build_result_json
from .runner import RunConfig, Services, build_services, import_opml

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""
    parser = argparse.ArgumentParser(
        description="Manage feed subscriptions: subscribe, unsubscribe, export."
    )
    parser.add_argument(
        "--config",
        default="configs/config.xml",
        help="Path to the main configuration XML file.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (e.g. DEBUG, INFO, WARNING). Overrides config.",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Optional path to a log file. Overrides config.",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    subscribe = commands.add_parser("subscribe", help="Subscribe to feed or site URLs.")
    subscribe.add_argument("--user", type=int, required=True)
    subscribe.add_argument(
        "--site-url", help="Site URL used to pick among several advertised feeds."
    )
    subscribe.add_argument(
        "--html", action="store_true", help="Print an HTML fragment instead of JSON."
    )
    subscribe.add_argument("urls", nargs="+", metavar="URL")

    unsubscribe = commands.add_parser("unsubscribe", help="Remove subscriptions.")
    unsubscribe.add_argument("--user", type=int, required=True)
    unsubscribe.add_argument("--all", action="store_true", dest="all_feeds")
    unsubscribe.add_argument(
        "--id",
        type=int,
        dest="subscription_id",
        help="Remove one subscription; fails if the user does not own it.",
    )
    unsubscribe.add_argument("ids", nargs="*", metavar="ID")

    update = commands.add_parser("update", help="Change a subscription's settings.")
    update.add_argument("--user", type=int, required=True)
    update.add_argument("--id", required=True, dest="subscription_id")
    update.add_argument("--title")
    update.add_argument("--push", action=argparse.BooleanOptionalAction, default=None)

    listing = commands.add_parser("list", help="Print the user's feed list as JSON.")
    listing.add_argument("--user", type=int, required=True)

    export = commands.add_parser("export", help="Print the user's feeds as OPML.")
    export.add_argument("--user", type=int, required=True)

    opml = commands.add_parser("import", help="Subscribe to every feed in an OPML file.")
    opml.add_argument("--user", type=int, required=True)
    opml.add_argument("path", metavar="OPML")

    refresh = commands.add_parser(
        "refresh-favicons", help="Recompute favicon data for one user or all feeds."
    )
    refresh.add_argument("--user", type=int, default=None)

    return parser


def configure_logging(level_name: str, log_file: Optional[str] = None) -> None:
    """Initialise logging according to options."""
    log_level = getattr(logging, level_name.upper(), None)
    if not isinstance(log_level, int):
        raise ValueError(f"Unsupported log level: {level_name}")

    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    root_logger.setLevel(log_level)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    root_logger.addHandler(stream_handler)

    if log_file:
        log_path = Path(log_file)
        if log_path.parent and not log_path.parent.exists():
            log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)
        logger.debug(
            "Logger initialised with level %s and file output to %s",
            level_name.upper(),
            log_path,
        )
    else:
        logger.debug(
            "Logger initialised with console output at level %s", level_name.upper()
        )


def run_command(args: argparse.Namespace, services: Services) -> str:
    """Execute the parsed subcommand and return the text to print."""
    factory = services.session_factory

    if args.command == "subscribe":
        result = services.ingestor.ingest(args.user, args.urls, site_url=args.site_url)
        if args.html:
            return build_result_html(result)
        feeds = subscriptions.feed_list(factory, args.user) if result.successes else None
        return build_result_json(result, feeds)

    if args.command == "unsubscribe":
        if args.all_feeds:
            removed = subscriptions.unsubscribe_all(factory, args.user)
        elif args.subscription_id is not None:
            subscriptions.unsubscribe(factory, args.user, args.subscription_id)
            removed = 1
        elif args.ids:
            removed = subscriptions.bulk_unsubscribe(factory, args.user, args.ids)
        else:
            raise ValueError("Pass subscription ids, --id or --all.")
        return json.dumps({"unsubscribed": removed})

    if args.command == "update":
        fields = {}
        if args.title is not None:
            fields["title"] = args.title
        if args.push is not None:
            fields["push"] = args.push
        if not fields:
            raise ValueError("Nothing to update; pass --title or --push/--no-push.")
        updated = subscriptions.bulk_update(
            factory, args.user, {args.subscription_id: fields}
        )
        return json.dumps({"updated": updated})

    if args.command == "list":
        items = subscriptions.feed_list(factory, args.user)
        return json.dumps(
            [dict(dataclasses.asdict(item), tags=list(item.tags)) for item in items],
            indent=2,
            ensure_ascii=False,
        )

    if args.command == "export":
        return subscriptions.export_opml(factory, args.user)

    if args.command == "import":
        result = import_opml(services, args.user, args.path)
        return build_result_json(result, subscriptions.feed_list(factory, args.user))

    if args.command == "refresh-favicons":
        if args.user is not None:
            digest = refresh_favicon_hash(
                factory, args.user, services.ingestor.favicon_batch_size
            )
            return json.dumps({"user": args.user, "favicon_hash": digest})
        futures = refresh_all_feeds(services.queue, factory, services.batch_size)
        changed = sum(future.result() for future in futures)
        return json.dumps({"batches": len(futures), "changed": changed})

    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    services = None
    try:
        app_config = parse_app_config(args.config)

        # CLI overrides config
        log_level = args.log_level or app_config.logging.level
        log_file = args.log_file or app_config.logging.file

        configure_logging(log_level, log_file)

        config = RunConfig(
            database_connection_string=app_config.database.connection_string,
            concurrency=app_config.concurrency,
            resolve_timeout=app_config.resolve_timeout,
            user_agent=app_config.user_agent,
            job_workers=app_config.jobs.workers,
            batch_size=app_config.jobs.batch_size,
            favicon_batch_size=app_config.jobs.favicon_batch_size,
        )

        config_dict = dataclasses.asdict(config)
        config_dict["database_connection_string"] = "***MASKED***"
        logger.debug("Active Configuration:\n%s", pprint.pformat(config_dict))

        services = build_services(config)
        output = run_command(args, services)
    except ValueError as exc:
        parser.error(str(exc))
    except (RuntimeError, FileNotFoundError, LookupError) as exc:
        logger.error("%s", exc)
        return 1
    except Exception:  # noqa: BLE001
        logger.exception("Unexpected error during execution.")
        return 1
    finally:
        if services is not None:
            services.close()

    print(output)
    return 0
