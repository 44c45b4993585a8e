"""Configuration loading for the subscription service."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional
from xml.etree import ElementTree as ET

from .batches import DEFAULT_BATCH_SIZE
from .discovery import DEFAULT_TIMEOUT, DEFAULT_USER_AGENT
from .models import OpmlOutline

logger = logging.getLogger(__name__)


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file: Optional[str] = None


@dataclass
class DatabaseConfig:
    connection_string: str = "sqlite:///subscriptions.db"


@dataclass
class JobsConfig:
    workers: int = 2
    batch_size: int = DEFAULT_BATCH_SIZE
    favicon_batch_size: int = DEFAULT_BATCH_SIZE


@dataclass
class AppConfig:
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    jobs: JobsConfig = field(default_factory=JobsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    concurrency: int = 8
    resolve_timeout: float = DEFAULT_TIMEOUT
    user_agent: str = DEFAULT_USER_AGENT


def parse_feeds_config(path: str) -> List[OpmlOutline]:
    """Parse an OPML file and return its feeds; folder titles become tags."""
    logger.info("Loading feeds from %s", path)
    tree = ET.parse(path)
    root = tree.getroot()
    body = root.find("body")
    outlines: List[OpmlOutline] = []

    def walk(outline: ET.Element, tags: List[str]) -> None:
        title = outline.attrib.get("title") or outline.attrib.get("text")
        feed_url = outline.attrib.get("xmlUrl")
        children = list(outline.findall("outline"))

        if feed_url:
            outlines.append(
                OpmlOutline(
                    title=title or feed_url,
                    url=feed_url,
                    site_url=outline.attrib.get("htmlUrl") or None,
                    tags=list(tags),
                )
            )
            logger.debug("Read feed '%s' (tags=%s)", feed_url, tags)
            return

        next_tags = tags + [title] if title else tags
        for child in children:
            walk(child, next_tags)

    if body is None:
        raise ValueError("OPML document is missing the <body> section.")

    for outline in body.findall("outline"):
        walk(outline, [])

    logger.info("Loaded %d feeds from %s", len(outlines), path)
    return outlines


def _resolve_path(base_path: Path, target_path: str) -> str:
    """Resolve a path relative to the base config file if it's not absolute."""
    target = Path(target_path)
    if target.is_absolute():
        return str(target)
    return str((base_path.parent / target).resolve())


def _positive_int(root: ET.Element, tag: str, default: int) -> int:
    raw = root.findtext(tag)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        raise ValueError(f"<{tag}> must be an integer, got {raw!r}")
    if value <= 0:
        raise ValueError(f"<{tag}> must be positive, got {value}")
    return value


def parse_app_config(path: str) -> AppConfig:
    """Parse the main application configuration XML."""
    config_path = Path(path).resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    logger.info("Loading application configuration from %s", config_path)
    tree = ET.parse(config_path)
    root = tree.getroot()

    # Database
    db_config = DatabaseConfig()
    db_node = root.find("database")
    if db_node is not None:
        connection_string = db_node.findtext("connection-string")
        if connection_string and connection_string.strip():
            db_config.connection_string = connection_string.strip()

    # Jobs
    jobs_config = JobsConfig(
        workers=_positive_int(root, "job-workers", 2),
        batch_size=_positive_int(root, "batch-size", DEFAULT_BATCH_SIZE),
        favicon_batch_size=_positive_int(
            root, "favicon-batch-size", DEFAULT_BATCH_SIZE
        ),
    )

    # Logging
    log_node = root.find("logging")
    logging_config = LoggingConfig()
    if log_node is not None:
        logging_config.level = log_node.findtext("level", "INFO")
        log_file = log_node.findtext("file")
        if log_file:
            logging_config.file = _resolve_path(config_path, log_file)

    timeout_text = root.findtext("resolve-timeout")
    resolve_timeout = DEFAULT_TIMEOUT
    if timeout_text and timeout_text.strip():
        try:
            resolve_timeout = float(timeout_text)
        except ValueError:
            raise ValueError(f"<resolve-timeout> must be a number, got {timeout_text!r}")
        if resolve_timeout <= 0:
            raise ValueError("<resolve-timeout> must be positive.")

    user_agent = (root.findtext("user-agent") or "").strip() or DEFAULT_USER_AGENT

    return AppConfig(
        database=db_config,
        jobs=jobs_config,
        logging=logging_config,
        concurrency=_positive_int(root, "concurrency", 8),
        resolve_timeout=resolve_timeout,
        user_agent=user_agent,
    )
