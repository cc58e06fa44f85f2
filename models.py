#!/usr/bin/env python3
"""
Data model and durable key/value storage for NewsBits.

This module contains the domain records (categories, articles, sources and
fetch outcomes) and the SQLite-backed key/value queue the article store
persists through, keeping data access separate from fetch and cache logic.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from json import dumps
from os import path, access, R_OK
from time import time
from sqlite3 import connect, Row, Error
from asyncio import Queue, create_task, wait_for, TimeoutError, CancelledError, Event
from uuid import uuid4
from typing import Dict, List, Optional, Any, Tuple

# Import config for unified logging
from config import config, get_logger
from errors import StorageError
from telemetry import trace_span
from utils import smart_truncate, utc_now

# Module-specific logger
logger = get_logger("models")


class Category(str, Enum):
    """Fixed set of article categories with presentational metadata."""

    BREAKING = "breaking"
    TECH = "tech"
    BUSINESS = "business"
    SPORTS = "sports"
    ENTERTAINMENT = "entertainment"
    SCIENCE = "science"
    HEALTH = "health"
    WORLD = "world"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()

    @property
    def color(self) -> str:
        return _CATEGORY_STYLE[self][0]

    @property
    def icon_name(self) -> str:
        return _CATEGORY_STYLE[self][1]

    @property
    def gradient_colors(self) -> Tuple[str, str]:
        return _CATEGORY_STYLE[self][2]

    @classmethod
    def parse(cls, value: Any, default: "Category" = None) -> "Category":
        """Resolve a category from its value, falling back to ``default`` (world)."""
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return default or cls.WORLD


_CATEGORY_STYLE = {
    Category.BREAKING: ("red", "exclamationmark.triangle.fill", ("red", "orange")),
    Category.TECH: ("blue", "cpu.fill", ("blue", "purple")),
    Category.BUSINESS: ("green", "chart.line.uptrend.xyaxis", ("green", "teal")),
    Category.SPORTS: ("orange", "sportscourt.fill", ("orange", "yellow")),
    Category.ENTERTAINMENT: ("purple", "film.fill", ("purple", "pink")),
    Category.SCIENCE: ("cyan", "atom", ("cyan", "blue")),
    Category.HEALTH: ("pink", "heart.fill", ("pink", "red")),
    Category.WORLD: ("indigo", "globe", ("indigo", "blue")),
}


def _new_id() -> str:
    return uuid4().hex


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp written by ``datetime.isoformat`` into aware UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass(frozen=True)
class Article:
    """One normalized news item.

    Articles are immutable; all mutation happens at the collection level in
    ``storage.ArticleStore``. Two articles are the same story when their
    ``identity_key`` matches, regardless of the process-local ``id``.
    """

    headline: str
    summary: str = ""
    category: Category = Category.WORLD
    source: str = ""
    published_at: datetime = field(default_factory=utc_now)
    image_url: Optional[str] = None
    article_url: Optional[str] = None
    ai_summary: Optional[str] = None
    id: str = field(default_factory=_new_id, compare=False)

    def __post_init__(self):
        if not self.headline or not self.headline.strip():
            raise ValueError("Article headline must not be empty")
        if not self.summary or not self.summary.strip():
            object.__setattr__(self, "summary", self.headline)
        if self.published_at.tzinfo is None:
            object.__setattr__(self, "published_at", self.published_at.replace(tzinfo=timezone.utc))

    @property
    def identity_key(self) -> str:
        if self.article_url:
            return self.article_url
        return dumps([self.headline, self.source], ensure_ascii=False)

    @property
    def smart_summary(self) -> str:
        if self.ai_summary and self.ai_summary.strip():
            return self.ai_summary
        return smart_truncate(self.summary, config.SMART_SUMMARY_MAX_LENGTH)

    @property
    def smart_headline(self) -> str:
        return smart_truncate(self.headline, config.HEADLINE_MAX_LENGTH)

    def with_ai_summary(self, ai_summary: Optional[str]) -> "Article":
        return replace(self, ai_summary=ai_summary)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "headline": self.headline,
            "summary": self.summary,
            "ai_summary": self.ai_summary,
            "category": self.category.value,
            "source": self.source,
            "published_at": self.published_at.isoformat(),
            "image_url": self.image_url,
            "article_url": self.article_url,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Article":
        """Rebuild an article from ``to_dict`` output.

        Raises:
            ValueError: If the payload has no usable headline
        """
        if not isinstance(data, dict):
            raise ValueError(f"Expected a mapping, got {type(data).__name__}")
        published_at = parse_timestamp(data.get("published_at")) or utc_now()
        return cls(
            id=str(data.get("id") or _new_id()),
            headline=str(data.get("headline") or ""),
            summary=str(data.get("summary") or ""),
            ai_summary=data.get("ai_summary") or None,
            category=Category.parse(data.get("category")),
            source=str(data.get("source") or ""),
            published_at=published_at,
            image_url=data.get("image_url") or None,
            article_url=data.get("article_url") or None,
        )


@dataclass(frozen=True)
class FeedSource:
    """A configured feed; fixed at startup."""

    url: str
    display_name: str
    default_category: Category = Category.WORLD
    slug: str = ""

    @classmethod
    def from_config(cls, entry: Dict[str, str]) -> "FeedSource":
        return cls(
            url=entry["url"],
            display_name=entry.get("name") or entry.get("slug") or entry["url"],
            default_category=Category.parse(entry.get("category")),
            slug=entry.get("slug", ""),
        )


def configured_sources() -> List[FeedSource]:
    """Return the static source list loaded from feeds.yaml."""
    return [FeedSource.from_config(entry) for entry in config.FEED_SOURCES]


@dataclass
class SourceResult:
    """Outcome of one source's fetch pipeline."""

    source: FeedSource
    articles: List[Article] = field(default_factory=list)
    fetched_at: Optional[datetime] = None
    error: Optional[str] = None
    attempts: int = 0
    first_fetch: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ArticleBatch:
    """What a fetch hands back to callers.

    ``articles`` is the full sorted cache after a successful fetch, the
    unchanged cache when every source failed, or the placeholder set when
    there was nothing cached either.
    """

    articles: List[Article]
    results: List[SourceResult] = field(default_factory=list)
    from_cache: bool = False
    is_placeholder: bool = False

    @property
    def failed_sources(self) -> List[str]:
        return [r.source.display_name for r in self.results if not r.ok]

    @property
    def succeeded(self) -> bool:
        return any(r.ok for r in self.results)


_PLACEHOLDERS = (
    ("Apple Unveils Next-Generation AI Assistant",
     "The tech giant announced a revolutionary AI system that understands context and learns from user behavior to provide personalized assistance.",
     Category.TECH, "TechCrunch", "photo-1611532736597-de2d4265fba3"),
    ("Global Markets Rally on Economic Data",
     "Stock markets worldwide saw significant gains following positive employment figures and inflation reports from major economies.",
     Category.BUSINESS, "Bloomberg", "photo-1611974789855-9c2a0a7236a3"),
    ("Scientists Discover New Species in Deep Ocean",
     "Marine biologists have identified over 50 previously unknown species during an expedition to the Pacific's deepest trenches.",
     Category.SCIENCE, "Nature", "photo-1544551763-46a013bb70d5"),
    ("Championship Finals Set After Dramatic Semifinals",
     "Two underdogs advance to the finals after stunning upsets that have fans buzzing about one of the most exciting playoffs in history.",
     Category.SPORTS, "ESPN", "photo-1461896836934-28d1909b1c19"),
    ("New Study Links Sleep Quality to Longevity",
     "Research spanning 20 years reveals that consistent sleep patterns may be more important than total hours of sleep for long-term health.",
     Category.HEALTH, "Medical News", "photo-1541781774459-bb2af2f05b55"),
    ("Award-Winning Director Announces Surprise Project",
     "The acclaimed filmmaker revealed a secret production that has been in development for three years, featuring an all-star ensemble cast.",
     Category.ENTERTAINMENT, "Variety", "photo-1485846234645-a62644f84728"),
    ("Historic Climate Agreement Reached at Summit",
     "World leaders have committed to unprecedented carbon reduction targets in a deal described as a turning point for global climate action.",
     Category.WORLD, "Reuters", "photo-1569163139599-0f4517e36f51"),
    ("Breaking: Major Policy Announcement Expected",
     "Officials are preparing to announce significant changes that could affect millions of citizens, with details expected within the hour.",
     Category.BREAKING, "AP News", "photo-1495020689067-958852a7765e"),
    ("SpaceX Successfully Lands Starship After Orbital Flight",
     "The massive rocket completed its first successful orbital mission and landed back at the launch site, marking a major milestone for space exploration.",
     Category.TECH, "Space.com", "photo-1516849841032-87cbac4d88f7"),
    ("Astronomers Detect Signs of Life on Distant Exoplanet",
     "Spectral analysis of an Earth-like planet's atmosphere reveals potential biosignatures that could indicate the presence of life.",
     Category.SCIENCE, "NASA", "photo-1446776811953-b23d57bd21aa"),
)


def placeholder_articles(now: Optional[datetime] = None) -> List[Article]:
    """Built-in articles shown when nothing could be fetched or loaded."""
    now = now or utc_now()
    return [
        Article(
            headline=headline,
            summary=summary,
            category=category,
            source=source,
            published_at=now - timedelta(minutes=30 * index),
            image_url=f"https://images.unsplash.com/{photo}?w=800",
        )
        for index, (headline, summary, category, source, photo) in enumerate(_PLACEHOLDERS)
    ]


def initialize_database(conn) -> None:
    """Initialize the database with the defined schema from SQL file."""
    cursor = conn.cursor()

    try:
        cursor.execute("SELECT name FROM sqlite_master WHERE type='table' AND name='kv'")
        kv_table_exists = cursor.fetchone() is not None

        if not kv_table_exists:
            logger.info("Database is new or empty. Initializing schema.")
            schema_sql = _read_schema_file()
            cursor.executescript(schema_sql)
            conn.commit()
            logger.info("Database schema initialized successfully")
        else:
            logger.debug("Database already exists with proper schema")
    except Exception as e:
        logger.error(f"Error initializing database: {e}")
        raise
    finally:
        cursor.close()


def _read_schema_file() -> str:
    """Read the schema from the SQL file."""
    schema_path = config.SCHEMA_FILE_PATH

    try:
        if not path.isfile(schema_path):
            raise FileNotFoundError(f"Schema file not found at {schema_path}")

        if not access(schema_path, R_OK):
            raise PermissionError(f"No read permission for schema file at {schema_path}")

        # Check file size to prevent reading extremely large files
        file_size = path.getsize(schema_path)
        max_size = config.SCHEMA_FILE_SIZE_LIMIT_MB * 1024 * 1024
        if file_size > max_size:
            raise ValueError(f"Schema file too large: {file_size} bytes (limit: {max_size} bytes)")

        with open(schema_path, 'r') as f:
            return f.read()
    except Exception as e:
        logger.error(f"Error reading schema file: {e}")
        raise


class DatabaseQueue:
    """A queue for key/value operations so SQLite is only touched by one worker."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.queue = Queue()
        self.results: Dict[str, Dict] = {}
        self.events: Dict[str, Event] = {}
        self.conn = None
        self.running = False
        self.worker_task = None

    async def start(self) -> None:
        """Open the database and start the worker.

        Raises:
            StorageError: If the database cannot be opened or initialized
        """
        if self.running:
            return

        if self.db_path != ":memory:" and not path.isfile(self.db_path):
            logger.info(f"Database file {self.db_path} does not exist. A new database will be created.")
        else:
            logger.debug(f"Using database at {self.db_path}")

        try:
            self.conn = connect(self.db_path)
            self.conn.row_factory = Row
            initialize_database(self.conn)
        except (Error, OSError, ValueError) as e:
            if self.conn:
                self.conn.close()
                self.conn = None
            raise StorageError(f"Could not open database {self.db_path}: {e}") from e

        self.running = True
        self.worker_task = create_task(self._worker())
        logger.info("Database worker started")

    async def stop(self) -> None:
        """Stop the database worker."""
        if not self.running:
            return

        self.running = False
        if self.worker_task:
            self.worker_task.cancel()
            try:
                await self.worker_task
            except CancelledError:
                pass

        if self.conn:
            self.conn.close()
            self.conn = None

        # Release any waiters; their results are gone so execute() raises
        for event in self.events.values():
            event.set()
        self.events.clear()
        self.results.clear()

        logger.info("Database worker stopped")

    async def _worker(self) -> None:
        """Worker coroutine processing database operations."""
        while self.running:
            try:
                try:
                    operation_id, operation_name, params = await wait_for(self.queue.get(), timeout=1.0)
                except TimeoutError:
                    continue

                try:
                    if operation_name in self.OPERATIONS:
                        method = getattr(self, operation_name)
                        result = method(**params)
                        self.results[operation_id] = {"result": result}
                    else:
                        self.results[operation_id] = {"error": f"Unknown operation: {operation_name}"}
                except Exception as e:
                    logger.error(f"Database operation error in {operation_name}: {e}")
                    self.results[operation_id] = {"error": str(e)}
                finally:
                    if operation_id in self.events:
                        self.events[operation_id].set()
                    self.queue.task_done()

            except CancelledError:
                logger.debug("Database worker cancelled")
                break
            except Exception as e:
                logger.error(f"Unexpected error in database worker: {e}")

    @trace_span(
        "db.execute",
        tracer_name="db",
        static_attrs={"db.system": "sqlite"},
        attr_from_args=lambda self, operation_name, **params: {
            "db.operation": operation_name,
            "db.key": str(params.get("key", "")),
        },
    )
    async def execute(self, operation_name: str, **params) -> Any:
        """Execute a database operation on the worker.

        Raises:
            StorageError: If the worker is not running or the operation failed
        """
        if not self.running:
            raise StorageError(f"Database worker is not running (operation {operation_name})")

        operation_id = str(uuid4())
        event = Event()
        self.events[operation_id] = event

        try:
            await self.queue.put((operation_id, operation_name, params))
            await event.wait()

            result = self.results.pop(operation_id, None)
            if result is None:
                raise StorageError(f"Database worker stopped during {operation_name}")
            if "error" in result:
                raise StorageError(result["error"])

            return result["result"]
        finally:
            self.events.pop(operation_id, None)

    # Key/value operations
    OPERATIONS = ("get_value", "set_value", "delete_value", "list_keys")

    def get_value(self, key: str) -> Optional[str]:
        """Return the raw stored value for a key, or None."""
        cursor = self.conn.cursor()
        try:
            cursor.execute("SELECT value FROM kv WHERE key = ?", (key,))
            row = cursor.fetchone()
            return row["value"] if row else None
        finally:
            cursor.close()

    def set_value(self, key: str, value: str) -> bool:
        """Insert or replace the value for a key."""
        cursor = self.conn.cursor()
        try:
            cursor.execute(
                "INSERT OR REPLACE INTO kv (key, value, updated) VALUES (?, ?, ?)",
                (key, value, int(time()))
            )
            self.conn.commit()
            return True
        finally:
            cursor.close()

    def delete_value(self, key: str) -> bool:
        """Delete a key; returns whether it existed."""
        cursor = self.conn.cursor()
        try:
            cursor.execute("DELETE FROM kv WHERE key = ?", (key,))
            self.conn.commit()
            return cursor.rowcount > 0
        finally:
            cursor.close()

    def list_keys(self) -> List[str]:
        cursor = self.conn.cursor()
        try:
            cursor.execute("SELECT key FROM kv ORDER BY key")
            return [row["key"] for row in cursor.fetchall()]
        finally:
            cursor.close()
