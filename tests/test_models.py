from datetime import datetime, timedelta, timezone

import pytest

from errors import StorageError
from models import Article, Category, DatabaseQueue, FeedSource, placeholder_articles


def test_identity_key_prefers_article_url():
    article = Article(headline="Title", source="BBC News", article_url="https://example.com/a")
    assert article.identity_key == "https://example.com/a"


def test_identity_key_falls_back_to_headline_and_source():
    article = Article(headline="Title", source="BBC News")
    assert article.identity_key == '["Title", "BBC News"]'


def test_identity_key_separator_in_fields_does_not_collide():
    first = Article(headline="Markets | Live", source="Reuters")
    second = Article(headline="Markets ", source=" Live|Reuters")
    assert first.identity_key != second.identity_key


def test_same_story_on_two_runs_shares_identity_but_not_id():
    first = Article(headline="Title", source="BBC News", article_url="https://example.com/a")
    second = Article(headline="Title", source="BBC News", article_url="https://example.com/a")
    assert first.id != second.id
    assert first.identity_key == second.identity_key


def test_empty_summary_falls_back_to_headline():
    article = Article(headline="Only a headline", summary="   ")
    assert article.summary == "Only a headline"


def test_blank_headline_is_rejected():
    with pytest.raises(ValueError):
        Article(headline="  ")


def test_naive_published_at_is_treated_as_utc():
    article = Article(headline="Title", published_at=datetime(2025, 1, 1, 12, 0))
    assert article.published_at.tzinfo is not None
    assert article.published_at == datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def test_smart_summary_prefers_ai_summary():
    article = Article(headline="Title", summary="word " * 80, ai_summary="Short take.")
    assert article.smart_summary == "Short take."


def test_smart_summary_and_headline_are_truncated():
    article = Article(headline="headline " * 20, summary="word " * 80)
    assert len(article.smart_summary) <= 160
    assert len(article.smart_headline) <= 90
    assert article.smart_summary.endswith("...")


def test_article_survives_serialization():
    original = Article(
        headline="Markets rally",
        summary="Stocks rose.",
        category=Category.BUSINESS,
        source="Reuters",
        published_at=datetime(2025, 3, 4, 5, 6, 7, tzinfo=timezone.utc),
        image_url="https://example.com/i.jpg",
        article_url="https://example.com/a",
    )
    restored = Article.from_dict(original.to_dict())
    assert restored == original
    assert restored.id == original.id


def test_from_dict_rejects_garbage():
    with pytest.raises(ValueError):
        Article.from_dict({"summary": "no headline"})
    with pytest.raises(ValueError):
        Article.from_dict(["not", "a", "mapping"])


def test_unknown_category_falls_back_to_world():
    restored = Article.from_dict({"headline": "x", "category": "gossip"})
    assert restored.category is Category.WORLD


def test_category_metadata():
    assert Category.TECH.color == "blue"
    assert Category.BREAKING.icon_name == "exclamationmark.triangle.fill"
    assert Category.SCIENCE.gradient_colors == ("cyan", "blue")
    assert Category.parse("Sports") is Category.SPORTS
    assert all(c.icon_name for c in Category)


def test_feed_source_from_config():
    source = FeedSource.from_config(
        {"slug": "tc", "url": "https://techcrunch.com/feed/", "name": "TechCrunch", "category": "tech"}
    )
    assert source.display_name == "TechCrunch"
    assert source.default_category is Category.TECH
    assert source.slug == "tc"


def test_placeholder_articles_are_distinct_and_sorted():
    now = datetime(2025, 6, 1, tzinfo=timezone.utc)
    items = placeholder_articles(now)
    assert len(items) == 10
    assert len({a.identity_key for a in items}) == 10
    assert items[0].published_at == now
    assert items[-1].published_at == now - timedelta(minutes=270)
    assert all(a.image_url.startswith("https://images.unsplash.com/") for a in items)


@pytest.mark.asyncio
async def test_database_queue_key_value_roundtrip(tmp_path):
    db = DatabaseQueue(str(tmp_path / "kv.db"))
    await db.start()
    try:
        assert await db.execute("get_value", key="missing") is None
        await db.execute("set_value", key="a", value="1")
        await db.execute("set_value", key="a", value="2")
        await db.execute("set_value", key="b", value="3")
        assert await db.execute("get_value", key="a") == "2"
        assert await db.execute("list_keys") == ["a", "b"]
        assert await db.execute("delete_value", key="a") is True
        assert await db.execute("delete_value", key="a") is False
    finally:
        await db.stop()


@pytest.mark.asyncio
async def test_database_queue_unknown_operation_raises(tmp_path):
    db = DatabaseQueue(str(tmp_path / "kv.db"))
    await db.start()
    try:
        with pytest.raises(StorageError):
            await db.execute("drop_everything")
    finally:
        await db.stop()


@pytest.mark.asyncio
async def test_database_queue_requires_running_worker(tmp_path):
    db = DatabaseQueue(str(tmp_path / "kv.db"))
    with pytest.raises(StorageError):
        await db.execute("get_value", key="a")


@pytest.mark.asyncio
async def test_database_queue_bad_path_raises_storage_error(tmp_path):
    db = DatabaseQueue(str(tmp_path / "missing-dir" / "kv.db"))
    with pytest.raises(StorageError):
        await db.start()
