import pytest

from config import config
from models import Category, configured_sources


@pytest.fixture
def feeds_file(tmp_path, monkeypatch):
    """Point the global config at a temporary feeds.yaml and restore it afterwards."""
    for attr in ("FEEDS_CONFIG_PATH", "FEED_SOURCES", "MAX_CACHED_ARTICLES", "FIRST_FETCH_ITEMS_PER_SOURCE"):
        monkeypatch.setattr(config, attr, getattr(config, attr))
    target = tmp_path / "feeds.yaml"
    monkeypatch.setattr(config, "FEEDS_CONFIG_PATH", str(target))
    return target


def test_feeds_and_thresholds_are_loaded(feeds_file):
    feeds_file.write_text(
        "feeds:\n"
        "  bbc:\n"
        "    url: https://feeds.bbci.co.uk/news/rss.xml\n"
        "    name: BBC News\n"
        "    category: world\n"
        "  verge:\n"
        "    url: https://www.theverge.com/rss/index.xml\n"
        "    category: Tech\n"
        "thresholds:\n"
        "  max_cached_articles: 300\n"
        "  first_fetch_items: 25\n"
    )
    config.reload_feed_sources()

    assert [f["slug"] for f in config.FEED_SOURCES] == ["bbc", "verge"]
    assert config.MAX_CACHED_ARTICLES == 300
    assert config.FIRST_FETCH_ITEMS_PER_SOURCE == 25

    sources = configured_sources()
    assert sources[0].display_name == "BBC News"
    assert sources[1].display_name == "verge"
    assert sources[1].default_category is Category.TECH


def test_invalid_entries_fall_back(feeds_file):
    feeds_file.write_text(
        "feeds:\n"
        "  odd:\n"
        "    url: https://example.com/feed\n"
        "    category: gossip\n"
        "  broken:\n"
        "    name: No URL here\n"
        "thresholds:\n"
        "  max_cached_articles: 5000\n"
        "  first_fetch_items: many\n"
    )
    config.reload_feed_sources()

    assert len(config.FEED_SOURCES) == 1
    assert config.FEED_SOURCES[0]["category"] == "world"
    assert config.MAX_CACHED_ARTICLES == 200
    assert config.FIRST_FETCH_ITEMS_PER_SOURCE == 50


def test_missing_file_yields_no_sources(feeds_file):
    config.reload_feed_sources()
    assert config.FEED_SOURCES == []
    assert config.MAX_CACHED_ARTICLES == 200
