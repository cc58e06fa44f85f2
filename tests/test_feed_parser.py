from feed_parser import FeedParser

RSS_HEADER = (
    '<?xml version="1.0" encoding="UTF-8"?>'
    '<rss version="2.0" xmlns:media="http://search.yahoo.com/mrss/" '
    'xmlns:content="http://purl.org/rss/1.0/modules/content/"><channel>'
    '<title>Test feed</title><link>https://example.com/</link><description>Test</description>'
)
RSS_FOOTER = '</channel></rss>'


def rss(*items: str) -> bytes:
    return (RSS_HEADER + "".join(items) + RSS_FOOTER).encode("utf-8")


def item(title="Story", link="https://example.com/story", extra="", description="Body text",
         pub_date="Sat, 15 Nov 2025 16:00:00 +0000") -> str:
    return (
        f"<item><title>{title}</title><link>{link}</link>"
        f"<description><![CDATA[{description}]]></description>"
        f"<pubDate>{pub_date}</pubDate>{extra}</item>"
    )


def test_basic_fields_and_order():
    parser = FeedParser()
    items = parser.parse(rss(
        item(title="First", link="https://example.com/1"),
        item(title="Second", link="https://example.com/2", pub_date="garbage"),
    ))
    assert [i.title for i in items] == ["First", "Second"]
    assert items[0].link == "https://example.com/1"
    assert items[0].pub_date == "Sat, 15 Nov 2025 16:00:00 +0000"
    assert items[1].pub_date == "garbage"
    assert "Body text" in items[0].description


def test_enclosure_beats_narrow_media_content():
    parser = FeedParser()
    extra = (
        '<media:content url="https://example.com/small.jpg" width="200" medium="image"/>'
        '<enclosure url="https://example.com/full.jpg" type="image/jpeg" length="1234"/>'
    )
    items = parser.parse(rss(item(extra=extra)))
    assert items[0].image_url == "https://example.com/full.jpg"


def test_wide_media_content_beats_enclosure():
    parser = FeedParser()
    extra = (
        '<media:content url="https://example.com/huge.jpg" width="2048"/>'
        '<enclosure url="https://example.com/full.jpg" type="image/jpeg" length="1234"/>'
    )
    items = parser.parse(rss(item(extra=extra)))
    assert items[0].image_url == "https://example.com/huge.jpg"


def test_widest_media_hint_wins():
    parser = FeedParser()
    extra = (
        '<media:thumbnail url="https://example.com/thumb.jpg" width="120"/>'
        '<media:content url="https://example.com/mid.jpg" width="300"/>'
        '<media:content url="https://example.com/big.jpg" width="600"/>'
    )
    items = parser.parse(rss(item(extra=extra)))
    assert items[0].image_url == "https://example.com/big.jpg"


def test_non_image_enclosure_is_ignored():
    parser = FeedParser()
    extra = '<enclosure url="https://example.com/episode.mp3" type="audio/mpeg" length="1"/>'
    items = parser.parse(rss(item(extra=extra, description="No image here")))
    assert items[0].image_url is None


def test_falls_back_to_first_img_in_description():
    parser = FeedParser()
    description = '<p>Intro</p><img src="https://example.com/inline.jpg"/><img src="https://example.com/other.jpg"/>'
    items = parser.parse(rss(item(description=description)))
    assert items[0].image_url == "https://example.com/inline.jpg"


def test_content_encoded_used_when_description_missing():
    parser = FeedParser()
    entry = (
        "<item><title>Encoded</title><link>https://example.com/e</link>"
        "<content:encoded><![CDATA[<p>Full body</p><img src=\"https://example.com/enc.jpg\"/>]]></content:encoded>"
        "</item>"
    )
    items = parser.parse(rss(entry))
    assert "Full body" in items[0].description
    assert items[0].image_url == "https://example.com/enc.jpg"


def test_atom_feed_is_supported():
    parser = FeedParser()
    atom = (
        '<?xml version="1.0" encoding="utf-8"?>'
        '<feed xmlns="http://www.w3.org/2005/Atom"><title>Atom</title>'
        '<entry><title>Atom story</title><link href="https://example.com/atom"/>'
        '<id>urn:1</id><updated>2025-11-15T16:00:00Z</updated><summary>Atom body</summary></entry>'
        '</feed>'
    ).encode("utf-8")
    items = parser.parse(atom)
    assert len(items) == 1
    assert items[0].title == "Atom story"
    assert items[0].link == "https://example.com/atom"
    assert items[0].pub_date == "2025-11-15T16:00:00Z"


def test_invalid_documents_yield_no_items():
    parser = FeedParser()
    assert parser.parse(b"") == []
    assert parser.parse(b"this is not xml at all") == []
    assert parser.parse(b"<html><body><p>Not a feed</p></body></html>") == []


def test_feed_without_items_is_empty():
    parser = FeedParser()
    assert parser.parse(rss()) == []
