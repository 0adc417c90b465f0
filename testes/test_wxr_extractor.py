import os
import sys
from datetime import datetime

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pytest

from wxr_importer.extractors.wxr_extractor import WxrParseError, extract_items_from_wxr
from wxr_importer.models.items import AttachmentItem, PostItem


def test_posts_and_attachments_keep_document_order(wxr_builder):
    doc = extract_items_from_wxr(
        wxr_builder.document(
            wxr_builder.post("g-1", title="First", slug="first"),
            wxr_builder.attachment("a-1", "https://example.com/wp-content/uploads/2020/01/x.jpg"),
            wxr_builder.post("g-2", title="Second", slug="second", post_id="2"),
        )
    )
    assert [type(i) for i in doc.items] == [PostItem, AttachmentItem, PostItem]
    assert [i.external_id for i in doc.items] == ["g-1", "a-1", "g-2"]
    assert doc.total_items == 3
    assert doc.skipped == 0
    assert doc.version == "1.2"
    assert doc.base_url == "https://example.com"


def test_items_without_guid_wrong_type_or_status_are_skipped(wxr_builder):
    doc = extract_items_from_wxr(
        wxr_builder.document(
            wxr_builder.post("", title="No guid"),
            wxr_builder.post("g-page", post_type="page"),
            wxr_builder.post("g-nav", post_type="nav_menu_item"),
            wxr_builder.post("g-draft", status="draft"),
            wxr_builder.post("g-ok", slug="ok"),
        )
    )
    assert [i.external_id for i in doc.items] == ["g-ok"]
    assert doc.skipped == 4
    assert doc.total_items == 5
    assert doc.errors == []


def test_status_allow_list_is_caller_supplied(wxr_builder):
    doc = extract_items_from_wxr(
        wxr_builder.document(
            wxr_builder.post("g-draft", status="draft"),
            wxr_builder.post("g-pub"),
        ),
        allowed_statuses=["publish", "draft"],
    )
    assert [i.external_id for i in doc.items] == ["g-draft", "g-pub"]
    draft = doc.items[0]
    assert draft.published_at is None
    assert doc.items[1].published_at == datetime(2020, 1, 2, 10, 0, 0)


def test_attachments_ignore_status_filter_and_resolve_relative_urls(wxr_builder):
    doc = extract_items_from_wxr(
        wxr_builder.document(wxr_builder.attachment("a-1", "/wp-content/uploads/pic.png", alt="A pic"))
    )
    (att,) = doc.items
    assert att.attachment_url == "https://example.com/wp-content/uploads/pic.png"
    assert att.alt == "A pic"


def test_duplicate_guid_keeps_first(wxr_builder):
    doc = extract_items_from_wxr(
        wxr_builder.document(
            wxr_builder.post("g-1", title="Original"),
            wxr_builder.post("g-1", title="Copy"),
        )
    )
    assert [i.title for i in doc.items] == ["Original"]
    assert doc.skipped == 1


def test_malformed_document_is_fatal():
    with pytest.raises(WxrParseError) as info:
        extract_items_from_wxr(b"<rss><channel><item></channel></rss>")
    assert info.value.position is not None


def test_empty_document_is_fatal():
    with pytest.raises(WxrParseError):
        extract_items_from_wxr(b"   ")


def test_document_without_channel_is_fatal():
    with pytest.raises(WxrParseError):
        extract_items_from_wxr(b"<rss version='2.0'></rss>")


def test_undeclared_namespace_prefixes_are_tolerated():
    xml = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
<channel>
  <item>
    <title>Loose</title>
    <dc:creator>admin</dc:creator>
    <guid>g-loose</guid>
    <content:encoded><![CDATA[<p>Body</p>]]></content:encoded>
    <wp:post_type>post</wp:post_type>
    <wp:status>publish</wp:status>
  </item>
</channel>
</rss>"""
    doc = extract_items_from_wxr(xml)
    (post,) = doc.items
    assert post.html == "<p>Body</p>"
    assert post.author == "admin"


def test_unknown_wxr_version_warns_and_continues(wxr_builder, capsys):
    text = wxr_builder.document(wxr_builder.post("g-1")).replace(
        "<wp:wxr_version>1.2</wp:wxr_version>", "<wp:wxr_version>9.9</wp:wxr_version>"
    )
    doc = extract_items_from_wxr(text)
    assert len(doc.items) == 1
    assert "Unknown WXR version" in capsys.readouterr().out


def test_unparseable_post_date_becomes_item_error(wxr_builder):
    doc = extract_items_from_wxr(
        wxr_builder.document(
            wxr_builder.post("g-bad", date="not a date"),
            wxr_builder.post("g-good"),
        )
    )
    assert [i.external_id for i in doc.items] == ["g-good"]
    (error,) = doc.errors
    assert error.error_type == "item_parse"
    assert error.item_identifier == "g-bad"


def test_terms_comments_and_postmeta(wxr_builder):
    extra = """
        <category domain="category" nicename="news"><![CDATA[News]]></category>
        <category domain="post_tag" nicename="news"><![CDATA[News]]></category>
        <category domain="genre" nicename="sci-fi"><![CDATA[Sci-Fi]]></category>
        <wp:postmeta>
            <wp:meta_key><![CDATA[_thumbnail_id]]></wp:meta_key>
            <wp:meta_value><![CDATA[100]]></wp:meta_value>
        </wp:postmeta>
        <wp:comment>
            <wp:comment_id>5</wp:comment_id>
            <wp:comment_author><![CDATA[Ann]]></wp:comment_author>
            <wp:comment_author_email><![CDATA[ann@example.com]]></wp:comment_author_email>
            <wp:comment_date_gmt><![CDATA[2020-01-03 08:00:00]]></wp:comment_date_gmt>
            <wp:comment_content><![CDATA[Nice]]></wp:comment_content>
            <wp:comment_approved><![CDATA[1]]></wp:comment_approved>
            <wp:comment_type><![CDATA[comment]]></wp:comment_type>
            <wp:comment_parent>0</wp:comment_parent>
        </wp:comment>
        <wp:comment>
            <wp:comment_id>6</wp:comment_id>
            <wp:comment_content><![CDATA[Ping]]></wp:comment_content>
            <wp:comment_approved><![CDATA[1]]></wp:comment_approved>
            <wp:comment_type><![CDATA[pingback]]></wp:comment_type>
        </wp:comment>
        <wp:comment>
            <wp:comment_id>7</wp:comment_id>
            <wp:comment_content><![CDATA[Gone]]></wp:comment_content>
            <wp:comment_approved><![CDATA[trash]]></wp:comment_approved>
        </wp:comment>
        <wp:comment>
            <wp:comment_id>8</wp:comment_id>
            <wp:comment_content><![CDATA[Buy now]]></wp:comment_content>
            <wp:comment_approved><![CDATA[spam]]></wp:comment_approved>
            <wp:comment_parent>5</wp:comment_parent>
        </wp:comment>
    """
    doc = extract_items_from_wxr(wxr_builder.document(wxr_builder.post("g-1", extra=extra)))
    (post,) = doc.items
    assert [(t.taxonomy, t.slug) for t in post.categories] == [("category", "news")]
    assert [(t.taxonomy, t.slug) for t in post.tags] == [("post_tag", "news")]
    assert [(t.taxonomy, t.slug) for t in post.terms] == [("genre", "sci-fi")]
    assert post.featured_image_id == "100"
    assert [(c.id, c.approved, c.parent_id) for c in post.comments] == [
        ("5", "approved", None),
        ("8", "spam", "5"),
    ]
    assert post.comments[0].author_email == "ann@example.com"


def test_pingbacks_kept_on_request(wxr_builder):
    extra = """
        <wp:comment>
            <wp:comment_id>6</wp:comment_id>
            <wp:comment_content><![CDATA[Ping]]></wp:comment_content>
            <wp:comment_approved><![CDATA[1]]></wp:comment_approved>
            <wp:comment_type><![CDATA[pingback]]></wp:comment_type>
        </wp:comment>
    """
    doc = extract_items_from_wxr(wxr_builder.document(wxr_builder.post("g-1", extra=extra)), import_pingbacks=True)
    assert [c.type for c in doc.items[0].comments] == ["pingback"]


def test_channel_authors_and_terms(wxr_builder):
    channel = """
    <wp:author>
        <wp:author_login><![CDATA[admin]]></wp:author_login>
        <wp:author_email><![CDATA[admin@example.com]]></wp:author_email>
        <wp:author_display_name><![CDATA[Site Admin]]></wp:author_display_name>
    </wp:author>
    <wp:category>
        <wp:category_nicename><![CDATA[parent]]></wp:category_nicename>
        <wp:category_parent><![CDATA[]]></wp:category_parent>
        <wp:cat_name><![CDATA[Parent]]></wp:cat_name>
    </wp:category>
    <wp:category>
        <wp:category_nicename><![CDATA[child]]></wp:category_nicename>
        <wp:category_parent><![CDATA[parent]]></wp:category_parent>
        <wp:cat_name><![CDATA[Child]]></wp:cat_name>
    </wp:category>
    <wp:tag>
        <wp:tag_slug><![CDATA[python]]></wp:tag_slug>
        <wp:tag_name><![CDATA[Python]]></wp:tag_name>
    </wp:tag>
    <wp:term>
        <wp:term_taxonomy><![CDATA[genre]]></wp:term_taxonomy>
        <wp:term_slug><![CDATA[sci-fi]]></wp:term_slug>
        <wp:term_name><![CDATA[Sci-Fi]]></wp:term_name>
    </wp:term>
    """
    doc = extract_items_from_wxr(wxr_builder.document(channel_extra=channel))
    assert [(a.login, a.email, a.display_name) for a in doc.authors] == [
        ("admin", "admin@example.com", "Site Admin")
    ]
    assert [(t.taxonomy, t.slug, t.parent_slug) for t in doc.terms] == [
        ("category", "parent", None),
        ("category", "child", "parent"),
        ("post_tag", "python", None),
        ("genre", "sci-fi", None),
    ]


def test_explicit_excerpt_and_html_entities_in_title(wxr_builder):
    item = wxr_builder.post("g-1", title="Fish &amp;amp; Chips").replace(
        "<excerpt:encoded><![CDATA[]]></excerpt:encoded>",
        "<excerpt:encoded><![CDATA[Short summary]]></excerpt:encoded>",
    )
    (post,) = extract_items_from_wxr(wxr_builder.document(item)).items
    assert post.title == "Fish & Chips"
    assert post.excerpt == "Short summary"
