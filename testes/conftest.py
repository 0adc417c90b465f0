import os
import sys
import threading

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pytest
import requests

from wxr_importer.utils.logs import set_verbose


@pytest.fixture(autouse=True)
def report_dir(tmp_path, monkeypatch):
    """Keep run logs and JSONL reports out of the working tree."""
    directory = tmp_path / "reports"
    monkeypatch.setenv("WXR_REPORT_DIR", str(directory))
    set_verbose(False)
    return directory


class FakeSession:
    """Stands in for ``requests.Session``: ``routes`` maps URL -> (status, body, content type) or an exception."""

    def __init__(self, routes=None, delay=None):
        self.routes = dict(routes or {})
        self.calls = []
        self.delay = delay
        self._lock = threading.Lock()

    def get(self, url, timeout=None, stream=False, **kwargs):
        with self._lock:
            self.calls.append(url)
        if self.delay is not None:
            self.delay.wait(timeout=2)
        entry = self.routes.get(url)
        if isinstance(entry, Exception):
            raise entry
        status, body, content_type = entry if entry else (404, b"", "text/plain")
        resp = requests.Response()
        resp.status_code = status
        resp._content = body
        resp.headers["Content-Type"] = content_type
        resp.url = url
        resp.reason = "OK" if status < 400 else "Error"
        return resp


class RecordingStorage:
    """Storage backend that keeps every put in memory."""

    def __init__(self, base="https://cdn.test"):
        self.base = base
        self.puts = []
        self._lock = threading.Lock()

    def put(self, key, data, content_type=None):
        with self._lock:
            self.puts.append((key, data, content_type))
        return self.public_url(key)

    def public_url(self, key):
        return f"{self.base}/{key}"

    def delete_prefix(self, prefix):
        with self._lock:
            self.puts = [p for p in self.puts if not p[0].startswith(prefix.strip("/") + "/")]


@pytest.fixture
def fake_session():
    return FakeSession


@pytest.fixture
def recording_storage():
    return RecordingStorage()


WXR_HEAD = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0"
    xmlns:excerpt="http://wordpress.org/export/1.2/excerpt/"
    xmlns:content="http://purl.org/rss/1.0/modules/content/"
    xmlns:wfw="http://wellformedweb.org/CommentAPI/"
    xmlns:dc="http://purl.org/dc/elements/1.1/"
    xmlns:wp="http://wordpress.org/export/1.2/">
<channel>
    <title>Example Blog</title>
    <link>https://example.com</link>
    <wp:wxr_version>1.2</wp:wxr_version>
    <wp:base_site_url>https://example.com</wp:base_site_url>
    <wp:base_blog_url>https://example.com</wp:base_blog_url>
"""

WXR_TAIL = """
</channel>
</rss>
"""


def post_xml(
    guid,
    title="A post",
    slug="",
    content="<p>Hello</p>",
    status="publish",
    post_type="post",
    link=None,
    date="2020-01-02 10:00:00",
    extra="",
    post_id="1",
):
    link = link if link is not None else f"https://example.com/2020/01/{slug or 'a-post'}/"
    return f"""
    <item>
        <title>{title}</title>
        <link>{link}</link>
        <dc:creator><![CDATA[admin]]></dc:creator>
        <guid isPermaLink="false">{guid}</guid>
        <content:encoded><![CDATA[{content}]]></content:encoded>
        <excerpt:encoded><![CDATA[]]></excerpt:encoded>
        <wp:post_id>{post_id}</wp:post_id>
        <wp:post_date><![CDATA[{date}]]></wp:post_date>
        <wp:post_date_gmt><![CDATA[{date}]]></wp:post_date_gmt>
        <wp:post_name><![CDATA[{slug}]]></wp:post_name>
        <wp:status><![CDATA[{status}]]></wp:status>
        <wp:post_parent>0</wp:post_parent>
        <wp:post_type><![CDATA[{post_type}]]></wp:post_type>
        {extra}
    </item>
"""


def attachment_xml(guid, url, post_id="100", alt=None, parent="0"):
    meta = ""
    if alt:
        meta = f"""
        <wp:postmeta>
            <wp:meta_key><![CDATA[_wp_attachment_image_alt]]></wp:meta_key>
            <wp:meta_value><![CDATA[{alt}]]></wp:meta_value>
        </wp:postmeta>"""
    return f"""
    <item>
        <title>Attachment {post_id}</title>
        <guid isPermaLink="false">{guid}</guid>
        <wp:post_id>{post_id}</wp:post_id>
        <wp:status><![CDATA[inherit]]></wp:status>
        <wp:post_parent>{parent}</wp:post_parent>
        <wp:post_type><![CDATA[attachment]]></wp:post_type>
        <wp:attachment_url><![CDATA[{url}]]></wp:attachment_url>{meta}
    </item>
"""


def wxr(*items, channel_extra=""):
    return WXR_HEAD + channel_extra + "".join(items) + WXR_TAIL


@pytest.fixture
def wxr_builder():
    """Helpers to assemble WXR documents: ``wxr``, ``post`` and ``attachment``."""

    class Builder:
        document = staticmethod(wxr)
        post = staticmethod(post_xml)
        attachment = staticmethod(attachment_xml)

    return Builder


@pytest.fixture
def write_wxr(tmp_path):
    def _write(text, name="export.xml"):
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return str(path)

    return _write
