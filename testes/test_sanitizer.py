import os
import sys

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pytest
pytest.importorskip("bs4")

from wxr_importer.parsers.sanitizer import sanitize_html


def test_scripts_and_handlers_are_removed():
    html = '<p onclick="steal()">Hi<script>alert(1)</script></p><style>p{}</style>'
    assert sanitize_html(html) == "<p>Hi</p>"


def test_unknown_tags_are_unwrapped_keeping_text():
    assert sanitize_html("<div><section><p>Keep <font>me</font></p></section></div>") == "<p>Keep me</p>"


def test_javascript_urls_are_dropped():
    out = sanitize_html('<a href="javascript:alert(1)">x</a><a href=" JaVa\tscript:go()">y</a>')
    assert out == "<a>x</a><a>y</a>"


def test_safe_and_relative_urls_survive():
    html = '<a href="mailto:a@b.c">m</a><a href="/about">r</a><img src="https://cdn.test/a.jpg" alt="A">'
    out = sanitize_html(html)
    assert 'href="mailto:a@b.c"' in out
    assert 'href="/about"' in out
    assert 'src="https://cdn.test/a.jpg"' in out


def test_blank_target_forces_rel():
    out = sanitize_html('<a href="https://x.test" target="_blank" rel="opener">x</a>')
    assert 'rel="noopener noreferrer"' in out
    assert 'target="_blank"' in out


def test_only_youtube_iframes_survive():
    html = (
        '<iframe src="https://www.youtube-nocookie.com/embed/a" onload="x()"></iframe>'
        '<iframe src="https://evil.test/frame"></iframe>'
    )
    out = sanitize_html(html)
    assert 'src="https://www.youtube-nocookie.com/embed/a"' in out
    assert "evil.test" not in out
    assert "onload" not in out


def test_comments_are_removed():
    assert sanitize_html("<p>a<!-- note --></p><!--more-->") == "<p>a</p>"


def test_code_classes_are_filtered():
    out = sanitize_html('<pre class="prism lang-js custom" data-language="js"><code>x</code></pre>')
    assert out == '<pre class="prism lang-js" data-language="js"><code>x</code></pre>'


def test_sanitizer_is_deterministic_and_idempotent():
    html = '<p class="a"><em>x</em><img src="/a.png" width="10" style="color:red"></p>'
    once = sanitize_html(html)
    assert once == sanitize_html(html)
    assert sanitize_html(once) == once
    assert "style" not in once


def test_empty_input():
    assert sanitize_html("") == ""
    assert sanitize_html("   ") == ""


def test_placeholder_divs_keep_their_data_but_not_unsafe_urls():
    html = '<div class="wp-audio extra" data-src="javascript:x()" data-loop="1" onclick="y()"></div>'
    assert sanitize_html(html) == '<div class="wp-audio" data-loop="1"></div>'


def test_plain_div_next_to_placeholder_is_unwrapped():
    html = '<div class="wrap"><div class="wp-gallery-placeholder" data-wp-gallery-ids="1,2"></div></div>'
    assert sanitize_html(html) == '<div class="wp-gallery-placeholder" data-wp-gallery-ids="1,2"></div>'


def test_internal_link_markers_survive():
    out = sanitize_html('<a href="/?p=3" data-wp-post-id="3" data-other="x">t</a><figure data-id="4" data-x="y"></figure>')
    assert 'data-wp-post-id="3"' in out
    assert 'data-id="4"' in out
    assert "data-other" not in out
    assert "data-x" not in out
