import os
import sys

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pytest
pytest.importorskip("bs4")

from wxr_importer.parsers.html_pipeline import (
    PLACEHOLDER_SRC,
    annotate_internal_links,
    apply_quicktags,
    canonicalize_code_blocks,
    finalize_post_html,
    first_image,
    normalize_post_html,
    plain_text_excerpt,
    repair_lists,
    replace_unrelocated_videos,
    resolve_internal_links,
    strip_gutenberg_comments,
    transform_auto_embeds,
    transform_av_shortcodes,
    transform_core_blocks,
    transform_iframes,
)


def test_gutenberg_block_comments_are_stripped():
    html = '<!-- wp:paragraph {"align":"center"} -->\n<p>Hi</p>\n<!-- /wp:paragraph -->\n'
    assert strip_gutenberg_comments(html) == "<p>Hi</p>\n"


def test_only_first_more_marker_is_special():
    body, excerpt, breaks = apply_quicktags("<p>A</p><!--more--><p>B</p><!--more--><p>C</p>")
    assert excerpt == "<p>A</p>"
    assert body == "<p>B</p><!--more--><p>C</p>"
    assert breaks == 0


def test_more_marker_with_explicit_excerpt_keeps_the_body():
    body, excerpt, _ = apply_quicktags("<p>A</p><!--more Read on--><p>B</p>", "Given")
    assert excerpt == "Given"
    assert body == "<p>A</p><p>B</p>"


def test_nextpage_markers_become_page_breaks():
    body, excerpt, breaks = apply_quicktags("<p>1</p><!--nextpage--><p>2</p><!--nextpage--><p>3</p>")
    assert excerpt is None
    assert breaks == 2
    assert body.count('<hr data-wp-nextpage="true" />') == 2


def test_list_wrapped_in_paragraph_is_repaired():
    assert repair_lists("<p><ul><li><p>X</p></li></ul></p>") == "<ul><li>X</li></ul>"


def test_list_repair_leaves_siblings_and_nested_lists():
    html = "<ul><li><p>A</p><p>B</p></li><li><p>C</p><ul><li><p>D</p></li></ul></li></ul>"
    assert repair_lists(html) == "<ul><li><p>A</p><p>B</p></li><li><p>C</p><ul><li>D</li></ul></li></ul>"


def test_list_repair_inside_blockquote():
    html = "<blockquote><p><ol><li><p>Q</p></li></ol></p></blockquote>"
    assert repair_lists(html) == "<blockquote><ol><li>Q</li></ol></blockquote>"


def test_list_repair_returns_untouched_input():
    html = "<p>No lists  here</p>"
    assert repair_lists(html) is html


def test_highlighting_wrapper_becomes_plain_pre():
    html = (
        '<div class="hcb_wrap"><pre class="prism line-numbers lang-js" data-lang="JavaScript">'
        "<code>if (a &lt; b) { go(); }</code></pre></div>"
    )
    assert canonicalize_code_blocks(html) == (
        '<pre data-language="javascript"><code>if (a &lt; b) { go(); }</code></pre>'
    )


def test_embed_shortcode_and_standalone_urls():
    html = "[embed]https://www.youtube.com/watch?v=abc[/embed]\nhttps://vimeo.com/12345\nhttps://example.com/page\n"
    out = transform_auto_embeds(html)
    assert '<a class="wp-embed" data-embed="youtube" href="https://www.youtube.com/watch?v=abc">' in out
    assert '<a class="wp-embed" data-embed="vimeo" href="https://vimeo.com/12345">' in out
    assert "https://example.com/page" in out
    assert 'href="https://example.com/page"' not in out


def test_embed_shortcode_for_unknown_provider_leaves_plain_url():
    assert transform_auto_embeds("[embed]https://example.com/v[/embed]") == "https://example.com/v"


def test_embed_detection_skips_preformatted_code():
    html = "<pre>\nhttps://youtu.be/abc\n</pre>"
    assert transform_auto_embeds(html) == html


def test_non_youtube_iframes_become_placeholder():
    html = (
        '<iframe src="https://www.youtube.com/embed/abc"></iframe>'
        '<iframe src="https://maps.example.com/embed"></iframe>'
    )
    out = transform_iframes(html)
    assert 'src="https://www.youtube.com/embed/abc"' in out
    assert "maps.example.com" not in out
    assert out.count(PLACEHOLDER_SRC) == 1


def test_video_with_one_unrelocated_source_is_replaced_entirely():
    html = (
        '<video controls><source src="/uploads/a.mp4" type="video/mp4">'
        '<source src="https://other.example/b.webm" type="video/webm"></video>'
    )
    out = replace_unrelocated_videos(html, lambda url: url.startswith("/uploads/"))
    assert "<video" not in out
    assert "/uploads/a.mp4" not in out
    assert PLACEHOLDER_SRC in out


def test_video_with_all_sources_relocated_is_kept():
    html = (
        '<video controls poster="/uploads/p.jpg"><source src="/uploads/a.mp4" type="video/mp4">'
        '<source src="/uploads/b.webm" type="video/webm"></video>'
    )
    out = replace_unrelocated_videos(html, lambda url: url.startswith("/uploads/"))
    assert "<video" in out
    assert PLACEHOLDER_SRC not in out


def test_normalize_runs_stages_in_order():
    raw = (
        "<!-- wp:paragraph --><p>Intro</p><!-- /wp:paragraph -->"
        "<!--more-->"
        "<p><ul><li><p>One</p></li></ul></p>"
    )
    n = normalize_post_html(raw)
    assert n.excerpt == "<p>Intro</p>"
    assert n.html == "<ul><li>One</li></ul>"


def test_finalize_rewrites_then_sanitizes():
    html = (
        '<p><img src="https://example.com/wp-content/uploads/a-300x200.jpg" onerror="x()"></p>'
        '<video><source src="https://example.com/wp-content/uploads/v.mp4"></video>'
        "<script>alert(1)</script>"
    )
    table = {
        "https://example.com/wp-content/uploads/a-300x200.jpg": "/uploads/imported-media/aaa.jpg",
        "https://example.com/wp-content/uploads/v.mp4": "/uploads/imported-media/bbb.mp4",
    }
    out = finalize_post_html(html, table, set(table.values()))
    assert 'src="/uploads/imported-media/aaa.jpg"' in out
    assert 'src="/uploads/imported-media/bbb.mp4"' in out
    assert "onerror" not in out
    assert "script" not in out


def test_first_image_and_plain_text_excerpt():
    assert first_image('<p>x</p><img src="/a.jpg" alt="A"><img src="/b.jpg">') == ("/a.jpg", "A")
    assert first_image("<p>none</p>") == (None, None)
    text = "word " * 100
    excerpt = plain_text_excerpt(f"<p>{text}</p>", limit=30)
    assert excerpt.endswith("…")
    assert len(excerpt) <= 31
    assert plain_text_excerpt("<p>Short</p>") == "Short"


def test_highlighting_wrapper_match_ignores_case():
    html = '<DIV class="hcb_wrap"><PRE class="prism" data-lang="Python"><CODE>x = 1</CODE></PRE></DIV>'
    assert canonicalize_code_blocks(html) == '<pre data-language="python"><code>x = 1</code></pre>'


def test_audio_and_video_shortcodes_become_placeholders():
    audio = transform_av_shortcodes('[audio src="https://ex.com/a.mp3" preload="metadata" loop autoplay]')
    assert audio == (
        '<div class="wp-audio" data-src="https://ex.com/a.mp3" data-preload="metadata" '
        'data-loop="true" data-autoplay="true"></div>'
    )
    video = transform_av_shortcodes(
        '[video src="https://ex.com/v.mp4" poster="https://ex.com/p.jpg" width="640" height="360"][/video]'
    )
    assert video == (
        '<div class="wp-video" data-src="https://ex.com/v.mp4" data-poster="https://ex.com/p.jpg" '
        'data-width="640" data-height="360"></div>'
    )


def test_video_shortcode_format_attribute_stands_in_for_src():
    out = transform_av_shortcodes("[video mp4='https://ex.com/v.mp4?a=1&#038;b=2']")
    assert out == '<div class="wp-video" data-src="https://ex.com/v.mp4?a=1&amp;b=2"></div>'


def test_playlist_shortcode_keeps_ids_and_type():
    out = transform_av_shortcodes('[playlist ids="1, 2,3" type="video"]')
    assert out == '<div class="wp-playlist" data-ids="1,2,3" data-type="video"></div>'


def test_av_shortcodes_inside_pre_are_left_alone():
    html = "<pre>[audio src=\"a.mp3\"]</pre>[audio-player]"
    assert transform_av_shortcodes(html) == html


def test_image_block_becomes_figure_with_id_and_size():
    html = '<!-- wp:image {"id":42,"sizeSlug":"large"} --><img src="/x.jpg" alt="x"/><!-- /wp:image -->'
    assert transform_core_blocks(html) == (
        '<figure class="wp-image" data-id="42" data-size="large"><img src="/x.jpg" alt="x"/></figure>'
    )


def test_embed_block_uses_its_json_url():
    html = '<!-- wp:embed {"url":"https://youtu.be/abc"} --><!-- /wp:embed -->'
    assert transform_core_blocks(html) == (
        '<p><a class="wp-embed" data-embed="youtube" href="https://youtu.be/abc">https://youtu.be/abc</a></p>'
    )


def test_legacy_embed_block_falls_back_to_inner_url():
    html = (
        '<!-- wp:core-embed/vimeo {"type":"video"} --><figure><div class="wp-block-embed__wrapper">\n'
        "https://vimeo.com/123\n</div></figure><!-- /wp:core-embed/vimeo -->"
    )
    assert 'data-embed="vimeo" href="https://vimeo.com/123"' in transform_core_blocks(html)


def test_gallery_block_becomes_placeholder():
    html = '<!-- wp:gallery {"ids":[1,2,3],"columns":3} --><!-- /wp:gallery -->'
    assert transform_core_blocks(html) == (
        '<div class="wp-gallery-placeholder" data-wp-gallery-ids="1,2,3" data-wp-gallery-columns="3"></div>'
    )


def test_gallery_without_ids_collects_nested_images():
    html = (
        '<!-- wp:gallery {"linkTo":"none"} --><figure>'
        '<!-- wp:image {"id":7} --><img src="/a.jpg"/><!-- /wp:image -->'
        '<!-- wp:image {"id":8} --><img src="/b.jpg"/><!-- /wp:image -->'
        "</figure><!-- /wp:gallery -->"
    )
    assert transform_core_blocks(html) == '<div class="wp-gallery-placeholder" data-wp-gallery-ids="7,8"></div>'


def test_other_blocks_are_left_for_the_comment_strip():
    html = "<!-- wp:paragraph --><p>Hi</p><!-- /wp:paragraph -->"
    assert transform_core_blocks(html) == html


def test_embed_block_survives_normalization_and_sanitizing():
    n = normalize_post_html('<!-- wp:embed {"url":"https://youtu.be/abc"} --><!-- /wp:embed -->')
    out = finalize_post_html(n.html, {}, set())
    assert 'class="wp-embed"' in out
    assert 'href="https://youtu.be/abc"' in out


def test_internal_links_are_annotated_and_resolved():
    html = (
        '<a href="/?p=12">post</a> <a href="https://www.example.com/?attachment_id=9">att</a> '
        '<a href="https://other.test/?p=5">elsewhere</a> <a href="/2020/01/x/?p=3">pretty</a>'
    )
    annotated = annotate_internal_links(html, "https://example.com")
    assert 'data-wp-post-id="12"' in annotated
    assert 'data-wp-attachment-id="9"' in annotated
    assert annotated.count("data-wp-") == 2

    resolved = resolve_internal_links(annotated, {"12": "hello-world"}, {"9": "https://cdn.ex/9.jpg"})
    assert 'href="/hello-world"' in resolved
    assert 'href="https://cdn.ex/9.jpg"' in resolved
    assert 'href="https://other.test/?p=5"' in resolved


def test_unknown_link_targets_are_left_alone():
    html = '<a data-wp-post-id="99" href="/?p=99">gone</a>'
    assert resolve_internal_links(html, {}, {}) is html


def test_video_shortcode_placeholder_follows_all_or_nothing():
    html = '<div class="wp-video" data-src="/uploads/v.mp4" data-poster="https://ext.test/p.jpg"></div>'
    out = replace_unrelocated_videos(html, lambda url: url.startswith("/uploads/"))
    assert "wp-video" not in out
    assert PLACEHOLDER_SRC in out


def test_finalize_matches_numeric_entity_in_video_src():
    html = '<video src="https://site.test/v.mp4?ver=1&#038;x=2"></video>'
    table = {"https://site.test/v.mp4?ver=1&x=2": "https://cdn.test/h.mp4"}
    out = finalize_post_html(html, table, set(table.values()))
    assert out == '<video src="https://cdn.test/h.mp4"></video>'
