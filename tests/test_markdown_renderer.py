from __future__ import annotations

from bioboost.core.markdown_renderer import MarkdownRenderer, renderer


def test_renders_emphasis_and_tables():
    html = renderer.render_fragment("Which step makes **FADH₂**?\n\n| Step | Product |\n|---|---|\n| 6 | FADH₂ |")
    assert "<strong>FADH₂</strong>" in html
    assert "<table>" in html


def test_empty_input_has_placeholder():
    assert renderer.render_fragment("   ") == "<p><em>No content provided.</em></p>"
    assert renderer.render_fragment(None) == "<p><em>No content provided.</em></p>"


def test_raw_html_is_escaped_by_default():
    html = MarkdownRenderer().render_fragment("<script>alert(1)</script>")
    assert "<script>" not in html


def test_inline_rendering_has_no_paragraph():
    assert renderer.render_inline("*Citrate*") == "<em>Citrate</em>"
