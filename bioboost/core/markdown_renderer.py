"""Markdown rendering for question prompts, options and explanations.

Teachers write prompts in markdown (``**NADH**``, ``CO~2~``-style notes,
short tables of intermediates). Payloads sent to learners carry the rendered
HTML fragment next to the raw text so clients can pick either.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from markdown_it import MarkdownIt


@dataclass(slots=True)
class MarkdownRenderer:
    """Converts markdown into HTML fragments."""

    enable_html: bool = False
    _markdown: MarkdownIt = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._markdown = (
            MarkdownIt("commonmark", {"html": self.enable_html})
            .enable("table")
            .enable("strikethrough")
        )

    def render_fragment(self, markdown_text: str | None) -> str:
        """Render a markdown string into an HTML fragment."""

        sanitized = (markdown_text or "").strip()
        if not sanitized:
            return "<p><em>No content provided.</em></p>"
        return self._markdown.render(sanitized)

    def render_inline(self, markdown_text: str | None) -> str:
        """Render a single line (an option label) without a wrapping paragraph."""

        return self._markdown.renderInline((markdown_text or "").strip())


renderer = MarkdownRenderer()
