"""Unit tests for sitecache.normalizer."""

from __future__ import annotations

from sitecache.normalizer import UNTITLED, collapse_blank_lines, normalize

_PAGE = """
<html>
  <head>
    <title>Example Page</title>
    <meta name="description" content="A page for tests">
    <meta name="keywords" content="testing, pages">
    <meta property="og:title" content="OG Example">
    <script>var tracking = true;</script>
  </head>
  <body>
    <nav><a href="/home">Home</a></nav>
    <header>Site header</header>
    <main>
      <h1>Welcome</h1>
      <p>Read the <a href="https://example.com/docs">docs</a> or jump to <a href="#faq">the FAQ</a>.</p>
      <ul><li>One</li><li>Two</li></ul>
      <pre><code>print("hello")</code></pre>
      <img src="/logo.png" alt="Logo" title="Company logo">
      <img alt="no source">
      <div class="advertisement">Buy now</div>
    </main>
    <footer>Footer text</footer>
  </body>
</html>
"""


class TestCollapseBlankLines:
    def test_runs_collapse_to_one_blank_line(self) -> None:
        assert collapse_blank_lines("a\n\n\n\nb") == "a\n\nb"

    def test_whitespace_only_lines_count_as_blank(self) -> None:
        assert collapse_blank_lines("a\n  \n\t\n\nb") == "a\n\nb"

    def test_trims(self) -> None:
        assert collapse_blank_lines("\n\n  a  \n\n") == "a"


class TestNormalize:
    def test_title_and_metadata(self) -> None:
        page = normalize(_PAGE, "https://example.com/")
        assert page.display_name == "Example Page"
        assert page.metadata["description"] == "A page for tests"
        assert page.metadata["og_title"] == "OG Example"
        assert page.normalized_text.startswith("# Example Page\n\n**URL:** https://example.com/")
        assert "**Description:** A page for tests" in page.normalized_text
        assert "**Keywords:** testing, pages" in page.normalized_text

    def test_markdown_conversion(self) -> None:
        text = normalize(_PAGE, "https://example.com/", include_metadata=False).normalized_text
        assert "# Welcome" in text
        assert "[docs](https://example.com/docs)" in text
        assert "- One" in text
        assert "```" in text
        assert 'print("hello")' in text
        assert "![Logo](/logo.png)" in text

    def test_in_page_anchor_keeps_text_only(self) -> None:
        text = normalize(_PAGE, "https://example.com/", include_metadata=False).normalized_text
        assert "the FAQ" in text
        assert "#faq" not in text

    def test_non_content_removed(self) -> None:
        text = normalize(_PAGE, "https://example.com/", include_metadata=False).normalized_text
        assert "tracking" not in text
        assert "Site header" not in text
        assert "Footer text" not in text
        assert "Buy now" not in text
        assert "Company logo" not in text
        assert "no source" not in text

    def test_clean_disabled_keeps_chrome_but_not_scripts(self) -> None:
        html = (
            "<html><body><nav>Menu</nav><p>Body</p><script>evil()</script></body></html>"
        )
        text = normalize(html, "https://e.com/", clean=False, include_metadata=False).normalized_text
        assert "Menu" in text
        assert "evil" not in text

    def test_region_prefers_main_then_article(self) -> None:
        html = "<body><p>Outside</p><article><p>Inside</p></article></body>"
        text = normalize(html, "https://e.com/", include_metadata=False).normalized_text
        assert text == "Inside"

    def test_missing_title_falls_back(self) -> None:
        page = normalize("<body><p>Hi</p></body>", "https://e.com/")
        assert page.display_name == UNTITLED
        assert page.normalized_text.startswith(f"# {UNTITLED}")

    def test_output_obeys_blank_line_law(self) -> None:
        text = normalize(_PAGE, "https://example.com/").normalized_text
        assert "\n\n\n" not in text
        assert text == text.strip()
        for line in text.split("\n"):
            assert line == "" or line.strip() != ""
