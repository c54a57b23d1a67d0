"""HTML → Markdown normalizer.

Picks the primary content region (``<main>``, else ``<article>``, else
``<body>``), strips non-content elements, and converts the rest with
html2text: ATX headings, ``-`` bullets, fenced code, ``[text](url)`` links
and ``![alt](src)`` images. In-page ``#anchor`` links keep only their text.
"""

from __future__ import annotations

import re
import textwrap

import html2text
from bs4 import BeautifulSoup, Tag

from sitecache.models.fetch import NormalizedPage

UNTITLED = "Untitled Page"

# Never content, removed whether or not cleaning is requested.
_ALWAYS_REMOVED = ["script", "style", "noscript", "iframe"]

_CLEAN_SELECTORS = [
    "nav",
    "header",
    "footer",
    ".advertisement",
    ".ads",
    "#cookie-banner",
    ".cookie-notice",
]

_BLANK_RUN_RE = re.compile(r"\n{3,}")
_WHITESPACE_ONLY_LINE_RE = re.compile(r"^[ \t]+$", re.MULTILINE)
# html2text marks <pre> blocks with [code]...[/code] and indents their lines.
_CODE_BLOCK_RE = re.compile(r"\[code\]\n?(.*?)\n?\[/code\]", re.DOTALL)


def extract_metadata(soup: BeautifulSoup) -> dict[str, str]:
    """Description, Open Graph title/description and keywords, when present."""
    lookups = {
        "description": {"name": "description"},
        "og_title": {"property": "og:title"},
        "og_description": {"property": "og:description"},
        "keywords": {"name": "keywords"},
    }
    metadata: dict[str, str] = {}
    for field_name, attrs in lookups.items():
        tag = soup.find("meta", attrs=attrs)
        if isinstance(tag, Tag):
            content = tag.get("content")
            if isinstance(content, str) and content.strip():
                metadata[field_name] = content.strip()
    return metadata


def format_metadata_header(display_name: str, url: str, metadata: dict[str, str]) -> str:
    header = f"# {display_name}\n\n**URL:** {url}\n"
    if "description" in metadata:
        header += f"\n**Description:** {metadata['description']}\n"
    if "keywords" in metadata:
        header += f"\n**Keywords:** {metadata['keywords']}\n"
    return header


def collapse_blank_lines(text: str) -> str:
    """At most one blank line in a row; leading/trailing whitespace trimmed."""
    text = _WHITESPACE_ONLY_LINE_RE.sub("", text)
    return _BLANK_RUN_RE.sub("\n\n", text).strip()


def _primary_region(soup: BeautifulSoup) -> Tag:
    for name in ("main", "article", "body"):
        region = soup.find(name)
        if isinstance(region, Tag):
            return region
    # Fragment without <body>: drop head-only elements so they are not converted.
    for element in soup.find_all(["head", "title", "meta", "link"]):
        element.decompose()
    return soup


def _prepare_region(region: Tag, *, clean: bool) -> None:
    for element in region.find_all(_ALWAYS_REMOVED):
        element.decompose()

    if clean:
        for element in region.select(", ".join(_CLEAN_SELECTORS)):
            element.decompose()

    for anchor in region.find_all("a"):
        href = anchor.get("href")
        if not isinstance(href, str) or not href or href.startswith("#"):
            anchor.unwrap()

    for image in region.find_all("img"):
        if not image.get("src"):
            image.decompose()
        elif image.has_attr("title"):
            del image["title"]


def _fence_code(match: re.Match[str]) -> str:
    body = textwrap.dedent(match.group(1)).strip("\n")
    return f"\n```\n{body}\n```\n"


def to_markdown(html: str) -> str:
    converter = html2text.HTML2Text()
    converter.body_width = 0
    converter.ul_item_mark = "-"
    converter.mark_code = True
    converter.unicode_snob = True
    converter.ignore_tables = False
    return _CODE_BLOCK_RE.sub(_fence_code, converter.handle(html))


def normalize(
    raw_markup: str,
    url: str,
    *,
    clean: bool = True,
    include_metadata: bool = True,
) -> NormalizedPage:
    soup = BeautifulSoup(raw_markup, "html.parser")

    title_tag = soup.find("title")
    display_name = title_tag.get_text(strip=True) if isinstance(title_tag, Tag) else ""
    display_name = display_name or UNTITLED

    metadata = extract_metadata(soup)

    region = _primary_region(soup)
    _prepare_region(region, clean=clean)

    text = to_markdown(str(region))

    if include_metadata:
        text = f"{format_metadata_header(display_name, url, metadata)}\n\n{text}"

    return NormalizedPage(
        normalized_text=collapse_blank_lines(text),
        display_name=display_name,
        metadata=metadata,
    )
