"""HTML helpers: default HTML-to-text renderer and ``cid:`` rewriting."""

from __future__ import annotations

import re
from urllib.parse import quote

import html2text

_BLANK_RUNS = re.compile(r"\s{2,}")
_CID_REF = re.compile(r"cid:([^\"'\s>)]+)", re.IGNORECASE)


def html_to_text(html: str) -> str:
    """Render *html* as plain text; runs of 2+ whitespace become one newline."""
    converter = html2text.HTML2Text()
    converter.ignore_images = True
    converter.ignore_emphasis = True
    converter.body_width = 0
    rendered = converter.handle(html)
    return _BLANK_RUNS.sub("\n", rendered).strip()


def rewrite_cid_references(
    html: str,
    inline_content_ids: dict[str, str],
    url_template: str,
    message_id: str,
) -> str:
    """Replace ``cid:<id>`` references with attachment URLs.

    *url_template* is formatted with ``message_id`` and ``filename`` (both
    URL-quoted).  References to unknown content ids are left untouched.
    """
    if not html or not inline_content_ids:
        return html

    def _replace(match: re.Match[str]) -> str:
        filename = inline_content_ids.get(match.group(1))
        if filename is None:
            return match.group(0)
        return url_template.format(
            message_id=quote(message_id, safe=""),
            filename=quote(filename),
        )

    return _CID_REF.sub(_replace, html)
