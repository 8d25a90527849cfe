"""HTML templates for YAML-bodied Hexo tags.

Renders friend-link grids and audio/video player placeholders. The
players themselves are hydrated client-side from the ``data-src`` JSON.
"""

import html
import json
import re

_HEX_COLOR = re.compile(r"^#[0-9a-fA-F]{3,8}$")
_FUNC_COLOR = re.compile(r"^(rgb|hsl)a?\([\d\s,%./]+\)$")
_NAMED_COLOR = re.compile(r"^[a-zA-Z]+$")


def escape_html(text) -> str:
    """Escape text for use in element content and quoted attributes."""
    return html.escape(str(text), quote=True).replace("&#x27;", "&#39;")


def sanitize_css_color(color) -> str | None:
    """Validate a CSS color value (hex, named, rgb(a), hsl(a) only)."""
    trimmed = str(color).strip()
    if _HEX_COLOR.match(trimmed):
        return trimmed
    if _FUNC_COLOR.match(trimmed):
        return trimmed
    if _NAMED_COLOR.match(trimmed):
        return trimmed
    return None


def _json_attr(value) -> str:
    encoded = json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=str)
    return escape_html(encoded)


def render_friend_links(items: list) -> str:
    """Render a list of friend-link mappings as a card grid.

    Each item needs ``site`` and ``url``; ``owner``, ``desc``, ``image`` and
    ``color`` are optional. Items that are not mappings are skipped.
    """
    items = [item for item in items if isinstance(item, dict)]
    cards = []
    for item in items:
        site = item.get("site", "")
        color = sanitize_css_color(item["color"]) if item.get("color") else None
        color_style = f' style="border-color: {escape_html(color)}"' if color else ""
        image = ""
        if item.get("image"):
            image = (
                f'<img class="avatar" src="{escape_html(item["image"])}" '
                f'alt="{escape_html(site)}" loading="lazy" />'
            )
        desc = ""
        if item.get("desc"):
            desc = f'<div class="desc">{escape_html(item["desc"])}</div>'
        cards.append(
            f'<a class="friend-link-card" href="{escape_html(item.get("url", ""))}" '
            f'target="_blank" rel="noopener noreferrer"{color_style}>{image}'
            f'<div class="info"><div class="name">{escape_html(site)}</div>{desc}</div></a>'
        )
    body = "\n".join(cards)
    return f'<div class="friend-links-grid" data-links="{_json_attr(items)}">\n{body}\n</div>'


def render_audio_media(items: list) -> str:
    """Render audio items as a player placeholder.

    An item with a ``list`` becomes a titled group; an item with only a
    ``url`` becomes a single-track group. Returns "" if nothing is playable.
    """
    groups = []
    for item in items:
        if not isinstance(item, dict):
            continue
        if isinstance(item.get("list"), list):
            group = {"list": [str(u) for u in item["list"]]}
            if item.get("title") is not None:
                group = {"title": str(item["title"]), **group}
            groups.append(group)
        elif item.get("url"):
            groups.append({"list": [str(item["url"])]})

    if not groups:
        return ""
    return f'<div data-audio-player data-src="{_json_attr(groups)}"></div>'


def render_video_media(items: list) -> str:
    """Render video items with a ``url`` as a player placeholder."""
    tracks = [
        {"name": str(item.get("name") or ""), "url": str(item["url"])}
        for item in items
        if isinstance(item, dict) and item.get("url")
    ]
    if not tracks:
        return ""
    return f'<div data-video-player data-src="{_json_attr(tracks)}"></div>'
