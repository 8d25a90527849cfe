"""Postprocessor for Shoka attribute syntax ``{.class #id key=value}``.

Handles these patterns on the rendered HTML:

1. A paragraph containing only ``{.class}`` applies to the previous sibling
   element and is removed.
2. Trailing ``{.class}`` on list item text applies to the ``<li>``; trailing
   ``{.class}`` on heading text applies to the heading.
3. ``{.class}`` text right after an element applies to that element, e.g.
   ``<strong>text</strong>{.red}``.
4. Inline ``[text]{.class}`` becomes ``<span class="class">text</span>``.

Attribute keys starting with ``on`` (event handlers) are always dropped.
Nothing inside code, scripts or rendered math is touched. Each parent
whose children change gets a freshly built child list swapped in.
"""

import re

from bs4 import BeautifulSoup, NavigableString, Tag

_TOKEN_RE = re.compile(
    r"\.([a-zA-Z0-9_-]+)|#([a-zA-Z0-9_-]+)|([a-zA-Z0-9_-]+)=(?:\"([^\"]*)\"|(\S+))"
)

# Validates a CSS identifier (class name, id)
CSS_IDENT = re.compile(r"^[a-zA-Z_-][a-zA-Z0-9_-]*$")

BLOCK_ATTR_RE = re.compile(r"^\{([^}]+)\}$")
SUFFIX_ATTR_RE = re.compile(r"\s*\{([^}]+)\}\s*$")
LEADING_ATTR_RE = re.compile(r"^\{([^}]+)\}")
INLINE_ATTR_RE = re.compile(r"\[([^\]]*)\]\{([^}]+)\}")

HEADING_TAGS = {"h1", "h2", "h3", "h4", "h5", "h6"}
PROTECTED_TAGS = {"code", "pre", "kbd", "samp", "script", "style", "math"}


def parse_attrs(raw: str) -> dict[str, str]:
    """Parse ``.class #id key=value key="value"`` tokens.

    Multiple classes are joined with spaces; the last ``#id`` wins; keys
    beginning with ``on`` are dropped. Unrecognized text is ignored.
    """
    props: dict[str, str] = {}
    classes = []

    for match in _TOKEN_RE.finditer(raw):
        if match.group(1):
            classes.append(match.group(1))
        elif match.group(2):
            props["id"] = match.group(2)
        elif match.group(3):
            key = match.group(3)
            if key.lower().startswith("on"):
                continue
            value = match.group(4)
            if value is None:
                value = match.group(5)
            props[key] = value if value is not None else ""

    if classes:
        props["class"] = " ".join(classes)
    return props


def apply_attrs(tag: Tag, attrs: dict[str, str]) -> None:
    """Merge attributes onto a tag; classes are appended, not replaced."""
    for key, value in attrs.items():
        if key == "class":
            existing = tag.get("class") or []
            if isinstance(existing, str):
                existing = existing.split()
            tag["class"] = [*existing, *value.split()]
        else:
            tag[key] = value


def _is_protected(tag: Tag) -> bool:
    if tag.name in PROTECTED_TAGS:
        return True
    classes = tag.get("class") or []
    if isinstance(classes, str):
        classes = classes.split()
    return "arithmatex" in classes


def _inside_protected(node) -> bool:
    if isinstance(node, Tag) and _is_protected(node):
        return True
    return any(_is_protected(parent) for parent in node.parents if parent.name)


def _is_text(node) -> bool:
    return type(node) is NavigableString


def _is_blank(node) -> bool:
    return _is_text(node) and not node.strip()


def _swap_children(parent: Tag, children: list) -> None:
    parent.clear()
    for child in children:
        parent.append(child)


def _block_attr_paragraph(node) -> dict[str, str] | None:
    if not isinstance(node, Tag) or node.name != "p":
        return None
    if len(node.contents) != 1 or not _is_text(node.contents[0]):
        return None
    match = BLOCK_ATTR_RE.match(node.contents[0].strip())
    if not match:
        return None
    return parse_attrs(match.group(1)) or None


def _previous_element(children: list) -> Tag | None:
    """Last element in children, skipping whitespace-only text."""
    for node in reversed(children):
        if isinstance(node, Tag):
            return node
        if _is_blank(node):
            continue
        return None
    return None


def _apply_block_paragraphs(soup: BeautifulSoup) -> None:
    for parent in [soup, *soup.find_all(True)]:
        if isinstance(parent, Tag) and parent.name and _inside_protected(parent):
            continue
        rebuilt = []
        changed = False
        for child in parent.contents:
            attrs = _block_attr_paragraph(child)
            if attrs is not None:
                target = _previous_element(rebuilt)
                if target is not None:
                    apply_attrs(target, attrs)
                    changed = True
                    continue
            rebuilt.append(child)
        if changed:
            _swap_children(parent, rebuilt)


def _strip_suffix(text_node: NavigableString) -> dict[str, str] | None:
    match = SUFFIX_ATTR_RE.search(text_node)
    if not match:
        return None
    attrs = parse_attrs(match.group(1))
    if not attrs:
        return None
    text_node.replace_with(NavigableString(text_node[: match.start()].rstrip()))
    return attrs


def _apply_list_items(soup: BeautifulSoup) -> None:
    for li in soup.find_all("li"):
        if _inside_protected(li):
            continue
        for child in li.contents:
            text_node = None
            if _is_text(child):
                text_node = child
            elif isinstance(child, Tag) and child.contents and not _is_protected(child):
                last = child.contents[-1]
                if _is_text(last):
                    text_node = last
            if text_node is None:
                continue
            attrs = _strip_suffix(text_node)
            if attrs is not None:
                apply_attrs(li, attrs)
                break


def _apply_headings(soup: BeautifulSoup) -> None:
    for heading in soup.find_all(HEADING_TAGS):
        if _inside_protected(heading) or not heading.contents:
            continue
        last = heading.contents[-1]
        if not _is_text(last):
            continue
        attrs = _strip_suffix(last)
        if attrs is not None:
            apply_attrs(heading, attrs)


def _apply_trailing(soup: BeautifulSoup) -> None:
    for parent in soup.find_all(True):
        if _inside_protected(parent):
            continue
        rebuilt = []
        changed = False
        for child in parent.contents:
            if _is_text(child):
                match = LEADING_ATTR_RE.match(child)
                attrs = parse_attrs(match.group(1)) if match else None
                target = _previous_element(rebuilt) if attrs else None
                if target is not None:
                    apply_attrs(target, attrs)
                    remaining = child[match.end() :]
                    changed = True
                    if remaining:
                        rebuilt.append(NavigableString(remaining))
                    continue
            rebuilt.append(child)
        if changed:
            _swap_children(parent, rebuilt)


def _apply_inline_spans(soup: BeautifulSoup) -> None:
    for text_node in soup.find_all(string=INLINE_ATTR_RE):
        if not _is_text(text_node) or _inside_protected(text_node):
            continue
        parent = text_node.parent
        if parent is None:
            continue

        parts = []
        last = 0
        for match in INLINE_ATTR_RE.finditer(text_node):
            attrs = parse_attrs(match.group(2))
            if not attrs:
                continue
            if match.start() > last:
                parts.append(NavigableString(text_node[last : match.start()]))
            span = soup.new_tag("span")
            span.string = match.group(1)
            apply_attrs(span, attrs)
            parts.append(span)
            last = match.end()
        if not parts:
            continue
        if last < len(text_node):
            parts.append(NavigableString(text_node[last:]))

        rebuilt = []
        for child in parent.contents:
            if child is text_node:
                rebuilt.extend(parts)
            else:
                rebuilt.append(child)
        _swap_children(parent, rebuilt)


def decorate_soup(soup: BeautifulSoup) -> None:
    """Run the attribute passes over a parsed tree, in order."""
    _apply_block_paragraphs(soup)
    _apply_list_items(soup)
    _apply_headings(soup)
    _apply_trailing(soup)
    _apply_inline_spans(soup)


def decorate_attributes(html: str, context) -> str:
    """Apply ``{...}`` attribute annotations to rendered HTML.

    Args:
        html: HTML fragment to process.
        context: RenderContext for the document.

    Returns:
        Processed HTML.
    """
    if context is not None and not context.config.content.enable_attrs:
        return html
    if "{" not in html:
        return html

    soup = BeautifulSoup(html, "html.parser")
    decorate_soup(soup)
    return str(soup)
