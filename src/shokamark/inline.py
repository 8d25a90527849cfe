"""Python-Markdown extension for Shoka inline syntax.

- ``!!text!!`` → ``<spoiler-span>``; ``!!text!!{.blur}`` → CSS blur span
- ``{base^annotation}`` → ruby; ``{base^*}`` → emphasis dots;
  ``{base^=annotation}`` → whole-word ruby
- ``++text++`` → ``<ins>``; ``==text==`` → ``<mark>``, each with an
  optional trailing ``{.class #id key=value}`` block

Runs as a tree processor after Python-Markdown's inline patterns, so code
spans and math have already been isolated into their own elements (or
``AtomicString`` text) and are never rewritten.
"""

import re
import xml.etree.ElementTree as etree

from markdown.extensions import Extension
from markdown.treeprocessors import Treeprocessor
from markdown.util import AtomicString

from .attrs import CSS_IDENT, parse_attrs
from .nodes import InlineKind, InlineToken

SPOILER_RE = re.compile(r"!!([^!\s](?:[^!]*[^!\s])?)!!")
# Match {text^annotation}, but NOT {.class} (which starts with .)
RUBY_RE = re.compile(r"\{([^{}^.][^{}^]*)\^([^{}]+)\}")
INS_RE = re.compile(r"\+\+([^\s+](?:[^+]*[^\s+])?)\+\+")
MARK_RE = re.compile(r"==([^\s=](?:[^=]*[^\s=])?)==")

# Matches a trailing {.class #id key=value} attribute block
TRAILING_ATTRS_RE = re.compile(r"^\{([^}]+)\}")

SKIP_TAGS = {"code", "pre", "kbd", "samp", "script", "style", "math"}
EMPHASIS_DOTS = "text-emphasis:filled circle;-webkit-text-emphasis:filled circle"


def is_protected(el: etree.Element) -> bool:
    """Code, script and rendered math are never rewritten."""
    if not isinstance(el.tag, str) or el.tag in SKIP_TAGS:
        return True
    return "arithmatex" in (el.get("class") or "").split()


def _extract_classes(raw: str) -> list[str]:
    return [
        token[1:]
        for token in raw.split()
        if token.startswith(".") and CSS_IDENT.match(token[1:])
    ]


def _scan(segments: list, pattern, make_token) -> list:
    """Split every plain-text segment on ``pattern``.

    ``make_token(match, after)`` returns ``(token, consumed)`` where
    ``consumed`` is how many characters after the match it swallowed.
    """
    result = []
    for segment in segments:
        if not isinstance(segment, str) or isinstance(segment, AtomicString):
            result.append(segment)
            continue

        pos = 0
        for match in pattern.finditer(segment):
            if match.start() < pos:
                continue
            if match.start() > pos:
                result.append(segment[pos : match.start()])
            token, consumed = make_token(match, segment[match.end() :])
            result.append(token)
            pos = match.end() + consumed
        if pos < len(segment):
            result.append(segment[pos:])
    return result


def _spoiler_token(match, after):
    classes = []
    consumed = 0
    trailing = TRAILING_ATTRS_RE.match(after)
    if trailing:
        classes = _extract_classes(trailing.group(1))
        consumed = len(trailing.group(0))
    attrs = {"class": " ".join(classes)} if classes else {}
    return InlineToken(InlineKind.SPOILER, match.group(1), attrs), consumed


def _ruby_token(match, after):
    return (
        InlineToken(InlineKind.RUBY, match.group(1), {"annotation": match.group(2)}),
        0,
    )


def _effect_token(kind: InlineKind):
    def make(match, after):
        attrs = {}
        consumed = 0
        trailing = TRAILING_ATTRS_RE.match(after)
        if trailing:
            attrs = parse_attrs(trailing.group(1))
            consumed = len(trailing.group(0))
        return InlineToken(kind, match.group(1), attrs), consumed

    return make


def token_to_element(token: InlineToken) -> etree.Element:
    """Build the element tree for one inline token."""
    if token.kind is InlineKind.SPOILER:
        classes = token.attrs.get("class", "").split()
        if "blur" in classes:
            el = etree.Element("span", {"class": " ".join(["spoiler", *classes])})
        else:
            el = etree.Element("spoiler-span")
            if classes:
                el.set("class", " ".join(classes))
        el.text = AtomicString(token.content)
        return el

    if token.kind is InlineKind.RUBY:
        annotation = token.attrs["annotation"]
        if annotation == "*":
            el = etree.Element("span", {"style": EMPHASIS_DOTS})
            el.text = AtomicString(token.content)
            return el
        if annotation.startswith("="):
            annotation = annotation[1:]
        el = etree.Element("ruby")
        el.text = AtomicString(token.content)
        open_paren = etree.SubElement(el, "rp")
        open_paren.text = "("
        rt = etree.SubElement(el, "rt")
        rt.text = AtomicString(annotation)
        close_paren = etree.SubElement(el, "rp")
        close_paren.text = ")"
        return el

    el = etree.Element(token.kind.value)
    if "id" in token.attrs:
        el.set("id", token.attrs["id"])
    if "class" in token.attrs:
        el.set("class", token.attrs["class"])
    for key, value in token.attrs.items():
        if key not in ("id", "class"):
            el.set(key, value)
    el.text = AtomicString(token.content)
    return el


class ShokaInlineTreeprocessor(Treeprocessor):
    """Rewrite Shoka inline syntax found in text and tails."""

    def __init__(self, md, spoiler=True, ruby=True, effects=True):
        super().__init__(md)
        self.passes = []
        if spoiler:
            self.passes.append((SPOILER_RE, _spoiler_token))
        if ruby:
            self.passes.append((RUBY_RE, _ruby_token))
        if effects:
            self.passes.append((INS_RE, _effect_token(InlineKind.INS)))
            self.passes.append((MARK_RE, _effect_token(InlineKind.MARK)))

    def transform_text(self, text) -> list:
        segments = [text]
        for pattern, make_token in self.passes:
            segments = _scan(segments, pattern, make_token)
        return [
            token_to_element(s) if isinstance(s, InlineToken) else s for s in segments
        ]

    def _rewrite(self, el: etree.Element) -> None:
        if is_protected(el):
            return

        segments = []
        if el.text:
            segments.extend(self.transform_text(el.text))
        for child in list(el):
            self._rewrite(child)
            tail, child.tail = child.tail, None
            segments.append(child)
            if tail:
                segments.extend(self.transform_text(tail))

        # Rebuild text/tails from the flat segment list, then swap children
        text_parts = []
        children = []
        for segment in segments:
            if isinstance(segment, str):
                if children:
                    children[-1].tail = (children[-1].tail or "") + segment
                else:
                    text_parts.append(segment)
            else:
                children.append(segment)
        el.text = _join(text_parts)
        el[:] = children

    def run(self, root: etree.Element) -> None:
        if not self.passes:
            return
        for child in list(root):
            self._rewrite(child)


def _join(parts: list[str]):
    if not parts:
        return None
    if len(parts) == 1:
        return parts[0]
    return "".join(parts)


class ShokaInlineExtension(Extension):
    def __init__(self, **kwargs):
        self.config = {
            "spoiler": [True, "Enable !!spoiler!! syntax"],
            "ruby": [True, "Enable {base^annotation} ruby syntax"],
            "effects": [True, "Enable ++ins++ and ==mark== syntax"],
        }
        super().__init__(**kwargs)

    def extendMarkdown(self, md):
        md.treeprocessors.register(
            ShokaInlineTreeprocessor(
                md,
                spoiler=self.getConfig("spoiler"),
                ruby=self.getConfig("ruby"),
                effects=self.getConfig("effects"),
            ),
            "shoka_inline",
            priority=15,
        )


def makeExtension(**kwargs):
    return ShokaInlineExtension(**kwargs)
