"""Shoka syntax preprocessor.

Transforms Shoka block syntax in raw Markdown BEFORE Python-Markdown
parses it. Some of this syntax cannot survive a Markdown parser:

- ``+++style Title`` would be parsed as a thematic break
- ``~sub~`` collides with strikethrough extensions
- ``{% links %}...{% endlinks %}`` YAML bodies would be parsed as lists

Block containers (``:::``, ``+++``, ``;;;``) and Hexo tags are turned into
HTML blocks here. Wrappers whose content is Markdown carry
``markdown="1"`` so the ``md_in_html`` extension parses their bodies.
Inline syntax that does not conflict with Markdown is handled later by
``shokamark.inline``.
"""

import logging
import re
from dataclasses import dataclass, field

import yaml

from .config import ContentConfig
from .context import RenderContext
from .crypto import ShokamarkError
from .nodes import (
    MAX_CONTAINER_DEPTH,
    CollapseBlock,
    ContainerKind,
    ContainerNode,
    EncryptedDirective,
    InlineKind,
    LinksBlock,
    MediaBlock,
    NoteBlock,
    Syntax,
    TabGroup,
    TabPanel,
)
from .renderers import (
    escape_html,
    render_audio_media,
    render_friend_links,
    render_video_media,
)

logger = logging.getLogger(__name__)

_LINE_SPLIT = re.compile(r"\r?\n")

_FENCE_OPEN = re.compile(r"^(`{3,}|~{3,})")
_FENCE_CLOSE = re.compile(r"^(`{3,}|~{3,})\s*$")

_NOTE_OPEN = re.compile(r"^:::(\w+)(?:\s+(no-icon))?\s*$")
_ENCRYPTED_OPEN = re.compile(r"^:::encrypted\{(.*)\}\s*$")
_COLLAPSE_OPEN = re.compile(r"^\+\+\+(\w+)\s+(.+)$")
_TAB_OPEN = re.compile(r"^;;;(\S+)\s+(.+)$")
_MEDIA_OPEN = re.compile(r"^\{% media (audio|video) %\}$")
_LINKS_OPEN = "{% links %}"

_CLOSERS = {
    Syntax.COLON: re.compile(r"^:::\s*$"),
    Syntax.PLUS: re.compile(r"^\+\+\+\s*$"),
    Syntax.SEMICOLON: re.compile(r"^;;;\s*$"),
}

_DIRECTIVE_ATTR = re.compile(r"""([\w-]+)=(?:"([^"]*)"|'([^']*)'|(\S+))""")

# Match (in priority order): code fences, inline code, block math, inline math,
# HTML tags (attribute values emitted by the scanner) and link destinations
_PROTECTED = re.compile(
    r"(^`{3,}.*\n[\s\S]*?^`{3,}\s*$"
    r"|^~{3,}.*\n[\s\S]*?^~{3,}\s*$"
    r"|`[^`\n]+`"
    r"|\$\$[\s\S]*?\$\$"
    r"|\$[^$\n]+?\$"
    r"|</?[a-zA-Z][^<>\n]*>"
    r"|\]\([^)\n]*\))",
    re.MULTILINE,
)

_SUB = re.compile(r"(?<![~\\])~([^~\s]+)~(?!~)")
_SUP = re.compile(r"(?<![\\^])\^([^^\s]+)\^")


@dataclass
class ScanOptions:
    """Feature flags for the container scanner."""

    enable_containers: bool = True
    enable_hexo_tags: bool = True
    enable_encrypted_block: bool = False
    strict: bool = False

    @classmethod
    def from_config(cls, content: ContentConfig) -> "ScanOptions":
        return cls(
            enable_containers=content.enable_containers,
            enable_hexo_tags=content.enable_hexo_tags,
            enable_encrypted_block=content.enable_encrypted_block,
            strict=content.strict_containers,
        )


@dataclass
class _Frame:
    """An open container on the scanner stack.

    Only the bottom frame carries a node; frames above it are nested
    same-syntax openers whose lines are folded back into their parent
    (verbatim) when they close, to be re-scanned one level deeper.
    """

    syntax: Syntax
    opener: str
    node: ContainerNode | None = None
    lines: list[str] = field(default_factory=list)


def _fence_of(line: str) -> tuple[str, int] | None:
    match = _FENCE_OPEN.match(line)
    if not match:
        return None
    return match.group(1)[0], len(match.group(1))


def _closes_fence(fence: tuple[str, int], line: str) -> bool:
    match = _FENCE_CLOSE.match(line)
    if not match:
        return False
    return match.group(1)[0] == fence[0] and len(match.group(1)) >= fence[1]


def parse_directive_attrs(raw: str) -> dict[str, str]:
    """Parse ``key="value" key=value`` pairs from a directive's braces."""
    attrs = {}
    for match in _DIRECTIVE_ATTR.finditer(raw):
        value = match.group(2)
        if value is None:
            value = match.group(3)
        if value is None:
            value = match.group(4)
        attrs[match.group(1)] = value
    return attrs


class ContainerScanner:
    """Line scanner for one nesting level of container syntax.

    Keeps track of code fences so nothing inside a fence is interpreted,
    collects container bodies on an explicit frame stack, and groups
    adjacent ``;;;id`` panels into tab groups.
    """

    def __init__(
        self,
        options: ScanOptions,
        depth: int = 0,
        context: RenderContext | None = None,
    ):
        self.options = options
        self.depth = depth
        self.context = context
        self.output: list[str] = []
        self._stack: list[_Frame] = []
        self._fence: tuple[str, int] | None = None
        self._body_fence: tuple[str, int] | None = None
        self._pending_tabs: TabGroup | None = None

    def scan(self, text: str) -> str:
        for line in _LINE_SPLIT.split(text):
            if self._stack:
                self._feed_body(line)
            else:
                self._feed_top(line)

        if self._stack:
            self._close_unterminated()
        self._flush_tabs()
        return "\n".join(self.output)

    # -- top level -----------------------------------------------------

    def _feed_top(self, line: str) -> None:
        if self._fence is not None:
            self.output.append(line)
            if _closes_fence(self._fence, line):
                self._fence = None
            return

        fence = _fence_of(line)
        if fence is not None:
            self._flush_tabs()
            self._fence = fence
            self.output.append(line)
            return

        frame = self._match_opener(line)
        if frame is not None:
            node = frame.node
            if not (
                isinstance(node, TabPanel)
                and self._pending_tabs is not None
                and self._pending_tabs.group_id == node.group_id
            ):
                self._flush_tabs()
            self._stack.append(frame)
            return

        # Blank lines between ;;; panels keep the group open
        if self._pending_tabs is not None and line.strip() == "":
            return

        self._flush_tabs()
        self.output.append(line)

    def _match_opener(self, line: str) -> _Frame | None:
        opts = self.options
        depth = self.depth

        if opts.enable_containers:
            if opts.enable_encrypted_block:
                match = _ENCRYPTED_OPEN.match(line)
                if match:
                    attrs = parse_directive_attrs(match.group(1))
                    node = EncryptedDirective(
                        password=attrs.get("password", ""), depth=depth
                    )
                    return _Frame(Syntax.COLON, line, node)

            match = _NOTE_OPEN.match(line)
            if match:
                node = NoteBlock(
                    style=match.group(1),
                    no_icon=match.group(2) == "no-icon",
                    depth=depth,
                )
                return _Frame(Syntax.COLON, line, node)

            match = _COLLAPSE_OPEN.match(line)
            if match:
                node = CollapseBlock(
                    style=match.group(1), title=match.group(2), depth=depth
                )
                return _Frame(Syntax.PLUS, line, node)

            match = _TAB_OPEN.match(line)
            if match:
                node = TabPanel(
                    group_id=match.group(1), name=match.group(2), depth=depth
                )
                return _Frame(Syntax.SEMICOLON, line, node)

        if opts.enable_hexo_tags:
            stripped = line.strip()
            if stripped == _LINKS_OPEN:
                return _Frame(Syntax.HEXO, line, LinksBlock(depth=depth))
            match = _MEDIA_OPEN.match(stripped)
            if match:
                node = MediaBlock(media_type=match.group(1), depth=depth)
                return _Frame(Syntax.HEXO, line, node)

        return None

    # -- container bodies ----------------------------------------------

    def _feed_body(self, line: str) -> None:
        frame = self._stack[-1]

        if frame.syntax is not Syntax.HEXO:
            if self._body_fence is not None:
                frame.lines.append(line)
                if _closes_fence(self._body_fence, line):
                    self._body_fence = None
                return
            fence = _fence_of(line)
            if fence is not None:
                self._body_fence = fence
                frame.lines.append(line)
                return

        if self._is_closer(frame, line):
            self._stack.pop()
            if self._stack:
                self._stack[-1].lines.extend([frame.opener, *frame.lines, line])
            else:
                self._emit(frame)
            return

        if self._is_nested_opener(frame, line):
            self._stack.append(_Frame(frame.syntax, line))
            return

        frame.lines.append(line)

    def _is_closer(self, frame: _Frame, line: str) -> bool:
        if frame.syntax is Syntax.HEXO:
            if isinstance(frame.node, LinksBlock):
                return line.strip() == "{% endlinks %}"
            return line.strip() == "{% endmedia %}"
        return bool(_CLOSERS[frame.syntax].match(line))

    def _is_nested_opener(self, frame: _Frame, line: str) -> bool:
        if frame.syntax is Syntax.COLON:
            if _NOTE_OPEN.match(line):
                return True
            return self.options.enable_encrypted_block and bool(
                _ENCRYPTED_OPEN.match(line)
            )
        if frame.syntax is Syntax.PLUS:
            return bool(_COLLAPSE_OPEN.match(line))
        if frame.syntax is Syntax.SEMICOLON:
            return bool(_TAB_OPEN.match(line))
        return False

    def _close_unterminated(self) -> None:
        """Consume to end of input: fold open frames down and emit the root."""
        root = self._stack[0]
        message = f"Unterminated container {root.opener.strip()!r} runs to end of input"
        if self.options.strict:
            raise ShokamarkError(message)
        if self.context is not None:
            self.context.warn(message)
        else:
            logger.warning(message)

        while len(self._stack) > 1:
            frame = self._stack.pop()
            self._stack[-1].lines.extend([frame.opener, *frame.lines])
        self._stack.pop()
        self._body_fence = None
        self._emit(root)

    # -- output ----------------------------------------------------------

    def _inner(self, lines: list[str]) -> str:
        return process_containers(
            "\n".join(lines), self.options, self.depth + 1, self.context
        )

    def _emit(self, frame: _Frame) -> None:
        node = frame.node
        node.raw_child_lines = frame.lines
        logger.debug("Closing %s container at depth %d", node.kind.value, node.depth)

        if node.kind is ContainerKind.TAB_PANEL:
            if self._pending_tabs is None:
                self._pending_tabs = TabGroup(group_id=node.group_id, depth=node.depth)
            self._pending_tabs.panels.append(node)
        elif node.kind is ContainerKind.NOTE:
            self.output.extend(self._render_note(node))
        elif node.kind is ContainerKind.COLLAPSE:
            self.output.extend(self._render_collapse(node))
        elif node.kind is ContainerKind.ENCRYPTED:
            self.output.extend(self._render_encrypted(node))
        elif node.kind is ContainerKind.LINKS:
            self.output.extend(self._render_links(node))
        elif node.kind is ContainerKind.MEDIA:
            self.output.extend(self._render_media(node))

    def _render_note(self, node: NoteBlock) -> list[str]:
        no_icon = " no-icon" if node.no_icon else ""
        return [
            "",
            f'<div class="note-block note-{node.style}{no_icon}" markdown="1">',
            "",
            self._inner(node.raw_child_lines),
            "",
            "</div>",
            "",
        ]

    def _render_collapse(self, node: CollapseBlock) -> list[str]:
        return [
            "",
            f'<details class="collapse-block collapse-{node.style}" markdown="1">',
            f"<summary>{escape_html(node.title)}</summary>",
            '<div class="collapse-content" markdown="1">',
            "",
            self._inner(node.raw_child_lines),
            "",
            "</div>",
            "</details>",
            "",
        ]

    def _render_encrypted(self, node: EncryptedDirective) -> list[str]:
        password = escape_html(node.password)
        return [
            "",
            f'<div class="encrypted-block" data-password="{password}" markdown="1">',
            "",
            self._inner(node.raw_child_lines),
            "",
            "</div>",
            "",
        ]

    def _load_yaml(
        self, node: LinksBlock | MediaBlock, what: str
    ) -> tuple[bool, object]:
        try:
            return True, yaml.safe_load("\n".join(node.raw_child_lines))
        except yaml.YAMLError as e:
            if self.context is not None:
                self.context.warn("Failed to parse %s YAML: %s", what, e)
            else:
                logger.warning("Failed to parse %s YAML: %s", what, e)
            return False, None

    def _render_links(self, node: LinksBlock) -> list[str]:
        ok, data = self._load_yaml(node, "links")
        if not ok:
            return ["<!-- Failed to parse links YAML -->"]
        if not isinstance(data, list):
            return []
        return ["", render_friend_links(data), ""]

    def _render_media(self, node: MediaBlock) -> list[str]:
        ok, data = self._load_yaml(node, "media")
        if not ok:
            return ["<!-- Failed to parse media YAML -->"]
        if not isinstance(data, list):
            return []
        if node.media_type == "audio":
            rendered = render_audio_media(data)
        else:
            rendered = render_video_media(data)
        return ["", rendered, ""]

    def _flush_tabs(self) -> None:
        group = self._pending_tabs
        if group is None or not group.panels:
            self._pending_tabs = None
            return
        self._pending_tabs = None

        group_id = escape_html(group.group_id)
        out = self.output
        out.append("")
        out.append(
            f'<div class="tab-group" data-tab-group="{group_id}" markdown="1">'
        )
        out.append('<div class="tab-headers" role="tablist">')
        for index, panel in enumerate(group.panels):
            active = "true" if index == 0 else "false"
            out.append(
                f'<button class="tab-header" role="tab" aria-selected="{active}" '
                f'data-tab-index="{index}" data-tab-group="{group_id}">'
                f"{escape_html(panel.name)}</button>"
            )
        out.append("</div>")
        for index, panel in enumerate(group.panels):
            active = " active" if index == 0 else ""
            out.append(
                f'<div class="tab-panel{active}" role="tabpanel" '
                f'data-tab-index="{index}" markdown="1">'
            )
            out.append("")
            out.append(self._inner(panel.raw_child_lines))
            out.append("")
            out.append("</div>")
        out.append("</div>")
        out.append("")


def process_containers(
    text: str,
    options: ScanOptions | None = None,
    depth: int = 0,
    context: RenderContext | None = None,
) -> str:
    """Replace container syntax and Hexo tags with HTML blocks.

    Returns the text unchanged once ``depth`` reaches MAX_CONTAINER_DEPTH.
    """
    if depth >= MAX_CONTAINER_DEPTH:
        return text
    if options is None:
        options = ScanOptions()
    return ContainerScanner(options, depth, context).scan(text)


def process_outside_protected_regions(text: str, fn) -> str:
    """Apply ``fn`` to the parts of text outside code and math.

    Protected regions (fenced code, inline code, ``$$`` and ``$`` math, HTML
    tags and Markdown link destinations) are copied verbatim.
    """
    parts = []
    last = 0
    for match in _PROTECTED.finditer(text):
        if match.start() > last:
            parts.append(fn(text[last : match.start()]))
        parts.append(match.group(0))
        last = match.end()

    if last < len(text):
        parts.append(fn(text[last:]))

    return "".join(parts) if parts else fn(text)


def _wrap(kind: InlineKind):
    tag = kind.value
    return lambda m: f"<{tag}>{escape_html(m.group(1))}</{tag}>"


def _super_sub(segment: str) -> str:
    segment = _SUB.sub(_wrap(InlineKind.SUB), segment)
    return _SUP.sub(_wrap(InlineKind.SUP), segment)


def process_inline_super_sub(text: str) -> str:
    """Rewrite ``~sub~`` and ``^sup^`` outside code and math."""
    return process_outside_protected_regions(text, _super_sub)


def expand_containers(text: str, context: RenderContext) -> str:
    """Preprocessor stage: block containers and Hexo tags."""
    content = context.config.content
    if not (content.enable_containers or content.enable_hexo_tags):
        return text
    return process_containers(text, ScanOptions.from_config(content), 0, context)


def expand_super_sub(text: str, context: RenderContext) -> str:
    """Preprocessor stage: ``~sub~`` and ``^sup^``."""
    if not context.config.content.enable_effects:
        return text
    return process_inline_super_sub(text)


PREPROCESSORS = [
    expand_containers,
    expand_super_sub,
    # Order matters - they run sequentially
]


def preprocess(source: str, context: RenderContext | None = None) -> str:
    """Run all text-level passes over a document body."""
    if context is None:
        context = RenderContext()
    for processor in PREPROCESSORS:
        source = processor(source, context)
    return source
