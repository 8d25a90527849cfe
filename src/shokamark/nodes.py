"""Typed build-time structures for Shoka syntax.

Container and inline variants are closed sets: each kind has its own
dataclass with the payload fields it needs, and ``kind`` is an enum member
rather than a free-form string.
"""

from dataclasses import dataclass, field
from enum import Enum

# Maximum nesting depth for recursive container processing
MAX_CONTAINER_DEPTH = 10


class ContainerKind(Enum):
    NOTE = "note"
    COLLAPSE = "collapse"
    TAB_GROUP = "tab-group"
    TAB_PANEL = "tab-panel"
    MEDIA = "media"
    LINKS = "links"
    ENCRYPTED = "encrypted"


class Syntax(Enum):
    """Marker family of a container; nesting is counted per family."""

    COLON = ":::"
    PLUS = "+++"
    SEMICOLON = ";;;"
    HEXO = "{%"


class InlineKind(Enum):
    RUBY = "ruby"
    SPOILER = "spoiler"
    INS = "ins"
    MARK = "mark"
    SUB = "sub"
    SUP = "sup"


@dataclass
class NoteBlock:
    style: str
    no_icon: bool = False
    depth: int = 0
    raw_child_lines: list[str] = field(default_factory=list)
    kind: ContainerKind = field(default=ContainerKind.NOTE, init=False)


@dataclass
class CollapseBlock:
    style: str
    title: str
    depth: int = 0
    raw_child_lines: list[str] = field(default_factory=list)
    kind: ContainerKind = field(default=ContainerKind.COLLAPSE, init=False)


@dataclass
class EncryptedDirective:
    password: str
    depth: int = 0
    raw_child_lines: list[str] = field(default_factory=list)
    kind: ContainerKind = field(default=ContainerKind.ENCRYPTED, init=False)


@dataclass
class TabPanel:
    group_id: str
    name: str
    depth: int = 0
    raw_child_lines: list[str] = field(default_factory=list)
    kind: ContainerKind = field(default=ContainerKind.TAB_PANEL, init=False)


@dataclass
class TabGroup:
    group_id: str
    panels: list[TabPanel] = field(default_factory=list)
    depth: int = 0
    kind: ContainerKind = field(default=ContainerKind.TAB_GROUP, init=False)


@dataclass
class MediaBlock:
    media_type: str  # "audio" or "video"
    depth: int = 0
    raw_child_lines: list[str] = field(default_factory=list)
    kind: ContainerKind = field(default=ContainerKind.MEDIA, init=False)


@dataclass
class LinksBlock:
    depth: int = 0
    raw_child_lines: list[str] = field(default_factory=list)
    kind: ContainerKind = field(default=ContainerKind.LINKS, init=False)


ContainerNode = (
    NoteBlock
    | CollapseBlock
    | EncryptedDirective
    | TabPanel
    | TabGroup
    | MediaBlock
    | LinksBlock
)


@dataclass
class InlineToken:
    kind: InlineKind
    content: str
    attrs: dict[str, str] = field(default_factory=dict)
