"""Document rendering pipeline.

source -> front matter -> PREPROCESSORS -> Python-Markdown -> POSTPROCESSORS

Each stage takes ``(text, context)`` and returns text; the per-document
``RenderContext`` carries configuration, front matter and warnings.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import markdown
import yaml

from .attrs import decorate_attributes
from .config import ShokamarkConfig, load_config
from .context import RenderContext
from .crypto import ShokamarkError
from .encryption import assert_no_passwords, encrypt_blocks, encrypt_document
from .inline import ShokaInlineExtension
from .preprocessor import preprocess
from .template import build_page

logger = logging.getLogger(__name__)

FRONT_MATTER_RE = re.compile(r"^\s*---\s*\n(.*?)\n---\s*\n?", re.DOTALL)

POSTPROCESSORS = [
    decorate_attributes,
    encrypt_blocks,  # Must run after everything that renders block content
    encrypt_document,  # Must be last: seals the whole fragment
    assert_no_passwords,
]


@dataclass
class RenderResult:
    """Rendered fragment plus what the build learned about the document."""

    html: str
    meta: dict[str, Any] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    encrypted_blocks: int = 0
    encrypted_document: bool = False

    @property
    def title(self) -> str | None:
        value = self.meta.get("title")
        return str(value) if value is not None else None


def split_front_matter(source: str) -> tuple[dict[str, Any], str]:
    """Split leading YAML front matter from a document.

    Returns:
        Tuple of (metadata, body). Metadata is empty without front matter.

    Raises:
        ShokamarkError: If the front matter is not a valid YAML mapping.
    """
    match = FRONT_MATTER_RE.match(source)
    if not match:
        return {}, source

    try:
        meta = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError as e:
        raise ShokamarkError(f"Invalid front matter: {e}") from e
    if not isinstance(meta, dict):
        raise ShokamarkError("Front matter must be a mapping")

    return meta, source[match.end() :]


def build_markdown(context: RenderContext) -> markdown.Markdown:
    """Create a Markdown converter configured for one document."""
    content = context.config.content
    extensions = [
        "md_in_html",
        "fenced_code",
        "tables",
        "codehilite",
        ShokaInlineExtension(
            spoiler=content.enable_spoiler,
            ruby=content.enable_ruby,
            effects=content.enable_effects,
        ),
    ]
    extension_configs = {
        "codehilite": {"guess_lang": False},
    }
    if content.enable_math:
        extensions.append("pymdownx.arithmatex")
        extension_configs["pymdownx.arithmatex"] = {"generic": True}

    return markdown.Markdown(
        extensions=extensions,
        extension_configs=extension_configs,
        output_format="html",
    )


def apply_postprocessors(html: str, context: RenderContext) -> str:
    """Apply all postprocessors in order."""
    for processor in POSTPROCESSORS:
        html = processor(html, context)
    return html


def render_markdown(
    source: str,
    config: ShokamarkConfig | None = None,
    source_path: Path | None = None,
) -> RenderResult:
    """Render a Shoka Markdown document to an HTML fragment.

    Args:
        source: Document text, optionally starting with YAML front matter.
        config: Configuration; defaults are used when omitted.
        source_path: Where the document came from, for log messages.

    Returns:
        RenderResult with the fragment. The front matter password is
        consumed by encryption and never appears in ``meta``.

    Raises:
        ShokamarkError: On invalid front matter, an unterminated container
            in strict mode, or an encryption failure.
    """
    meta, body = split_front_matter(source)
    context = RenderContext(
        config=config or ShokamarkConfig(),
        meta=meta,
        source_path=source_path,
    )

    text = preprocess(body, context)
    html = build_markdown(context).convert(text)
    html = apply_postprocessors(html, context)

    logger.debug("%s: rendered %d characters", context.label, len(html))
    return RenderResult(
        html=html,
        meta={key: value for key, value in meta.items() if key != "password"},
        warnings=list(context.warnings),
        encrypted_blocks=context.encrypted_blocks,
        encrypted_document=context.encrypted_document,
    )


def render_page(result: RenderResult, config: ShokamarkConfig | None = None) -> str:
    """Assemble a standalone page from a rendered fragment."""
    return build_page(result.html, result.title, config)


def build_file(
    input_path: Path,
    output_path: Path | None = None,
    config: ShokamarkConfig | None = None,
) -> tuple[Path, RenderResult]:
    """Render a Markdown file to a standalone HTML page on disk.

    Args:
        input_path: Markdown source file.
        output_path: Destination; defaults to the source with ``.html``.
        config: Configuration; loaded from the nearest config file if omitted.

    Returns:
        Tuple of (output_path, result).
    """
    input_path = Path(input_path)
    if config is None:
        config = load_config(start_path=input_path.parent)
    if output_path is None:
        output_path = input_path.with_suffix(".html")

    try:
        source = input_path.read_text(encoding="utf-8")
    except OSError as e:
        raise ShokamarkError(f"Cannot read {input_path}: {e}") from e

    result = render_markdown(source, config, source_path=input_path)
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(render_page(result, config), encoding="utf-8")
    return output_path, result
