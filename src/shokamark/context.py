"""Per-document render state.

A ``RenderContext`` is created for each document and passed to every
pass of the pipeline. Nothing is cached at module level, so documents can
be rendered in parallel.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .config import ShokamarkConfig

logger = logging.getLogger(__name__)


@dataclass
class RenderContext:
    config: ShokamarkConfig = field(default_factory=ShokamarkConfig)
    meta: dict[str, Any] = field(default_factory=dict)
    source_path: Path | None = None
    warnings: list[str] = field(default_factory=list)
    encrypted_blocks: int = 0
    encrypted_document: bool = False

    @property
    def password(self) -> str | None:
        """Document-level password from front matter, if any."""
        value = self.meta.get("password")
        if value is None:
            return None
        return str(value)

    @property
    def label(self) -> str:
        return str(self.source_path) if self.source_path else "<string>"

    def warn(self, message: str, *args) -> None:
        """Record a recoverable authoring problem and log it."""
        text = message % args if args else message
        self.warnings.append(text)
        logger.warning("%s: %s", self.label, text)
