"""shokamark - Shoka-flavored Markdown with password-protected content."""

__version__ = "0.1.0"

from .crypto import (
    DecryptionError,
    EncryptionError,
    ShokamarkError,
    decrypt_content,
    encrypt_content,
)
from .pipeline import render_markdown, render_page
from .preprocessor import process_containers, process_inline_super_sub
from .widget import DecryptionWidget, unlock_html

__all__ = [
    "encrypt_content",
    "decrypt_content",
    "ShokamarkError",
    "EncryptionError",
    "DecryptionError",
    "render_markdown",
    "render_page",
    "process_containers",
    "process_inline_super_sub",
    "DecryptionWidget",
    "unlock_html",
    "__version__",
]
