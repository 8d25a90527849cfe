"""Build-time encryption of rendered HTML.

Two stages run after all other rendering so that highlighted code, math
and attribute decorations end up inside the ciphertext:

- ``encrypt_blocks`` encrypts each ``<div class="encrypted-block"
  data-password="...">`` produced by the ``:::encrypted`` directive.
- ``encrypt_document`` replaces the whole fragment with a single
  ``<div class="encrypted-post">`` when the front matter has a password.

The password never survives into the output; ``assert_no_passwords`` is
the final guard.
"""

import logging
from concurrent.futures import ThreadPoolExecutor

from bs4 import BeautifulSoup, Tag

from .crypto import EncryptionError, encrypt_content

logger = logging.getLogger(__name__)

BLOCK_SELECTOR = "div.encrypted-block[data-password]"
MAX_WORKERS = 4


def extract_element_content(element: Tag) -> str:
    """Inner HTML of an element."""
    return "".join(str(child) for child in element.children)


def has_pending_passwords(html: str) -> bool:
    """Quick check before parsing."""
    return "data-password" in html


def _innermost_blocks(soup: BeautifulSoup) -> list[Tag]:
    """Pending blocks that contain no other pending block."""
    return [
        block
        for block in soup.select(BLOCK_SELECTOR)
        if not block.select_one(BLOCK_SELECTOR)
    ]


def _seal(block: Tag, attrs: dict[str, str]) -> None:
    block.clear()
    del block["data-password"]
    for key, value in attrs.items():
        block[key] = value
    block["data-pagefind-ignore"] = ""


def encrypt_blocks(html: str, context) -> str:
    """Encrypt every pending encrypted block in an HTML fragment.

    Nested blocks are sealed innermost first, so an outer block's
    ciphertext contains the inner block's ciphertext, never its password.
    Blocks at the same level are encrypted concurrently.

    Args:
        html: Rendered HTML fragment.
        context: RenderContext for the document.

    Returns:
        HTML with every block's children replaced by its payload attributes.

    Raises:
        EncryptionError: If a block has an empty password (unless
            ``allow_unencrypted_blocks`` is set) or encryption fails.
    """
    if not has_pending_passwords(html):
        return html

    soup = BeautifulSoup(html, "html.parser")
    iterations = context.config.encryption.iterations
    allow_clear = context.config.content.allow_unencrypted_blocks
    sealed = 0

    while True:
        blocks = _innermost_blocks(soup)
        if not blocks:
            break

        jobs = []
        for block in blocks:
            password = block.get("data-password") or ""
            if not password:
                if not allow_clear:
                    raise EncryptionError(
                        f"{context.label}: encrypted block has no password"
                    )
                context.warn("Encrypted block has no password; rendered unencrypted")
                del block["data-password"]
                continue
            jobs.append((block, extract_element_content(block), password))

        if not jobs:
            continue

        workers = min(MAX_WORKERS, len(jobs))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            payloads = list(
                pool.map(
                    lambda job: encrypt_content(job[1], job[2], iterations),
                    jobs,
                )
            )

        for (block, _content, _password), payload in zip(jobs, payloads):
            _seal(block, payload.to_attrs())
        sealed += len(jobs)

    if sealed:
        context.encrypted_blocks += sealed
        logger.info("%s: encrypted %d block(s)", context.label, sealed)

    return str(soup)


def encrypt_document(html: str, context) -> str:
    """Encrypt the whole fragment when the front matter sets a password.

    Args:
        html: Fully rendered HTML fragment (blocks already sealed).
        context: RenderContext for the document.

    Returns:
        The input unchanged, or a single ``encrypted-post`` div.
    """
    password = context.password
    if password is None:
        return html
    if not password:
        context.warn("Front matter password is empty; post left unencrypted")
        return html

    payload = encrypt_content(html, password, context.config.encryption.iterations)
    attrs = " ".join(f'{key}="{value}"' for key, value in payload.to_attrs().items())
    context.encrypted_document = True
    logger.info("%s: encrypted whole post", context.label)
    return f'<div class="encrypted-post" {attrs} data-pagefind-ignore=""></div>'


def assert_no_passwords(html: str, context=None) -> str:
    """Fail if any element still carries a ``data-password`` attribute.

    Raises:
        EncryptionError: If a password would be published.
    """
    if not has_pending_passwords(html):
        return html
    soup = BeautifulSoup(html, "html.parser")
    if soup.find(attrs={"data-password": True}):
        raise EncryptionError("data-password attribute left in output")
    return html
