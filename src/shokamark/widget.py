"""Decryption widget state machine.

Mirrors the browser runtime: a widget bound to one encrypted element
moves ``LOCKED -> DECRYPTING -> UNLOCKED`` on the right password, or
``DECRYPTING -> ERROR -> LOCKED`` on a wrong one, the error state
reverting after ``ERROR_RESET_DELAY`` seconds. ``unlock_html`` drives
widgets over a built page to restore it offline.
"""

import logging
import threading
import time
from collections.abc import Callable
from enum import Enum

from bs4 import BeautifulSoup, Tag

from .crypto import ITERATIONS, DecryptionError, EncryptedPayload, decrypt_content

logger = logging.getLogger(__name__)

ERROR_RESET_DELAY = 0.6  # seconds
PAYLOAD_ATTRS = ("data-cipher", "data-iv", "data-salt")
RUNTIME_ATTR = "data-shokamark-runtime"


class DecryptState(Enum):
    LOCKED = "locked"
    DECRYPTING = "decrypting"
    UNLOCKED = "unlocked"
    ERROR = "error"


class WidgetMode(Enum):
    BLOCK = "block"
    POST = "post"


class DecryptionWidget:
    """One encrypted element and its unlock state.

    Passwords are used for a single attempt and never stored. In post mode
    observers registered with ``on_decrypted`` are notified exactly once,
    after the first successful unlock.
    """

    def __init__(
        self,
        attrs,
        mode: WidgetMode = WidgetMode.BLOCK,
        iterations: int = ITERATIONS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.attrs = {key: attrs[key] for key in PAYLOAD_ATTRS if key in attrs}
        self.mode = mode
        self.iterations = iterations
        self.state = DecryptState.LOCKED
        self.html: str | None = None
        self._clock = clock
        self._error_at: float | None = None
        self._attached = True
        self._notified = False
        self._observers: list[Callable[[str], None]] = []
        self._lock = threading.Lock()

    @property
    def missing_data(self) -> bool:
        return any(not self.attrs.get(key) for key in PAYLOAD_ATTRS)

    def on_decrypted(self, callback: Callable[[str], None]) -> None:
        """Subscribe to the post-mode ``content:decrypted`` notification."""
        self._observers.append(callback)

    def detach(self) -> None:
        """The element left the document; late results are dropped."""
        self._attached = False

    def tick(self, now: float | None = None) -> DecryptState:
        """Advance timers: ERROR reverts to LOCKED after the reset delay."""
        if now is None:
            now = self._clock()
        if (
            self.state is DecryptState.ERROR
            and self._error_at is not None
            and now - self._error_at >= ERROR_RESET_DELAY
        ):
            self.state = DecryptState.LOCKED
            self._error_at = None
        return self.state

    def submit(self, password: str) -> str | None:
        """Attempt to unlock with a password.

        Returns:
            The decrypted HTML on success, None otherwise. A submit while a
            previous attempt is still decrypting is refused.
        """
        if not password or self.missing_data:
            return None

        with self._lock:
            if self.state is DecryptState.DECRYPTING:
                logger.debug("Submit refused while decrypting")
                return None
            if self.state is DecryptState.UNLOCKED:
                return self.html
            self.state = DecryptState.DECRYPTING

        try:
            payload = EncryptedPayload.from_attrs(self.attrs)
            html = decrypt_content(payload, password, self.iterations)
        except DecryptionError:
            html = None

        if not self._attached:
            logger.debug("Dropping result for detached element")
            self.state = DecryptState.LOCKED
            return None

        if html is None:
            self.state = DecryptState.ERROR
            self._error_at = self._clock()
            return None

        self.html = html
        self.state = DecryptState.UNLOCKED
        if self.mode is WidgetMode.POST:
            self._notify(html)
        return html

    def _notify(self, html: str) -> None:
        if self._notified:
            return
        self._notified = True
        for callback in self._observers:
            callback(html)


def _splice(element: Tag, html: str, mode: WidgetMode) -> None:
    element.clear()
    fragment = BeautifulSoup(html, "html.parser")
    for child in list(fragment.children):
        element.append(child)
    for key in (*PAYLOAD_ATTRS, "data-password", "data-pagefind-ignore"):
        if key in element.attrs:
            del element[key]
    if mode is WidgetMode.POST:
        classes = [c for c in element.get("class", []) if c != "encrypted-post"]
        if classes:
            element["class"] = classes
        else:
            del element["class"]


def _pending(soup: BeautifulSoup) -> list[tuple[Tag, WidgetMode]]:
    found = [(el, WidgetMode.POST) for el in soup.select("div.encrypted-post[data-cipher]")]
    found += [
        (el, WidgetMode.BLOCK) for el in soup.select("div.encrypted-block[data-cipher]")
    ]
    return found


def unlock_html(html: str, password: str, iterations: int = ITERATIONS) -> str:
    """Decrypt every encrypted post and block that opens with a password.

    Unlocking repeats until nothing more opens, so blocks revealed by a
    decrypted post are tried as well. Elements sealed with another password
    stay encrypted. Once nothing encrypted remains the injected runtime is
    removed.

    Raises:
        DecryptionError: If the page has encrypted content and none of it
            opens with this password.
    """
    soup = BeautifulSoup(html, "html.parser")
    if not _pending(soup):
        return html

    unlocked = 0
    failed: set[int] = set()
    while True:
        candidates = [(el, mode) for el, mode in _pending(soup) if id(el) not in failed]
        if not candidates:
            break
        for element, mode in candidates:
            widget = DecryptionWidget(element.attrs, mode, iterations)
            result = widget.submit(password)
            if result is None:
                failed.add(id(element))
                continue
            _splice(element, result, mode)
            unlocked += 1

    if not unlocked:
        raise DecryptionError("Decryption failed")

    if not _pending(soup):
        for tag in soup.find_all(attrs={RUNTIME_ATTR: True}):
            tag.decompose()

    logger.info("Unlocked %d element(s)", unlocked)
    return str(soup)
