"""
Host capabilities the state machine needs from its environment: read/replace the current address
(history-style, no reload) and navigate away (full-page redirect, used by login()).
"""
import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class Location(Protocol):
    @property
    def href(self) -> str: ...

    def replace(self, url: str) -> None:
        """Change the visible address without navigating."""


class Navigator(Protocol):
    def navigate(self, url: str) -> None:
        """Leave the current page for url."""


class InMemoryLocation:
    """Location and Navigator in one object; for tests and hosts without a browser address bar."""

    def __init__(self, href: str):
        self._href = href
        self.history: list[str] = [href]
        self.navigations: list[str] = []

    @property
    def href(self) -> str:
        return self._href

    def replace(self, url: str) -> None:
        self._href = url
        self.history[-1] = url

    def navigate(self, url: str) -> None:
        logger.debug("Navigating away to %s", url.split("?", 1)[0])
        self.navigations.append(url)
        self._href = url
        self.history.append(url)
