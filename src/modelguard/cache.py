"""
Validated-document cache.

Holds single-use ``"<id>-<revision>"`` tokens of accepted mutations so the
storage layer can replay an already validated write without running the
document checker again. Reading a token consumes it.

Example:
    cache = ValidatedDocumentCache(maxsize=100)
    cache.add(ValidatedDocumentCache.token("article-1", "1-a"))
    assert cache.consume("article-1-1-a")
    assert not cache.consume("article-1-1-a")
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from typing import Optional

from modelguard.config import get_config

logger = logging.getLogger(__name__)


class ValidatedDocumentCache:
    """
    Thread-safe, size bounded set of validated-document tokens.

    The least recently added tokens are evicted first once ``maxsize`` is
    reached.
    """

    def __init__(self, maxsize: Optional[int] = None):
        if maxsize is None:
            maxsize = get_config().validated_cache_size
        self.maxsize = maxsize
        self._tokens: "OrderedDict[str, None]" = OrderedDict()
        self._lock = threading.Lock()

    @staticmethod
    def token(document_id: Optional[str], revision: Optional[str]) -> Optional[str]:
        """Token of a stored revision, ``None`` unless both parts are given."""
        if not document_id or not revision:
            return None
        return f"{document_id}-{revision}"

    def add(self, token: str) -> None:
        """Remember an accepted mutation."""
        with self._lock:
            self._tokens[token] = None
            self._tokens.move_to_end(token)
            while len(self._tokens) > self.maxsize:
                evicted, _ = self._tokens.popitem(last=False)
                logger.debug("Evicted validated document token %s", evicted)

    def consume(self, token: str) -> bool:
        """Remove given token, returning whether it was present."""
        with self._lock:
            if token in self._tokens:
                del self._tokens[token]
                return True
            return False

    def clear(self) -> None:
        with self._lock:
            self._tokens.clear()

    def __contains__(self, token: object) -> bool:
        with self._lock:
            return token in self._tokens

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)


# =============================================================================
# Global Cache
# =============================================================================

_default_cache: Optional[ValidatedDocumentCache] = None


def get_validated_document_cache() -> ValidatedDocumentCache:
    """Get the process wide validated-document cache."""
    global _default_cache

    if _default_cache is None:
        _default_cache = ValidatedDocumentCache()

    return _default_cache


def set_validated_document_cache(cache: ValidatedDocumentCache) -> None:
    """Set the process wide cache (for testing)."""
    global _default_cache
    _default_cache = cache


def reset_validated_document_cache() -> None:
    """Reset the process wide cache (for testing)."""
    global _default_cache
    _default_cache = None
