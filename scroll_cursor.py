"""
Scroll Cursor

A pull-based, non-restartable sequence of document batches backed by a
server-side scroll context. Only one page of hits is held in memory at a
time, and the scroll context is released on every exit path.
"""

import logging
from typing import Any, Callable, Dict, Iterator, Optional

from reindex_models import Document, DocumentBatch

logger = logging.getLogger(__name__)


class ScrollCursor:
    """
    Iterates a scroll context page by page.

    The cursor is driven by three callables supplied by a document source:
    start() opens the scroll and returns the first page, advance(scroll_id)
    returns the next page and release(scroll_id) frees the context.

    Usage:
        with source.open('my-index') as cursor:
            for batch in cursor:
                ...
    """

    def __init__(self, index: str, start: Callable[[], Dict[str, Any]],
                 advance: Callable[[str], Dict[str, Any]], release: Callable[[str], Any],
                 doc_type: Optional[str] = None):
        self.index = index
        self.doc_type = doc_type
        self._start = start
        self._advance = advance
        self._release = release
        self._scroll_id = None
        self._started = False
        self._exhausted = False
        self._closed = False
        self._sequence = 0
        self.documents_read = 0

    @property
    def label(self) -> str:
        return f"{self.index}/{self.doc_type}" if self.doc_type else self.index

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    @property
    def closed(self) -> bool:
        return self._closed

    def next(self) -> Optional[DocumentBatch]:
        """
        Fetch the next batch.

        Returns:
            DocumentBatch or None once the scroll is exhausted or the cursor closed
        """
        if self._closed or self._exhausted:
            return None

        if not self._started:
            self._started = True
            response = self._start()
        else:
            response = self._advance(self._scroll_id)

        self._scroll_id = response.get('_scroll_id') or self._scroll_id
        hits = response.get('hits', {}).get('hits', [])

        if not hits:
            logger.info(f"Scroll on {self.label} exhausted after {self.documents_read} documents")
            self._exhausted = True
            self.close()
            return None

        self._sequence += 1
        self.documents_read += len(hits)
        logger.debug(f"Fetched batch {self._sequence} of {len(hits)} documents from {self.label}")
        return DocumentBatch(
            index=self.index,
            documents=[Document.from_hit(hit) for hit in hits],
            sequence=self._sequence
        )

    def __iter__(self) -> Iterator[DocumentBatch]:
        while True:
            batch = self.next()
            if batch is None:
                return
            yield batch

    def close(self) -> None:
        """Release the scroll context. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        scroll_id, self._scroll_id = self._scroll_id, None
        if scroll_id:
            logger.debug(f"Releasing scroll context for {self.label}")
            self._release(scroll_id)

    def __enter__(self) -> 'ScrollCursor':
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()
