"""
Document Sources

Two ways of reading "all documents of index/type X in batches":

- LocalSource reads the configured cluster through the opensearch-py client.
- RemoteSource reads another cluster, given by URL, over plain HTTP scroll
  requests.

Both expose index_exists(), get_mapping() and open(); the coordinator picks
one per request with select_source().
"""

import copy
import logging
from typing import Any, Dict, Optional

from opensearchpy import OpenSearch, RequestsHttpConnection
from opensearchpy.exceptions import NotFoundError, TransportError

from opensearch_base_manager import RETRYABLE_STATUS_CODES, OpenSearchBaseManager, build_auth, normalize_endpoint
from reindex_config import ReindexSettings
from reindex_errors import ClusterRequestError, ReindexException, RemoteUnreachableError, SourceNotFoundError
from scroll_cursor import ScrollCursor

logger = logging.getLogger(__name__)


def build_search_body(query: Optional[Dict[str, Any]] = None, doc_type: Optional[str] = None) -> Dict[str, Any]:
    """
    Build the scroll search body for one (index, type) pair.

    Args:
        query (dict, optional): Search body supplied with the request, e.g. {"query": {...}}
        doc_type (str, optional): Restrict the scan to this type

    Returns:
        Dict[str, Any]: Search body sorted by _doc
    """
    body = copy.deepcopy(query) if query else {}
    for key in ('size', 'from', 'scroll'):
        body.pop(key, None)
    inner = body.pop('query', None) or {'match_all': {}}
    if doc_type:
        inner = {
            'bool': {
                'must': [inner],
                'filter': [{'terms': {'_type': [doc_type]}}]
            }
        }
    body['query'] = inner
    body.setdefault('sort', ['_doc'])
    return body


def scroll_expired(index: str, detail: str) -> ReindexException:
    """The scroll context vanished while reading an index that was already open."""
    return ReindexException(f"Scroll context expired while reading {index}: {detail}", index=index)


def create_client(settings: ReindexSettings) -> OpenSearch:
    """Create an opensearch-py client for the configured cluster."""
    endpoint = normalize_endpoint(settings.opensearch_endpoint)
    return OpenSearch(
        hosts=[endpoint],
        http_auth=build_auth(settings),
        use_ssl=endpoint.startswith('https://'),
        verify_certs=settings.verify_ssl,
        ssl_show_warn=False,
        connection_class=RequestsHttpConnection,
        timeout=settings.request_timeout,
        max_retries=settings.max_retries,
        retry_on_timeout=True
    )


class LocalSource:
    """Reads documents from the configured cluster with the opensearch-py client."""

    kind = 'local'

    def __init__(self, client: OpenSearch, settings: ReindexSettings):
        self.client = client
        self.settings = settings

    def _translate(self, error: TransportError, index: str) -> ReindexException:
        if isinstance(error, NotFoundError):
            return SourceNotFoundError(f"Source index {index} does not exist", index=index)
        return ReindexException(f"Request to local cluster failed for {index}: {str(error)}", index=index)

    def index_exists(self, index: str) -> bool:
        try:
            return bool(self.client.indices.exists(index=index))
        except TransportError as e:
            raise self._translate(e, index)

    def get_mapping(self, index: str) -> Dict[str, Dict[str, Any]]:
        """Mappings keyed by concrete index name; aliases and wildcards expand to every match."""
        try:
            response = self.client.indices.get_mapping(index=index)
        except TransportError as e:
            raise self._translate(e, index)
        return {name: (value or {}).get('mappings', {}) for name, value in response.items()}

    def open(self, index: str, doc_type: Optional[str] = None, query: Optional[Dict[str, Any]] = None,
             batch_size: Optional[int] = None, scroll: Optional[str] = None) -> ScrollCursor:
        """
        Open a scroll cursor over one index, optionally restricted to one type.

        Args:
            index (str): Source index
            doc_type (str, optional): Source type; all types when omitted
            query (dict, optional): Search body filtering the documents
            batch_size (int, optional): Documents per batch
            scroll (str, optional): Scroll keep-alive

        Returns:
            ScrollCursor: Lazy cursor; nothing is fetched until the first next()
        """
        body = build_search_body(query, doc_type)
        size = batch_size or self.settings.batch_size
        keep_alive = scroll or self.settings.scroll

        def start():
            try:
                return self.client.search(index=index, body=body, scroll=keep_alive, size=size)
            except TransportError as e:
                raise self._translate(e, index)

        def advance(scroll_id):
            try:
                return self.client.scroll(scroll_id=scroll_id, scroll=keep_alive)
            except NotFoundError as e:
                raise scroll_expired(index, str(e))
            except TransportError as e:
                raise self._translate(e, index)

        def release(scroll_id):
            try:
                self.client.clear_scroll(scroll_id=scroll_id)
            except TransportError as e:
                logger.warning(f"Failed to clear scroll context on {index}: {str(e)}")

        logger.info(f"Opening local scroll on {index}{'/' + doc_type if doc_type else ''} with batch size {size}")
        return ScrollCursor(index, start, advance, release, doc_type=doc_type)


class RemoteSource:
    """Reads documents from another cluster through HTTP scroll requests."""

    kind = 'remote'

    def __init__(self, url: str, settings: ReindexSettings, manager: Optional[OpenSearchBaseManager] = None):
        self.url = url
        self.settings = settings
        self.manager = manager or OpenSearchBaseManager(url, settings=settings)

    def _translate(self, error: ClusterRequestError, index: Optional[str] = None) -> ReindexException:
        if error.status_code == 404:
            return SourceNotFoundError(f"Source index {index} does not exist on {self.url}", index=index)
        if error.status_code is None or error.status_code in RETRYABLE_STATUS_CODES:
            return RemoteUnreachableError(f"Remote cluster {self.url} is unreachable: {str(error)}", index=index)
        return ReindexException(f"Remote cluster {self.url} rejected the request: {str(error)}", index=index)

    def check_connection(self) -> None:
        """Fail fast when the remote cluster does not answer."""
        try:
            self.manager._test_connection()
        except ClusterRequestError as e:
            raise self._translate(e)

    def index_exists(self, index: str) -> bool:
        try:
            return self.manager._verify_index_exists(index)
        except ClusterRequestError as e:
            raise self._translate(e, index)

    def get_mapping(self, index: str) -> Dict[str, Dict[str, Any]]:
        try:
            return self.manager._get_mappings_by_index(index)
        except ClusterRequestError as e:
            raise self._translate(e, index)

    def open(self, index: str, doc_type: Optional[str] = None, query: Optional[Dict[str, Any]] = None,
             batch_size: Optional[int] = None, scroll: Optional[str] = None) -> ScrollCursor:
        """Open a scroll cursor over one remote index; see LocalSource.open."""
        body = build_search_body(query, doc_type)
        size = batch_size or self.settings.batch_size
        keep_alive = scroll or self.settings.scroll

        def start():
            try:
                return self.manager.scroll_start(index, body, size, keep_alive)
            except ClusterRequestError as e:
                raise self._translate(e, index)

        def advance(scroll_id):
            try:
                return self.manager.scroll_next(scroll_id, keep_alive)
            except ClusterRequestError as e:
                if e.status_code == 404:
                    raise scroll_expired(index, str(e))
                raise self._translate(e, index)

        logger.info(f"Opening remote scroll on {self.url}/{index}{'/' + doc_type if doc_type else ''} with batch size {size}")
        return ScrollCursor(index, start, advance, self.manager.clear_scroll, doc_type=doc_type)


def select_source(remote_url: Optional[str], settings: ReindexSettings, client: Optional[OpenSearch] = None):
    """Pick the document source for a request: remote when a URL is given, local otherwise."""
    if remote_url:
        return RemoteSource(remote_url, settings)
    return LocalSource(client or create_client(settings), settings)
