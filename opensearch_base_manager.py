"""
OpenSearch Base Manager

This module provides the HTTP transport shared by the reindex components:
authentication, SSL handling, bounded retries with exponential backoff,
per-request timeouts and the scroll primitives used to read a cluster over
plain HTTP.
"""

import json
import logging
import time
from typing import Any, Dict, Optional
from urllib.parse import urlsplit, urlunsplit

import boto3
import requests
import urllib3
from requests_aws4auth import AWS4Auth

from reindex_config import ReindexSettings
from reindex_errors import ClusterRequestError

# Constants
INDEX_NOT_EXIST_MESSAGE = 'Index does not exist'
SCROLL_ENDPOINT = '/_search/scroll'
RETRYABLE_STATUS_CODES = (429, 500, 502, 503, 504)

logger = logging.getLogger(__name__)

# Disable SSL verification warnings
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)


def normalize_endpoint(endpoint: str) -> str:
    """Return the endpoint as a base URL, defaulting to https when no scheme is given."""
    endpoint = endpoint.strip()
    if '://' not in endpoint:
        endpoint = f"https://{endpoint}"
    return endpoint.rstrip('/')


def split_credentials(url: str):
    """Strip user:password from a URL and return (url, (user, password) or None)."""
    parts = urlsplit(url)
    if not parts.username:
        return url, None
    netloc = parts.hostname or ''
    if parts.port:
        netloc = f"{netloc}:{parts.port}"
    clean = urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))
    return clean, (parts.username, parts.password or '')


def build_auth(settings: ReindexSettings):
    """Build the requests auth object for the configured authentication mode."""
    if settings.auth_mode == 'aws':
        session = boto3.Session()
        credentials = session.get_credentials()
        return AWS4Auth(
            credentials.access_key,
            credentials.secret_key,
            settings.aws_region,
            'es',
            session_token=credentials.token
        )
    if settings.auth_mode == 'basic':
        if not settings.username:
            raise ValueError("OPENSEARCH_USERNAME is required for basic authentication")
        return (settings.username, settings.password or '')
    return None


class OpenSearchBaseManager:
    """
    HTTP access to one cluster with retry, backoff and timeout handling.
    """

    # Content type constants
    CONTENT_TYPE_JSON = 'application/json'
    CONTENT_TYPE_NDJSON = 'application/x-ndjson'

    def __init__(self, opensearch_endpoint: Optional[str] = None, settings: Optional[ReindexSettings] = None,
                 auth: Any = None):
        """
        Initialize the OpenSearch base manager.

        Args:
            opensearch_endpoint (str, optional): Cluster URL; defaults to the configured endpoint
            settings (ReindexSettings, optional): Shared settings, loaded from the environment if omitted
            auth (optional): Explicit requests auth; the configured authentication is used when omitted

        Raises:
            ValueError: If no endpoint is provided or configured
        """
        self.settings = settings or ReindexSettings(opensearch_endpoint=opensearch_endpoint)
        endpoint, credentials = split_credentials(normalize_endpoint(opensearch_endpoint or self.settings.opensearch_endpoint))
        self.opensearch_endpoint = endpoint
        self.verify_ssl = self.settings.verify_ssl
        self.timeout = self.settings.request_timeout
        self.max_retries = self.settings.max_retries
        self.retry_backoff = self.settings.retry_backoff

        if auth is not None:
            self.auth = auth
        elif credentials:
            self.auth = credentials
        elif opensearch_endpoint is None or normalize_endpoint(opensearch_endpoint) == normalize_endpoint(self.settings.opensearch_endpoint):
            self.auth = build_auth(self.settings)
        else:
            self.auth = None

        logger.info(f"Initialized OpenSearch connection with endpoint: {self.opensearch_endpoint}")
        logger.debug(f"Using SSL verification: {self.verify_ssl}, timeout: {self.timeout}s, max retries: {self.max_retries}")

    def _test_connection(self) -> Dict[str, Any]:
        """
        Test the connection to the cluster with retry logic.

        Returns:
            Dict[str, Any]: Response with status and message

        Raises:
            ClusterRequestError: If the cluster cannot be reached after maximum retries
        """
        retry_count = 0
        last_exception = None

        while retry_count < self.max_retries:
            try:
                logger.info(f"Testing connection to {self.opensearch_endpoint} (Attempt {retry_count + 1}/{self.max_retries})")
                response = requests.get(
                    self.opensearch_endpoint,
                    auth=self.auth,
                    verify=self.verify_ssl,
                    timeout=self.timeout
                )
                response.raise_for_status()
                logger.info(f"Successfully connected to {self.opensearch_endpoint}")
                return {
                    'status': 'success',
                    'message': 'Successfully connected to OpenSearch',
                    'response': response.json()
                }

            except requests.exceptions.RequestException as e:
                last_exception = e
                retry_count += 1
                self._log_request_error(e, retry_count, self.max_retries)
                if retry_count < self.max_retries:
                    self._backoff(retry_count)

        logger.error(f"Failed to connect to {self.opensearch_endpoint} after {self.max_retries} attempts. Giving up.")
        raise ClusterRequestError(
            f"Failed to connect to {self.opensearch_endpoint} after {self.max_retries} attempts: {str(last_exception)}",
            status_code=self._status_code(last_exception)
        )

    def _backoff(self, retry_count: int) -> None:
        # Exponential backoff: base, 2x base, 4x base...
        wait_time = self.retry_backoff * 2 ** (retry_count - 1)
        logger.info(f"Retrying in {wait_time} seconds...")
        time.sleep(wait_time)

    @staticmethod
    def _status_code(exception) -> Optional[int]:
        response = getattr(exception, 'response', None)
        if response is None:
            return None
        return getattr(response, 'status_code', None)

    def _make_request(self, method: str, path: str, data: Optional[Any] = None,
                      headers: Optional[Dict[str, str]] = None, params: Optional[Dict[str, Any]] = None,
                      max_retries: Optional[int] = None) -> Dict[str, Any]:
        """
        Make an HTTP request to the cluster.

        Connection errors, timeouts and 429/5xx responses are retried with
        exponential backoff; other client errors are returned immediately.

        Args:
            method (str): HTTP method (GET, POST, etc.)
            path (str): API path
            data (optional): Request body, sent as JSON when it is a dict
            headers (dict, optional): Additional headers to include
            params (dict, optional): Query string parameters
            max_retries (int, optional): Attempt budget, defaults to the configured value

        Returns:
            Dict[str, Any]: Result with status, message, status_code and response
        """
        url = f"{self.opensearch_endpoint}{path}"
        request_headers = self._prepare_headers(headers)
        max_retries = max_retries or self.max_retries

        retry_count = 0
        last_exception = None

        while retry_count < max_retries:
            try:
                logger.debug(f"Making request: {method} {url} (Attempt {retry_count + 1}/{max_retries})")
                response = self._execute_request(method, url, request_headers, data, params)
                response.raise_for_status()
                return {
                    'status': 'success',
                    'message': 'Request completed successfully',
                    'status_code': response.status_code,
                    'response': response
                }

            except requests.exceptions.RequestException as e:
                last_exception = e
                retry_count += 1
                status_code = self._status_code(e)

                if status_code is not None and status_code not in RETRYABLE_STATUS_CODES:
                    if not (method == 'HEAD' and status_code == 404):
                        self._log_request_error(e, retry_count, max_retries)
                    return {
                        'status': 'error',
                        'message': INDEX_NOT_EXIST_MESSAGE if status_code == 404 else f"Request failed: {str(e)}",
                        'status_code': status_code,
                        'response': e.response
                    }

                self._log_request_error(e, retry_count, max_retries)
                if retry_count < max_retries:
                    self._backoff(retry_count)

        logger.error(f"Failed to make request {method} {url} after {max_retries} attempts. Giving up.")
        return {
            'status': 'error',
            'message': f"Failed to make request after {max_retries} attempts: {str(last_exception)}",
            'status_code': self._status_code(last_exception),
            'response': getattr(last_exception, 'response', None)
        }

    def _prepare_headers(self, headers: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        """Prepare request headers."""
        request_headers = {
            'Content-Type': self.CONTENT_TYPE_JSON,
            'Accept': self.CONTENT_TYPE_JSON
        }

        # Update headers with any additional headers provided
        if headers:
            request_headers.update(headers)

        return request_headers

    def _execute_request(self, method: str, url: str, headers: Dict[str, str], data: Optional[Any] = None,
                         params: Optional[Dict[str, Any]] = None) -> requests.Response:
        """Execute the HTTP request."""
        kwargs = {
            'method': method,
            'url': url,
            'headers': headers,
            'auth': self.auth,
            'verify': self.verify_ssl,
            'timeout': self.timeout
        }
        if params:
            kwargs['params'] = params
        if data is not None:
            if isinstance(data, dict):
                kwargs['json'] = data
            else:
                kwargs['data'] = data
        return requests.request(**kwargs)

    def _log_request_error(self, exception, retry_count, max_retries):
        """Log request error details."""
        logger.error(f"Error making request to {self.opensearch_endpoint} (Attempt {retry_count}/{max_retries}): {str(exception)}")

        response = getattr(exception, 'response', None)
        if response is not None and hasattr(response, 'text'):
            logger.error(f"Response text: {response.text}")

    def _raise_for_error(self, result: Dict[str, Any], action: str) -> Dict[str, Any]:
        """Turn an error result into a ClusterRequestError, otherwise return the decoded body."""
        if result['status'] == 'error':
            raise ClusterRequestError(f"{action} failed: {result['message']}", status_code=result.get('status_code'))
        response = result['response']
        if not response.content:
            return {}
        return response.json()

    def _verify_index_exists(self, index_name: str) -> bool:
        """
        Verify that an index exists.

        Args:
            index_name (str): Name of the index

        Returns:
            bool: True if the index exists, False if the cluster answered 404

        Raises:
            ClusterRequestError: If the cluster could not answer
        """
        result = self._make_request('HEAD', f'/{index_name}')

        if result['status'] == 'error':
            if result.get('status_code') == 404:
                logger.warning(f"Index {index_name} does not exist")
                return False
            raise ClusterRequestError(f"Error verifying index {index_name} exists: {result['message']}",
                                      status_code=result.get('status_code'))

        return True

    def _get_index_count(self, index_name: str, query: Optional[Dict[str, Any]] = None) -> int:
        """
        Get the document count for an index.

        Args:
            index_name (str): Name of the index
            query (dict, optional): Count only documents matching this query body

        Returns:
            int: Document count, 0 when the index does not exist
        """
        if query:
            result = self._make_request('POST', f'/{index_name}/_count', data=query)
        else:
            result = self._make_request('GET', f'/{index_name}/_count')

        if result['status'] == 'error':
            if result.get('status_code') == 404:
                logger.warning(f"Index {index_name} does not exist")
                return 0
            logger.error(f"Error getting index count: {result['message']}")
            return 0

        return result['response'].json().get('count', 0)

    def _get_index_mappings(self, index_name: str) -> Dict[str, Any]:
        """
        Get the mappings for an index.

        Args:
            index_name (str): Name of the index

        Returns:
            Dict[str, Any]: Index mappings, empty when the index does not exist

        Raises:
            ClusterRequestError: If the cluster could not answer
        """
        by_index = self._get_mappings_by_index(index_name)
        # The response is keyed by the concrete index name, which differs when index_name is an alias
        if index_name in by_index:
            return by_index[index_name]
        return next(iter(by_index.values()), {})

    def _get_mappings_by_index(self, index_pattern: str) -> Dict[str, Dict[str, Any]]:
        """
        Get the mappings of every concrete index matching a name, alias or wildcard.

        Returns:
            Dict[str, Dict[str, Any]]: Concrete index name -> mappings, empty when nothing matches

        Raises:
            ClusterRequestError: If the cluster could not answer
        """
        result = self._make_request('GET', f'/{index_pattern}/_mapping')

        if result['status'] == 'error':
            if result.get('status_code') == 404:
                logger.warning(f"Index {index_pattern} does not exist")
                return {}
            raise ClusterRequestError(f"Error getting mappings of {index_pattern}: {result['message']}",
                                      status_code=result.get('status_code'))

        body = result['response'].json()
        return {name: (value or {}).get('mappings', {}) for name, value in body.items()}

    def scroll_start(self, index_name: str, body: Dict[str, Any], size: int, scroll: str) -> Dict[str, Any]:
        """
        Open a scroll context and return the first page.

        Args:
            index_name (str): Index (or comma-separated indices) to read
            body (Dict[str, Any]): Search body
            size (int): Number of documents per page
            scroll (str): Keep-alive of the scroll context

        Returns:
            Dict[str, Any]: Search response containing _scroll_id and hits
        """
        body = dict(body)
        body['size'] = size
        result = self._make_request('POST', f'/{index_name}/_search', data=body, params={'scroll': scroll})
        return self._raise_for_error(result, f"Opening scroll on {index_name}")

    def scroll_next(self, scroll_id: str, scroll: str) -> Dict[str, Any]:
        """Advance a scroll context and return the next page."""
        result = self._make_request('POST', SCROLL_ENDPOINT, data={'scroll': scroll, 'scroll_id': scroll_id})
        return self._raise_for_error(result, "Advancing scroll")

    def clear_scroll(self, scroll_id: str) -> bool:
        """Release a scroll context. Failures are logged, the context expires on its own."""
        result = self._make_request('DELETE', SCROLL_ENDPOINT, data={'scroll_id': [scroll_id]}, max_retries=1)
        if result['status'] == 'error':
            logger.warning(f"Failed to clear scroll context: {result['message']}")
            return False
        return True

    def bulk(self, body: str, max_retries: Optional[int] = None) -> Dict[str, Any]:
        """
        Send an NDJSON bulk request.

        Args:
            body (str): NDJSON formatted bulk request body
            max_retries (int, optional): Attempt budget for the whole request

        Returns:
            Dict[str, Any]: Result with status, message and response
        """
        return self._make_request(
            'POST',
            '/_bulk',
            data=body,
            headers={'Content-Type': self.CONTENT_TYPE_NDJSON},
            max_retries=max_retries
        )

    @staticmethod
    def to_ndjson(lines) -> str:
        return '\n'.join(json.dumps(line) for line in lines) + '\n'
