"""
OpenSearch Index Manager

This module provides the index administration used around a reindex:
creating destination indices and type mappings, inserting single documents,
counting, and the refresh/flush barrier that makes copied documents visible
to search.
"""

import logging
from typing import Any, Dict, Optional

from opensearch_base_manager import INDEX_NOT_EXIST_MESSAGE, OpenSearchBaseManager
from reindex_config import ReindexSettings
from reindex_models import DEFAULT_TYPE

logger = logging.getLogger(__name__)


class OpenSearchIndexManager(OpenSearchBaseManager):
    """
    Manages OpenSearch index operations.

    This class provides functionality to:
    - Validate index existence
    - Create indices and type mappings
    - Insert and count documents
    - Refresh and flush indices
    """

    def __init__(self, opensearch_endpoint: Optional[str] = None, settings: Optional[ReindexSettings] = None):
        """
        Initialize the OpenSearch index manager.

        Args:
            opensearch_endpoint (str, optional): The OpenSearch cluster endpoint URL
            settings (ReindexSettings, optional): Shared settings
        """
        super().__init__(opensearch_endpoint=opensearch_endpoint, settings=settings)
        logger.info("Initialized OpenSearchIndexManager")

    def index_exists(self, index_name: str) -> bool:
        return self._verify_index_exists(index_name)

    def create_index(self, index_name: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Create an index.

        Args:
            index_name (str): Name of the index
            body (Dict[str, Any], optional): Index settings and mappings

        Returns:
            Dict[str, Any]: Result containing status and details
        """
        result = self._make_request('PUT', f'/{index_name}', data=body or {})
        if result['status'] == 'success':
            logger.info(f"Created index {index_name}")
            return {
                'status': 'success',
                'message': 'Index created successfully',
                'response': result['response'].json()
            }

        response = result.get('response')
        error = {}
        if response is not None:
            try:
                error = response.json().get('error', {})
            except ValueError:
                error = {}
        if isinstance(error, dict) and error.get('type') in ('resource_already_exists_exception',
                                                            'index_already_exists_exception'):
            return {
                'status': 'warning',
                'message': 'Index already exists',
                'response': error
            }
        return {
            'status': 'error',
            'message': f"Failed to create index {index_name}: {result['message']}"
        }

    def put_mapping(self, index_name: str, doc_type: Optional[str], mapping: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create or update the mapping of a type.

        Args:
            index_name (str): Name of the index
            doc_type (str, optional): Type name; the typeless endpoint is used when omitted
            mapping (Dict[str, Any]): Mapping body, e.g. {"_parent": {"type": "branch"}}

        Returns:
            Dict[str, Any]: Result containing status and details
        """
        path = f'/{index_name}/_mapping/{doc_type}' if doc_type else f'/{index_name}/_mapping'
        result = self._make_request('PUT', path, data=mapping)
        if result['status'] == 'error':
            return {
                'status': 'error',
                'message': f"Failed to put mapping on {index_name}: {result['message']}"
            }
        logger.info(f"Put mapping for {index_name}/{doc_type or DEFAULT_TYPE}")
        return {
            'status': 'success',
            'message': 'Mapping updated successfully'
        }

    def insert(self, index_name: str, doc_type: Optional[str], doc_id: str, source: Dict[str, Any],
               parent: Optional[str] = None, routing: Optional[str] = None) -> Dict[str, Any]:
        """
        Index a single document with an explicit id.

        Returns:
            Dict[str, Any]: Result containing status and the created flag
        """
        params = {}
        if parent is not None:
            params['parent'] = parent
        if routing is not None:
            params['routing'] = routing
        result = self._make_request('PUT', f'/{index_name}/{doc_type or DEFAULT_TYPE}/{doc_id}',
                                    data=source, params=params or None)
        if result['status'] == 'error':
            return {
                'status': 'error',
                'message': f"Failed to insert {doc_id} into {index_name}: {result['message']}"
            }
        body = result['response'].json()
        return {
            'status': 'success',
            'created': body.get('created', body.get('result') == 'created')
        }

    def get_type_mapping(self, index_name: str, doc_type: str) -> Dict[str, Any]:
        """Mapping of one type, empty when the index or type does not exist."""
        return self._get_index_mappings(index_name).get(doc_type, {})

    def count(self, index_name: str, doc_type: Optional[str] = None, query: Optional[Dict[str, Any]] = None) -> int:
        """
        Count the documents of an index, optionally restricted to a type and a query.
        """
        inner = (query or {}).get('query')
        if doc_type:
            inner = {
                'bool': {
                    'must': [inner or {'match_all': {}}],
                    'filter': [{'terms': {'_type': [doc_type]}}]
                }
            }
        return self._get_index_count(index_name, {'query': inner} if inner else None)

    def refresh(self, index_name: str) -> Dict[str, Any]:
        return self._barrier(index_name, '_refresh')

    def flush(self, index_name: str) -> Dict[str, Any]:
        return self._barrier(index_name, '_flush')

    def _barrier(self, index_name: str, action: str) -> Dict[str, Any]:
        result = self._make_request('POST', f'/{index_name}/{action}')
        if result['status'] == 'error':
            logger.warning(f"{action} of {index_name} failed: {result['message']}")
            return {
                'status': 'error',
                'message': result['message']
            }
        return {
            'status': 'success',
            'message': f"{action} of {index_name} completed"
        }

    def delete_index(self, index_name: str) -> Dict[str, Any]:
        """
        Delete an index.

        Returns:
            Dict[str, Any]: Result containing status and message
        """
        result = self._make_request('DELETE', f'/{index_name}')
        if result['status'] == 'success':
            return {
                'status': 'success',
                'message': f"Successfully deleted index {index_name}"
            }
        if result.get('status_code') == 404:
            return {
                'status': 'warning',
                'message': INDEX_NOT_EXIST_MESSAGE
            }
        return {
            'status': 'error',
            'message': f"Failed to delete index {index_name}: {result['message']}"
        }
