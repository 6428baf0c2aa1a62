"""
Bulk Writer

Writes document batches into the destination index with NDJSON _bulk
requests. Every document is written with an index action carrying its
original id, so re-sending a batch overwrites instead of duplicating.

Key features:
- Per-item outcome reporting; rejected items never abort the rest of the batch
- Bounded retries with exponential backoff for whole-batch failures
- Parent and routing metadata carried into the destination
"""

import json
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from opensearch_base_manager import OpenSearchBaseManager
from reindex_errors import BulkWriteFailure, DestinationMappingConflict
from reindex_models import DEFAULT_TYPE, DocumentBatch

logger = logging.getLogger(__name__)


@dataclass
class BulkResult:
    written: int = 0
    failures: List[DestinationMappingConflict] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failures)


class BulkWriter:
    """
    Submits batches to the destination cluster.

    Attributes:
        manager (OpenSearchBaseManager): HTTP access to the destination cluster
        max_retries (int): Attempts per bulk request before the batch is given up
    """

    def __init__(self, manager: OpenSearchBaseManager, max_retries: Optional[int] = None):
        self.manager = manager
        self.max_retries = max_retries or manager.max_retries

    def _create_bulk_request(self, batch: DocumentBatch, dest_index: str, dest_type: Optional[str] = None) -> str:
        """
        Create bulk request body in NDJSON format.

        Args:
            batch (DocumentBatch): Documents to write, parent and routing already resolved
            dest_index (str): Name of the destination index
            dest_type (str, optional): Destination type; each document keeps its own type when omitted

        Returns:
            str: NDJSON formatted bulk request body
        """
        bulk_request = []
        for doc in batch:
            index_action = {
                "_index": dest_index,
                "_id": doc.id
            }
            target_type = dest_type or doc.type
            if target_type and target_type != DEFAULT_TYPE:
                index_action["_type"] = target_type
            if doc.parent is not None:
                index_action["parent"] = doc.parent
            if doc.routing is not None:
                index_action["routing"] = doc.routing

            bulk_request.append(json.dumps({"index": index_action}))
            bulk_request.append(json.dumps(doc.source))
        return '\n'.join(bulk_request) + '\n'

    def write(self, batch: DocumentBatch, dest_index: str, dest_type: Optional[str] = None) -> BulkResult:
        """
        Write a batch and report the outcome of every item.

        Args:
            batch (DocumentBatch): Documents to write
            dest_index (str): Name of the destination index
            dest_type (str, optional): Destination type

        Returns:
            BulkResult: Written count and per-document failures

        Raises:
            BulkWriteFailure: If the whole request failed after exhausting retries
        """
        if not len(batch):
            return BulkResult()

        bulk_request = self._create_bulk_request(batch, dest_index, dest_type)
        result = self.manager.bulk(bulk_request, max_retries=self.max_retries)

        if result['status'] != 'success':
            logger.error(f"Bulk request for batch {batch.sequence} of {batch.index} failed: {result['message']}")
            raise BulkWriteFailure(
                f"Bulk write of {len(batch)} documents into {dest_index} failed: {result['message']}",
                index=dest_index
            )

        response = result['response'].json()
        items = response.get('items', [])
        outcome = BulkResult()

        for i, item in enumerate(items):
            index_result = item.get('index') or next(iter(item.values()), {})
            if index_result.get('status', 200) >= 400:  # Error status codes are 400 and above
                document = batch.documents[i] if i < len(batch.documents) else None
                error = index_result.get('error', {})
                if not isinstance(error, dict):
                    error = {'type': 'unknown', 'reason': str(error)}
                outcome.failures.append(DestinationMappingConflict(
                    error.get('reason', 'unknown'),
                    index=dest_index,
                    doc_type=index_result.get('_type', document.type if document else None),
                    doc_id=index_result.get('_id', document.id if document else 'unknown'),
                    error_type=error.get('type', 'unknown')
                ))
            else:
                outcome.written += 1

        if outcome.failures:
            self._log_failures(outcome.failures, batch)

        logger.info(f"Wrote {outcome.written} of {len(batch)} documents from {batch.index} batch {batch.sequence} into {dest_index}")
        return outcome

    def _log_failures(self, failures: List[DestinationMappingConflict], batch: DocumentBatch) -> None:
        """Log every rejected document of a batch."""
        logger.error(f"Bulk request had {len(failures)} failed records for {batch.index} batch {batch.sequence}")
        for failure in failures:
            logger.error(f"Failed document ID: {failure.doc_id}, type: {failure.error_type}, reason: {failure.message}")

