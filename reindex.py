"""
OpenSearch Reindex Manager

This module coordinates reindex requests: it picks the document source,
drives a scroll cursor over every (index, type) pair, resolves parent links
against the destination mapping, writes the documents with bulk requests and
records progress in the completion reporter. Requests run either inline
(wait_for_completion) or on a worker thread.
"""

import argparse
import dataclasses
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional

from opensearchpy import OpenSearch

from bulk_writer import BulkResult, BulkWriter
from completion_reporter import CompletionReporter
from document_source import create_client, select_source
from index_manager import OpenSearchIndexManager
from opensearch_base_manager import OpenSearchBaseManager
from parent_child import ParentChildResolver, is_typed_mapping, type_mappings
from reindex_config import ReindexSettings, setup_logging
from reindex_errors import DestinationMappingConflict, ReindexCancelled, ReindexException, SourceNotFoundError
from reindex_models import DocumentBatch, ReindexHandle, ReindexRequest, ReindexState

logger = logging.getLogger(__name__)


def build_acknowledgement(handle: ReindexHandle, wait_for_completion: bool = True) -> Dict[str, Any]:
    """
    Build the response body returned to the caller of a reindex request.

    An asynchronous request is acknowledged as soon as it is accepted; a
    synchronous one once it reached a terminal state. Counts are included
    only for terminal handles.
    """
    body = {
        'acknowledged': handle.acknowledged or not wait_for_completion,
        'request_id': handle.request_id,
        'state': handle.state.value,
    }
    if handle.state.terminal:
        body.update({
            'read': handle.read,
            'written': handle.written,
            'failed': handle.failed,
            'cancelled': handle.cancelled,
            'errors': list(handle.errors),
        })
        if handle.error:
            body['error'] = handle.error
    return body


class OpenSearchReindexManager(OpenSearchBaseManager):
    """
    Manages reindexing operations in OpenSearch.

    This class provides functionality to:
    - Validate requests and source indices
    - Copy documents pair by pair with bounded memory
    - Keep parent-child relationships intact
    - Run requests synchronously or in the background, with cancellation

    Attributes:
        reporter (CompletionReporter): Registry of request handles
        index_manager (OpenSearchIndexManager): Administration of the destination cluster
        bulk_writer (BulkWriter): Writes batches into the destination
    """

    def __init__(self, opensearch_endpoint: Optional[str] = None, settings: Optional[ReindexSettings] = None,
                 reporter: Optional[CompletionReporter] = None, client: Optional[OpenSearch] = None,
                 index_manager: Optional[OpenSearchIndexManager] = None, bulk_writer: Optional[BulkWriter] = None):
        """
        Initialize the OpenSearch reindex manager.

        Args:
            opensearch_endpoint (str, optional): The OpenSearch cluster endpoint URL
            settings (ReindexSettings, optional): Shared settings, loaded from the environment if omitted
            reporter (CompletionReporter, optional): Shared handle registry
            client (OpenSearch, optional): Client used to read the local cluster
            index_manager (OpenSearchIndexManager, optional): Destination administration helper
            bulk_writer (BulkWriter, optional): Destination writer
        """
        settings = settings or ReindexSettings(opensearch_endpoint=opensearch_endpoint)
        super().__init__(opensearch_endpoint=opensearch_endpoint, settings=settings)
        self.reporter = reporter or CompletionReporter(retain_finished=settings.retain_finished)
        self.index_manager = index_manager or OpenSearchIndexManager(opensearch_endpoint, settings=settings)
        self.bulk_writer = bulk_writer or BulkWriter(self)
        self._client = client
        self._executor = None
        self._cancel_events: Dict[str, threading.Event] = {}
        self._lock = threading.Lock()
        logger.info(f"Initialized OpenSearchReindexManager with endpoint: {self.opensearch_endpoint}")

    @property
    def client(self) -> OpenSearch:
        if self._client is None:
            self._client = create_client(self.settings)
        return self._client

    @property
    def executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=self.settings.max_workers,
                                                    thread_name_prefix='reindex')
            return self._executor

    def submit(self, request: ReindexRequest) -> ReindexHandle:
        """
        Accept a reindex request.

        Args:
            request (ReindexRequest): What to copy and where

        Returns:
            ReindexHandle: Terminal snapshot when waiting for completion, a Running snapshot otherwise

        Raises:
            InvalidReindexRequest: If the request is malformed
        """
        request.validate()
        handle = self.reporter.register(ReindexHandle.new())
        cancel_event = threading.Event()
        with self._lock:
            self._cancel_events[handle.request_id] = cancel_event

        logger.info(f"Reindex request {handle.request_id}: {','.join(request.source_indices)}"
                    f"{'/' + ','.join(request.source_types) if request.source_types else ''} -> "
                    f"{request.dest_index}{'/' + request.dest_type if request.dest_type else ''}"
                    f"{' from ' + request.remote_url if request.remote_url else ''}")

        if request.wait_for_completion:
            return self._run(handle.request_id, request, cancel_event)

        self.executor.submit(self._run, handle.request_id, request, cancel_event)
        return handle

    def reindex(self, request: ReindexRequest) -> ReindexHandle:
        """Run a request to completion in the calling thread."""
        return self.submit(dataclasses.replace(request, wait_for_completion=True))

    def cancel(self, request_id: str) -> bool:
        """
        Ask a running request to stop. No new scroll or bulk call is issued once this returns.

        Returns:
            bool: False when the request already finished

        Raises:
            UnknownRequestError: If no request is registered under this id
        """
        if self.reporter.acknowledge(request_id):
            return False
        with self._lock:
            event = self._cancel_events.get(request_id)
        if event is None:
            return False
        event.set()
        logger.info(f"Cancellation requested for reindex request {request_id}")
        return True

    def status(self, request_id: str) -> ReindexHandle:
        return self.reporter.status(request_id)

    def acknowledge(self, request_id: str) -> bool:
        return self.reporter.acknowledge(request_id)

    def list_running(self) -> List[str]:
        return self.reporter.list_running()

    def shutdown(self, wait: bool = True) -> None:
        """Cancel running requests and stop the worker pool."""
        with self._lock:
            events = list(self._cancel_events.values())
            executor, self._executor = self._executor, None
        if not wait:
            for event in events:
                event.set()
        if executor is not None:
            executor.shutdown(wait=wait)

    def _run(self, request_id: str, request: ReindexRequest, cancel_event: threading.Event) -> ReindexHandle:
        """Execute a request and move its handle to a terminal state; never raises."""
        try:
            source = select_source(request.remote_url, self.settings,
                                   client=None if request.remote_url else self.client)
            resolver = self._prepare_sources(source, request)
            dest_mappings = self._destination_mappings(request.dest_index)

            for index, doc_type in request.pairs():
                self._copy_pair(request_id, request, source, resolver, dest_mappings, index, doc_type, cancel_event)

            self._check_cancelled(request_id, cancel_event)
            self.index_manager.refresh(request.dest_index)
        except ReindexCancelled as e:
            return self._fail(request_id, e, cancelled=True)
        except ReindexException as e:
            return self._fail(request_id, e)
        except Exception as e:
            logger.exception(f"Unexpected error in reindex request {request_id}")
            return self._fail(request_id, ReindexException(f"Error during reindex operation: {str(e)}",
                                                           index=request.dest_index))
        else:
            return self.reporter.finish(request_id, ReindexState.COMPLETED)
        finally:
            with self._lock:
                self._cancel_events.pop(request_id, None)

    def _fail(self, request_id: str, error: ReindexException, cancelled: bool = False) -> ReindexHandle:
        logger.error(f"Reindex request {request_id} failed: {error.message}")

        def mutate(handle):
            handle.error = error.to_dict()

        self.reporter.update(request_id, mutate)
        return self.reporter.finish(request_id, ReindexState.FAILED, cancelled=cancelled)

    def _prepare_sources(self, source, request: ReindexRequest) -> ParentChildResolver:
        """
        Check that every source index (and requested type) exists and register its parent declarations.

        Raises:
            SourceNotFoundError: If a source index or type does not exist
            RemoteUnreachableError: If the remote cluster does not answer
        """
        if source.kind == 'remote':
            source.check_connection()

        resolver = ParentChildResolver()
        for index in request.source_indices:
            if not source.index_exists(index):
                raise SourceNotFoundError(f"Source index {index} does not exist", index=index)

            by_index = source.get_mapping(index)
            for concrete, mappings in by_index.items():
                resolver.register_source_mapping(concrete, mappings)

            if request.source_types:
                typed = [mappings for mappings in by_index.values() if is_typed_mapping(mappings)]
                if typed:
                    known = set()
                    for mappings in typed:
                        known.update(type_mappings(mappings))
                    missing = [t for t in request.source_types if t not in known]
                    if missing:
                        raise SourceNotFoundError(f"Type {','.join(missing)} does not exist in {index}", index=index)
        return resolver

    def _destination_mappings(self, dest_index: str) -> Dict[str, Dict[str, Any]]:
        """Type mappings of the destination; empty when it is typeless or does not exist yet."""
        return type_mappings(self._get_index_mappings(dest_index))

    def _check_cancelled(self, request_id: str, cancel_event: threading.Event) -> None:
        if cancel_event.is_set():
            raise ReindexCancelled(f"Reindex request {request_id} was cancelled")

    def _copy_pair(self, request_id: str, request: ReindexRequest, source, resolver: ParentChildResolver,
                   dest_mappings: Dict[str, Dict[str, Any]], index: str, doc_type: Optional[str],
                   cancel_event: threading.Event) -> None:
        """Drive one cursor to exhaustion, writing every batch into the destination."""
        start_time = time.time()
        self._check_cancelled(request_id, cancel_event)
        with source.open(index, doc_type=doc_type, query=request.query,
                         batch_size=request.batch_size, scroll=request.scroll) as cursor:
            while True:
                self._check_cancelled(request_id, cancel_event)
                batch = cursor.next()
                if batch is None:
                    break
                self._check_cancelled(request_id, cancel_event)
                self._process_batch(request_id, request, resolver, dest_mappings, batch)
            copied = cursor.documents_read

        logger.info(f"Copied {copied} documents from {cursor.label} in {time.time() - start_time:.2f} seconds")

    def _process_batch(self, request_id: str, request: ReindexRequest, resolver: ParentChildResolver,
                       dest_mappings: Dict[str, Dict[str, Any]], batch: DocumentBatch) -> BulkResult:
        """
        Resolve parent links, write the batch and record the outcome on the handle.

        Raises:
            BulkWriteFailure: If the bulk request failed after exhausting retries
            DestinationMappingConflict: In strict mode, when any document was rejected
        """
        resolved = []
        conflicts: List[DestinationMappingConflict] = []
        for document in batch:
            dest_type = request.dest_type or document.type
            try:
                parent, routing = resolver.resolve(document, dest_mappings.get(dest_type))
            except DestinationMappingConflict as e:
                conflicts.append(e)
                continue
            resolved.append(dataclasses.replace(document, parent=parent, routing=routing))

        result = self.bulk_writer.write(
            DocumentBatch(index=batch.index, documents=resolved, sequence=batch.sequence),
            request.dest_index,
            request.dest_type
        )
        failures = conflicts + result.failures
        limit = self.settings.max_recorded_errors

        def mutate(handle):
            handle.read += len(batch)
            handle.written += result.written
            handle.failed += len(failures)
            room = max(limit - len(handle.errors), 0)
            handle.errors.extend(failure.to_dict() for failure in failures[:room])

        self.reporter.update(request_id, mutate)

        if failures and self.settings.fail_on_document_errors:
            raise failures[0]
        return BulkResult(written=result.written, failures=failures)


def parse_list(value: Optional[str]) -> Optional[List[str]]:
    """Split a comma-separated argument into a list, None when empty."""
    if not value:
        return None
    items = [item.strip() for item in value.split(',') if item.strip()]
    return items or None


def main():
    """
    Main entry point for the reindex script.

    Handles command line arguments and orchestrates the reindexing process.
    """
    # Set up argument parser
    parser = argparse.ArgumentParser(description='OpenSearch Reindex Operation')
    parser.add_argument('--source', required=True, help='Source index name(s), comma-separated')
    parser.add_argument('--type', help='Source type name(s), comma-separated; all types when omitted')
    parser.add_argument('--target', help='Target index name; the source index when copying to a new type')
    parser.add_argument('--target-type', help='Target type name; each document keeps its type when omitted')
    parser.add_argument('--url', help='URL of a remote cluster to read from')
    parser.add_argument('--batch-size', type=int, help='Documents per scroll page and bulk request')
    parser.add_argument('--scroll', help='Scroll keep-alive, e.g. 1m')
    parser.add_argument('--async', dest='run_async', action='store_true',
                        help='Run on a worker thread and poll for progress')
    parser.add_argument('--poll-interval', type=float, default=5.0, help='Seconds between progress reports')
    args = parser.parse_args()

    try:
        settings = ReindexSettings()
        setup_logging(settings)
        logger.info(f"Starting reindex script with source: {args.source}, target: {args.target}")

        request = ReindexRequest(
            source_indices=parse_list(args.source),
            dest_index=args.target,
            source_types=parse_list(args.type),
            dest_type=args.target_type,
            remote_url=args.url,
            batch_size=args.batch_size,
            scroll=args.scroll,
            wait_for_completion=not args.run_async
        )

        reindex_manager = OpenSearchReindexManager(settings=settings)
        try:
            handle = reindex_manager.submit(request)
            while not handle.state.terminal:
                handle = reindex_manager.reporter.wait(handle.request_id, timeout=args.poll_interval)
                logger.info(f"Request {handle.request_id} is {handle.state.value}: read={handle.read}, "
                            f"written={handle.written}, failed={handle.failed}")
        finally:
            reindex_manager.shutdown()

        if handle.state is ReindexState.COMPLETED:
            logger.info(f"Successfully reindexed {handle.written} of {handle.read} documents into {request.dest_index}"
                        f"{f' ({handle.failed} failed)' if handle.failed else ''}")
            return 0

        logger.error(f"Failed to reindex: {handle.error}")
        return 1

    except ValueError as e:
        logger.error(f"Configuration error: {str(e)}")
        return 1
    except Exception as e:
        logger.error(f"Unexpected error: {str(e)}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())

# Example usage:
# python reindex.py --source dataset --target dataset2
# python reindex.py --source company --type branch,employee --target company2 --url http://localhost:9201
