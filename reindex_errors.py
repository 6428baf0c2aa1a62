"""
Reindex error taxonomy.

Every error raised by the reindex engine derives from OpenSearchException.
Each class carries the error kind reported in handles and the HTTP status
used at the REST boundary.
"""

from typing import Optional


class OpenSearchException(Exception):
    """Custom exception for OpenSearch operations."""
    pass


class ClusterRequestError(OpenSearchException):
    """An HTTP call to a cluster failed; status_code is None when no response arrived."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ReindexException(OpenSearchException):
    """Base class for failures of a reindex request."""

    error_kind = 'internal_failure'
    status_code = 500

    def __init__(self, message: str, index: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.index = index

    def to_dict(self):
        error = {'error_kind': self.error_kind, 'reason': self.message}
        if self.index:
            error['index'] = self.index
        return error


class SourceNotFoundError(ReindexException):
    """A source index or type does not exist. Never retried."""

    error_kind = 'source_not_found'
    status_code = 404


class DestinationMappingConflict(ReindexException):
    """A single document was rejected by the destination mapping."""

    error_kind = 'destination_mapping_conflict'
    status_code = 409

    def __init__(self, message: str, index: Optional[str] = None, doc_type: Optional[str] = None,
                 doc_id: Optional[str] = None, error_type: Optional[str] = None):
        super().__init__(message, index=index)
        self.doc_type = doc_type
        self.doc_id = doc_id
        self.error_type = error_type

    def to_dict(self):
        error = super().to_dict()
        error.update({'type': self.doc_type, 'id': self.doc_id, 'error_type': self.error_type})
        return error


class RemoteUnreachableError(ReindexException):
    """The remote cluster could not be reached within the retry budget."""

    error_kind = 'remote_unreachable'
    status_code = 502


class BulkWriteFailure(ReindexException):
    """A whole bulk request failed after exhausting its retries."""

    error_kind = 'bulk_write_failure'
    status_code = 500


class ReindexCancelled(ReindexException):
    """An asynchronous request was cancelled by its caller."""

    error_kind = 'cancelled'
    status_code = 409


class InvalidReindexRequest(ValueError):
    """The reindex request is malformed."""

    error_kind = 'invalid_request'
    status_code = 400
