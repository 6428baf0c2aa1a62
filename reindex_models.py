"""
Data model of the reindex engine: requests, documents, batches and handles.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from reindex_errors import InvalidReindexRequest

DEFAULT_TYPE = '_doc'


class ReindexState(str, Enum):
    RUNNING = 'Running'
    COMPLETED = 'Completed'
    FAILED = 'Failed'

    @property
    def terminal(self) -> bool:
        return self is not ReindexState.RUNNING


@dataclass
class ParentLink:
    """Declared parent of a child document in the source index."""
    child_id: str
    parent_type: Optional[str]
    parent_id: str


@dataclass
class Document:
    id: str
    type: str
    index: str
    source: Dict[str, Any]
    parent: Optional[str] = None
    routing: Optional[str] = None

    @classmethod
    def from_hit(cls, hit: Dict[str, Any]) -> 'Document':
        """
        Build a document from a search hit.

        _parent and _routing are read from the top level of the hit, where
        clusters from Elasticsearch 2.x onwards return them without being asked.
        """
        parent = hit.get('_parent')
        routing = hit.get('_routing')
        return cls(
            id=str(hit['_id']),
            type=hit.get('_type') or DEFAULT_TYPE,
            index=hit.get('_index', ''),
            source=hit.get('_source') or {},
            parent=str(parent) if parent is not None else None,
            routing=str(routing) if routing is not None else None,
        )


@dataclass
class DocumentBatch:
    """One scroll page worth of documents from a single (index, type) pair."""
    index: str
    documents: List[Document] = field(default_factory=list)
    sequence: int = 0

    def __len__(self):
        return len(self.documents)

    def __iter__(self):
        return iter(self.documents)


@dataclass
class ReindexRequest:
    """
    A request to copy documents into a destination index.

    When dest_index is omitted the copy happens in place and a new dest_type
    is mandatory.
    """
    source_indices: List[str]
    dest_index: Optional[str] = None
    source_types: Optional[List[str]] = None
    dest_type: Optional[str] = None
    remote_url: Optional[str] = None
    batch_size: Optional[int] = None
    scroll: Optional[str] = None
    query: Optional[Dict[str, Any]] = None
    wait_for_completion: bool = False

    def validate(self) -> 'ReindexRequest':
        self.source_indices = [index.strip() for index in self.source_indices or [] if index and index.strip()]
        if not self.source_indices:
            raise InvalidReindexRequest("At least one source index is required")
        if self.source_types is not None:
            self.source_types = [t.strip() for t in self.source_types if t and t.strip()] or None

        if not self.dest_index:
            if not self.dest_type:
                raise InvalidReindexRequest("Destination index is required unless copying in place to a new type")
            if len(self.source_indices) != 1:
                raise InvalidReindexRequest("Copying in place requires exactly one source index")
            self.dest_index = self.source_indices[0]

        if self.dest_type is None and self.dest_index in self.source_indices:
            raise InvalidReindexRequest(
                f"Destination index {self.dest_index} must differ from the source indices when no destination type is given")
        if self.dest_type is not None and self.dest_index in self.source_indices and \
                self.source_types and self.dest_type in self.source_types:
            raise InvalidReindexRequest(f"Cannot copy {self.dest_index}/{self.dest_type} onto itself")

        if self.batch_size is not None and self.batch_size <= 0:
            raise InvalidReindexRequest("Batch size must be a positive integer")
        return self

    def pairs(self):
        """Yield (index, type) pairs to scan; type is None when all types are copied."""
        for index in self.source_indices:
            if self.source_types:
                for doc_type in self.source_types:
                    yield index, doc_type
            else:
                yield index, None


@dataclass
class ReindexHandle:
    request_id: str
    state: ReindexState = ReindexState.RUNNING
    read: int = 0
    written: int = 0
    failed: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[Dict[str, Any]] = None
    cancelled: bool = False
    started_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    finished_at: Optional[str] = None

    @classmethod
    def new(cls) -> 'ReindexHandle':
        return cls(request_id=uuid.uuid4().hex)

    @property
    def acknowledged(self) -> bool:
        return self.state.terminal

    def to_dict(self) -> Dict[str, Any]:
        return {
            'request_id': self.request_id,
            'state': self.state.value,
            'read': self.read,
            'written': self.written,
            'failed': self.failed,
            'errors': list(self.errors),
            'error': self.error,
            'cancelled': self.cancelled,
            'started_at': self.started_at,
            'finished_at': self.finished_at,
        }
