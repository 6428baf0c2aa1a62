"""
Parent-Child Resolver

Decides which parent id and routing a copied document carries in the
destination index, based on the _parent declarations of the source and
destination type mappings.
"""

import logging
from typing import Any, Dict, Optional, Tuple

from reindex_errors import DestinationMappingConflict
from reindex_models import Document, ParentLink

logger = logging.getLogger(__name__)

# Keys of a typeless mapping; anything else at the top level is a type name
TYPELESS_MAPPING_KEYS = ('properties', 'dynamic', 'dynamic_templates', '_source', '_routing', '_meta', '_all')


def is_typed_mapping(mappings: Dict[str, Any]) -> bool:
    """True when the mapping is keyed by type names (legacy multi-type indices)."""
    if not mappings:
        return False
    return not any(key in mappings for key in TYPELESS_MAPPING_KEYS)


def type_mappings(mappings: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    """Return {type: type mapping} for a typed mapping, empty for a typeless one."""
    if not is_typed_mapping(mappings):
        return {}
    return {name: body for name, body in mappings.items() if isinstance(body, dict)}


def parent_type_of(type_mapping: Optional[Dict[str, Any]]) -> Optional[str]:
    """Parent type declared by a type mapping, if any."""
    if not type_mapping:
        return None
    parent = type_mapping.get('_parent')
    if isinstance(parent, dict):
        return parent.get('type')
    return None


def parent_types(mappings: Dict[str, Any]) -> Dict[str, str]:
    """Return {child type: parent type} for every type declaring a parent."""
    result = {}
    for name, body in type_mappings(mappings).items():
        parent = parent_type_of(body)
        if parent:
            result[name] = parent
    return result


class ParentChildResolver:
    """
    Resolves parent links of documents against the destination mapping.

    Attributes:
        source_parents (Dict[str, Dict[str, str]]): Per source index, child type -> parent type
    """

    def __init__(self):
        self.source_parents = {}

    def register_source_mapping(self, index: str, mappings: Dict[str, Any]) -> None:
        self.source_parents[index] = parent_types(mappings)
        if self.source_parents[index]:
            logger.info(f"Source index {index} declares parent types: {self.source_parents[index]}")

    def link_for(self, document: Document) -> Optional[ParentLink]:
        """
        Build the ParentLink of a source document.

        Documents without a parent id have no link. The declared parent type
        is unknown when the source mapping was not registered.
        """
        if document.parent is None:
            return None
        parent_type = self.source_parents.get(document.index, {}).get(document.type)
        return ParentLink(child_id=document.id, parent_type=parent_type, parent_id=document.parent)

    def resolve(self, document: Document, dest_type_mapping: Optional[Dict[str, Any]]) -> Tuple[Optional[str], Optional[str]]:
        """
        Resolve the parent id and routing of a document in the destination.

        Args:
            document (Document): Source document
            dest_type_mapping (dict, optional): Mapping of the destination type

        Returns:
            Tuple[Optional[str], Optional[str]]: (parent id, routing)

        Raises:
            DestinationMappingConflict: If the destination declares a different parent type
        """
        link = self.link_for(document)
        if link is None:
            return None, document.routing

        dest_parent_type = parent_type_of(dest_type_mapping)
        if dest_parent_type is None:
            logger.debug(f"Dropping parent {link.parent_id} of {document.type}/{document.id}: destination declares no parent")
            # Routing that only came from the parent is dropped with it
            routing = document.routing if document.routing not in (None, link.parent_id) else None
            return None, routing

        if link.parent_type is not None and link.parent_type != dest_parent_type:
            raise DestinationMappingConflict(
                f"Document {document.type}/{document.id} has parent type {link.parent_type} "
                f"but the destination declares {dest_parent_type}",
                index=document.index,
                doc_type=document.type,
                doc_id=document.id,
                error_type='parent_type_mismatch'
            )

        # Children are routed with their parent unless an explicit routing was kept
        return link.parent_id, document.routing or link.parent_id
