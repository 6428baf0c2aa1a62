"""
Unit tests for the parent-child resolver and mapping helpers.
"""

import unittest
from parent_child import ParentChildResolver, is_typed_mapping, parent_type_of, parent_types, type_mappings
from reindex_errors import DestinationMappingConflict
from reindex_models import Document, ParentLink

COMPANY_MAPPINGS = {
    'branch': {'properties': {'name': {'type': 'string'}}},
    'employee': {'_parent': {'type': 'branch'}, 'properties': {}}
}


class TestMappingHelpers(unittest.TestCase):

    def test_typed_mapping(self):
        self.assertTrue(is_typed_mapping(COMPANY_MAPPINGS))
        self.assertFalse(is_typed_mapping({'properties': {}}))
        self.assertFalse(is_typed_mapping({}))

    def test_type_mappings(self):
        self.assertEqual(set(type_mappings(COMPANY_MAPPINGS)), {'branch', 'employee'})
        self.assertEqual(type_mappings({'properties': {'a': {}}}), {})

    def test_parent_types(self):
        self.assertEqual(parent_types(COMPANY_MAPPINGS), {'employee': 'branch'})
        self.assertIsNone(parent_type_of(None))
        self.assertEqual(parent_type_of(COMPANY_MAPPINGS['employee']), 'branch')


class TestParentChildResolver(unittest.TestCase):
    """Test cases for the ParentChildResolver class."""

    def setUp(self):
        self.resolver = ParentChildResolver()
        self.resolver.register_source_mapping('company', COMPANY_MAPPINGS)
        self.child = Document(id='1_1', type='employee', index='company', source={'age': '21'},
                              parent='1', routing='1')

    def test_link_for(self):
        self.assertEqual(self.resolver.link_for(self.child),
                         ParentLink(child_id='1_1', parent_type='branch', parent_id='1'))
        self.assertIsNone(self.resolver.link_for(Document(id='1', type='branch', index='company', source={})))

    def test_parent_propagated(self):
        parent, routing = self.resolver.resolve(self.child, {'_parent': {'type': 'branch'}})
        self.assertEqual((parent, routing), ('1', '1'))

    def test_routing_defaults_to_parent(self):
        child = Document(id='2_1', type='employee', index='company', source={}, parent='2')
        self.assertEqual(self.resolver.resolve(child, {'_parent': {'type': 'branch'}}), ('2', '2'))

    def test_explicit_routing_kept(self):
        child = Document(id='2_1', type='employee', index='company', source={}, parent='2', routing='shard-a')
        self.assertEqual(self.resolver.resolve(child, {'_parent': {'type': 'branch'}}), ('2', 'shard-a'))

    def test_link_dropped_without_destination_parent(self):
        self.assertEqual(self.resolver.resolve(self.child, {'properties': {}}), (None, None))
        self.assertEqual(self.resolver.resolve(self.child, None), (None, None))

    def test_custom_routing_survives_dropped_link(self):
        child = Document(id='2_1', type='employee', index='company', source={}, parent='2', routing='shard-a')
        self.assertEqual(self.resolver.resolve(child, None), (None, 'shard-a'))

    def test_parent_type_mismatch(self):
        with self.assertRaises(DestinationMappingConflict) as context:
            self.resolver.resolve(self.child, {'_parent': {'type': 'office'}})

        self.assertEqual(context.exception.error_type, 'parent_type_mismatch')
        self.assertEqual(context.exception.doc_id, '1_1')
        self.assertEqual(context.exception.to_dict()['error_kind'], 'destination_mapping_conflict')

    def test_unknown_source_parent_type_is_trusted(self):
        child = Document(id='9', type='employee', index='unregistered', source={}, parent='3')
        self.assertEqual(self.resolver.resolve(child, {'_parent': {'type': 'office'}}), ('3', '3'))

    def test_document_without_link_keeps_routing(self):
        doc = Document(id='1', type='branch', index='company', source={}, routing='r1')
        self.assertEqual(self.resolver.resolve(doc, {'_parent': {'type': 'x'}}), (None, 'r1'))


if __name__ == '__main__':
    unittest.main()
