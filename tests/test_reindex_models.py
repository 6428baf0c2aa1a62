"""
Unit tests for the reindex data model.
"""

import unittest
from reindex_errors import InvalidReindexRequest
from reindex_models import DEFAULT_TYPE, Document, ReindexHandle, ReindexRequest, ReindexState


class TestDocument(unittest.TestCase):

    def test_from_hit_top_level_metadata(self):
        doc = Document.from_hit({'_index': 'company', '_type': 'employee', '_id': 11,
                                 '_source': {'age': '20'}, '_parent': 1, '_routing': '1'})

        self.assertEqual(doc.id, '11')
        self.assertEqual(doc.parent, '1')
        self.assertEqual(doc.routing, '1')
        self.assertEqual(doc.index, 'company')

    def test_from_hit_ignores_requested_fields(self):
        doc = Document.from_hit({'_id': '2', '_type': 'employee', 'fields': {'_parent': '5'}})

        self.assertIsNone(doc.parent)
        self.assertIsNone(doc.routing)
        self.assertEqual(doc.source, {})

    def test_from_hit_typeless(self):
        self.assertEqual(Document.from_hit({'_id': '1', '_source': {}}).type, DEFAULT_TYPE)


class TestReindexRequest(unittest.TestCase):
    """Test cases for request validation."""

    def test_validate_strips_names(self):
        request = ReindexRequest(source_indices=[' dataset ', ''], dest_index='dataset2',
                                 source_types=['item', ' ']).validate()

        self.assertEqual(request.source_indices, ['dataset'])
        self.assertEqual(request.source_types, ['item'])

    def test_source_required(self):
        with self.assertRaises(InvalidReindexRequest):
            ReindexRequest(source_indices=[], dest_index='x').validate()

    def test_destination_must_differ_without_new_type(self):
        with self.assertRaises(InvalidReindexRequest):
            ReindexRequest(source_indices=['dataset'], dest_index='dataset').validate()

    def test_in_place_to_new_type(self):
        request = ReindexRequest(source_indices=['dataset'], source_types=['item'], dest_type='item2').validate()
        self.assertEqual(request.dest_index, 'dataset')

    def test_in_place_requires_new_type(self):
        with self.assertRaises(InvalidReindexRequest):
            ReindexRequest(source_indices=['dataset']).validate()

    def test_in_place_requires_single_source(self):
        with self.assertRaises(InvalidReindexRequest):
            ReindexRequest(source_indices=['a', 'b'], dest_type='t').validate()

    def test_cannot_copy_onto_itself(self):
        with self.assertRaises(InvalidReindexRequest):
            ReindexRequest(source_indices=['dataset'], source_types=['item'], dest_type='item').validate()

    def test_batch_size_positive(self):
        with self.assertRaises(InvalidReindexRequest):
            ReindexRequest(source_indices=['a'], dest_index='b', batch_size=0).validate()

    def test_invalid_request_is_value_error(self):
        with self.assertRaises(ValueError):
            ReindexRequest(source_indices=[]).validate()

    def test_pairs(self):
        request = ReindexRequest(source_indices=['a', 'b'], dest_index='c', source_types=['x', 'y'])
        self.assertEqual(list(request.pairs()), [('a', 'x'), ('a', 'y'), ('b', 'x'), ('b', 'y')])

        request = ReindexRequest(source_indices=['a', 'b'], dest_index='c')
        self.assertEqual(list(request.pairs()), [('a', None), ('b', None)])


class TestReindexHandle(unittest.TestCase):

    def test_new_handle(self):
        handle = ReindexHandle.new()

        self.assertEqual(handle.state, ReindexState.RUNNING)
        self.assertFalse(handle.acknowledged)
        self.assertEqual(len(handle.request_id), 32)

    def test_to_dict_has_no_name(self):
        handle = ReindexHandle.new()
        handle.state = ReindexState.COMPLETED

        body = handle.to_dict()

        self.assertNotIn('name', body)
        self.assertEqual(body['state'], 'Completed')
        self.assertTrue(handle.acknowledged)

    def test_terminal_states(self):
        self.assertFalse(ReindexState.RUNNING.terminal)
        self.assertTrue(ReindexState.COMPLETED.terminal)
        self.assertTrue(ReindexState.FAILED.terminal)


if __name__ == '__main__':
    unittest.main()
