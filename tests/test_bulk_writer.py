"""
Unit tests for the BulkWriter class.
"""

import json
import unittest
from unittest.mock import MagicMock
from bulk_writer import BulkWriter
from reindex_errors import BulkWriteFailure
from reindex_models import Document, DocumentBatch


def bulk_response(items):
    response = MagicMock()
    response.json.return_value = {'errors': any(i['index']['status'] >= 400 for i in items), 'items': items}
    return {'status': 'success', 'response': response}


class TestBulkWriter(unittest.TestCase):
    """Test cases for the BulkWriter class."""

    def setUp(self):
        self.manager = MagicMock()
        self.manager.max_retries = 3
        self.writer = BulkWriter(self.manager)
        self.batch = DocumentBatch(index='company', sequence=1, documents=[
            Document(id='1', type='branch', index='company', source={'name': 'Branch1'}),
            Document(id='1_1', type='employee', index='company', source={'name': 'Taro'}, parent='1', routing='1'),
            Document(id='7', type='_doc', index='company', source={'name': 'plain'}),
        ])

    def test_create_bulk_request(self):
        """Test bulk request body creation keeps ids, types, parent and routing."""
        body = self.writer._create_bulk_request(self.batch, 'company2')
        lines = [json.loads(line) for line in body.strip().split('\n')]

        self.assertTrue(body.endswith('\n'))
        self.assertEqual(len(lines), 6)
        self.assertEqual(lines[0], {'index': {'_index': 'company2', '_id': '1', '_type': 'branch'}})
        self.assertEqual(lines[1], {'name': 'Branch1'})
        self.assertEqual(lines[2], {'index': {'_index': 'company2', '_id': '1_1', '_type': 'employee',
                                              'parent': '1', 'routing': '1'}})
        self.assertEqual(lines[4], {'index': {'_index': 'company2', '_id': '7'}})

    def test_create_bulk_request_with_new_type(self):
        body = self.writer._create_bulk_request(self.batch, 'company2', 'item2')
        actions = [json.loads(line) for line in body.strip().split('\n')][0::2]

        self.assertTrue(all(a['index']['_type'] == 'item2' for a in actions))

    def test_write_success(self):
        self.manager.bulk.return_value = bulk_response([
            {'index': {'_id': '1', 'status': 201}},
            {'index': {'_id': '1_1', 'status': 201}},
            {'index': {'_id': '7', 'status': 200}},
        ])

        result = self.writer.write(self.batch, 'company2')

        self.assertEqual(result.written, 3)
        self.assertEqual(result.failed, 0)
        self.manager.bulk.assert_called_once()
        self.assertEqual(self.manager.bulk.call_args.kwargs['max_retries'], 3)

    def test_write_partial_failure(self):
        """Rejected items are reported without failing the rest of the batch."""
        self.manager.bulk.return_value = bulk_response([
            {'index': {'_id': '1', 'status': 201}},
            {'index': {'_id': '1_1', '_type': 'employee', 'status': 400,
                       'error': {'type': 'illegal_argument_exception', 'reason': "can't specify parent"}}},
            {'index': {'_id': '7', 'status': 201}},
        ])

        with self.assertLogs('bulk_writer', level='ERROR'):
            result = self.writer.write(self.batch, 'company2')

        self.assertEqual(result.written, 2)
        self.assertEqual(result.failed, 1)
        failure = result.failures[0]
        self.assertEqual(failure.doc_id, '1_1')
        self.assertEqual(failure.doc_type, 'employee')
        self.assertEqual(failure.error_type, 'illegal_argument_exception')
        self.assertEqual(failure.index, 'company2')

    def test_write_whole_batch_failure(self):
        self.manager.bulk.return_value = {'status': 'error', 'message': 'Failed to make request after 3 attempts'}

        with self.assertRaises(BulkWriteFailure) as context:
            self.writer.write(self.batch, 'company2')

        self.assertEqual(context.exception.to_dict()['error_kind'], 'bulk_write_failure')
        self.assertEqual(context.exception.index, 'company2')

    def test_empty_batch_is_not_sent(self):
        result = self.writer.write(DocumentBatch(index='company'), 'company2')

        self.assertEqual(result.written, 0)
        self.manager.bulk.assert_not_called()


if __name__ == '__main__':
    unittest.main()
