"""
Reindex REST API

Flask front end of the reindex engine. Routes follow the plugin layout

    POST /<index>[/<type>]/_reindex/<new_index>[/<new_type>]

with comma-separated index and type lists, plus endpoints to list, inspect
and cancel requests.
"""

import atexit
import logging
import signal
import sys
from typing import Optional

from flask import Flask, jsonify, request

from completion_reporter import UnknownRequestError
from reindex import OpenSearchReindexManager, build_acknowledgement, parse_list
from reindex_config import ReindexSettings, setup_logging
from reindex_errors import InvalidReindexRequest, ReindexException
from reindex_models import ReindexRequest

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = {cls.error_kind: cls.status_code for cls in (
    ReindexException,
    InvalidReindexRequest,
    *ReindexException.__subclasses__(),
)}


def _parse_bool(value: Optional[str]) -> bool:
    # A bare ?wait_for_completion counts as true
    if value is None:
        return False
    return value.lower() in ('', 'true', '1', 'yes')


def _parse_size(value: Optional[str]) -> Optional[int]:
    if value is None or value == '':
        return None
    try:
        return int(value)
    except ValueError:
        raise InvalidReindexRequest(f"size must be an integer, got {value}")


def _query_body():
    """JSON body of the request used as the source query, None when the body is empty."""
    if not request.get_data():
        return None
    body = request.get_json(force=True, silent=True)
    if not isinstance(body, dict):
        raise InvalidReindexRequest("Request body must be a JSON object")
    return body


def _error_response(error: dict, default_status: int = 500):
    status = ERROR_STATUS_CODES.get(error.get('error_kind'), default_status)
    return jsonify({'acknowledged': False, 'error': error}), status


def create_app(reindex_manager: Optional[OpenSearchReindexManager] = None) -> Flask:
    """
    Create the Flask application.

    Args:
        reindex_manager (OpenSearchReindexManager, optional): Engine serving the requests;
            built from the environment when omitted
    """
    app = Flask(__name__)
    manager = reindex_manager or OpenSearchReindexManager()
    app.config['REINDEX_MANAGER'] = manager

    def start_reindex(index, new_index, doc_type=None, new_type=None):
        try:
            reindex_request = ReindexRequest(
                source_indices=parse_list(index),
                dest_index=new_index or None,
                source_types=parse_list(doc_type),
                dest_type=new_type or None,
                remote_url=request.args.get('url') or None,
                batch_size=_parse_size(request.args.get('size')),
                scroll=request.args.get('scroll') or None,
                query=_query_body(),
                wait_for_completion=_parse_bool(request.args.get('wait_for_completion'))
            )
            handle = manager.submit(reindex_request)
        except InvalidReindexRequest as e:
            logger.warning(f"Rejected reindex request: {str(e)}")
            return _error_response({'error_kind': e.error_kind, 'reason': str(e)}, 400)
        except Exception as e:
            logger.error(f"Unexpected error accepting reindex request: {str(e)}", exc_info=True)
            return _error_response({'error_kind': ReindexException.error_kind, 'reason': str(e)})

        body = build_acknowledgement(handle, reindex_request.wait_for_completion)
        if handle.error:
            status = ERROR_STATUS_CODES.get(handle.error.get('error_kind'), 500)
            return jsonify(body), status
        return jsonify(body)

    @app.route('/<index>/_reindex/', defaults={'new_index': None}, methods=['POST'])
    @app.route('/<index>/_reindex/<new_index>', methods=['POST'], strict_slashes=False)
    def reindex_index(index, new_index):
        return start_reindex(index, new_index)

    @app.route('/<index>/_reindex/<new_index>/<new_type>', methods=['POST'], strict_slashes=False)
    def reindex_index_to_type(index, new_index, new_type):
        return start_reindex(index, new_index, new_type=new_type)

    @app.route('/<index>/<doc_type>/_reindex/', defaults={'new_index': None}, methods=['POST'])
    @app.route('/<index>/<doc_type>/_reindex/<new_index>', methods=['POST'], strict_slashes=False)
    def reindex_type(index, doc_type, new_index):
        return start_reindex(index, new_index, doc_type=doc_type)

    @app.route('/<index>/<doc_type>/_reindex/<new_index>/<new_type>', methods=['POST'], strict_slashes=False)
    def reindex_type_to_type(index, doc_type, new_index, new_type):
        return start_reindex(index, new_index, doc_type=doc_type, new_type=new_type)

    @app.route('/_reindex', methods=['GET'], strict_slashes=False)
    def list_requests():
        return jsonify({'running': manager.list_running()})

    @app.route('/_reindex/<request_id>', methods=['GET'])
    def request_status(request_id):
        try:
            handle = manager.status(request_id)
        except UnknownRequestError:
            return jsonify({'error': f"Unknown reindex request {request_id}"}), 404
        body = handle.to_dict()
        body['acknowledged'] = handle.acknowledged
        return jsonify(body)

    @app.route('/_reindex/<request_id>', methods=['DELETE'])
    def cancel_request(request_id):
        try:
            cancelled = manager.cancel(request_id)
        except UnknownRequestError:
            return jsonify({'error': f"Unknown reindex request {request_id}"}), 404
        return jsonify({'acknowledged': True, 'request_id': request_id, 'cancelled': cancelled})

    return app


def main():
    settings = ReindexSettings()
    setup_logging(settings)
    logger.info("Application starting up...")

    manager = OpenSearchReindexManager(settings=settings)
    app = create_app(manager)

    # Register cleanup function
    def cleanup():
        logger.info("Cleaning up resources...")
        manager.shutdown(wait=False)

    atexit.register(cleanup)

    # Handle signals for graceful shutdown
    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}")
        cleanup()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    app.run(host='0.0.0.0', port=5000)


if __name__ == '__main__':
    main()
