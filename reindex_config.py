"""
Reindex Configuration

This module loads the settings shared by the reindex engine, the CLI and the
web service. Values come from environment variables (optionally from a .env
file) and fall back to sensible defaults.
"""

import logging
import os
from datetime import datetime
from typing import Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

AUTH_MODES = ('none', 'basic', 'aws')


def _env_bool(name: str, default: str = 'false') -> bool:
    return os.getenv(name, default).lower() == 'true'


class ReindexSettings:
    """
    Settings for connecting to the cluster and tuning the copy pipeline.

    Attributes:
        opensearch_endpoint (str): Endpoint of the cluster that receives the documents
        verify_ssl (bool): Whether TLS certificates are verified
        aws_region (str): Region used for SigV4 signing
        auth_mode (str): One of 'none', 'basic' or 'aws'
        batch_size (int): Documents fetched per scroll page and written per bulk request
        scroll (str): Scroll context keep-alive
        request_timeout (float): Timeout in seconds of every HTTP call
        max_retries (int): Attempts per request before giving up
        retry_backoff (float): Base delay of the exponential backoff
        max_workers (int): Concurrent asynchronous reindex requests
        max_recorded_errors (int): Errors kept per handle, the rest are only counted
        retain_finished (int): Finished handles kept for status lookups, oldest evicted first
        fail_on_document_errors (bool): Fail the request on the first rejected document
    """

    def __init__(self, opensearch_endpoint: Optional[str] = None, **overrides):
        self.opensearch_endpoint = opensearch_endpoint or os.getenv('OPENSEARCH_ENDPOINT')
        if not self.opensearch_endpoint:
            raise ValueError("OpenSearch endpoint is required")

        self.verify_ssl = _env_bool('VERIFY_SSL')
        self.aws_region = os.getenv('AWS_REGION', 'us-east-1')
        self.auth_mode = os.getenv('OPENSEARCH_AUTH', 'none').lower()
        self.username = os.getenv('OPENSEARCH_USERNAME')
        self.password = os.getenv('OPENSEARCH_PASSWORD')

        self.batch_size = int(os.getenv('REINDEX_BATCH_SIZE', '1000'))
        self.scroll = os.getenv('REINDEX_SCROLL', '1m')
        self.request_timeout = float(os.getenv('REINDEX_REQUEST_TIMEOUT', '60'))
        self.max_retries = int(os.getenv('REINDEX_MAX_RETRIES', '3'))
        self.retry_backoff = float(os.getenv('REINDEX_RETRY_BACKOFF', '1.0'))
        self.max_workers = int(os.getenv('REINDEX_MAX_WORKERS', '4'))
        self.max_recorded_errors = int(os.getenv('REINDEX_MAX_RECORDED_ERRORS', '100'))
        self.retain_finished = int(os.getenv('REINDEX_RETAIN_FINISHED', '1000'))
        self.fail_on_document_errors = _env_bool('REINDEX_FAIL_ON_DOCUMENT_ERRORS')

        self.log_dir = os.getenv('LOG_DIR', 'log')
        self.log_level = os.getenv('LOG_LEVEL', 'INFO').upper()

        for key, value in overrides.items():
            if not hasattr(self, key):
                raise ValueError(f"Unknown setting: {key}")
            setattr(self, key, value)

        if self.auth_mode not in AUTH_MODES:
            raise ValueError(f"OPENSEARCH_AUTH must be one of {', '.join(AUTH_MODES)}, got {self.auth_mode}")
        if self.batch_size <= 0:
            raise ValueError("Batch size must be a positive integer")
        if self.max_retries <= 0:
            raise ValueError("Max retries must be a positive integer")
        if self.retain_finished <= 0:
            raise ValueError("Retained finished requests must be a positive integer")

    def __repr__(self):
        return (f"ReindexSettings(endpoint={self.opensearch_endpoint!r}, auth={self.auth_mode!r}, "
                f"batch_size={self.batch_size}, scroll={self.scroll!r}, max_retries={self.max_retries})")


def setup_logging(settings: Optional[ReindexSettings] = None) -> None:
    """Set up logging to both a dated file and the console."""
    log_dir = settings.log_dir if settings else os.getenv('LOG_DIR', 'log')
    log_level = settings.log_level if settings else os.getenv('LOG_LEVEL', 'INFO').upper()

    # Create log directory if it doesn't exist
    if not os.path.exists(log_dir):
        os.makedirs(log_dir)

    timestamp = datetime.now().strftime('%Y%m%d')
    log_file = os.path.join(log_dir, f'opensearch_reindex_{timestamp}.log')
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ]
    )
    logger.info("Logging initialized")
