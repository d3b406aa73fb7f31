"""
Logging configuration for the docstore package.

This module sets up the default logging handler and format for docstore.
The log level can be configured via the DOCSTORE_LOG_LEVEL environment variable.
"""

from __future__ import annotations

import logging
import os

logger = logging.getLogger(__name__.split(".")[0])

log_level = os.getenv("DOCSTORE_LOG_LEVEL", "info").upper()

log_format = logging.Formatter("[%(asctime)s][%(levelname)s]: %(message)s")

stream_handler = logging.StreamHandler()  # default handler
stream_handler.setFormatter(log_format)

logger.setLevel(level=log_level)
logger.handlers = [stream_handler]
