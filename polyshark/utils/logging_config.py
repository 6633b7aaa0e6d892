"""Logging configuration."""
import json
import logging
import sys
import threading
from collections import deque
from pathlib import Path
from typing import Dict, List, Optional

import structlog

from polyshark.core.config import logging_config


class LogBuffer:
    """Bounded in-memory sink of the most recent log events.

    Owned by the process and passed by reference to whoever needs to read
    recent activity (status output, tests). Used as a structlog processor:
    it copies each event dict and passes it through unchanged.
    """

    def __init__(self, maxlen: int = 500):
        self._events = deque(maxlen=maxlen)
        self._lock = threading.Lock()

    def __call__(self, logger, method_name: str, event_dict: Dict) -> Dict:
        record = {key: _jsonable(value) for key, value in event_dict.items()}
        record.setdefault("level", method_name)
        with self._lock:
            self._events.append(record)
        return event_dict

    def recent(self, limit: Optional[int] = None) -> List[Dict]:
        """Newest-last copy of buffered events."""
        with self._lock:
            events = list(self._events)
        if limit is not None:
            events = events[-limit:]
        return events

    def clear(self):
        with self._lock:
            self._events.clear()

    @property
    def maxlen(self) -> int:
        return self._events.maxlen

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)


def _jsonable(value):
    try:
        json.dumps(value)
        return value
    except (TypeError, ValueError):
        return str(value)


def setup_logging(buffer: Optional[LogBuffer] = None, log_file: Optional[str] = None):
    """Configure structured logging.

    Args:
        buffer: Optional LogBuffer that receives a copy of every event
        log_file: Override for the configured log file path
    """
    log_file = log_file or logging_config.log_file
    level = getattr(logging, logging_config.log_level.upper())

    # Create logs directory
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    # Configure standard library logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level
    )

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    if buffer is not None:
        processors.append(buffer)
    processors.append(structlog.processors.JSONRenderer())

    # Configure structlog
    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Add file handler
    file_handler = logging.FileHandler(log_file)
    file_handler.setLevel(level)

    root_logger = logging.getLogger()
    root_logger.addHandler(file_handler)
