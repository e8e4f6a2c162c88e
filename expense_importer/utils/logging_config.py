"""
Logging setup for the expense importer.

Configures the root logger with console and file output and provides small
helpers for request ids and masking sender addresses in log lines.
"""

import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_FILE_NAME = 'expense_import.log'

NOISY_LOGGERS = (
    'googleapiclient.discovery_cache',
    'urllib3',
    'aiohttp.access',
)


def setup_logging(level: Union[str, int] = 'INFO', log_dir: Optional[Union[str, Path]] = 'logs') -> None:
    """
    Configure comprehensive logging.

    Args:
        level: Root log level name or number
        log_dir: Directory for the log file; None logs to the console only
    """
    handlers = [logging.StreamHandler()]
    if log_dir:
        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(directory / LOG_FILE_NAME, encoding='utf-8'))

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def new_request_id(prefix: str = 'import') -> str:
    """Request id in the form ``import-20251015143000-1a2b3c4d``."""
    return f"{prefix}-{datetime.now().strftime('%Y%m%d%H%M%S')}-{uuid.uuid4().hex[:8]}"


def _mask(part: str) -> str:
    if len(part) <= 2:
        return '*' * len(part)
    return f"{part[0]}{'*' * (len(part) - 2)}{part[-1]}"


def mask_email(address: Optional[str]) -> str:
    """
    Mask an email address for logging.

    ``noreply@bank.com`` becomes ``n*****y@b**k.com``; the top-level domain
    is kept so logs stay useful for diagnosing search problems.
    """
    if not address:
        return ''
    if '@' not in address:
        return _mask(address)
    local, _, domain = address.partition('@')
    host, dot, tld = domain.rpartition('.')
    if not dot:
        return f"{_mask(local)}@{_mask(domain)}"
    return f"{_mask(local)}@{_mask(host)}.{tld}"
