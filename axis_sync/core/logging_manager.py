"""
Logging setup for Axis Sync
Console and optional rotating file logging with credential redaction
"""

import logging
import logging.handlers
import re
import sys
from pathlib import Path
from typing import Dict, Any

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class SecuritySafeFormatter(logging.Formatter):
    """Formatter that sanitizes sensitive information"""

    sensitive_fields = (
        'access_token', 'refresh_token', 'client_secret', 'token',
        'secret', 'password', 'authorization', 'api_key'
    )

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._patterns = [
            re.compile(rf'({field})(["\']?\s*[:=]\s*["\']?)([^"\'\s,}}]+)', re.IGNORECASE)
            for field in self.sensitive_fields
        ]
        self._bearer = re.compile(r'(Bearer\s+)[A-Za-z0-9\-._~+/]+=*', re.IGNORECASE)

    def format(self, record):
        """Format log record with sensitive data sanitization"""
        formatted = super().format(record)
        return self._sanitize_message(formatted)

    def _sanitize_message(self, message: str) -> str:
        """Mask field=value / field: value pairs and bearer tokens"""
        message = self._bearer.sub(r"\1***", message)
        for pattern in self._patterns:
            message = pattern.sub(r"\1\2***", message)
        return message


def setup_logging(config: Dict[str, Any] = None) -> None:
    """Configure root logging from the `logging` config section"""
    log_config = (config or {}).get('logging', {})
    level_name = str(log_config.get('level', 'INFO')).upper()
    level = getattr(logging, level_name, logging.INFO)

    formatter = SecuritySafeFormatter(LOG_FORMAT)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_config.get('file_enabled'):
        log_file = Path(log_config.get('file', 'logs/axis.log'))
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=10 * 1024 * 1024, backupCount=5, encoding='utf-8'
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # httpx logs every request URL at INFO
    logging.getLogger('httpx').setLevel(logging.WARNING)

    logging.getLogger(__name__).info(f"Logging initialized at level {level_name}")
