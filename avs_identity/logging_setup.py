"""
Logging setup and configuration for AVS Identity.

Operators follow provisioning and diagnostics on the console while the same
records, with more detail, go to a rotating app.log. Identity source and
group mutations are also written to a separate audit.log. Every handler
scrubs secrets and signed-URL signatures before anything is emitted.
"""

import os
import re
import glob
import logging
import logging.handlers
from typing import Dict, Any, List, Tuple
from datetime import datetime, timedelta

APP_LOG = 'app.log'
AUDIT_LOG = 'audit.log'
AUDIT_LOGGER = 'security'

# Third-party loggers that are too chatty at INFO
QUIET_LOGGERS = ('ldap3',)


def _compile_patterns(keywords: List[str]) -> List[Tuple[re.Pattern, str]]:
    patterns = []
    for keyword in keywords:
        # key=value
        patterns.append((re.compile(rf'({keyword}\s*=\s*)[^\s,}}\]]+(\s|,|$)', re.IGNORECASE), r'\1****\2'))
        # "key": "value"
        patterns.append((re.compile(rf'("{keyword}"\s*:\s*")[^"]*(")', re.IGNORECASE), r'\1****\2'))
    patterns.append((re.compile(r'(Authorization:\s*(?:Bearer|Basic)\s+)[^\s,}\]]+', re.IGNORECASE), r'\1****'))
    # SAS signature in a signed certificate download URL
    patterns.append((re.compile(r'([?&]sig=)[^&\s]+', re.IGNORECASE), r'\1****'))
    return patterns


class SensitiveDataFilter(logging.Filter):
    """Filter to scrub sensitive data from log messages and their arguments."""

    SENSITIVE_KEYWORDS = [
        'password', 'bind_password', 'token', 'secret', 'credential',
        'pass', 'pwd', 'authorization', 'bearer', 'session_id'
    ]

    PATTERNS = _compile_patterns(SENSITIVE_KEYWORDS)

    @classmethod
    def redact(cls, text: str) -> str:
        for pattern, replacement in cls.PATTERNS:
            text = pattern.sub(replacement, text)
        return text

    def filter(self, record):
        """Scrub the message and any string arguments; never drops a record."""
        if hasattr(record, 'msg'):
            record.msg = self.redact(str(record.msg))
        if isinstance(record.args, tuple):
            record.args = tuple(self.redact(a) if isinstance(a, str) else a for a in record.args)
        return True


class LoggingManager:
    """
    Manages logging configuration for AVS Identity.

    Handlers:
        app.log    every record at the configured level, rotated
        audit.log  records of the security audit logger only, rotated
        console    operator output at console_level
    """

    def __init__(self):
        self.configured = False
        self.log_dir = None
        self.retention_days = 7

    def setup_logging(self, config: Dict[str, Any]) -> None:
        """
        Set up logging based on configuration.

        Args:
            config: logging configuration dictionary
        """
        if self.configured:
            return

        logging_config = config if config else {}

        log_level = logging_config.get('level', 'INFO').upper()
        self.log_dir = logging_config.get('log_dir', 'logs')
        rotation = logging_config.get('rotation', 'daily')
        self.retention_days = logging_config.get('retention_days', 7)
        console_enabled = logging_config.get('console_output', True)
        console_level = logging_config.get('console_level', 'INFO').upper()

        self._ensure_log_directory()

        root_logger = logging.getLogger()
        root_logger.setLevel(getattr(logging, log_level, logging.INFO))
        root_logger.handlers.clear()

        sensitive_filter = SensitiveDataFilter()

        file_handler = self._create_file_handler(APP_LOG, rotation)
        file_handler.setLevel(getattr(logging, log_level, logging.INFO))
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        file_handler.addFilter(sensitive_filter)
        root_logger.addHandler(file_handler)

        audit_logger = logging.getLogger(AUDIT_LOGGER)
        for handler in list(audit_logger.handlers):
            audit_logger.removeHandler(handler)
            handler.close()
        audit_handler = self._create_file_handler(AUDIT_LOG, rotation)
        audit_handler.setLevel(logging.INFO)
        audit_handler.setFormatter(logging.Formatter('%(asctime)s %(message)s', datefmt='%Y-%m-%dT%H:%M:%S%z'))
        audit_handler.addFilter(sensitive_filter)
        audit_logger.addHandler(audit_handler)

        if console_enabled:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(getattr(logging, console_level, logging.INFO))
            console_handler.setFormatter(logging.Formatter('%(asctime)s [%(levelname)s] %(message)s',
                                                           datefmt='%H:%M:%S'))
            console_handler.addFilter(sensitive_filter)
            root_logger.addHandler(console_handler)

        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

        self._cleanup_old_logs()

        self.configured = True

        logger = logging.getLogger(__name__)
        logger.debug(f"Logging configured: level={log_level}, dir={self.log_dir}, "
                     f"retention={self.retention_days} days, console={console_enabled}")

    def _ensure_log_directory(self) -> None:
        if self.log_dir and not os.path.exists(self.log_dir):
            try:
                os.makedirs(self.log_dir, exist_ok=True)
            except OSError as e:
                print(f"Warning: Could not create log directory {self.log_dir}: {e}")
                print("Falling back to current directory for logs")
                self.log_dir = '.'

    def _create_file_handler(self, filename: str, rotation: str) -> logging.Handler:
        """
        Create a file handler in the log directory.

        Args:
            filename: Log file name inside log_dir
            rotation: 'daily' or 'midnight' rotates at midnight; anything else appends forever
        """
        log_file = os.path.join(self.log_dir, filename)

        if rotation.lower() in ['daily', 'midnight']:
            handler = logging.handlers.TimedRotatingFileHandler(
                filename=log_file,
                when='midnight',
                interval=1,
                backupCount=self.retention_days,
                encoding='utf-8'
            )
            handler.suffix = '%Y-%m-%d'
        else:
            handler = logging.FileHandler(log_file, encoding='utf-8')

        return handler

    def _cleanup_old_logs(self) -> None:
        """Delete rotated app and audit logs older than the retention period."""
        if not self.log_dir or self.retention_days <= 0:
            return

        cutoff_date = datetime.now() - timedelta(days=self.retention_days)

        for log_file in self.get_log_files():
            if os.path.basename(log_file) in (APP_LOG, AUDIT_LOG):
                continue
            try:
                file_time = datetime.fromtimestamp(os.path.getmtime(log_file))
                if file_time < cutoff_date:
                    os.remove(log_file)
                    print(f"Removed old log file: {log_file}")
            except (OSError, ValueError) as e:
                print(f"Warning: Could not remove old log file {log_file}: {e}")

    def get_log_files(self) -> List[str]:
        """Current and rotated app and audit log files."""
        if not self.log_dir:
            return []

        files = []
        for name in (APP_LOG, AUDIT_LOG):
            files.extend(glob.glob(os.path.join(self.log_dir, f"{name}*")))
        return sorted(files)


_logging_manager = LoggingManager()


def setup_logging(config: Dict[str, Any]) -> None:
    """Configure logging once for the process."""
    _logging_manager.setup_logging(config)


class SecurityAuditLogger:
    """Audit trail for identity source and group mutations."""

    def __init__(self):
        self.logger = logging.getLogger(AUDIT_LOGGER)

    def log_identity_source_operation(self, operation: str, domain_name: str, success: bool):
        status = "SUCCESS" if success else "FAILURE"
        self.logger.info(f"Identity source {operation} {status}: domain={domain_name}")

    def log_group_operation(self, operation: str, group: str, target_group: str, success: bool):
        status = "SUCCESS" if success else "FAILURE"
        self.logger.info(f"Group {operation} {status}: group={group} target={target_group}")

    def log_security_event(self, event: str, details: str = ""):
        message = f"Security event: {event}"
        if details:
            message += f" - {details}"
        self.logger.warning(message)


security_logger = SecurityAuditLogger()
