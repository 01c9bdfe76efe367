"""Provider logging: module loggers and the rotating operation log"""
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, List, Optional

from adprovider.config import settings

LOGGER_NAME = "ad-provider"

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
MAX_LOG_BYTES = 100 * 1024 * 1024
LOG_BACKUPS = 5

# Libraries whose transport diagnostics belong in the provider log
LIBRARY_LOGGERS = ("winrm", "ldap3")

# timestamp | level | logger | operator | action | object [| details]
ENTRY_FIELDS = ("timestamp", "level", "logger", "operator", "action", "object")


def build_file_handler(log_file: Path) -> RotatingFileHandler:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(log_file, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    return handler


def parse_entry(line: str) -> Optional[Dict[str, str]]:
    """Operation entry of a log line, None for lines written by module loggers."""
    parts = line.strip().split(" | ")
    if len(parts) < len(ENTRY_FIELDS) or parts[2].strip() != LOGGER_NAME:
        return None
    entry = dict(zip(ENTRY_FIELDS, (p.strip() for p in parts)))
    if len(parts) > len(ENTRY_FIELDS):
        entry["details"] = " | ".join(parts[len(ENTRY_FIELDS):])
    return entry


class OperationLogger:
    """Writes directory mutations to a rotating log file and reads them back.

    There is one "ad-provider" logger per process; constructing an
    OperationLogger points it (and the library loggers) at a new file.
    """

    _file_handler: Optional[logging.Handler] = None

    def __init__(self, log_file: Optional[Path] = None, console_output: bool = False):
        self.log_file = Path(log_file or settings.log_file)
        self.console_output = console_output
        self.logger = logging.getLogger(LOGGER_NAME)
        self._attach()

    def _attach(self) -> None:
        self.logger.setLevel(logging.DEBUG)
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()

        file_handler = build_file_handler(self.log_file)
        self.logger.addHandler(file_handler)
        if self.console_output:
            console = logging.StreamHandler()
            console.setLevel(logging.INFO)
            console.setFormatter(file_handler.formatter)
            self.logger.addHandler(console)

        previous, OperationLogger._file_handler = OperationLogger._file_handler, file_handler
        for name in LIBRARY_LOGGERS:
            library_logger = logging.getLogger(name)
            if previous is not None:
                library_logger.removeHandler(previous)
            library_logger.addHandler(file_handler)

    def log_operation(
        self,
        operator: str,
        action: str,
        obj: str,
        details: Optional[str] = None,
        level: str = "INFO",
    ):
        """Record one mutation.

        Args:
            operator: Principal the provider acts as
            action: CREATE, UPDATE or DELETE
            obj: Resource type and id, e.g. "user/<guid>"
            details: Free text such as the object's name
            level: INFO, WARNING or ERROR
        """
        fields = [operator, action, obj] + ([details] if details else [])
        self.logger.log(logging.getLevelName(level.upper()), " | ".join(fields))

    def get_logs(self, limit: int = 100, filter_operator: Optional[str] = None) -> List[Dict[str, str]]:
        """Recorded operations, newest first, optionally only those of one operator."""
        if not self.log_file.exists():
            return []
        with open(self.log_file, "r", encoding="utf-8") as f:
            lines = f.readlines()

        entries = []
        for line in reversed(lines):
            entry = parse_entry(line)
            if entry is None or (filter_operator and entry["operator"] != filter_operator):
                continue
            entries.append(entry)
            if len(entries) >= limit:
                break
        return entries


operation_logger = OperationLogger(console_output=settings.debug)


def log_operation(operator: str, action: str, obj: str, details: Optional[str] = None):
    operation_logger.log_operation(operator, action, obj, details)


def get_logger(name: str) -> logging.Logger:
    """Module logger under the provider namespace, e.g. get_logger("services.runner")."""
    return logging.getLogger(f"{LOGGER_NAME}.{name}")
