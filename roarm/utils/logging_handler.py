"""
Logging setup and in-memory log buffer for the RoArm control layer
"""

import json
import logging
from collections import deque
from datetime import datetime
from typing import Any, Dict, List, Optional


class LogBufferHandler(logging.Handler):
    """
    Logging handler that keeps recent records in a circular buffer
    so the HTTP API can serve them
    """

    def __init__(self, buffer_size: int = 1000):
        super().__init__()
        self.buffer_size = buffer_size
        self.logs = deque(maxlen=buffer_size)

    def emit(self, record: logging.LogRecord):
        """Called by logging system for each log message"""
        try:
            log_entry = {
                "timestamp": datetime.fromtimestamp(record.created).isoformat(),
                "level": record.levelname,
                "source": record.name,
                "message": self.format(record),
                "module": record.module,
                "function": record.funcName,
                "line": record.lineno
            }
            self.logs.append(log_entry)
        except Exception:
            self.handleError(record)

    def get_logs(self,
                 level: Optional[str] = None,
                 source: Optional[str] = None,
                 limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Get filtered logs from buffer"""
        logs_list = list(self.logs)

        if level:
            logs_list = [log for log in logs_list if log['level'] == level.upper()]

        if source:
            logs_list = [log for log in logs_list if source in log['source']]

        if limit:
            logs_list = logs_list[-limit:]

        return logs_list

    def resize(self, buffer_size: int):
        """Change the buffer capacity, keeping the most recent records"""
        self.acquire()
        try:
            self.buffer_size = buffer_size
            self.logs = deque(self.logs, maxlen=buffer_size)
        finally:
            self.release()

    def clear_logs(self):
        """Clear the log buffer"""
        self.logs.clear()

    def export_logs(self, format: str = "json") -> str:
        """Export logs as JSON or plain text"""
        logs_list = list(self.logs)

        if format == "json":
            return json.dumps(logs_list, indent=2, default=str)
        elif format == "text":
            lines = []
            for log in logs_list:
                line = f"{log['timestamp']} [{log['level']}] {log['source']}: {log['message']}"
                lines.append(line)
            return "\n".join(lines)
        else:
            raise ValueError(f"Unsupported format: {format}")


# Global instance
_log_buffer = None


def get_log_buffer(buffer_size: Optional[int] = None) -> LogBufferHandler:
    """
    Get or create the global log buffer handler

    A buffer_size different from the current one resizes the buffer,
    keeping the most recent records.
    """
    global _log_buffer
    if _log_buffer is None:
        _log_buffer = LogBufferHandler(buffer_size or 1000)
    elif buffer_size and buffer_size != _log_buffer.buffer_size:
        _log_buffer.resize(buffer_size)
    return _log_buffer


def setup_logging(config: Dict[str, Any], service_name: Optional[str] = None) -> LogBufferHandler:
    """
    Configure the root logger with console, buffer and optional file output

    Args:
        config: The 'logging' section of config.yaml:
            - level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            - <service_name>: Per-service dict with a 'level' key (optional)
            - buffer_size: Number of records kept in memory
            - file_output: Optional log file path
        service_name: Service whose level override applies (e.g. 'api')

    Returns:
        The shared LogBufferHandler
    """
    if service_name and isinstance(config.get(service_name), dict):
        level = config[service_name].get('level', config.get('level', 'INFO'))
    else:
        level = config.get('level', 'INFO')
    level = getattr(logging, str(level).upper(), logging.INFO)
    buffer_size = config.get('buffer_size', 1000)
    file_output = config.get('file_output')

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    buffer_handler = get_log_buffer(buffer_size)
    buffer_handler.setLevel(level)
    buffer_handler.setFormatter(formatter)
    root_logger.addHandler(buffer_handler)

    if file_output:
        file_handler = logging.FileHandler(file_output)
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Serial traffic at DEBUG is noisy, keep third-party loggers quieter
    logging.getLogger('asyncio').setLevel(logging.WARNING)

    return buffer_handler
