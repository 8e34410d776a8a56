import os
import sys
import logging
from datetime import datetime
from collections import deque
from typing import List, Optional

from rdh_app.utils.general_utils import get_project_dir

class StreamToLogger:
    """
    Redirects writes from stdout/stderr to a logger.

    Args:
        logger: Logger instance to redirect output to.
        log_level: Logging level (e.g., logging.INFO, logging.ERROR).
    """
    def __init__(self, logger: logging.Logger, log_level: int = logging.INFO) -> None:
        self.logger = logger
        self.log_level = log_level
        self._buffer = ""

    def write(self, message: str) -> None:
        """Writes message to logger, line-buffered."""
        self._buffer += message
        while '\n' in self._buffer:
            line, self._buffer = self._buffer.split('\n', 1)
            if line.strip():
                self.logger.log(self.log_level, line.strip())

    def flush(self) -> None:
        """Flushes remaining buffer content to the logger."""
        if self._buffer.strip():
            self.logger.log(self.log_level, self._buffer.strip())
        self._buffer = ""

class BufferHandler(logging.Handler):
    """
    Logging handler that keeps the most recent formatted records in a ring buffer,
    so a caller can print a short summary of what happened during a reload.

    Args:
        buffer_length: Maximum number of log messages to retain.
    """
    def __init__(self, buffer_length: int) -> None:
        super().__init__()
        self._messages: deque[str] = deque(maxlen=buffer_length)

    def emit(self, record: logging.LogRecord) -> None:
        msg = self.format(record)
        self._messages.append(msg)

    def get_messages(self) -> List[str]:
        return list(self._messages)

def start_root_logger(
    logger_level: int = logging.DEBUG,
    buffer_length: int = 300,
    redirect_stdout: bool = False,
    logs_dir: Optional[str] = None
) -> logging.Logger:
    """
    Initializes the root logger with console, ring buffer, and timestamped file output.

    Args:
        logger_level: Logging level to apply.
        buffer_length: Max number of messages to buffer.
        redirect_stdout: Redirects sys.stdout/sys.stderr to the logger.
        logs_dir: Directory for log files. Defaults to 'logs' under the project directory.

    Returns:
        The configured logger instance.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logger_level)

    # Handlers are attached once per process
    if not root_logger.handlers:
        formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(name)s - %(message)s')

        logs_dir = logs_dir or os.path.join(get_project_dir(), "logs")
        os.makedirs(logs_dir, exist_ok=True)

        timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
        log_file_path = os.path.join(logs_dir, f"rdh_log_{timestamp}.log")

        file_handler = logging.FileHandler(log_file_path)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

        buffer_handler = BufferHandler(buffer_length)
        buffer_handler.setFormatter(formatter)
        root_logger.addHandler(buffer_handler)

        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        root_logger.addHandler(stream_handler)

    if redirect_stdout and not isinstance(sys.stdout, StreamToLogger):
        sys.stdout = StreamToLogger(root_logger, logging.INFO)
        sys.stderr = StreamToLogger(root_logger, logging.ERROR)

    return root_logger

