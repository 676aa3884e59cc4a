import os
import threading
from datetime import datetime
from enum import IntEnum

from .local_file_strategy import LocalFileStrategy


class Logger:
    """
    Process-wide static logger.

    Records go to a pluggable LogStorageStrategy. Records below
    ``min_priority`` are dropped before reaching the strategy. Callers tag
    their records with a component name (``"integrator"``, ``"engine"``,
    ``"sink"``), which is rendered as a bracketed prefix.
    """

    class LogPriority(IntEnum):
        DEBUG = 1
        INFO = 2
        WARNING = 3
        ERROR = 4
        CRITICAL = 5
        DEFAULT = 6

    DEFAULT_LOG_PATH = "/tmp/membrane_dynamics_logs.txt"
    LOG_PATH_ENV = "MEMBRANE_DYNAMICS_LOG_PATH"

    is_logging_enabled = True
    log_storage_strategy = None
    min_priority = LogPriority.DEBUG
    _lock = threading.RLock()

    @classmethod
    def initialize(cls, file_location=None):
        """
        Install a file strategy if none is set yet.

        The path is taken from the argument, then from
        $MEMBRANE_DYNAMICS_LOG_PATH, then from DEFAULT_LOG_PATH.
        """
        with cls._lock:
            if cls.log_storage_strategy is not None:
                return
            location = file_location or os.getenv(cls.LOG_PATH_ENV, cls.DEFAULT_LOG_PATH)
            cls.log_storage_strategy = LocalFileStrategy(location)
        cls.log(f"Logger initialized with file storage at {location}", cls.LogPriority.INFO, "logger")

    @classmethod
    def log(cls, message, priority=LogPriority.DEBUG, component=None):
        """
        Store one record.

        Parameters:
        message (str): Log text.
        priority (LogPriority): Severity, DEBUG by default.
        component (str): Optional subsystem tag.
        """
        with cls._lock:
            if not cls.is_logging_enabled or cls.log_storage_strategy is None:
                return
            if priority < cls.min_priority:
                return
            text = f"[{component}] {message}" if component else message
            cls.log_storage_strategy.store_log(
                text, priority.name, datetime.now().strftime("%Y-%m-%d %H:%M:%S")
            )

    @classmethod
    def set_log_storage_strategy(cls, log_storage_strategy):
        with cls._lock:
            previous = cls.log_storage_strategy
            cls.log_storage_strategy = log_storage_strategy
        return previous

    @classmethod
    def set_min_priority(cls, priority):
        with cls._lock:
            cls.min_priority = priority

    @classmethod
    def flush_logs(cls):
        with cls._lock:
            if cls.is_logging_enabled and cls.log_storage_strategy:
                cls.log_storage_strategy.flush_logs()

    @classmethod
    def disable_logging(cls):
        cls.log("Logging disabled", component="logger")
        with cls._lock:
            cls.is_logging_enabled = False

    @classmethod
    def enable_logging(cls):
        with cls._lock:
            cls.is_logging_enabled = True
        cls.log("Logging enabled", component="logger")
