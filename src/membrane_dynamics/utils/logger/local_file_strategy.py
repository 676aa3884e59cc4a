from .log_storage_strategy import LogStorageStrategy
import os
from datetime import datetime


class LocalFileStrategy(LogStorageStrategy):
    """
    Appends log records to a text file on disk.

    With ``truncate=True`` (the default) an existing file is reset when the
    strategy is created, so each simulation run starts from a clean log.
    """

    def __init__(self, file_location, truncate=True):
        self.file_location = self.resolve_file_path(file_location)
        if truncate or not os.path.exists(self.file_location):
            self._write_header("LOG STARTED")

    # ABSOLUTE PATH, PARENT DIRECTORY CREATED ON DEMAND
    @staticmethod
    def resolve_file_path(file_location):
        file_location = os.path.abspath(os.fspath(file_location))
        os.makedirs(os.path.dirname(file_location), exist_ok=True)
        return file_location

    def _write_header(self, label):
        with open(self.file_location, 'w') as log_file:
            log_file.write(f"{label}: {datetime.now()}\n")

    def store_log(self, message, priority, timestamp):
        with open(self.file_location, 'a') as log_file:
            log_file.write(f"[{timestamp}] [{priority:<8}] {message}\n")

    def flush_logs(self):
        self._write_header("LOG FLUSHED")
