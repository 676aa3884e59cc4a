from .log_storage_strategy import LogStorageStrategy


class MemoryLogStrategy(LogStorageStrategy):
    """
    Keeps log records in a list of (timestamp, priority, message) tuples.

    Used by the test suite to assert which events an integrator reported.
    """

    def __init__(self):
        self.entries = []

    def store_log(self, message, priority, timestamp):
        self.entries.append((timestamp, priority, message))

    def flush_logs(self):
        self.entries.clear()

    def messages(self, priority=None):
        """Return stored messages, optionally filtered by priority name."""
        return [m for _, p, m in self.entries if priority is None or p == priority]

    def contains(self, fragment, priority=None):
        return any(fragment in m for m in self.messages(priority))
