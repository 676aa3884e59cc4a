class LogStorageStrategy:
    """
    Interface for log sinks used by the static Logger.

    A strategy receives fully formatted fields and decides where they go
    (a file, memory, ...). It never filters; filtering by priority is done
    by Logger before store_log is called.
    """

    # PERSIST ONE LOG RECORD
    def store_log(self, message, priority, timestamp):
        """
        Parameters:
        message (str): Log text, already prefixed with its component tag.
        priority (str): Priority name (DEBUG, INFO, ...).
        timestamp (str): Formatted wall-clock time.
        """
        raise NotImplementedError()

    # DISCARD STORED RECORDS
    def flush_logs(self):
        raise NotImplementedError()

    # RELEASE ANY HANDLES; DEFAULT IS A NO-OP
    def close(self):
        pass
