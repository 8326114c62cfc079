import os
import sys
import socket
import logging
import requests
import weakref
import threading
from collections import deque
from typing import Any, Deque, Dict, Optional

from childwatch.config import effective_settings as config

# Open handlers whose locks are replaced in a forked child, where the thread holding them no longer exists.
_live_handlers: "weakref.WeakSet[LokiHandler]" = weakref.WeakSet()


def _reset_locks_after_fork() -> None:
    for handler in list(_live_handlers):
        handler.buffer_lock = threading.Lock()


os.register_at_fork(after_in_child=_reset_locks_after_fork)


class LokiHandler(logging.Handler):
    """
    A custom logging handler that sends logs to a Grafana Loki instance
    in batches using a background thread.
    """
    def __init__(self, url: str, org_id: Optional[str] = None, flush_interval: Optional[float] = None):
        """
        Initializes the Loki handler.

        :param url: The base URL of the Loki instance.
        :param org_id: The tenant ID for Loki (e.g., 'X-Scope-OrgID').
        :param flush_interval: Seconds between background flushes, defaults to `LOG_BUFFER_FLUSH_INTERVAL`.
        """
        super().__init__()
        self.url = f"{url.rstrip('/')}/loki/api/v1/push"
        self.org_id = org_id
        self.log_buffer: Deque[Dict[str, Any]] = deque()
        self.buffer_lock = threading.Lock()
        self.flush_interval = flush_interval if flush_interval is not None else config.LOG_BUFFER_FLUSH_INTERVAL
        self.batch_size = config.LOG_BUFFER_SIZE
        self.hostname = os.getenv('HOSTNAME') or socket.gethostname() or 'unknown-host'

        self.stop_event = threading.Event()
        self.flush_thread = threading.Thread(target=self._periodic_flush, daemon=True)
        self.flush_thread.name = "LokiFlushThread"
        self.flush_thread.start()
        _live_handlers.add(self)

    def _periodic_flush(self) -> None:
        """
        Periodically flushes the log buffer. This runs in a background thread.
        The final flush is called when the handler is closed.
        """
        while not self.stop_event.wait(self.flush_interval):
            self.flush()
        self.flush()

    def emit(self, record: logging.LogRecord) -> None:
        """
        Formats a log record and adds it to the internal buffer.
        If the buffer exceeds the batch size, it triggers a flush.

        :param record: The log record to be processed.
        """
        try:
            log_entry = {
                "stream": {
                    "job": "childwatch",
                    "level": record.levelname.lower(),
                    "hostname": self.hostname,
                    "logger": record.name,
                    "pid": str(record.process),
                },
                "values": [
                    [str(int(record.created * 1e9)), self.format(record)]
                ]
            }
            with self.buffer_lock:
                self.log_buffer.append(log_entry)
                if len(self.log_buffer) >= self.batch_size:
                    self._flush_locked()
        except Exception as e:
            print(f"ERROR: LokiHandler failed to process a log record: {e}", file=sys.stderr)

    def _flush_locked(self) -> None:
        """
        Sends the buffered logs to Loki. This method assumes the buffer lock is already held.
        """
        if not self.log_buffer:
            return

        logs_to_send = list(self.log_buffer)
        self.log_buffer.clear()

        # Release the lock before making a blocking network call
        self.buffer_lock.release()
        try:
            payload = {"streams": logs_to_send}
            headers = {'Content-Type': 'application/json'}
            if self.org_id:
                headers['X-Scope-OrgID'] = self.org_id

            response = requests.post(self.url, json=payload, headers=headers, timeout=5)
            # 204 No Content is the success status for Loki push
            if response.status_code != 204:
                print(
                    f"ERROR: Loki returned non-204 status: {response.status_code} - {response.text}",
                    file=sys.stderr
                )
        except requests.RequestException as e:
            print(f"CRITICAL: Failed to send {len(logs_to_send)} logs to Loki: {e}", file=sys.stderr)
        finally:
            self.buffer_lock.acquire()

    def flush(self) -> None:
        """Triggers a manual flush of the log buffer in a thread-safe manner."""
        with self.buffer_lock:
            self._flush_locked()

    def close(self) -> None:
        """
        Shuts down the handler, ensuring all buffered logs are flushed.

        In a forked watchdog the flush thread does not exist, so the final
        flush happens synchronously here.
        """
        self.stop_event.set()
        if self.flush_thread.is_alive():
            self.flush_thread.join(timeout=self.flush_interval + 2)
        else:
            self.flush()
        _live_handlers.discard(self)
        super().close()
