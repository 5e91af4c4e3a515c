import logging
import threading
import time

from flask import current_app

from opc.utils import iso_timestamp

EXTENSION_KEY = 'opc_process_tracker_manager'


class ProcessTracker:
    STATUS_RUNNING = 0
    STATUS_FINISHED = 1
    STATUS_FAILED = 2

    def __init__(self, id, title, resource_id=None):
        self.id = id
        self.title = title
        self.resource_id = resource_id
        self.start_ts = time.time()
        self.end_ts = None
        self.status = ProcessTracker.STATUS_RUNNING
        self.entries = []
        self._lock = threading.Lock()

    def add(self, *text):
        line = ' '.join(str(x) for x in text)
        with self._lock:
            self.entries.append((time.time(), line))
        logging.debug('process %s: %s', self.id, line)

    def fail(self, e):
        self.add('Error:', e)
        self._close(ProcessTracker.STATUS_FAILED)

    def finish(self):
        self._close(ProcessTracker.STATUS_FINISHED)

    def _close(self, status):
        self.status = status
        self.end_ts = time.time()

    @property
    def full_text(self):
        with self._lock:
            entries = list(self.entries)
        return '\n'.join('%s: %s' % (iso_timestamp(ts), text) for ts, text in entries)

    @property
    def is_running(self):
        return self.status == ProcessTracker.STATUS_RUNNING


class ProcessTrackerManager:
    """Keeps the process trackers in memory, finished trackers are dropped after the retention period"""

    def __init__(self, retention_sec=3600):
        self.retention_sec = retention_sec
        self.trackers = {}
        self.counter = 0
        self._lock = threading.Lock()

    def create(self, title, resource_id=None, exclusive=False):
        """
        Create a new tracker. With exclusive=True, returns None instead when a tracker with the same
        title is still running for the resource.
        """
        with self._lock:
            self._prune()
            if exclusive and any(
                    t.is_running and t.resource_id == resource_id and t.title == title
                    for t in self.trackers.values()):
                return None
            self.counter += 1
            tracker = ProcessTracker(self.counter, title, resource_id)
            self.trackers[tracker.id] = tracker
        return tracker

    def get(self, tracker_id):
        with self._lock:
            self._prune()
            return self.trackers.get(tracker_id)

    def list(self):
        with self._lock:
            self._prune()
            return sorted(self.trackers.values(), key=lambda t: t.id)

    def _prune(self):
        now = time.time()
        expired = [
            t.id for t in self.trackers.values()
            if t.end_ts is not None and t.end_ts + self.retention_sec < now
        ]
        for tracker_id in expired:
            del self.trackers[tracker_id]


def get_process_tracker_manager():
    manager = current_app.extensions.get(EXTENSION_KEY)
    if manager is None:
        manager = ProcessTrackerManager(current_app.config['PROCESS_TRACKER_RETENTION_SEC'])
        current_app.extensions[EXTENSION_KEY] = manager
    return manager
