"""
Session Context
Single owner of the current {token, user} pair. Everything that needs the
token reads it from here, and a 401 anywhere clears it here.
"""

import logging
import threading

logger = logging.getLogger(__name__)


class SessionContext:
    def __init__(self, token=None, user=None):
        self._lock = threading.Lock()
        self._token = token
        self._user = user
        self._listeners = []

    @property
    def token(self):
        with self._lock:
            return self._token

    @property
    def user(self):
        with self._lock:
            return self._user

    @property
    def is_authenticated(self):
        return self.token is not None

    def set(self, token, user=None):
        with self._lock:
            self._token = token
            self._user = user
        self._notify()

    def invalidate(self):
        """Drop the token and user together and tell every listener."""
        with self._lock:
            had_token = self._token is not None
            self._token = None
            self._user = None
        if had_token:
            logger.info("Session invalidated")
        self._notify()

    def add_listener(self, callback):
        """callback(session) runs after every change."""
        self._listeners.append(callback)
        return callback

    def remove_listener(self, callback):
        self._listeners.remove(callback)

    def _notify(self):
        for callback in list(self._listeners):
            callback(self)
