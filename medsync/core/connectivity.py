# medsync/core/connectivity.py
from __future__ import annotations

import logging
from typing import Callable, List

from medsync.core.logging_utils import kv

Listener = Callable[[bool], None]


class ConnectivityMonitor:
    """
    Last known online/offline state plus change listeners.
    Listeners fire only on transitions, never on repeated reports of the same state.
    """

    def __init__(self, online: bool = True) -> None:
        self._online = online
        self._listeners: List[Listener] = []
        self.log = logging.getLogger("medsync.connectivity")

    def is_online(self) -> bool:
        return self._online

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def report(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        self.log.info("connectivity.changed " + kv(online=online))
        for listener in list(self._listeners):
            try:
                listener(online)
            except Exception as e:
                self.log.error("connectivity.listener.error " + kv(err=str(e)))
