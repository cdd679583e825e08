"""
In-memory registry of drill-down sessions.

Each session owns a DrillDownController and its ResultCache. The registry is
bounded; past max_sessions the least recently used session is dropped.
"""

import logging
import uuid
from collections import OrderedDict
from typing import Optional

from deepdive.services.drill_down import DrillDownController

logger = logging.getLogger(__name__)


class SessionStore:
    """LRU-bounded map of session id -> DrillDownController."""

    def __init__(self, max_sessions: int = 500):
        self.max_sessions = max_sessions
        self._sessions: "OrderedDict[str, DrillDownController]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._sessions)

    def create(self, controller: DrillDownController) -> str:
        session_id = uuid.uuid4().hex
        self._sessions[session_id] = controller
        while len(self._sessions) > self.max_sessions:
            dropped, _ = self._sessions.popitem(last=False)
            logger.info(f"Dropped least recently used deep-dive session {dropped}")
        return session_id

    def get(self, session_id: str) -> Optional[DrillDownController]:
        controller = self._sessions.get(session_id)
        if controller is not None:
            self._sessions.move_to_end(session_id)
        return controller

    def remove(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None
