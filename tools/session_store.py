"""
Saved Sessions — the client's list of sessions it can rejoin.

Stored as a JSON array of ``SavedSession`` objects (camelCase, like the
wire format) in a single file. This is a local convenience only; nothing
here is authoritative, so read errors degrade to an empty list and write
errors are logged and reported as False.
"""

import json
import logging
import os
import time
from typing import List, Optional

from pydantic import ValidationError

from models.session import SavedSession

logger = logging.getLogger("SessionStore")


class SavedSessionStore:
    """Read/write the saved-session list, newest first."""

    def __init__(self, path: str):
        self.path = os.path.abspath(os.path.expanduser(path))

    # ------------------------------------------------------------------
    # File IO
    # ------------------------------------------------------------------

    def _load(self) -> List[SavedSession]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except FileNotFoundError:
            return []
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Could not read saved sessions from {self.path}: {e}")
            return []

        if not isinstance(raw, list):
            logger.warning(f"Saved sessions file {self.path} is not a list, ignoring it")
            return []

        sessions = []
        for item in raw:
            try:
                sessions.append(SavedSession.model_validate(item))
            except ValidationError as e:
                logger.warning(f"Skipping malformed saved session: {e.error_count()} error(s)")
        return sessions

    def _save(self, sessions: List[SavedSession]) -> bool:
        try:
            os.makedirs(os.path.dirname(self.path), exist_ok=True)
            data = [s.model_dump(mode="json", by_alias=True, exclude_none=True) for s in sessions]
            tmp_path = self.path + ".tmp"
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.path)
            return True
        except OSError as e:
            logger.error(f"Could not write saved sessions to {self.path}: {e}")
            return False

    # ------------------------------------------------------------------
    # Queries & updates
    # ------------------------------------------------------------------

    def list(self) -> List[SavedSession]:
        return sorted(self._load(), key=lambda s: s.last_accessed, reverse=True)

    def get(self, game_id: str) -> Optional[SavedSession]:
        return next((s for s in self._load() if s.game_id == game_id), None)

    def upsert(self, session: SavedSession) -> bool:
        """Insert or replace by ``game_id``."""
        sessions = [s for s in self._load() if s.game_id != session.game_id]
        sessions.append(session)
        return self._save(sessions)

    def touch(self, game_id: str) -> bool:
        """Bump ``last_accessed``. False if the session is not saved."""
        sessions = self._load()
        for i, s in enumerate(sessions):
            if s.game_id == game_id:
                sessions[i] = s.model_copy(update={"last_accessed": int(time.time() * 1000)})
                return self._save(sessions)
        return False

    def rename(self, game_id: str, title: str) -> bool:
        sessions = self._load()
        for i, s in enumerate(sessions):
            if s.game_id == game_id:
                if s.title == title:
                    return True
                sessions[i] = s.model_copy(update={"title": title})
                return self._save(sessions)
        return False

    def remove(self, game_id: str) -> bool:
        sessions = self._load()
        remaining = [s for s in sessions if s.game_id != game_id]
        if len(remaining) == len(sessions):
            return False
        return self._save(remaining)
