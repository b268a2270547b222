# medintake/speech.py
"""
Playback side of the voice loop.

The browser (or any other client) speaks replies; the server only needs a
handle per utterance so it can stop the previous one when the patient
starts talking again.
"""
from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass

from medintake.intake.schema import Emotion

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlaybackHandle:
    token: str
    session_id: str


class PlaybackAdapter(ABC):
    @abstractmethod
    def play(self, session_id: str, text: str, emotion: Emotion) -> PlaybackHandle:
        """Start speaking ``text``; must not block until playback ends."""
        ...

    @abstractmethod
    def cancel(self, handle: PlaybackHandle) -> None:
        ...


class NullPlaybackAdapter(PlaybackAdapter):
    """
    Headless default: the client plays the reply it gets back over HTTP.
    """

    def play(self, session_id: str, text: str, emotion: Emotion) -> PlaybackHandle:
        handle = PlaybackHandle(token=uuid.uuid4().hex, session_id=session_id)
        logger.debug("Playback %s (%s) for session %s", handle.token, emotion.value, session_id)
        return handle

    def cancel(self, handle: PlaybackHandle) -> None:
        logger.debug("Cancel playback %s for session %s", handle.token, handle.session_id)
