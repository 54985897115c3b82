"""Playback package — session state, controller, and output backends.

WHY: Everything that depends on a running clock lives here, separate from
the pure timing functions in core/.

HOW: controller.py drives a session.py record through the state machine,
reducing events.py completions. output.py defines the device interface;
audio_queue.py is the gapless scheduling backend.

RULES:
- PlaybackController is the only writer of PlaybackSession
"""

from narration_sync.playback.audio_queue import AudioQueue
from narration_sync.playback.controller import PlaybackController
from narration_sync.playback.output import (
    AudioOutput,
    ClockOutput,
    PlaybackRejected,
    QueueOutput,
)
from narration_sync.playback.session import PlaybackSession

__all__ = [
    "AudioOutput",
    "AudioQueue",
    "ClockOutput",
    "PlaybackController",
    "PlaybackRejected",
    "PlaybackSession",
    "QueueOutput",
]
