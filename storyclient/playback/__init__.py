"""Story playback."""

from storyclient.playback.coordinator import (
    AudioPlayer,
    PlaybackCoordinator,
    PlaybackStatus,
)

__all__ = [
    "AudioPlayer",
    "PlaybackCoordinator",
    "PlaybackStatus",
]
