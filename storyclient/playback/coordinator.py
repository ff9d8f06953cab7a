"""Scene-by-scene playback over an opaque audio player."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol

from storyclient.common.config import get_settings
from storyclient.common.errors import MediaLoadError
from storyclient.common.logging import get_logger
from storyclient.common.models import Scene, StoryRecord

logger = get_logger(__name__)


@dataclass(frozen=True)
class PlaybackStatus:
    """Player status update. Times are in seconds."""

    position: float = 0.0
    duration: float = 0.0
    is_playing: bool = False
    did_just_finish: bool = False


StatusListener = Callable[[PlaybackStatus], Awaitable[None]]


class AudioPlayer(Protocol):
    """Protocol for the audio engine that actually plays scene audio."""

    async def load(self, uri: str) -> None:
        """Load audio from ``uri`` without starting playback."""
        ...

    async def play(self) -> None:
        ...

    async def pause(self) -> None:
        ...

    async def seek(self, position: float) -> None:
        """Move to ``position`` seconds."""
        ...

    async def unload(self) -> None:
        """Release the loaded audio."""
        ...

    def set_status_listener(self, listener: StatusListener | None) -> None:
        """Register the callback receiving position/duration/finished updates."""
        ...


class PlaybackCoordinator:
    """Drives a scene pointer over a completed story.

    The pointer is zero-based and always within ``[0, last_index]``. Only
    one scene's audio is loaded at a time. When the player reports that a
    scene finished, playback moves on to the next scene automatically.
    """

    def __init__(
        self,
        story: StoryRecord,
        player: AudioPlayer,
        skip_seconds: float | None = None,
    ):
        if not story.scenes:
            raise ValueError(f"Story {story.id} has no scenes to play")
        self.story = story
        self._player = player
        self.skip_seconds = skip_seconds or get_settings().skip_seconds

        self.index = 0
        self.loaded_index: int | None = None
        self.last_error: MediaLoadError | None = None
        self.position = 0.0
        self.duration = 0.0
        self.is_playing = False

        self._player.set_status_listener(self._on_status)

    @property
    def scenes(self) -> list[Scene]:
        return self.story.scenes

    @property
    def last_index(self) -> int:
        return len(self.story.scenes) - 1

    @property
    def current_scene(self) -> Scene:
        return self.story.scenes[self.index]

    async def load_scene(self, index: int) -> Scene:
        """Unload the current audio and load scene ``index``.

        The pointer moves to ``index`` even when loading fails, so
        :meth:`retry` targets the scene the user is looking at.

        Raises:
            IndexError: if ``index`` is outside the story
            MediaLoadError: if the scene's audio cannot be loaded
        """
        if not 0 <= index <= self.last_index:
            raise IndexError(f"Scene index {index} outside 0..{self.last_index}")

        self.index = index
        await self._unload()
        scene = self.story.scenes[index]
        self.position = 0.0
        self.duration = scene.duration

        if not scene.audio_ref:
            self.last_error = MediaLoadError(
                f"Scene {scene.index} has no audio", scene_index=index, recoverable=False
            )
            logger.warning("scene_audio_missing", story_id=self.story.id, scene=scene.index)
            raise self.last_error

        try:
            await self._player.load(scene.audio_ref)
        except Exception as e:
            self.last_error = MediaLoadError(
                f"Failed to load audio for scene {scene.index}: {e}", scene_index=index
            )
            logger.warning(
                "scene_audio_load_failed",
                story_id=self.story.id,
                scene=scene.index,
                error=str(e),
            )
            raise self.last_error from e

        self.loaded_index = index
        self.last_error = None
        logger.info("scene_audio_loaded", story_id=self.story.id, scene=scene.index)
        return scene

    async def retry(self) -> Scene:
        """Reload the current scene after a :class:`MediaLoadError`."""
        return await self.load_scene(self.index)

    async def advance(self) -> bool:
        """Move to the next scene. Returns False at the last scene."""
        if self.index >= self.last_index:
            return False
        await self.load_scene(self.index + 1)
        return True

    async def back(self) -> bool:
        """Move to the previous scene. Returns False at the first scene."""
        if self.index <= 0:
            return False
        await self.load_scene(self.index - 1)
        return True

    async def play(self) -> None:
        if self.loaded_index != self.index:
            await self.load_scene(self.index)
        await self._player.play()
        self.is_playing = True

    async def pause(self) -> None:
        if self.loaded_index is None:
            return
        await self._player.pause()
        self.is_playing = False

    async def toggle(self) -> None:
        if self.is_playing:
            await self.pause()
        else:
            await self.play()

    async def seek(self, position: float) -> None:
        """Seek within the current scene, clamped to ``[0, duration]``."""
        if self.loaded_index is None:
            return
        upper = self.duration if self.duration > 0 else max(position, 0.0)
        position = min(max(position, 0.0), upper)
        await self._player.seek(position)
        self.position = position

    async def restart(self) -> None:
        """Jump to the start of the current scene and play."""
        await self.seek(0.0)
        if not self.is_playing:
            await self.play()

    async def skip_forward(self) -> None:
        await self.seek(self.position + self.skip_seconds)

    async def skip_backward(self) -> None:
        await self.seek(self.position - self.skip_seconds)

    async def close(self) -> None:
        """Release the player."""
        await self._unload()
        self._player.set_status_listener(None)

    async def _unload(self) -> None:
        if self.loaded_index is None:
            return
        self.loaded_index = None
        self.is_playing = False
        await self._player.unload()

    async def _on_status(self, status: PlaybackStatus) -> None:
        self.position = status.position
        if status.duration:
            self.duration = status.duration
        self.is_playing = status.is_playing

        if not status.did_just_finish:
            return
        self.is_playing = False
        if self.index >= self.last_index:
            logger.info("story_playback_finished", story_id=self.story.id)
            return
        try:
            await self.advance()
            await self.play()
        except MediaLoadError as e:
            # Kept on last_error for the UI's retry action.
            logger.warning("scene_auto_advance_failed", scene_index=e.scene_index)
