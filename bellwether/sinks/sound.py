"""Sound playback through whichever command-line player is installed."""

from __future__ import annotations

import asyncio
import platform
import shutil
from pathlib import Path

import structlog

from bellwether.core.config import SoundSinkConfig
from bellwether.sinks.base import ActionError

logger = structlog.get_logger(__name__)

# Preference order per platform.
_PLAYERS: dict[str, tuple[str, ...]] = {
    "Darwin": ("afplay",),
    "Linux": ("mpv", "paplay", "aplay", "ffplay"),
}

_BUNDLED_PREFIX = "bundled:"
_SOUND_EXTENSIONS = (".aiff", ".wav", ".mp3", ".ogg")


def detect_player(system: str | None = None) -> str | None:
    """First available player for this platform, or None."""
    for name in _PLAYERS.get(system or platform.system(), ()):
        if shutil.which(name):
            return name
    return None


def player_argv(player: str, path: str, volume: float) -> list[str]:
    """Command line for *player* at *volume* (0..1)."""
    if player == "afplay":
        return ["afplay", "-v", f"{volume:.2f}", path]
    if player == "mpv":
        return ["mpv", "--no-video", "--really-quiet", f"--volume={round(volume * 100)}", path]
    if player == "ffplay":
        return ["ffplay", "-nodisp", "-autoexit", "-loglevel", "quiet",
                "-volume", str(round(volume * 100)), path]
    if player == "paplay":
        return ["paplay", f"--volume={round(volume * 65536)}", path]
    if player == "aplay":
        return ["aplay", "-q", path]
    raise ActionError(f"unsupported audio player {player!r}")


class SoundPlayer:
    """Spawns the player and returns without waiting for playback to end.

    Finished player processes are reaped in the background; ``close()``
    terminates any that are still playing.
    """

    def __init__(self, config: SoundSinkConfig | None = None) -> None:
        cfg = config or SoundSinkConfig()
        self._sounds_dir = Path(cfg.sounds_dir)
        self._player = None if cfg.player == "auto" else cfg.player
        self._detected = self._player is not None
        self._procs: set[asyncio.subprocess.Process] = set()
        self._reapers: set[asyncio.Task[None]] = set()

    @property
    def player(self) -> str | None:
        if not self._detected:
            self._player = detect_player()
            self._detected = True
            logger.info("audio_player_detected", player=self._player)
        return self._player

    def resolve(self, sound_ref: str) -> Path:
        """Map ``bundled:<name>`` to a file in the sounds dir; else a path."""
        if not sound_ref.startswith(_BUNDLED_PREFIX):
            return Path(sound_ref).expanduser()
        name = sound_ref[len(_BUNDLED_PREFIX):]
        for ext in _SOUND_EXTENSIONS:
            candidate = self._sounds_dir / f"{name}{ext}"
            if candidate.exists():
                return candidate
        return self._sounds_dir / f"{name}{_SOUND_EXTENSIONS[0]}"

    async def play(self, sound_ref: str, volume: float) -> None:
        player = self.player
        if player is None:
            raise ActionError("no audio player found (install mpv, paplay, aplay or ffplay)")
        path = self.resolve(sound_ref)
        if not path.exists():
            raise ActionError(f"sound file not found: {path}")
        argv = player_argv(player, str(path), volume)
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as exc:
            raise ActionError(f"cannot start {player}: {exc}") from exc
        self._procs.add(proc)
        reaper = asyncio.create_task(self._reap(proc))
        self._reapers.add(reaper)
        reaper.add_done_callback(self._reapers.discard)

    async def _reap(self, proc: asyncio.subprocess.Process) -> None:
        try:
            code = await proc.wait()
            if code:
                logger.warning("audio_player_exit", returncode=code)
        finally:
            self._procs.discard(proc)

    async def wait(self, timeout: float | None = None) -> None:
        """Wait up to *timeout* for sounds that are still playing."""
        if self._reapers:
            await asyncio.wait(list(self._reapers), timeout=timeout)

    async def close(self) -> None:
        for proc in list(self._procs):
            if proc.returncode is None:
                proc.terminate()
        for reaper in list(self._reapers):
            reaper.cancel()
        await asyncio.gather(*self._reapers, return_exceptions=True)
        self._procs.clear()
