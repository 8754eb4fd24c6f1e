"""Player detection, spawning and mpv playback control."""
from __future__ import annotations

import asyncio
import json
import os
import shutil
import sys
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, Sequence
from uuid import uuid4

from .logging_utils import get_logger
from .navigation import PlaybackTarget
from .playlist import Channel


DEFAULT_PLAYER_CANDIDATES: Sequence[str] = ("mpv", "vlc", "ffplay")

BufferingCallback = Callable[[bool], None]
ErrorCallback = Callable[[str], None]
PathCallback = Callable[[str], None]

log = get_logger(__name__)


class PlayerError(RuntimeError):
    """Raised when no usable media player is available."""


@dataclass(slots=True)
class PlayerCommand:
    """Describe a player invocation."""

    executable: str
    args: list[str]
    ipc_path: Optional[str] = None
    cleanup_paths: tuple[Path, ...] = ()

    def as_sequence(self) -> list[str]:
        return [self.executable, *self.args]


@dataclass(slots=True)
class PlayerHandle:
    """Return value from :func:`launch_player` containing process metadata."""

    process: asyncio.subprocess.Process
    command: PlayerCommand


def detect_player(
    preferred: Optional[str] = None,
    *,
    candidates: Iterable[str] = DEFAULT_PLAYER_CANDIDATES,
) -> Optional[str]:
    """Return the path to the first available player executable."""

    search_order: list[str] = []
    if preferred:
        search_order.append(str(preferred))
    for candidate in candidates:
        if candidate not in search_order:
            search_order.append(candidate)
    for executable in search_order:
        path = shutil.which(executable)
        if path:
            log.info("Selected player executable: %s (from candidate %s)", path, executable)
            return path
        log.debug("Player candidate %s not found on PATH", executable)
    return None


def _prepare_mpv_ipc() -> tuple[str, tuple[Path, ...]]:
    """Return an IPC path suitable for mpv along with cleanup targets."""

    if os.name == "nt":
        # mpv creates and removes the named pipe itself.
        return rf"\\.\pipe\zapdeck_{uuid4().hex}", ()

    temp_dir = Path(tempfile.mkdtemp(prefix="zapdeck_mpv_"))
    return str(temp_dir / "ipc.sock"), (temp_dir,)


def build_player_command(
    channel: Channel,
    *,
    preferred: Optional[str] = None,
    subtitles_enabled: bool = True,
    upcoming: Sequence[str] = (),
) -> PlayerCommand:
    """Construct a player command for ``channel``.

    For mpv the command keeps the player alive between channels (``--idle``),
    opens a JSON IPC socket and prefetches the ``upcoming`` stream URLs.
    """

    executable = detect_player(preferred)
    if executable is None:
        log.error("Unable to locate supported media player")
        raise PlayerError("No supported media player found (mpv, vlc, ffplay)")
    args: list[str] = []
    cleanup_paths: tuple[Path, ...] = ()
    ipc_path: Optional[str] = None
    urls = [channel.stream_url]
    if Path(executable).name.lower().startswith("mpv"):
        ipc_path, cleanup_paths = _prepare_mpv_ipc()
        args.extend(
            [
                "--force-window=immediate",
                "--player-operation-mode=pseudo-gui",
                "--no-terminal",
                "--idle=yes",
                "--keep-open=no",
                "--cache=yes",
                "--prefetch-playlist=yes",
                "--hwdec=auto-safe",
                f"--input-ipc-server={ipc_path}",
            ]
        )
        if not subtitles_enabled:
            args.append("--sid=no")
        urls.extend(url for url in upcoming if url and url != channel.stream_url)
    command = PlayerCommand(
        executable=executable,
        args=[*args, *urls],
        ipc_path=ipc_path,
        cleanup_paths=cleanup_paths,
    )
    log.info("Built player command for channel %s: %s", channel.name, command.as_sequence())
    return command


async def launch_player(
    channel: Channel,
    *,
    preferred: Optional[str] = None,
    subtitles_enabled: bool = True,
    upcoming: Sequence[str] = (),
) -> PlayerHandle:
    """Launch a media player for the channel."""

    command = build_player_command(
        channel,
        preferred=preferred,
        subtitles_enabled=subtitles_enabled,
        upcoming=upcoming,
    )
    log.info("Launching player process for %s", channel.name)
    process = await asyncio.create_subprocess_exec(
        *command.as_sequence(),
        env=os.environ.copy(),
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.DEVNULL,
    )
    log.debug("Spawned process PID %s", getattr(process, "pid", "unknown"))
    return PlayerHandle(process=process, command=command)


class MpvEventDecoder:
    """Translate mpv IPC messages into playback callbacks.

    Playback counts as buffering while mpv waits on its cache
    (``paused-for-cache``) or has nothing to render (``core-idle``) without
    the user having paused it. Changes of ``path`` report the file mpv is on,
    including when it moves to the next playlist entry by itself.
    """

    OBSERVED_PROPERTIES = ("core-idle", "paused-for-cache", "pause", "path")

    def __init__(
        self,
        on_buffering: BufferingCallback,
        on_error: ErrorCallback,
        on_path: Optional[PathCallback] = None,
    ) -> None:
        self._on_buffering = on_buffering
        self._on_error = on_error
        self._on_path = on_path or (lambda _path: None)
        self._flags: dict[str, bool] = {}
        self._buffering = False

    @classmethod
    def observe_commands(cls) -> list[dict[str, Any]]:
        return [
            {"command": ["observe_property", index, name]}
            for index, name in enumerate(cls.OBSERVED_PROPERTIES, start=1)
        ]

    def feed(self, payload: dict[str, Any]) -> None:
        event = payload.get("event")
        if event == "property-change":
            name = payload.get("name")
            data = payload.get("data")
            if name == "path":
                if isinstance(data, str) and data:
                    self._on_path(data)
            elif name in self.OBSERVED_PROPERTIES:
                self._flags[name] = bool(data)
                self._update()
        elif event == "end-file" and payload.get("reason") == "error":
            message = str(payload.get("file_error") or "playback error")
            log.warning("mpv reported a playback error: %s", message)
            self._on_error(message)
        elif event == "start-file":
            # pause survives a file change in mpv; the cache flags do not.
            self._flags.pop("core-idle", None)
            self._flags.pop("paused-for-cache", None)
            self._update()

    def _update(self) -> None:
        flags = self._flags
        buffering = flags.get("paused-for-cache", False) or (
            flags.get("core-idle", False) and not flags.get("pause", False)
        )
        if buffering != self._buffering:
            self._buffering = buffering
            self._on_buffering(buffering)


def encode_command(*command: Any) -> bytes:
    return (json.dumps({"command": list(command)}) + "\n").encode("utf-8")


async def connect_mpv_ipc(
    ipc_path: str, retries: int = 50, delay: float = 0.1
) -> Optional[tuple[asyncio.StreamReader, asyncio.StreamWriter]]:
    """Connect to mpv's IPC socket, retrying while the player starts up."""

    for attempt in range(retries):
        try:
            return await asyncio.open_unix_connection(ipc_path)
        except (FileNotFoundError, ConnectionRefusedError):
            await asyncio.sleep(delay)
        except OSError as exc:
            log.debug(
                "Attempt %s to connect to mpv IPC at %s failed: %s",
                attempt + 1,
                ipc_path,
                exc,
            )
            await asyncio.sleep(delay)
    log.warning("Unable to connect to mpv IPC server at %s", ipc_path)
    return None


async def watch_mpv_playback(
    reader: asyncio.StreamReader, decoder: MpvEventDecoder
) -> None:
    """Feed IPC messages from ``reader`` into ``decoder`` until EOF."""

    while True:
        line = await reader.readline()
        if not line:
            break
        try:
            payload = json.loads(line.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            continue
        if isinstance(payload, dict):
            decoder.feed(payload)


class PlayerSession:
    """Keep one external player in sync with the selected channel.

    mpv is launched once and then driven over IPC: every zap replaces the
    current file and appends the next candidate so mpv can pre-buffer it.
    When mpv moves on to that candidate by itself, ``on_track_changed``
    receives its URL. Other players are restarted for each channel and give
    no feedback.
    """

    def __init__(
        self,
        *,
        preferred: Optional[str] = None,
        subtitles_enabled: bool = True,
        on_buffering: Optional[BufferingCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        on_track_changed: Optional[PathCallback] = None,
    ) -> None:
        self.preferred = preferred
        self.subtitles_enabled = subtitles_enabled
        self._on_buffering = on_buffering or (lambda _buffering: None)
        self._on_error = on_error or (lambda _message: None)
        self._on_track_changed = on_track_changed or (lambda _url: None)
        self._handle: Optional[PlayerHandle] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._monitor: Optional[asyncio.Task[None]] = None
        self._current_url: Optional[str] = None
        self._queued_url: Optional[str] = None

    @property
    def running(self) -> bool:
        handle = self._handle
        return handle is not None and handle.process.returncode is None

    @property
    def current_url(self) -> Optional[str]:
        """URL the player was last told to play or last reported playing."""

        return self._current_url

    async def play(self, channel: Channel, target: Optional[PlaybackTarget] = None) -> None:
        upcoming = [target.next_url] if target and target.next_url else []
        if self._writer is not None and self.running:
            log.info("Switching mpv to %s", channel.name)
            self._current_url = channel.stream_url
            self._queued_url = upcoming[0] if upcoming else None
            commands = [encode_command("loadfile", channel.stream_url, "replace")]
            commands.extend(encode_command("loadfile", url, "append") for url in upcoming)
            if await self._send(commands):
                return
            log.warning("Lost the mpv IPC connection; restarting the player")
        await self.stop()
        handle = await launch_player(
            channel,
            preferred=self.preferred,
            subtitles_enabled=self.subtitles_enabled,
            upcoming=upcoming,
        )
        self._handle = handle
        self._current_url = channel.stream_url
        self._queued_url = upcoming[0] if upcoming else None
        if handle.command.ipc_path and sys.platform != "win32":
            connection = await connect_mpv_ipc(handle.command.ipc_path)
            if connection is not None:
                reader, writer = connection
                self._writer = writer
                observe = [
                    (json.dumps(command) + "\n").encode("utf-8")
                    for command in MpvEventDecoder.observe_commands()
                ]
                if await self._send(observe):
                    decoder = MpvEventDecoder(
                        self._on_buffering, self._on_error, self._path_changed
                    )
                    self._monitor = asyncio.create_task(watch_mpv_playback(reader, decoder))

    async def ensure_playing(
        self, channel: Channel, target: Optional[PlaybackTarget] = None
    ) -> None:
        """Like :meth:`play`, but keep the current file if mpv is already on it.

        Only the queued candidate is refreshed in that case, so a selection
        that follows mpv's own playlist advance does not restart the stream.
        """

        if (
            channel.stream_url == self._current_url
            and self._writer is not None
            and self.running
        ):
            commands = [encode_command("playlist-clear")]
            self._queued_url = target.next_url if target else None
            if self._queued_url:
                commands.append(encode_command("loadfile", self._queued_url, "append"))
            if await self._send(commands):
                return
        await self.play(channel, target)

    async def set_subtitles(self, enabled: bool) -> None:
        self.subtitles_enabled = enabled
        if self._writer is not None and self.running:
            command = encode_command("set_property", "sid", "auto" if enabled else "no")
            if not await self._send([command]):
                log.warning("Could not toggle subtitles: mpv IPC connection lost")

    async def _send(self, commands: Sequence[bytes]) -> bool:
        """Write *commands* to mpv; on a broken connection drop it and return False."""

        writer = self._writer
        if writer is None:
            return False
        try:
            for command in commands:
                writer.write(command)
            await writer.drain()
        except (ConnectionError, OSError):
            log.debug("mpv IPC write failed", exc_info=True)
            self._writer = None
            writer.close()
            return False
        return True

    def _path_changed(self, url: str) -> None:
        # Only an advance to the queued candidate counts; anything else is a
        # late report for a file that was already replaced.
        if url == self._current_url or url != self._queued_url:
            return
        log.info("mpv moved on to %s", url)
        self._current_url = url
        self._queued_url = None
        self._on_track_changed(url)

    async def stop(self) -> None:
        """Stop the player process and release IPC resources."""

        self._current_url = None
        self._queued_url = None
        if self._monitor is not None:
            self._monitor.cancel()
            self._monitor = None
        if self._writer is not None:
            self._writer.close()
            try:
                await self._writer.wait_closed()
            except (ConnectionError, OSError):
                log.debug("mpv IPC connection closed with an error", exc_info=True)
            self._writer = None
        handle = self._handle
        self._handle = None
        if handle is None:
            return
        if handle.process.returncode is None:
            try:
                handle.process.terminate()
            except ProcessLookupError:
                pass
            await handle.process.wait()
        for path in handle.command.cleanup_paths:
            shutil.rmtree(path, ignore_errors=True)
        log.info("Player stopped")


__all__ = [
    "MpvEventDecoder",
    "PlayerCommand",
    "PlayerError",
    "PlayerHandle",
    "PlayerSession",
    "build_player_command",
    "connect_mpv_ipc",
    "detect_player",
    "encode_command",
    "launch_player",
    "watch_mpv_playback",
]
