import asyncio
import json
import shutil
from types import SimpleNamespace
from typing import Optional

import pytest

from zapdeck import player as player_module
from zapdeck.health import BufferingWatchdog
from zapdeck.navigation import PlaybackTarget
from zapdeck.player import (
    MpvEventDecoder,
    PlayerCommand,
    PlayerError,
    PlayerHandle,
    PlayerSession,
    build_player_command,
    detect_player,
    encode_command,
    watch_mpv_playback,
)
from zapdeck.playlist import Channel


CHANNEL = Channel(name="Test", stream_url="http://example/stream")


def test_detect_player_prefers_preferred(monkeypatch):
    calls = []

    def fake_which(cmd: str):
        calls.append(cmd)
        return "/usr/bin/mpv" if cmd == "mpv" else None

    monkeypatch.setattr(shutil, "which", fake_which)
    assert detect_player("mpv", candidates=["vlc", "mpv"]) == "/usr/bin/mpv"
    assert calls[0] == "mpv"


def test_build_player_command_raises_when_missing(monkeypatch):
    monkeypatch.setattr(shutil, "which", lambda _: None)
    with pytest.raises(PlayerError):
        build_player_command(CHANNEL)


def test_build_player_command_for_other_players(monkeypatch):
    monkeypatch.setattr(shutil, "which", lambda cmd: f"/usr/bin/{cmd}")
    command = build_player_command(CHANNEL, preferred="vlc", upcoming=["http://example/next"])
    assert isinstance(command, PlayerCommand)
    assert command.executable == "/usr/bin/vlc"
    assert command.args == ["http://example/stream"]
    assert command.ipc_path is None


def test_build_player_command_adds_mpv_flags(monkeypatch):
    monkeypatch.setattr(shutil, "which", lambda cmd: f"/usr/bin/{cmd}")
    command = build_player_command(
        CHANNEL,
        subtitles_enabled=False,
        upcoming=["http://example/next", CHANNEL.stream_url],
    )
    assert command.executable == "/usr/bin/mpv"
    expected_flags = [
        "--force-window=immediate",
        "--player-operation-mode=pseudo-gui",
        "--no-terminal",
        "--idle=yes",
        "--keep-open=no",
        "--cache=yes",
        "--prefetch-playlist=yes",
        "--hwdec=auto-safe",
    ]
    assert command.args[: len(expected_flags)] == expected_flags
    assert "--sid=no" in command.args
    assert command.args[-2:] == [CHANNEL.stream_url, "http://example/next"]
    ipc_flags = [arg for arg in command.args if arg.startswith("--input-ipc-server=")]
    assert ipc_flags, "mpv commands should include an IPC server flag"
    assert command.ipc_path is not None
    assert command.ipc_path in ipc_flags[0]
    for path in command.cleanup_paths:
        assert path.exists()
        shutil.rmtree(path, ignore_errors=True)


def test_build_player_command_keeps_subtitles_by_default(monkeypatch):
    monkeypatch.setattr(shutil, "which", lambda cmd: f"/usr/bin/{cmd}")
    command = build_player_command(CHANNEL)
    assert "--sid=no" not in command.args
    for path in command.cleanup_paths:
        shutil.rmtree(path, ignore_errors=True)


def _decoder(paths: Optional[list[str]] = None) -> tuple[MpvEventDecoder, list[bool], list[str]]:
    buffering: list[bool] = []
    errors: list[str] = []
    on_path = paths.append if paths is not None else None
    return MpvEventDecoder(buffering.append, errors.append, on_path), buffering, errors


def test_decoder_reports_buffering_transitions_once():
    decoder, buffering, errors = _decoder()
    decoder.feed({"event": "property-change", "name": "core-idle", "data": True})
    decoder.feed({"event": "property-change", "name": "paused-for-cache", "data": True})
    decoder.feed({"event": "property-change", "name": "core-idle", "data": False})
    decoder.feed({"event": "property-change", "name": "paused-for-cache", "data": False})
    decoder.feed({"event": "property-change", "name": "volume", "data": 50})
    assert buffering == [True, False]
    assert errors == []


def test_decoder_reports_load_errors():
    decoder, buffering, errors = _decoder()
    decoder.feed({"event": "end-file", "reason": "eof"})
    decoder.feed({"event": "end-file", "reason": "error", "file_error": "loading failed"})
    assert errors == ["loading failed"]


def test_decoder_start_file_clears_buffering():
    decoder, buffering, _ = _decoder()
    decoder.feed({"event": "property-change", "name": "core-idle", "data": True})
    decoder.feed({"event": "start-file"})
    assert buffering == [True, False]


def test_decoder_ignores_user_pause():
    decoder, buffering, _ = _decoder()
    decoder.feed({"event": "property-change", "name": "core-idle", "data": False})
    decoder.feed({"event": "property-change", "name": "pause", "data": True})
    decoder.feed({"event": "property-change", "name": "core-idle", "data": True})
    assert buffering == []

    decoder.feed({"event": "property-change", "name": "paused-for-cache", "data": True})
    assert buffering == [True]


def test_decoder_reports_idle_after_unpause():
    decoder, buffering, _ = _decoder()
    decoder.feed({"event": "property-change", "name": "pause", "data": True})
    decoder.feed({"event": "property-change", "name": "core-idle", "data": True})
    decoder.feed({"event": "start-file"})
    decoder.feed({"event": "property-change", "name": "core-idle", "data": True})
    assert buffering == []
    decoder.feed({"event": "property-change", "name": "pause", "data": False})
    assert buffering == [True]


def test_paused_channel_is_not_reported_as_stalled():
    now = [0.0]
    reported: list[Channel] = []
    watchdog = BufferingWatchdog(reported.append, grace=5.0, zap_window=2.0, clock=lambda: now[0])
    decoder = MpvEventDecoder(watchdog.buffering_changed, lambda _message: watchdog.error_occurred())
    watchdog.channel_switched(CHANNEL)

    decoder.feed({"event": "property-change", "name": "core-idle", "data": False})
    now[0] = 3.0
    decoder.feed({"event": "property-change", "name": "pause", "data": True})
    decoder.feed({"event": "property-change", "name": "core-idle", "data": True})
    now[0] = 13.0
    watchdog.poll()

    assert reported == []


def test_decoder_reports_path_changes():
    paths: list[str] = []
    decoder, _, _ = _decoder(paths)
    decoder.feed({"event": "property-change", "name": "path", "data": "http://example/a"})
    decoder.feed({"event": "property-change", "name": "path", "data": None})
    decoder.feed({"event": "property-change", "name": "path", "data": "http://example/b"})
    assert paths == ["http://example/a", "http://example/b"]


def test_observe_commands_cover_buffering_properties():
    commands = MpvEventDecoder.observe_commands()
    assert [command["command"][2] for command in commands] == [
        "core-idle",
        "paused-for-cache",
        "pause",
        "path",
    ]


def test_watch_mpv_playback_skips_garbage():
    decoder, buffering, errors = _decoder()

    async def scenario() -> None:
        reader = asyncio.StreamReader()
        reader.feed_data(b"not json\n")
        reader.feed_data(b'{"event": "property-change", "name": "core-idle", "data": true}\n')
        reader.feed_data(b'["list"]\n')
        reader.feed_data(b'{"event": "end-file", "reason": "error"}\n')
        reader.feed_eof()
        await watch_mpv_playback(reader, decoder)

    asyncio.run(scenario())
    assert buffering == [True]
    assert errors == ["playback error"]


class FakeWriter:
    def __init__(self, *, fail: bool = False) -> None:
        self.written: list[bytes] = []
        self.fail = fail
        self.closed = False

    def write(self, data: bytes) -> None:
        self.written.append(data)

    async def drain(self) -> None:
        if self.fail:
            raise ConnectionResetError("mpv went away")

    def close(self) -> None:
        self.closed = True

    async def wait_closed(self) -> None:
        return None


def _ipc_session(writer: FakeWriter, **kwargs) -> PlayerSession:
    session = PlayerSession(**kwargs)
    session._handle = PlayerHandle(
        process=SimpleNamespace(returncode=None),  # type: ignore[arg-type]
        command=PlayerCommand("/usr/bin/mpv", [], ipc_path="/tmp/ipc.sock"),
    )
    session._writer = writer  # type: ignore[assignment]
    return session


def test_session_switches_channels_over_ipc():
    session = PlayerSession()
    writer = FakeWriter()
    process = SimpleNamespace(returncode=None)
    session._handle = PlayerHandle(
        process=process,  # type: ignore[arg-type]
        command=PlayerCommand("/usr/bin/mpv", [], ipc_path="/tmp/ipc.sock"),
    )
    session._writer = writer  # type: ignore[assignment]
    target = PlaybackTarget(stream_url=CHANNEL.stream_url, next_url="http://example/next")

    asyncio.run(session.play(CHANNEL, target))
    asyncio.run(session.set_subtitles(False))

    commands = [json.loads(data)["command"] for data in writer.written]
    assert commands == [
        ["loadfile", CHANNEL.stream_url, "replace"],
        ["loadfile", "http://example/next", "append"],
        ["set_property", "sid", "no"],
    ]
    assert session.subtitles_enabled is False


def test_session_launches_player_when_not_running(monkeypatch):
    launched: list[tuple[Channel, list[str]]] = []

    async def fake_launch(channel, *, preferred=None, subtitles_enabled=True, upcoming=()):
        launched.append((channel, list(upcoming)))
        return PlayerHandle(
            process=SimpleNamespace(returncode=0),  # type: ignore[arg-type]
            command=PlayerCommand("/usr/bin/vlc", [channel.stream_url]),
        )

    monkeypatch.setattr(player_module, "launch_player", fake_launch)
    session = PlayerSession(preferred="vlc")

    asyncio.run(session.play(CHANNEL))

    assert launched == [(CHANNEL, [])]
    assert not session.running


def test_encode_command_is_newline_terminated_json():
    data = encode_command("loadfile", "http://x", "replace")
    assert data.endswith(b"\n")
    assert json.loads(data) == {"command": ["loadfile", "http://x", "replace"]}


def test_ensure_playing_keeps_current_file():
    writer = FakeWriter()
    session = _ipc_session(writer)
    first = PlaybackTarget(stream_url=CHANNEL.stream_url, next_url="http://example/next")
    asyncio.run(session.play(CHANNEL, first))
    writer.written.clear()

    later = PlaybackTarget(stream_url=CHANNEL.stream_url, next_url="http://example/other")
    asyncio.run(session.ensure_playing(CHANNEL, later))

    commands = [json.loads(data)["command"] for data in writer.written]
    assert commands == [["playlist-clear"], ["loadfile", "http://example/other", "append"]]


def test_ensure_playing_switches_to_a_different_channel():
    writer = FakeWriter()
    session = _ipc_session(writer)
    other = Channel(name="Other", stream_url="http://example/other")
    asyncio.run(session.play(CHANNEL))
    writer.written.clear()

    asyncio.run(session.ensure_playing(other))

    commands = [json.loads(data)["command"] for data in writer.written]
    assert commands == [["loadfile", other.stream_url, "replace"]]
    assert session.current_url == other.stream_url


def test_session_reports_playlist_advance_once():
    advanced: list[str] = []
    session = _ipc_session(FakeWriter(), on_track_changed=advanced.append)
    target = PlaybackTarget(stream_url=CHANNEL.stream_url, next_url="http://example/next")
    asyncio.run(session.play(CHANNEL, target))

    session._path_changed(CHANNEL.stream_url)
    session._path_changed("http://example/next")
    session._path_changed("http://example/next")

    assert advanced == ["http://example/next"]
    assert session.current_url == "http://example/next"


def test_session_ignores_late_reports_for_replaced_files():
    advanced: list[str] = []
    session = _ipc_session(FakeWriter(), on_track_changed=advanced.append)
    other = Channel(name="Other", stream_url="http://example/other")
    asyncio.run(session.play(CHANNEL, PlaybackTarget(CHANNEL.stream_url, "http://example/next")))
    asyncio.run(session.play(other))

    session._path_changed(CHANNEL.stream_url)
    session._path_changed("http://example/next")

    assert advanced == []
    assert session.current_url == other.stream_url


def test_set_subtitles_survives_lost_ipc_connection():
    writer = FakeWriter(fail=True)
    session = _ipc_session(writer)

    asyncio.run(session.set_subtitles(False))

    assert session.subtitles_enabled is False
    assert writer.closed
    assert session._writer is None


def test_play_relaunches_when_ipc_connection_is_lost(monkeypatch):
    launched: list[Channel] = []

    async def fake_launch(channel, *, preferred=None, subtitles_enabled=True, upcoming=()):
        launched.append(channel)
        return PlayerHandle(
            process=SimpleNamespace(returncode=0),  # type: ignore[arg-type]
            command=PlayerCommand("/usr/bin/mpv", [channel.stream_url]),
        )

    monkeypatch.setattr(player_module, "launch_player", fake_launch)
    session = _ipc_session(FakeWriter(fail=True))
    session._handle = PlayerHandle(
        process=SimpleNamespace(returncode=None, terminate=lambda: None, wait=_returns_zero),  # type: ignore[arg-type]
        command=PlayerCommand("/usr/bin/mpv", [], ipc_path="/tmp/ipc.sock"),
    )

    asyncio.run(session.play(CHANNEL))

    assert launched == [CHANNEL]
    assert session.current_url == CHANNEL.stream_url


async def _returns_zero() -> int:
    return 0
