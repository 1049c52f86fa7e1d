from __future__ import annotations

import os
import threading
from typing import Dict, List

import psutil
import pytest

import process_manager as pm
from game import DetectedGame, LaunchMethod
from launchers import DEFAULT_LAUNCHERS
from process_manager import (
    GameLaunchError,
    GameNotRunningError,
    GameProcessManager,
    LaunchCancelledError,
    LaunchState,
    LaunchTimeoutError,
    UnsupportedLaunchMethodError,
    find_processes,
    poll,
)

FAST = {"process_timeout": 0.3, "launcher_start_timeout": 0.3, "poll_interval": 0.01}


class FakeProcess:
    def __init__(self, pid: int):
        self.pid = pid


class FakeProcessTable:
    """Process lister whose answers per name are scripted call by call."""

    def __init__(self, scripts: Dict[str, List[List[int]]]):
        self.scripts = {k.lower(): list(v) for k, v in scripts.items()}
        self.calls: List[str] = []

    def __call__(self, name: str):
        self.calls.append(name)
        script = self.scripts.get(name.lower(), [[]])
        pids = script.pop(0) if len(script) > 1 else script[0]
        return [FakeProcess(pid) for pid in pids]


def _game(method: LaunchMethod = LaunchMethod.PROTOCOL, launcher: str = "Steam") -> DetectedGame:
    return DetectedGame(
        game_id="271590",
        game_name="Grand Theft Auto V",
        install_path=r"C:\Games\GTAV",
        executable_path=os.path.join("Games", "GTAV", "GTA5.exe"),
        launcher_name=launcher,
        launch_method=method,
    )


@pytest.fixture
def opened(monkeypatch):
    urls = []
    monkeypatch.setattr(pm, "open_uri", urls.append)
    return urls


@pytest.fixture
def started(monkeypatch):
    names = []
    monkeypatch.setattr(pm, "start_by_name", names.append)
    return names


def test_protocol_launch_resolves_the_new_process(opened) -> None:
    table = FakeProcessTable({"GTA5": [[100], [100], [100, 200]]})
    manager = GameProcessManager(DEFAULT_LAUNCHERS, FAST, list_processes=table)

    process = manager.launch_game(_game())

    assert process.pid == 200
    assert opened == ["steam://run/271590"]
    assert manager.state is LaunchState.ATTACHED
    assert manager.game_process is process


def test_preexisting_process_is_never_picked_and_times_out(opened) -> None:
    table = FakeProcessTable({"GTA5": [[100]]})
    manager = GameProcessManager(DEFAULT_LAUNCHERS, FAST, list_processes=table)

    with pytest.raises(LaunchTimeoutError):
        manager.launch_game(_game())

    assert manager.state is LaunchState.FAILED
    assert manager.game_process is None
    assert len(table.calls) > 2


def test_timeout_is_a_builtin_timeout_error(opened) -> None:
    manager = GameProcessManager(DEFAULT_LAUNCHERS, FAST, list_processes=FakeProcessTable({}))
    with pytest.raises(TimeoutError):
        manager.launch_game(_game(), timeout=0.02)


def test_launch_can_be_cancelled(opened) -> None:
    stop = threading.Event()
    stop.set()
    manager = GameProcessManager(DEFAULT_LAUNCHERS, {"process_timeout": 30}, list_processes=FakeProcessTable({}))

    with pytest.raises(LaunchCancelledError):
        manager.launch_game(_game(), stop_event=stop)
    assert manager.state is LaunchState.FAILED


def test_via_launcher_starts_the_store_client_first(opened, started) -> None:
    table = FakeProcessTable({"steam": [[], [], [42]], "GTA5": [[], [300]]})
    manager = GameProcessManager(DEFAULT_LAUNCHERS, FAST, list_processes=table)

    process = manager.launch_game(_game(LaunchMethod.VIA_LAUNCHER_APP))

    assert started == ["steam"]
    assert opened == ["steam://run/271590"]
    assert process.pid == 300


def test_via_launcher_skips_start_when_client_running(opened, started) -> None:
    table = FakeProcessTable({"steam": [[42]], "GTA5": [[], [300]]})
    manager = GameProcessManager(DEFAULT_LAUNCHERS, FAST, list_processes=table)

    manager.launch_game(_game(LaunchMethod.VIA_LAUNCHER_APP))

    assert started == []


def test_via_launcher_unknown_store_fails(opened, started) -> None:
    manager = GameProcessManager(DEFAULT_LAUNCHERS, FAST, list_processes=FakeProcessTable({}))
    with pytest.raises(GameLaunchError):
        manager.launch_game(_game(LaunchMethod.VIA_LAUNCHER_APP, launcher="Nowhere"))
    assert started == []


def test_protocol_uses_launcher_template(opened) -> None:
    table = FakeProcessTable({"GTA5": [[], [1]]})
    manager = GameProcessManager(DEFAULT_LAUNCHERS, FAST, list_processes=table)

    manager.launch_game(_game(launcher="Epic Games"))

    assert opened == ["com.epicgames.launcher://apps/271590?action=launch&silent=true"]


def test_direct_launch_uses_exe_directory(monkeypatch) -> None:
    calls = []

    class FakePopen:
        def __init__(self, args, cwd=None):
            calls.append((args, cwd))
            self.pid = os.getpid()

    monkeypatch.setattr(pm.subprocess, "Popen", FakePopen)
    game = _game(LaunchMethod.DIRECT)
    manager = GameProcessManager(DEFAULT_LAUNCHERS, FAST, list_processes=FakeProcessTable({}))

    process = manager.launch_game(game)

    assert calls == [([game.executable_path], os.path.dirname(game.executable_path))]
    assert process.pid == os.getpid()
    assert manager.state is LaunchState.ATTACHED


def test_direct_launch_failure_is_wrapped(monkeypatch) -> None:
    def boom(*args, **kwargs):
        raise FileNotFoundError("no such file")

    monkeypatch.setattr(pm.subprocess, "Popen", boom)
    manager = GameProcessManager(DEFAULT_LAUNCHERS, FAST, list_processes=FakeProcessTable({}))

    with pytest.raises(GameLaunchError) as excinfo:
        manager.launch_game(_game(LaunchMethod.DIRECT))
    assert isinstance(excinfo.value.__cause__, FileNotFoundError)
    assert manager.state is LaunchState.FAILED


def test_unsupported_launch_method() -> None:
    game = _game()
    game.launch_method = "teleport"
    manager = GameProcessManager(DEFAULT_LAUNCHERS, FAST, list_processes=FakeProcessTable({}))

    with pytest.raises(UnsupportedLaunchMethodError):
        manager.launch_game(game)


def test_attach_binds_first_match() -> None:
    manager = GameProcessManager(DEFAULT_LAUNCHERS, FAST, list_processes=FakeProcessTable({"GTA5": [[7, 8]]}))

    assert manager.attach_to_game(_game()).pid == 7
    assert manager.state is LaunchState.ATTACHED

    manager.detach()
    assert manager.state is LaunchState.IDLE
    assert manager.game_process is None


def test_attach_to_stopped_game_fails() -> None:
    manager = GameProcessManager(DEFAULT_LAUNCHERS, FAST, list_processes=FakeProcessTable({}))
    with pytest.raises(GameNotRunningError):
        manager.attach_to_game(_game())
    assert manager.state is LaunchState.FAILED


def test_liveness() -> None:
    manager = GameProcessManager(DEFAULT_LAUNCHERS, FAST, list_processes=FakeProcessTable({"GTA5": [[1], []]}))
    assert manager.is_game_running(_game()) is True
    assert manager.is_game_running(_game()) is False
    assert manager.is_game_running(None) is False


def test_poll_returns_none_after_timeout() -> None:
    calls = []

    def probe():
        calls.append(1)
        return None

    assert poll(probe, timeout=0.03, interval=0.01) is None
    assert len(calls) >= 2


def test_poll_returns_first_truthy_result() -> None:
    answers = iter([None, [], "found"])
    assert poll(lambda: next(answers), timeout=5, interval=0.001) == "found"


def test_find_processes_sees_current_interpreter() -> None:
    me = psutil.Process()
    pids = {p.pid for p in find_processes(me.name().upper())}
    assert me.pid in pids
