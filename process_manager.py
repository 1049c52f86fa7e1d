# process_manager.py
"""
Starts games and resolves the OS process that ends up running them.

Launching through a store protocol or the store's own client never hands back
the game's process, so the game is found by diffing the pids that match its
executable name before and after the trigger. All waits are bounded by a
timeout and can be cancelled through a threading.Event.
"""
import os
import sys
import time
import logging
import threading
import subprocess
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Set

import psutil

from game import DetectedGame, LaunchMethod
from launchers import DEFAULT_LAUNCHERS, LauncherInfo, launchers_by_name

logger = logging.getLogger("ProcessManager")

PROCESS_TIMEOUT = 30.0
LAUNCHER_START_TIMEOUT = 10.0
POLL_INTERVAL = 1.0


class GameLaunchError(Exception):
    pass


class LaunchTimeoutError(GameLaunchError, TimeoutError):
    pass


class LaunchCancelledError(GameLaunchError):
    pass


class GameNotRunningError(GameLaunchError):
    pass


class UnsupportedLaunchMethodError(GameLaunchError, ValueError):
    pass


class LaunchState(Enum):
    IDLE = "idle"
    LAUNCHING = "launching"
    AWAITING_PROCESS = "awaiting_process"
    ATTACHED = "attached"
    FAILED = "failed"


# --- OS helpers ---

def _normalize_process_name(name: Optional[str]) -> str:
    name = (name or "").lower()
    return name[:-4] if name.endswith(".exe") else name


def find_processes(process_name: str) -> List[psutil.Process]:
    """Running processes whose image name equals process_name (case-insensitive, '.exe' optional)."""
    target = _normalize_process_name(process_name)
    matches = []
    for p in psutil.process_iter(['pid', 'name']):
        try:
            if _normalize_process_name(p.info['name']) == target:
                matches.append(p)
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            continue
    return matches


def open_uri(uri: str):
    """Hands a URI to the OS shell (protocol handlers such as steam://)."""
    if sys.platform == "win32":
        os.startfile(uri)
    elif sys.platform == "darwin":
        subprocess.Popen(["open", uri])
    else:
        subprocess.Popen(["xdg-open", uri])


def start_by_name(program: str):
    """Starts a program by name, the way the Run dialog would."""
    if sys.platform == "win32":
        subprocess.Popen(f'cmd /c start "" "{program}"', shell=True)
    else:
        subprocess.Popen([program])


def poll(probe: Callable[[], object], timeout: float, interval: float,
         stop_event: Optional[threading.Event] = None):
    """
    Calls probe until it returns something truthy or the timeout elapses.
    Returns the probe result, or None once the timeout elapses.
    Raises LaunchCancelledError as soon as stop_event is set.
    """
    stop_event = stop_event or threading.Event()
    deadline = time.monotonic() + timeout
    while True:
        if stop_event.is_set():
            raise LaunchCancelledError("Launch cancelled")
        result = probe()
        if result:
            return result
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return None
        if stop_event.wait(min(interval, remaining)):
            raise LaunchCancelledError("Launch cancelled")


class GameProcessManager:
    """
    Owns the process of one launch/attach session at a time.

    state moves IDLE -> LAUNCHING -> AWAITING_PROCESS -> ATTACHED; any failure
    leaves it FAILED. Every call blocks the calling thread until it resolves.
    """

    def __init__(self, launchers: Sequence[LauncherInfo] = DEFAULT_LAUNCHERS, config: Optional[Dict] = None,
                 list_processes: Callable[[str], List[psutil.Process]] = find_processes):
        self.launchers = launchers_by_name(launchers)
        self.config = config or {}
        self.list_processes = list_processes
        self.state = LaunchState.IDLE
        self.game_process: Optional[psutil.Process] = None
        self.current_game: Optional[DetectedGame] = None

    @property
    def process_timeout(self) -> float:
        return float(self.config.get('process_timeout', PROCESS_TIMEOUT))

    @property
    def launcher_start_timeout(self) -> float:
        return float(self.config.get('launcher_start_timeout', LAUNCHER_START_TIMEOUT))

    @property
    def poll_interval(self) -> float:
        return float(self.config.get('poll_interval', POLL_INTERVAL))

    def _set_state(self, state: LaunchState):
        if state is not self.state:
            logger.debug(f"[Launch] {self.state.value} -> {state.value}")
        self.state = state

    def _bind(self, game: DetectedGame, process: psutil.Process) -> psutil.Process:
        self.game_process = process
        self.current_game = game
        self._set_state(LaunchState.ATTACHED)
        logger.info(f"[Launch] {game.game_name} bound to PID {process.pid}")
        return process

    # --- Launch ---

    def launch_game(self, game: DetectedGame, stop_event: Optional[threading.Event] = None,
                    timeout: Optional[float] = None) -> psutil.Process:
        """
        Starts a game using its launch method and returns the game's process.
        Raises GameLaunchError (or a subclass) on any failure.
        """
        self._set_state(LaunchState.LAUNCHING)
        self.current_game = game
        logger.info(f"[Launch] Starting {game} via {getattr(game.launch_method, 'value', game.launch_method)}")
        try:
            if game.launch_method is LaunchMethod.DIRECT:
                return self._launch_direct(game)
            if game.launch_method is LaunchMethod.PROTOCOL:
                return self._launch_via_protocol(game, stop_event, timeout)
            if game.launch_method is LaunchMethod.VIA_LAUNCHER_APP:
                return self._launch_via_launcher(game, stop_event, timeout)
            raise UnsupportedLaunchMethodError(f"Unsupported launch method: {game.launch_method}")
        except GameLaunchError as e:
            self._set_state(LaunchState.FAILED)
            logger.error(f"[Launch] {game.game_name} failed: {e}")
            raise

    def _launch_direct(self, game: DetectedGame) -> psutil.Process:
        try:
            proc = subprocess.Popen([game.executable_path], cwd=os.path.dirname(game.executable_path))
            process = psutil.Process(proc.pid)
        except (OSError, psutil.Error) as e:
            raise GameLaunchError(f"Failed to launch game: {e}") from e
        return self._bind(game, process)

    def protocol_url(self, game: DetectedGame) -> str:
        launcher = self.launchers.get(game.launcher_name)
        if launcher:
            return launcher.protocol_url(game.game_id)
        return f"{game.launcher_name.lower()}://run/{game.game_id}"

    def _launch_via_protocol(self, game: DetectedGame, stop_event: Optional[threading.Event],
                             timeout: Optional[float]) -> psutil.Process:
        # Snapshot before the trigger so an instance that was already running is never picked
        existing = self.snapshot_pids(game)
        url = self.protocol_url(game)
        try:
            open_uri(url)
        except OSError as e:
            raise GameLaunchError(f"Failed to launch game via protocol {url}: {e}") from e
        return self.wait_for_game_process(game, existing, stop_event, timeout)

    def _launch_via_launcher(self, game: DetectedGame, stop_event: Optional[threading.Event],
                             timeout: Optional[float]) -> psutil.Process:
        launcher = self.launchers.get(game.launcher_name)
        if not launcher or not launcher.process_name:
            raise GameLaunchError(f"Unknown launcher: {game.launcher_name}")

        if not self.list_processes(launcher.process_name):
            logger.info(f"[Launch] Starting {launcher.name} ({launcher.process_name})")
            try:
                start_by_name(launcher.process_name)
            except OSError as e:
                raise GameLaunchError(f"Failed to start {launcher.name}: {e}") from e
            started = poll(lambda: self.list_processes(launcher.process_name),
                           self.launcher_start_timeout, self.poll_interval, stop_event)
            if not started:
                logger.warning(f"[Launch] {launcher.name} did not show up, trying the protocol anyway")

        return self._launch_via_protocol(game, stop_event, timeout)

    # --- Process discovery ---

    def snapshot_pids(self, game: DetectedGame) -> Set[int]:
        return {p.pid for p in self.list_processes(game.process_name)}

    def wait_for_game_process(self, game: DetectedGame, existing_pids: Set[int],
                              stop_event: Optional[threading.Event] = None,
                              timeout: Optional[float] = None) -> psutil.Process:
        """Waits for a process matching the game's executable whose pid is not in existing_pids."""
        self._set_state(LaunchState.AWAITING_PROCESS)
        timeout = self.process_timeout if timeout is None else timeout

        def new_process():
            for p in self.list_processes(game.process_name):
                if p.pid not in existing_pids:
                    return p
            return None

        process = poll(new_process, timeout, self.poll_interval, stop_event)
        if process is None:
            raise LaunchTimeoutError(f"Timed out waiting for game process: {game.process_name}")
        return self._bind(game, process)

    # --- Attach / liveness ---

    def attach_to_game(self, game: DetectedGame) -> psutil.Process:
        processes = self.list_processes(game.process_name)
        if not processes:
            self._set_state(LaunchState.FAILED)
            raise GameNotRunningError(f"Game {game.game_name} is not running")
        return self._bind(game, processes[0])

    def is_game_running(self, game: Optional[DetectedGame]) -> bool:
        if game is None:
            return False
        return len(self.list_processes(game.process_name)) > 0

    def detach(self):
        self.game_process = None
        self.current_game = None
        self._set_state(LaunchState.IDLE)
