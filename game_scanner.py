# game_scanner.py
import os
import json
import vdf
import logging
from typing import Dict, Iterable, List, Optional, Sequence
from concurrent.futures import ThreadPoolExecutor

from game import DetectedGame, LaunchMethod, ListingMethod
from launchers import DEFAULT_LAUNCHERS, LauncherInfo, RegistryReader, find_launcher_path, read_registry_value

logger = logging.getLogger("Scanner")

MANUAL_LAUNCHER = "Manual"
EXE_SIZE_THRESHOLD = 5 * 1024 * 1024  # 5 MB
NON_GAME_EXE_TOKENS = ("unins", "launcher", "setup", "redist", "crash")


# --- Key/value manifest helpers ---

def extract_quoted_value(line: str, index: int = 1) -> Optional[str]:
    """
    Returns the index-th quoted token of a line ('"key" "value"' -> index 1 is value).
    Returns None when the line does not have that many complete tokens.
    """
    tokens = []
    pos = 0
    while len(tokens) <= index:
        start = line.find('"', pos)
        if start < 0:
            return None
        end = line.find('"', start + 1)
        if end < 0:
            return None
        tokens.append(line[start + 1:end])
        pos = end + 1
    return tokens[index]


def _unescape(value: str) -> str:
    return value.replace('\\\\', '\\')


def scan_key_values(lines: Iterable[str], keys: Sequence[str]) -> Dict[str, str]:
    """Line scanner for flat '"key" "value"' manifests. Malformed lines are skipped."""
    wanted = {k.lower() for k in keys}
    found: Dict[str, str] = {}
    for line in lines:
        key = extract_quoted_value(line, 0)
        if key is None or key.lower() not in wanted or key.lower() in found:
            continue
        value = extract_quoted_value(line, 1)
        if value is not None:
            found[key.lower()] = _unescape(value)
    return found


def _walk_vdf_paths(node: dict) -> List[str]:
    paths = []
    for key, value in node.items():
        if isinstance(value, dict):
            paths.extend(_walk_vdf_paths(value))
        elif key.lower() == "path" and isinstance(value, str):
            paths.append(value)
    return paths


def _lower_keys(node: dict) -> dict:
    return {k.lower(): v for k, v in node.items()}


def parse_library_folders(vdf_path: str) -> List[str]:
    """Returns every "path" entry of a libraryfolders.vdf that exists on disk, in file order."""
    try:
        with open(vdf_path, 'r', encoding='utf-8', errors='ignore') as f:
            text = f.read()
    except OSError as e:
        logger.warning(f"[Steam] Cannot read {vdf_path}: {e}")
        return []

    try:
        candidates = _walk_vdf_paths(vdf.loads(text))
    except SyntaxError as e:
        logger.warning(f"[Steam] {vdf_path} is malformed ({e}), falling back to line scan")
        candidates = []
        for line in text.splitlines():
            if extract_quoted_value(line, 0) != "path":
                continue
            value = extract_quoted_value(line, 1)
            if value:
                candidates.append(_unescape(value))

    return [p for p in candidates if os.path.isdir(p)]


def read_app_manifest(manifest_path: str) -> Dict[str, str]:
    """Reads appid/name/installdir from an appmanifest_*.acf file. Missing fields are absent."""
    fields = ("appid", "name", "installdir")
    with open(manifest_path, 'r', encoding='utf-8', errors='ignore') as f:
        text = f.read()
    try:
        state = vdf.loads(text).get('AppState')
    except SyntaxError:
        state = None
    if not isinstance(state, dict):
        # Flat or malformed manifests: take the keys from whichever lines carry them
        return scan_key_values(text.splitlines(), fields)
    state = _lower_keys(state)
    return {k: state[k] for k in fields if isinstance(state.get(k), str)}


# --- Executable heuristic ---

def _is_non_game_exe(filename: str) -> bool:
    lowered = filename.lower()
    return any(token in lowered for token in NON_GAME_EXE_TOKENS)


def _list_executables(game_path: str) -> List[str]:
    exes = []
    for root, dirs, files in os.walk(game_path):
        dirs.sort()
        for f in sorted(files):
            if f.lower().endswith(".exe"):
                exes.append(os.path.join(root, f))
    return exes


def find_game_executable(game_path: str, size_threshold: int = EXE_SIZE_THRESHOLD) -> Optional[str]:
    """
    Picks the main executable of an install: the first large non-helper binary,
    then conventional names, then whatever executable exists.
    """
    if not game_path or not os.path.isdir(game_path):
        return None

    all_exes = _list_executables(game_path)
    candidates = [p for p in all_exes if not _is_non_game_exe(os.path.basename(p))]

    for exe in candidates:
        try:
            if os.path.getsize(exe) > size_threshold:
                return exe
        except OSError:
            continue

    folder_name = os.path.basename(os.path.normpath(game_path))
    for name in ("game.exe", "app.exe", f"{folder_name}.exe"):
        path = os.path.join(game_path, name)
        if os.path.isfile(path):
            return path

    if candidates:
        return candidates[0]
    return all_exes[0] if all_exes else None


class GameScanner:
    """
    Owns the detected-game table for one scan. Launchers are scanned on a
    small pool but merged here in registry order, so the table has a single
    writer. Concurrent refresh() calls from several threads are not supported.
    """

    def __init__(self, launchers: Sequence[LauncherInfo] = DEFAULT_LAUNCHERS,
                 config: Optional[Dict] = None, read_registry: RegistryReader = read_registry_value):
        self.launchers = tuple(launchers)
        self.config = config or {}
        self.read_registry = read_registry
        self._games: Dict[str, DetectedGame] = {}

    @property
    def size_threshold(self) -> int:
        return int(float(self.config.get('exe_size_threshold_mb', 5)) * 1024 * 1024)

    # --- Public accessors ---

    def refresh(self) -> List[DetectedGame]:
        self._games.clear()
        logger.info("--- STARTING GAME SCAN ---")

        workers = max(1, int(self.config.get('scan_workers', 4)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [executor.submit(self._scan_launcher, launcher) for launcher in self.launchers]
            for future in futures:
                self._merge(future.result())

        self._merge(self._load_manual_games())

        logger.info(f"--- SCAN COMPLETE. Found {len(self._games)} games. ---")
        return self.get_detected_games()

    def get_detected_games(self) -> List[DetectedGame]:
        return list(self._games.values())

    def get_game(self, key: str) -> Optional[DetectedGame]:
        return self._games.get(key)

    def _merge(self, games: Iterable[DetectedGame]):
        for game in games:
            self._games[game.key] = game

    # --- Dispatch ---

    def _scan_launcher(self, launcher: LauncherInfo) -> List[DetectedGame]:
        try:
            install_dir = find_launcher_path(launcher, self.read_registry)
            if not install_dir and launcher.listing_method is not ListingMethod.VDF_PARSE:
                return []
            games = self.list_games(launcher, install_dir)
        except Exception as e:
            logger.error(f"{launcher.name} scan error: {e}")
            return []

        method = self._launch_method_for(launcher)
        for g in games:
            g.launch_method = method
        if games:
            logger.info(f"[{launcher.name}] {len(games)} games")
        return games

    def _launch_method_for(self, launcher: LauncherInfo) -> LaunchMethod:
        override = self.config.get('launch_methods', {}).get(launcher.name)
        if override:
            try:
                return LaunchMethod(override)
            except ValueError:
                logger.warning(f"[Config] Ignoring unknown launch method '{override}' for {launcher.name}")
        return launcher.default_launch_method

    def list_games(self, launcher: LauncherInfo, install_dir: Optional[str]) -> List[DetectedGame]:
        method = launcher.listing_method
        if method is ListingMethod.VDF_PARSE:
            return self._find_steam_games(launcher, install_dir)
        if method is ListingMethod.JSON_MANIFESTS:
            return self._find_epic_games(launcher, install_dir)
        logger.debug(f"[{launcher.name}] Listing method '{method.value}' not supported yet")
        return []

    # --- STEAM ---

    def _steam_libraries(self, steam_path: Optional[str]) -> List[str]:
        libraries = []
        if steam_path:
            vdf_path = os.path.join(steam_path, "steamapps", "libraryfolders.vdf")
            if os.path.isfile(vdf_path):
                libraries.extend(parse_library_folders(vdf_path))
            libraries.append(steam_path)

        for path in self.config.get('scan_paths', []):
            if os.path.isdir(path):
                libraries.append(path)

        unique, seen = [], set()
        for lib in libraries:
            norm = os.path.normcase(os.path.normpath(lib))
            if norm not in seen:
                seen.add(norm)
                unique.append(lib)
        return unique

    def _find_steam_games(self, launcher: LauncherInfo, steam_path: Optional[str]) -> List[DetectedGame]:
        games = []
        for lib in self._steam_libraries(steam_path):
            steamapps = os.path.join(lib, "steamapps")
            if not os.path.isdir(steamapps):
                continue
            for f in sorted(os.listdir(steamapps)):
                if f.startswith("appmanifest_") and f.endswith(".acf"):
                    game = self.parse_app_manifest(os.path.join(steamapps, f), lib, launcher.name)
                    if game:
                        games.append(game)
        return games

    def parse_app_manifest(self, manifest_path: str, library_path: str,
                           launcher_name: str = "Steam") -> Optional[DetectedGame]:
        try:
            m = read_app_manifest(manifest_path)
        except Exception as e:
            logger.warning(f"[Steam] Cannot read manifest {manifest_path}: {e}")
            return None

        appid, name, install_dir = m.get('appid'), m.get('name'), m.get('installdir')
        if not (appid and name and install_dir):
            logger.debug(f"[Steam] Skipping {manifest_path}: missing appid/name/installdir")
            return None

        game_path = os.path.join(library_path, "steamapps", "common", install_dir)
        exe_path = find_game_executable(game_path, self.size_threshold)
        if not exe_path:
            logger.debug(f"[Steam] Skipping {name}: no executable in {game_path}")
            return None

        return DetectedGame(
            game_id=appid,
            game_name=name,
            install_path=game_path,
            executable_path=exe_path,
            launcher_name=launcher_name,
        )

    # --- EPIC ---

    def _epic_manifest_dirs(self, install_dir: Optional[str]) -> List[str]:
        dirs = [os.path.join(os.environ.get('ProgramData', r'C:\ProgramData'),
                             'Epic', 'EpicGamesLauncher', 'Data', 'Manifests')]
        if install_dir:
            dirs.append(os.path.join(install_dir, 'Data', 'Manifests'))
        return [d for d in dirs if os.path.isdir(d)]

    def _find_epic_games(self, launcher: LauncherInfo, install_dir: Optional[str]) -> List[DetectedGame]:
        games, seen = [], set()
        for manifests_path in self._epic_manifest_dirs(install_dir):
            for f in sorted(os.listdir(manifests_path)):
                if not f.endswith(".item"):
                    continue
                game = self.parse_epic_manifest(os.path.join(manifests_path, f), launcher.name)
                if game and game.game_id not in seen:
                    seen.add(game.game_id)
                    games.append(game)
        return games

    def parse_epic_manifest(self, manifest_path: str, launcher_name: str = "Epic Games") -> Optional[DetectedGame]:
        try:
            with open(manifest_path, 'r', encoding='utf-8') as file:
                d = json.load(file)
        except (OSError, ValueError) as e:
            logger.warning(f"[Epic] Cannot parse manifest {manifest_path}: {e}")
            return None
        if not isinstance(d, dict):
            return None

        app_name, name, path = d.get('AppName'), d.get('DisplayName'), d.get('InstallLocation')
        if not (app_name and name and path and os.path.isdir(path)):
            return None

        exe_path = None
        launch_exe = d.get('LaunchExecutable')
        if launch_exe and os.path.isfile(os.path.join(path, launch_exe)):
            exe_path = os.path.join(path, launch_exe)
        else:
            exe_path = find_game_executable(path, self.size_threshold)
        if not exe_path:
            return None

        return DetectedGame(
            game_id=app_name,
            game_name=name,
            install_path=path,
            executable_path=exe_path,
            launcher_name=launcher_name,
        )

    # --- MANUAL ---

    def _load_manual_games(self) -> List[DetectedGame]:
        games = []
        for name, exe_path in self.config.get('manual_games', {}).items():
            if not (isinstance(exe_path, str) and os.path.isfile(exe_path)):
                logger.warning(f"[Manual] Skipping '{name}': {exe_path} not found")
                continue
            games.append(DetectedGame(
                game_id=name,
                game_name=name,
                install_path=os.path.dirname(exe_path),
                executable_path=exe_path,
                launcher_name=MANUAL_LAUNCHER,
                launch_method=LaunchMethod.DIRECT,
            ))
        return games
