# ============================================================================
#                             VR GAME CONVERTER
#                        CENTRAL APPLICATION ENGINE
# ============================================================================
# This module wires the core services together and exposes them over a
# local HTTP / Socket.IO API:
# 1.  Game Scanner: launcher registry probing and manifest parsing.
# 2.  Profile Manager: per-game profiles with lazy game-type classification.
# 3.  Process Manager: launch / attach / liveness for the selected game.
# 4.  Flask / Socket.IO Server: JSON endpoints plus scan/launch events.
# ============================================================================

import sys
import os
import logging
import threading
from typing import Dict, Optional

from flask import Flask, jsonify, request
from flask_socketio import SocketIO
from flask_cors import CORS

from config import initialize_environment, load_config
from game import make_game_key
from game_scanner import GameScanner
from launchers import DEFAULT_LAUNCHERS
from profiles import ProfileManager
from process_manager import (
    GameLaunchError,
    GameNotRunningError,
    GameProcessManager,
    LaunchTimeoutError,
    UnsupportedLaunchMethodError,
)

# ============================================================================
# [1] LOGGING INFRASTRUCTURE
# ============================================================================

def setup_master_logging(log_file: Optional[str] = None, level=logging.INFO):
    """
    Configures the global logging system.
    Writes to a log file in the data directory and to standard output.
    """
    log_file = log_file or os.path.join(initialize_environment(), 'app_runtime.log')
    log_format = '%(asctime)s - [%(levelname)s] - %(name)s - %(message)s'

    logging.basicConfig(
        level=level,
        format=log_format,
        handlers=[
            logging.FileHandler(log_file, encoding='utf-8'),
            logging.StreamHandler(sys.stdout)
        ]
    )

    # Silence third-party noise
    logging.getLogger('werkzeug').setLevel(logging.ERROR)
    logging.getLogger('engineio').setLevel(logging.ERROR)
    logging.getLogger('socketio').setLevel(logging.ERROR)

logger = logging.getLogger("VRGC_Core")

# ============================================================================
# [2] CORE ENGINE
# ============================================================================

class Engine:
    """
    Holds the scanner, profile cache and process manager for one process.
    The core services assume a single writer, so every call that scans,
    reads the game table or launches goes through `lock`.
    """

    def __init__(self, config: Dict, scanner: Optional[GameScanner] = None,
                 profiles: Optional[ProfileManager] = None,
                 processes: Optional[GameProcessManager] = None):
        self.config = config
        self.scanner = scanner or GameScanner(DEFAULT_LAUNCHERS, config)
        self.profiles = profiles or ProfileManager()
        self.processes = processes or GameProcessManager(DEFAULT_LAUNCHERS, config)
        self.lock = threading.Lock()

    def refresh(self):
        with self.lock:
            return self.scanner.refresh()

    def find_game(self, launcher: str, game_id: str):
        with self.lock:
            return self.scanner.get_game(make_game_key(launcher, game_id))


engine: Optional[Engine] = None


def get_engine() -> Engine:
    global engine
    if engine is None:
        engine = Engine(load_config())
    return engine

# ============================================================================
# [3] FLASK WEB INFRASTRUCTURE
# ============================================================================

app = Flask(__name__)
app.config['SECRET_KEY'] = os.environ.get("VRGC_SECRET_KEY", os.urandom(16).hex())
CORS(app, resources={r"/api/*": {"origins": "*"}})

socketio = SocketIO(app, cors_allowed_origins="*", async_mode='threading')


def _error(message: str, code: int):
    return jsonify({"status": "error", "message": message}), code


def _launch_error(err: GameLaunchError):
    if isinstance(err, GameNotRunningError):
        return _error(str(err), 404)
    if isinstance(err, LaunchTimeoutError):
        return _error(str(err), 504)
    if isinstance(err, UnsupportedLaunchMethodError):
        return _error(str(err), 400)
    return _error(str(err), 500)


def _requested_game():
    payload = request.get_json(silent=True) or {}
    launcher, game_id = payload.get('launcher'), payload.get('game_id')
    if not launcher or not game_id:
        return None
    return get_engine().find_game(launcher, str(game_id))


@app.route('/api/games', methods=['GET'])
def route_api_get_games():
    eng = get_engine()
    with eng.lock:
        games = eng.scanner.get_detected_games()
    return jsonify([g.to_dict() for g in games])


@app.route('/api/refresh', methods=['POST'])
def route_api_refresh():
    games = get_engine().refresh()
    logger.info(f"[Scanner] Processed {len(games)} entries.")
    socketio.emit('scan_complete', {'count': len(games)})
    return jsonify({"status": "success", "count": len(games)})


@app.route('/api/profile/<launcher>/<game_id>', methods=['GET'])
def route_api_profile(launcher, game_id):
    eng = get_engine()
    game = eng.find_game(launcher, game_id)
    if not game:
        return _error("Unknown game.", 404)
    with eng.lock:
        profile = eng.profiles.get_or_create(game)
    return jsonify(profile.to_dict())


@app.route('/api/launch', methods=['POST'])
def route_api_launch():
    """Launches a game and blocks until its process is resolved."""
    game = _requested_game()
    if not game:
        return _error("Metadata missing for this entry.", 404)

    eng = get_engine()
    try:
        with eng.lock:
            eng.profiles.get_or_create(game)
            process = eng.processes.launch_game(game)
    except GameLaunchError as launch_err:
        logger.error(f"[Launch] Sequence Failed: {launch_err}")
        return _launch_error(launch_err)

    payload = {'key': game.key, 'name': game.game_name, 'pid': process.pid}
    socketio.emit('game_started', payload)
    return jsonify({"status": "success", **payload})


@app.route('/api/attach', methods=['POST'])
def route_api_attach():
    game = _requested_game()
    if not game:
        return _error("Metadata missing for this entry.", 404)

    eng = get_engine()
    try:
        with eng.lock:
            eng.profiles.get_or_create(game)
            process = eng.processes.attach_to_game(game)
    except GameLaunchError as attach_err:
        logger.warning(f"[Attach] {attach_err}")
        return _launch_error(attach_err)

    payload = {'key': game.key, 'name': game.game_name, 'pid': process.pid}
    socketio.emit('game_started', payload)
    return jsonify({"status": "success", **payload})


@app.route('/api/status/<launcher>/<game_id>', methods=['GET'])
def route_api_game_status(launcher, game_id):
    eng = get_engine()
    game = eng.find_game(launcher, game_id)
    if not game:
        return _error("Unknown game.", 404)
    return jsonify({
        "running": eng.processes.is_game_running(game),
        "state": eng.processes.state.value,
    })


if __name__ == '__main__':
    setup_master_logging()
    config = load_config()
    engine = Engine(config)

    logger.info("[Engine] Initial library scan...")
    engine.refresh()

    port = int(config.get('server_port', 5000))
    logger.info(f"[Engine] Starting Flask/Socket.IO on http://127.0.0.1:{port}")
    socketio.run(app, host='127.0.0.1', port=port, allow_unsafe_werkzeug=True, use_reloader=False)
