# game.py
import os
from enum import Enum
from typing import Optional
from dataclasses import dataclass, field, fields, asdict


class GameType(Enum):
    UNKNOWN = "Unknown"
    GTA4 = "GTA4"
    GTA5 = "GTA5"
    HOGWARTS_LEGACY = "HogwartsLegacy"
    SPIDER_MAN = "SpiderMan"
    CYBERPUNK_2077 = "Cyberpunk2077"
    RED_DEAD_REDEMPTION_2 = "RedDeadRedemption2"
    BLACK_OPS_1 = "CallOfDutyBlackOps1"
    BLACK_OPS_2 = "CallOfDutyBlackOps2"
    BLACK_OPS_3 = "CallOfDutyBlackOps3"
    WALKING_DEAD_SAINTS_SINNERS = "WalkingDeadSaintsSinners"
    BATMAN_ARKHAM_KNIGHT = "BatmanArkhamKnight"
    WATCH_DOGS_2 = "WatchDogs2"


class LaunchMethod(Enum):
    DIRECT = "direct"                      # executable started by path
    PROTOCOL = "protocol"                  # e.g. steam://run/271590
    VIA_LAUNCHER_APP = "via_launcher_app"  # start the store client first, then protocol


class ListingMethod(Enum):
    VDF_PARSE = "vdf"           # Steam
    JSON_MANIFESTS = "json"     # Epic
    DATABASE_PARSE = "db"       # GOG
    WIN_STORE_APPS = "winstore" # Xbox
    ROCKSTAR_LIBRARY = "rockstar"
    EA_LIBRARY = "ea"
    UBISOFT_LIBRARY = "ubisoft"


def make_game_key(launcher_name: str, game_id: str) -> str:
    return f"{launcher_name}:{game_id}"


@dataclass
class DetectedGame:
    game_id: str
    game_name: str
    install_path: str
    executable_path: str
    launcher_name: str
    launch_method: LaunchMethod = LaunchMethod.DIRECT

    # Filled in lazily by the profile manager
    game_type: GameType = GameType.UNKNOWN

    def __post_init__(self):
        if self.game_name:
            self.game_name = self.game_name.strip()

    @property
    def key(self) -> str:
        return make_game_key(self.launcher_name, self.game_id)

    @property
    def process_name(self) -> str:
        """Executable base name without extension, as the OS reports it."""
        return os.path.splitext(os.path.basename(self.executable_path))[0]

    def to_dict(self) -> dict:
        d = asdict(self)
        d['launch_method'] = self.launch_method.value
        d['game_type'] = self.game_type.value
        d['key'] = self.key
        return d

    @staticmethod
    def from_dict(data: dict) -> 'DetectedGame':
        class_fields = {f.name for f in fields(DetectedGame)}
        filtered_data = {k: v for k, v in data.items() if k in class_fields}
        if 'launch_method' in filtered_data:
            filtered_data['launch_method'] = LaunchMethod(filtered_data['launch_method'])
        if 'game_type' in filtered_data:
            filtered_data['game_type'] = GameType(filtered_data['game_type'])
        return DetectedGame(**filtered_data)

    def __str__(self):
        return f"{self.game_name} ({self.launcher_name})"


# --- Profile settings blocks ---

@dataclass
class OpenVRSettings:
    enabled: bool = False
    render_width: int = 0
    render_height: int = 0


@dataclass
class NativeSettings:
    force_aspect_ratio: bool = False
    aspect_ratio: float = 1.777  # 16:9


@dataclass
class RenderSettings:
    openvr: OpenVRSettings = field(default_factory=OpenVRSettings)
    native: NativeSettings = field(default_factory=NativeSettings)


@dataclass
class InputSettings:
    controller_mapping: Optional[str] = None
    snap_turning: bool = True
    snap_turn_angle: int = 45
    thumbstick_deadzone: float = 0.15


@dataclass
class GameProfile:
    game_id: str
    game_name: str
    launcher: str
    game_type: GameType
    install_path: str
    executable_path: str
    render: RenderSettings = field(default_factory=RenderSettings)
    input: InputSettings = field(default_factory=InputSettings)

    @property
    def key(self) -> str:
        return make_game_key(self.launcher, self.game_id)

    def to_dict(self) -> dict:
        d = asdict(self)
        d['game_type'] = self.game_type.value
        d['key'] = self.key
        return d
