# launchers.py
import os
import sys
import logging
from typing import Callable, Dict, Optional, Tuple
from dataclasses import dataclass

from game import LaunchMethod, ListingMethod

if sys.platform == "win32":
    import winreg
else:
    winreg = None

logger = logging.getLogger("Launchers")

RegistryReader = Callable[[str, str], Optional[str]]


@dataclass(frozen=True)
class LauncherInfo:
    name: str
    registry_keys: Tuple[str, ...]
    listing_method: ListingMethod
    process_name: str
    install_path_value: Optional[str] = None
    # None means "<lowercased name>://run/{game_id}"
    protocol_template: Optional[str] = None
    default_launch_method: LaunchMethod = LaunchMethod.DIRECT

    def protocol_url(self, game_id: str) -> str:
        template = self.protocol_template or f"{self.name.lower()}://run/{{game_id}}"
        return template.format(game_id=game_id)


STEAM = LauncherInfo(
    name="Steam",
    registry_keys=(r"SOFTWARE\Valve\Steam", r"SOFTWARE\WOW6432Node\Valve\Steam"),
    install_path_value="InstallPath",
    listing_method=ListingMethod.VDF_PARSE,
    process_name="steam",
)

EPIC = LauncherInfo(
    name="Epic Games",
    registry_keys=(r"SOFTWARE\Epic Games", r"SOFTWARE\WOW6432Node\Epic Games"),
    install_path_value="InstallLocation",
    listing_method=ListingMethod.JSON_MANIFESTS,
    process_name="EpicGamesLauncher",
    protocol_template="com.epicgames.launcher://apps/{game_id}?action=launch&silent=true",
)

GOG = LauncherInfo(
    name="GOG Galaxy",
    registry_keys=(r"SOFTWARE\GOG.com\GalaxyClient", r"SOFTWARE\WOW6432Node\GOG.com\GalaxyClient"),
    install_path_value="ClientInstallationPath",
    listing_method=ListingMethod.DATABASE_PARSE,
    process_name="GalaxyClient",
)

XBOX = LauncherInfo(
    name="Xbox",
    registry_keys=(r"SOFTWARE\Microsoft\GamingServices",),
    listing_method=ListingMethod.WIN_STORE_APPS,
    process_name="XboxApp",
)

ROCKSTAR = LauncherInfo(
    name="Rockstar Games Launcher",
    registry_keys=(r"SOFTWARE\Rockstar Games\Launcher", r"SOFTWARE\WOW6432Node\Rockstar Games\Launcher"),
    install_path_value="InstallFolder",
    listing_method=ListingMethod.ROCKSTAR_LIBRARY,
    process_name="Launcher",
)

EA = LauncherInfo(
    name="EA App",
    registry_keys=(r"SOFTWARE\Electronic Arts\EA Desktop", r"SOFTWARE\WOW6432Node\Electronic Arts\EA Desktop"),
    install_path_value="InstallLocation",
    listing_method=ListingMethod.EA_LIBRARY,
    process_name="EADesktop",
)

UBISOFT = LauncherInfo(
    name="Ubisoft Connect",
    registry_keys=(r"SOFTWARE\Ubisoft\Ubisoft Connect", r"SOFTWARE\WOW6432Node\Ubisoft\Ubisoft Connect"),
    install_path_value="InstallDir",
    listing_method=ListingMethod.UBISOFT_LIBRARY,
    process_name="upc",
)

# Probe order is scan order
DEFAULT_LAUNCHERS: Tuple[LauncherInfo, ...] = (STEAM, EPIC, GOG, XBOX, ROCKSTAR, EA, UBISOFT)


def launchers_by_name(launchers) -> Dict[str, LauncherInfo]:
    return {launcher.name: launcher for launcher in launchers}


def read_registry_value(key_path: str, value_name: str) -> Optional[str]:
    """Reads a string value from HKEY_LOCAL_MACHINE. Returns None when absent."""
    if winreg is None:
        return None
    try:
        with winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, key_path) as hkey:
            value, _ = winreg.QueryValueEx(hkey, value_name)
    except OSError:
        return None
    return value if isinstance(value, str) else None


def find_launcher_path(launcher: LauncherInfo, read_value: RegistryReader = read_registry_value) -> Optional[str]:
    """
    Probes the launcher's registry keys in order and returns the first
    install directory that exists on disk. A missing launcher is normal,
    so this never raises.
    """
    if not launcher.install_path_value:
        return None

    for key_path in launcher.registry_keys:
        try:
            path = read_value(key_path, launcher.install_path_value)
        except Exception as e:
            logger.debug(f"[Registry] {launcher.name}: {key_path} unreadable: {e}")
            continue
        if path and os.path.isdir(path):
            logger.info(f"[Registry] {launcher.name} found at {path}")
            return path

    logger.debug(f"[Registry] {launcher.name} not installed")
    return None
