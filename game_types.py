# game_types.py
"""
Game-type classification.

An install directory is matched against an ordered list of signatures
(files that must exist somewhere below it, plus folder names of which at
least half must exist). When no signature matches, the executable's file
name is checked for well-known tokens. Anything else, or an install
directory that does not exist, is UNKNOWN. Optional file patterns are
recorded with each signature but never decide a match.
"""
import os
import fnmatch
import logging
from typing import Iterable, List, Optional, Sequence, Set, Tuple
from dataclasses import dataclass, field

from game import GameType

logger = logging.getLogger("Classifier")


@dataclass(frozen=True)
class FilePattern:
    pattern: str
    required: bool = True


@dataclass
class GameTypeSignature:
    game_type: GameType
    file_patterns: List[FilePattern] = field(default_factory=list)
    folder_patterns: List[str] = field(default_factory=list)

    @property
    def required_patterns(self) -> List[str]:
        return [fp.pattern for fp in self.file_patterns if fp.required]


def _sig(game_type, required=(), optional=(), folders=()):
    patterns = [FilePattern(p, True) for p in required] + [FilePattern(p, False) for p in optional]
    return GameTypeSignature(game_type, patterns, list(folders))


# Order is priority: the first signature that matches wins
DEFAULT_SIGNATURES: List[GameTypeSignature] = [
    _sig(GameType.GTA5, required=("GTA5.exe", "common.rpf", "x64a.rpf"), folders=("update", "x64")),
    _sig(GameType.GTA4, required=("GTAIV.exe", "common.rpf"), folders=("pc",)),
    _sig(GameType.HOGWARTS_LEGACY, required=("HogwartsLegacy.exe",), optional=("Engine.dll",),
         folders=("Phoenix", "Content")),
    _sig(GameType.SPIDER_MAN, required=("Spider-Man.exe",), optional=("MarvelsFE.dll",),
         folders=("asset_resources",)),
    _sig(GameType.CYBERPUNK_2077, required=("Cyberpunk2077.exe",), optional=("REDprelauncher.exe",),
         folders=("r6", "bin", "archive")),
    _sig(GameType.RED_DEAD_REDEMPTION_2, required=("RDR2.exe",), folders=("x64", "update")),
    _sig(GameType.BLACK_OPS_1, required=("BlackOps.exe",), folders=("zone",)),
    _sig(GameType.BLACK_OPS_2, optional=("t6mp.exe", "t6sp.exe"), folders=("zone",)),
    _sig(GameType.BLACK_OPS_3, required=("BlackOps3.exe",), folders=("players", "zone")),
    _sig(GameType.WALKING_DEAD_SAINTS_SINNERS, required=("TWD.exe",), folders=("Content", "Engine")),
    _sig(GameType.BATMAN_ARKHAM_KNIGHT, required=("BatmanAK.exe",), folders=("BmGame", "Engine")),
    _sig(GameType.WATCH_DOGS_2, required=("WatchDogs2.exe",), folders=("data_win64",)),
]

# Checked in order, so longer tokens sit before their prefixes ("blackops3" before "blackops")
FILENAME_TOKENS: List[Tuple[str, GameType]] = [
    ("gta5", GameType.GTA5),
    ("gtaiv", GameType.GTA4),
    ("gta4", GameType.GTA4),
    ("hogwarts", GameType.HOGWARTS_LEGACY),
    ("spider", GameType.SPIDER_MAN),
    ("cyberpunk", GameType.CYBERPUNK_2077),
    ("rdr2", GameType.RED_DEAD_REDEMPTION_2),
    ("blackops3", GameType.BLACK_OPS_3),
    ("blackops", GameType.BLACK_OPS_1),
    ("t6", GameType.BLACK_OPS_2),
    ("twd", GameType.WALKING_DEAD_SAINTS_SINNERS),
    ("batmanak", GameType.BATMAN_ARKHAM_KNIGHT),
    ("watchdogs2", GameType.WATCH_DOGS_2),
]


class DirectoryIndex:
    """Lower-cased file and folder names found anywhere below a root."""

    def __init__(self, root: str):
        self.files: Set[str] = set()
        self.folders: Set[str] = set()
        for _current, dirs, files in os.walk(root):
            self.folders.update(d.lower() for d in dirs)
            self.files.update(f.lower() for f in files)

    @staticmethod
    def _any_match(names: Iterable[str], pattern: str) -> bool:
        pattern = pattern.lower()
        return any(fnmatch.fnmatchcase(name, pattern) for name in names)

    def has_file(self, pattern: str) -> bool:
        return self._any_match(self.files, pattern)

    def has_folder(self, pattern: str) -> bool:
        return self._any_match(self.folders, pattern)


def matches_signature(index: DirectoryIndex, signature: GameTypeSignature) -> bool:
    required = signature.required_patterns
    for pattern in required:
        if not index.has_file(pattern):
            return False

    matched_folders = sum(1 for folder in signature.folder_patterns if index.has_folder(folder))
    return matched_folders >= max(1, len(signature.folder_patterns) // 2)


def classify_by_filename(executable_path: Optional[str]) -> GameType:
    if not executable_path:
        return GameType.UNKNOWN
    exe_name = os.path.basename(executable_path).lower()
    for token, game_type in FILENAME_TOKENS:
        if token in exe_name:
            return game_type
    return GameType.UNKNOWN


def classify(install_path: Optional[str], executable_path: Optional[str] = None,
             signatures: Optional[Sequence[GameTypeSignature]] = None) -> GameType:
    """Returns the GameType of an install, or GameType.UNKNOWN."""
    if signatures is None:
        signatures = DEFAULT_SIGNATURES

    if not install_path or not os.path.isdir(install_path):
        logger.debug(f"[Classify] Install dir {install_path} is missing")
        return GameType.UNKNOWN

    index = DirectoryIndex(install_path)
    for signature in signatures:
        if matches_signature(index, signature):
            logger.debug(f"[Classify] {install_path} matched signature {signature.game_type.value}")
            return signature.game_type

    game_type = classify_by_filename(executable_path)
    if game_type is not GameType.UNKNOWN:
        logger.debug(f"[Classify] {executable_path} matched by file name as {game_type.value}")
    return game_type
