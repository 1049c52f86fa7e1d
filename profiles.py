# profiles.py
import logging
from typing import Callable, Dict, Optional

from game import DetectedGame, GameProfile, GameType, InputSettings
from game_types import classify

logger = logging.getLogger("Profiles")

Classifier = Callable[[DetectedGame], GameType]


def classify_detected_game(game: DetectedGame) -> GameType:
    return classify(game.install_path, game.executable_path)


class ProfileManager:
    """
    Caches one GameProfile per "launcher:game_id" for the life of the process.
    The first lookup classifies the game; later lookups return the same object.
    Single writer: callers sharing one manager across threads must lock.
    """

    def __init__(self, classifier: Classifier = classify_detected_game):
        self.classifier = classifier
        self._profiles: Dict[str, GameProfile] = {}

    def get_or_create(self, game: DetectedGame) -> GameProfile:
        key = game.key
        existing = self._profiles.get(key)
        if existing is not None:
            return existing

        game_type = self.classifier(game)
        game.game_type = game_type

        profile = GameProfile(
            game_id=game.game_id,
            game_name=game.game_name,
            launcher=game.launcher_name,
            game_type=game_type,
            install_path=game.install_path,
            executable_path=game.executable_path,
            input=InputSettings(controller_mapping=self._default_mapping(game_type)),
        )
        self._profiles[key] = profile
        logger.info(f"[Profile] Created {key} as {game_type.value}")
        return profile

    @staticmethod
    def _default_mapping(game_type: GameType) -> Optional[str]:
        if game_type is GameType.UNKNOWN:
            return None
        return f"{game_type.value}ControllerMapping"

    def get_profile(self, key: str) -> Optional[GameProfile]:
        return self._profiles.get(key)

    def clear(self):
        self._profiles.clear()

    def __len__(self):
        return len(self._profiles)

    def __contains__(self, key):
        return key in self._profiles
