from __future__ import annotations

from pathlib import Path

from conftest import make_file
from game import DetectedGame, GameType
from profiles import ProfileManager


def _game(tmp_path: Path, launcher: str = "Steam", game_id: str = "271590") -> DetectedGame:
    return DetectedGame(
        game_id=game_id,
        game_name="Grand Theft Auto V",
        install_path=str(tmp_path),
        executable_path=str(tmp_path / "GTA5.exe"),
        launcher_name=launcher,
    )


class CountingClassifier:
    def __init__(self, result: GameType = GameType.GTA5):
        self.result = result
        self.calls = 0

    def __call__(self, game: DetectedGame) -> GameType:
        self.calls += 1
        return self.result


def test_same_key_returns_same_profile_and_classifies_once(tmp_path: Path) -> None:
    classifier = CountingClassifier()
    manager = ProfileManager(classifier)

    first = manager.get_or_create(_game(tmp_path))
    second = manager.get_or_create(_game(tmp_path))

    assert first is second
    assert classifier.calls == 1
    assert len(manager) == 1
    assert manager.get_profile("Steam:271590") is first


def test_profile_carries_classification_and_defaults(tmp_path: Path) -> None:
    game = _game(tmp_path)
    profile = ProfileManager(CountingClassifier()).get_or_create(game)

    assert game.game_type is GameType.GTA5
    assert profile.game_type is GameType.GTA5
    assert profile.key == "Steam:271590"
    assert profile.render.openvr.enabled is False
    assert profile.render.openvr.render_width == 0
    assert profile.render.native.aspect_ratio == 1.777
    assert profile.input.controller_mapping == "GTA5ControllerMapping"


def test_unknown_game_has_no_controller_mapping(tmp_path: Path) -> None:
    profile = ProfileManager(CountingClassifier(GameType.UNKNOWN)).get_or_create(_game(tmp_path))
    assert profile.game_type is GameType.UNKNOWN
    assert profile.input.controller_mapping is None


def test_launcher_is_part_of_the_key(tmp_path: Path) -> None:
    classifier = CountingClassifier()
    manager = ProfileManager(classifier)

    steam = manager.get_or_create(_game(tmp_path, "Steam", "1"))
    epic = manager.get_or_create(_game(tmp_path, "Epic Games", "1"))

    assert steam is not epic
    assert classifier.calls == 2


def test_clear_forgets_profiles(tmp_path: Path) -> None:
    classifier = CountingClassifier()
    manager = ProfileManager(classifier)
    first = manager.get_or_create(_game(tmp_path))

    manager.clear()
    second = manager.get_or_create(_game(tmp_path))

    assert first is not second
    assert classifier.calls == 2


def test_default_classifier_reads_the_install_dir(tmp_path: Path) -> None:
    make_file(tmp_path / "GTA5.exe")
    make_file(tmp_path / "common.rpf")
    make_file(tmp_path / "x64a.rpf")
    (tmp_path / "update").mkdir()

    profile = ProfileManager().get_or_create(_game(tmp_path))

    assert profile.game_type is GameType.GTA5
    assert profile.to_dict()["game_type"] == "GTA5"
