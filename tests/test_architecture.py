"""Layer dependency checks for the storywright package."""

import importlib.util
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]


@pytest.fixture(scope="module")
def validator():
    spec = importlib.util.spec_from_file_location(
        "validate_architecture", REPO_ROOT / "scripts" / "validate_architecture.py"
    )
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


class TestLayerRules:
    def test_package_follows_layer_rules(self, validator):
        success, violations = validator.validate_layer_dependencies(REPO_ROOT / "storywright")

        assert violations == []
        assert success is True

    def test_upward_import_is_reported(self, validator, tmp_path):
        (tmp_path / "c1_models").mkdir()
        (tmp_path / "c1_models" / "models.py").write_text("from storywright.c2_service import helper\n")
        (tmp_path / "c2_service").mkdir()
        (tmp_path / "c2_service" / "service.py").write_text("from storywright.c3_routes import router\n")
        (tmp_path / "c3_routes").mkdir()
        (tmp_path / "c3_routes" / "routes.py").write_text("from storywright.c2_service import helper\n")

        success, violations = validator.validate_layer_dependencies(tmp_path)

        assert success is False
        assert len(violations) == 2

    def test_layer_names(self, validator):
        assert validator.get_layer("c2_story_graph") == "c2"
        assert validator.get_layer("core") is None
