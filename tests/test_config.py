"""Tests for core configuration."""

import tomllib
from pathlib import Path

import pytest
from pydantic import ValidationError as PydanticValidationError

import plangraph
from plangraph.config import CoreConfig

ENV_KEYS = [
    "PLANGRAPH_RRF_K",
    "PLANGRAPH_DEFAULT_TOP_K",
    "PLANGRAPH_OVER_RETRIEVE_FACTOR",
    "PLANGRAPH_LOG_LEVEL",
    "PLANGRAPH_LOG_JSON",
    "PLANGRAPH_DB_PATH",
    "PLANGRAPH_STALE_WARNING_DAYS",
    "PLANGRAPH_STALE_ERROR_DAYS",
    "PLANGRAPH_OVERLAP_THRESHOLD",
]


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


class TestCoreConfig:
    """Tests for CoreConfig defaults and environment overrides."""

    def test_defaults(self, clean_env: pytest.MonkeyPatch) -> None:
        """Defaults match the documented retrieval and health constants."""
        config = CoreConfig()

        assert config.rrf_k == 60
        assert config.default_top_k == 10
        assert config.over_retrieve_factor == 3
        assert config.stale_warning_days == 7
        assert config.stale_error_days == 14
        assert config.overlap_threshold == 0.85
        assert config.log_level == "INFO"
        assert config.log_json is False
        assert config.db_path == ":memory:"

    def test_env_prefix(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv("PLANGRAPH_RRF_K", "30")
        clean_env.setenv("PLANGRAPH_DEFAULT_TOP_K", "25")
        clean_env.setenv("PLANGRAPH_LOG_JSON", "true")
        clean_env.setenv("PLANGRAPH_DB_PATH", "/tmp/graph.db")

        config = CoreConfig()

        assert config.rrf_k == 30
        assert config.default_top_k == 25
        assert config.log_json is True
        assert config.db_path == "/tmp/graph.db"

    def test_unprefixed_env_ignored(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv("RRF_K", "5")
        assert CoreConfig().rrf_k == 60

    @pytest.mark.parametrize(
        ("key", "value"),
        [
            ("PLANGRAPH_OVER_RETRIEVE_FACTOR", "0"),
            ("PLANGRAPH_RRF_K", "0"),
            ("PLANGRAPH_OVERLAP_THRESHOLD", "1.5"),
            ("PLANGRAPH_LOG_LEVEL", "CHATTY"),
        ],
    )
    def test_out_of_range_rejected(
        self, clean_env: pytest.MonkeyPatch, key: str, value: str
    ) -> None:
        clean_env.setenv(key, value)
        with pytest.raises(PydanticValidationError):
            CoreConfig()

    def test_explicit_values(self) -> None:
        config = CoreConfig(over_retrieve_factor=5, stale_error_days=30)
        assert config.over_retrieve_factor == 5
        assert config.stale_error_days == 30


class TestPackage:
    """Tests for top-level package exports."""

    def test_version(self) -> None:
        assert isinstance(plangraph.__version__, str)
        assert plangraph.get_version() == plangraph.__version__

    def test_error_hierarchy(self) -> None:
        assert issubclass(plangraph.RecipeValidationError, plangraph.ValidationError)
        assert issubclass(plangraph.StorageError, plangraph.GraphError)
        assert issubclass(plangraph.EntityNotFoundError, plangraph.GraphError)
        assert issubclass(plangraph.ReindexError, plangraph.PlanGraphError)

    def test_error_details(self) -> None:
        error = plangraph.RecipeValidationError("CUSTOM", "weights must sum to 1.0")

        assert str(error) == 'Recipe "CUSTOM": weights must sum to 1.0'
        assert error.details == {"recipe": "CUSTOM", "reason": "weights must sum to 1.0"}

    def test_readme_is_package_metadata(self) -> None:
        root = Path(__file__).resolve().parents[1]
        project = tomllib.loads((root / "pyproject.toml").read_text())["project"]

        readme = root / project["readme"]
        assert readme.name == "README.md"
        assert readme.read_text().startswith("# plangraph")
