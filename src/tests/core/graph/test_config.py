"""Tests for graph configuration functionality.

This module tests the configuration system including:
- Default values
- Custom settings
- Configuration validation
- Environment variable integration
"""

import pytest
from pydantic import ValidationError

from graphflow.core.config import GraphConfig, RunConfig, new_execution_id


@pytest.fixture
def basic_config() -> GraphConfig:
    """Fixture providing a basic graph configuration."""
    return GraphConfig()


class TestConfigInitialization:
    """Test suite for configuration initialization."""

    def test_config_defaults(self, basic_config: GraphConfig):
        """Test basic configuration initialization."""
        assert basic_config.max_steps == 25
        assert basic_config.max_concurrency is None
        assert basic_config.checkpoint_enabled is True
        assert basic_config.checkpoint_input is True
        assert basic_config.max_checkpoints is None

    def test_config_with_values(self):
        """Test configuration initialization with custom values."""
        config = GraphConfig(max_steps=5, max_concurrency=2, checkpoint_enabled=False, max_checkpoints=10)
        assert config.max_steps == 5
        assert config.max_concurrency == 2
        assert config.checkpoint_enabled is False
        assert config.max_checkpoints == 10

    def test_config_from_dict(self):
        """Test configuration initialization from dictionary."""
        config = GraphConfig.model_validate({"max_steps": 10, "max_concurrency": 4})
        assert config.max_steps == 10
        assert config.max_concurrency == 4


class TestConfigValidation:
    """Test suite for configuration validation."""

    @pytest.mark.parametrize("field", ["max_steps", "max_concurrency", "max_checkpoints"])
    @pytest.mark.parametrize("value", [0, -1])
    def test_positive_fields(self, field: str, value: int):
        """Test that limits must be positive."""
        with pytest.raises(ValidationError):
            GraphConfig(**{field: value})

    def test_validate_assignment(self, basic_config: GraphConfig):
        """Test that assignments are validated too."""
        with pytest.raises(ValidationError):
            basic_config.max_steps = 0


class TestEnvironment:
    """Test suite for environment variable integration."""

    def test_env_override(self, monkeypatch):
        """Test GRAPHFLOW_* variables."""
        monkeypatch.setenv("GRAPHFLOW_MAX_STEPS", "50")
        monkeypatch.setenv("GRAPHFLOW_CHECKPOINT_ENABLED", "false")
        config = GraphConfig()
        assert config.max_steps == 50
        assert config.checkpoint_enabled is False

    def test_explicit_value_beats_env(self, monkeypatch):
        """Test that constructor arguments win over the environment."""
        monkeypatch.setenv("GRAPHFLOW_MAX_STEPS", "50")
        assert GraphConfig(max_steps=3).max_steps == 3


class TestRunConfig:
    """Test suite for per-call options."""

    def test_execution_ids_are_unique(self):
        """Test generated execution ids."""
        ids = {RunConfig().execution_id for _ in range(100)}
        assert len(ids) == 100
        assert all(execution_id.startswith("exec_") for execution_id in ids)
        assert new_execution_id() not in ids

    def test_defaults(self):
        """Test empty grouping ids and interrupts."""
        config = RunConfig()
        assert config.thread_id is None
        assert config.session_id is None
        assert config.interrupt_before == []
        assert config.interrupt_after == []
        assert config.timeout is None

    def test_timeout_must_be_positive(self):
        """Test timeout validation."""
        with pytest.raises(ValidationError):
            RunConfig(timeout=0)
