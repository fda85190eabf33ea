"""
Shared pytest fixtures for all tests.
"""

import pytest
from pathlib import Path

# Add the project root to path for imports
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from sheetphrase.config import EngineConfig
from sheetphrase.core.context import ComputeOptions, LoggingNotifier, ScriptedDialog
from tests.fixtures import (
    make_context,
    make_registry,
    make_roller,
    make_sheet_props,
)


# =============================================================================
# Configuration Fixtures
# =============================================================================

@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path):
    """Keep the user's config file and environment out of tests."""
    monkeypatch.delenv("SHEETPHRASE_ENABLE_SCRIPTS", raising=False)
    monkeypatch.setenv("SHEETPHRASE_CONFIG", str(tmp_path / "missing_config.yaml"))


@pytest.fixture
def config():
    """Default engine configuration."""
    return EngineConfig()


@pytest.fixture
def script_config():
    """Engine configuration with script blocks enabled."""
    config = EngineConfig()
    config.scripts.enabled = True
    return config


# =============================================================================
# Property Fixtures
# =============================================================================

@pytest.fixture
def sheet_props():
    """
    Character sheet property bag.

    Contains:
    - str 16, dex 14, level 3
    - speed "30" (numeric string), class "Fighter"
    - stats.hp 24, stats.max_hp 30
    - weapons table: Dagger, Longsword, deleted Broken Bow, unequipped Club
    """
    return make_sheet_props()


# =============================================================================
# Collaborator Fixtures
# =============================================================================

@pytest.fixture
def dialog():
    """Scripted dialog accepting every prompt untouched."""
    return ScriptedDialog()


@pytest.fixture
def notifier():
    """Notifier recording every message."""
    return LoggingNotifier()


@pytest.fixture
def roller():
    """Dice roller whose dice always land on 1."""
    return make_roller()


@pytest.fixture
def registry():
    """Entity registry with Aria (selected), Goblin (target) and Longsword."""
    return make_registry()


# =============================================================================
# Engine Fixtures
# =============================================================================

@pytest.fixture
def context(dialog, notifier, roller, registry, config):
    """Engine context wired to the collaborator fixtures."""
    return make_context(
        config=config,
        dialog=dialog,
        notifier=notifier,
        roller=roller,
        entities=registry
    )


@pytest.fixture
def options():
    """Default compute options."""
    return ComputeOptions()
