"""
Tests for the engine context and its default collaborators.
"""

import logging

from sheetphrase.config import EngineConfig
from sheetphrase.core.context import (
    EngineContext,
    LoggingNotifier,
    NullDialog,
    ScriptedDialog,
)
from sheetphrase.core.preprocess import UserInputChoice, UserInputSpec
from sheetphrase.dice.roller import DiceRoller
from sheetphrase.entities import EntityRegistry
from sheetphrase.templates import TemplateRegistry
from tests.fixtures import make_attack_template


def _choice_spec() -> UserInputSpec:
    return UserInputSpec(
        name="Bonus",
        display_name="Bonus",
        values=[UserInputChoice("+5", "Plus five"), UserInputChoice("+0", "None")]
    )


class TestEngineContext:
    """Defaults for every collaborator."""

    def test_defaults(self):
        context = EngineContext()
        assert isinstance(context.config, EngineConfig)
        assert isinstance(context.entities, EntityRegistry)
        assert isinstance(context.dialog, NullDialog)
        assert isinstance(context.roller, DiceRoller)
        assert isinstance(context.notifier, LoggingNotifier)
        assert isinstance(context.templates, TemplateRegistry)

    def test_roller_follows_dice_config(self):
        config = EngineConfig()
        config.dice.max_dice = 12
        assert EngineContext(config=config).roller.max_dice == 12


class TestNullDialog:
    """Always dismissed."""

    def test_prompt(self):
        assert NullDialog().prompt([_choice_spec()]) == {}

    def test_template(self):
        assert NullDialog().prompt_template(make_attack_template()) == {}


class TestScriptedDialog:
    """Canned answers, defaults and a call log."""

    def test_canned_answer(self):
        dialog = ScriptedDialog({"Bonus": "+0"})
        assert dialog.prompt([_choice_spec()]) == {"Bonus": "+0"}

    def test_first_choice(self):
        assert ScriptedDialog().prompt([_choice_spec()]) == {"Bonus": "+5"}

    def test_default_value(self):
        spec = UserInputSpec(name="x", display_name="x", default_value=3)
        assert ScriptedDialog().prompt([spec]) == {"x": 3}

    def test_no_value(self):
        spec = UserInputSpec(name="x", display_name="x")
        assert ScriptedDialog().prompt([spec]) == {}

    def test_call_log(self):
        dialog = ScriptedDialog()
        dialog.prompt([_choice_spec()])
        dialog.prompt_template(make_attack_template(), reference="weapons.0")
        assert [call["kind"] for call in dialog.call_log] == ["prompt", "template"]
        assert dialog.call_log[0]["specs"][0]["values"][0] == {"name": "+5", "displayValue": "Plus five"}

    def test_template_answers_override_defaults(self):
        dialog = ScriptedDialog(template_answers={"Attack": {"stance": "careful"}})
        assert dialog.prompt_template(make_attack_template()) == {"bonus": 2, "stance": "careful"}


class TestLoggingNotifier:
    """Notifications are logged and kept."""

    def test_notify(self, caplog):
        notifier = LoggingNotifier()
        with caplog.at_level(logging.INFO):
            notifier.notify("info", "Rested")
            notifier.notify("error", 42)
        assert notifier.messages == [("info", "Rested"), ("error", "42")]
        assert "[error] 42" in caplog.text
