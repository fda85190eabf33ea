"""
Engine context and collaborator interfaces.

Everything the engine needs from the outside world (dialogs, notifications,
entity lookup, dice, prompt templates, configuration) is bundled in an
EngineContext that is passed explicitly to every entry point.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

from ..config import EngineConfig
from ..dice.roller import DiceRoller
from ..entities import Entity, EntityRegistry, EntityResolver
from ..templates import InputTemplate, TemplateRegistry
from .preprocess import UserInputSpec

logger = logging.getLogger(__name__)


@dataclass
class ComputeOptions:
    """Options for one formula or phrase computation.

    reference: Row path (``table.3``) used by sameRow and sameRowRef
    default_value: Value for unresolvable lookups; None means no default
    local_vars: Variables from earlier blocks of the same phrase
    compute_explanation: Build explanation trees
    available_keys: Keys that will be computed later; missing ones are
        unresolvable even when a default exists
    trigger_entity: Entity the phrase belongs to
    linked_entity: Item linked to the trigger entity
    """
    reference: Optional[str] = None
    default_value: Any = None
    local_vars: dict = field(default_factory=dict)
    compute_explanation: bool = False
    available_keys: list[str] = field(default_factory=list)
    trigger_entity: Optional[Entity] = None
    linked_entity: Optional[Entity] = None


class Dialog(ABC):
    """Asks the user for prompt values."""

    @abstractmethod
    def prompt(self, specs: list[UserInputSpec]) -> dict:
        """
        Ask for every spec in one dialog.

        Returns:
            Submitted values by spec name; empty if the dialog was dismissed
        """
        pass

    @abstractmethod
    def prompt_template(
        self,
        template: InputTemplate,
        trigger_entity: Optional[Entity] = None,
        reference: Optional[str] = None
    ) -> dict:
        """Render a prompt template and return its field values by name."""
        pass


class NullDialog(Dialog):
    """Dialog that is always dismissed. Used for non-interactive computation."""

    def prompt(self, specs: list[UserInputSpec]) -> dict:
        logger.debug(f"Dismissing prompt for {[s.name for s in specs]}")
        return {}

    def prompt_template(self, template, trigger_entity=None, reference=None) -> dict:
        logger.debug(f"Dismissing template {template.name}")
        return {}


class ScriptedDialog(Dialog):
    """
    Dialog answering from canned values, for tests and batch runs.

    Prompts without a canned answer get the value a user accepting the
    dialog untouched would submit: the default value, or the first choice.
    """

    def __init__(
        self,
        answers: Optional[dict] = None,
        template_answers: Optional[dict[str, dict]] = None
    ):
        self.answers = answers or {}
        self.template_answers = template_answers or {}
        self.call_log: list[dict] = []

    def prompt(self, specs: list[UserInputSpec]) -> dict:
        self.call_log.append({
            "kind": "prompt",
            "specs": [spec.to_dict() for spec in specs]
        })

        values = {}
        for spec in specs:
            if spec.name in self.answers:
                values[spec.name] = self.answers[spec.name]
            elif spec.has_choices:
                values[spec.name] = spec.values[0].name
            elif spec.default_value is not None:
                values[spec.name] = spec.default_value
        return values

    def prompt_template(self, template, trigger_entity=None, reference=None) -> dict:
        self.call_log.append({
            "kind": "template",
            "template": template.name,
            "reference": reference
        })
        return {**template.default_values(), **self.template_answers.get(template.name, {})}


class NotificationSink(ABC):
    """Receives user-visible notifications."""

    @abstractmethod
    def notify(self, severity: str, message: str) -> None:
        pass


class LoggingNotifier(NotificationSink):
    """Logs notifications and keeps them for later display."""

    LEVELS = {
        "info": logging.INFO,
        "warn": logging.WARNING,
        "error": logging.ERROR,
    }

    def __init__(self):
        self.messages: list[tuple[str, str]] = []

    def notify(self, severity: str, message: str) -> None:
        self.messages.append((severity, str(message)))
        logger.log(self.LEVELS.get(severity, logging.INFO), f"[{severity}] {message}")


@dataclass
class EngineContext:
    """Collaborators and configuration for one engine user."""
    config: EngineConfig = field(default_factory=EngineConfig)
    entities: EntityResolver = field(default_factory=EntityRegistry)
    dialog: Dialog = field(default_factory=NullDialog)
    roller: Optional[DiceRoller] = None
    notifier: NotificationSink = field(default_factory=LoggingNotifier)
    templates: TemplateRegistry = field(default_factory=TemplateRegistry)

    def __post_init__(self):
        if self.roller is None:
            self.roller = DiceRoller.from_config(self.config.dice)
