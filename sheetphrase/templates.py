"""
Prompt templates.

A prompt template is a named input form referenced from formulas with
``?#{TemplateName}``. Rendering one asks the dialog for every field at once
and stores each answer as a local variable named after the field.

Templates are loaded from YAML and validated against
input_template.schema.json:

    templates:
      - name: Attack
        fields:
          - name: bonus
            label: Attack bonus
            type: number
            default: 0
          - name: stance
            type: select
            choices:
              - {value: aggressive, label: Aggressive}
              - {value: careful, label: Careful}
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from .config import load_yaml_file, validate_document

logger = logging.getLogger(__name__)


@dataclass
class TemplateField:
    """One input of a prompt template."""
    name: str
    label: str = ""
    field_type: str = "text"
    default: Any = None
    choices: list[dict] = field(default_factory=list)

    @property
    def display_name(self) -> str:
        return self.label or self.name

    def initial_value(self):
        """Value submitted when the user accepts the form untouched."""
        if self.default is not None:
            return self.default
        if self.field_type == "checkbox":
            return False
        if self.choices:
            return self.choices[0]["value"]
        return ""


@dataclass
class InputTemplate:
    """A named input form."""
    name: str
    fields: list[TemplateField] = field(default_factory=list)

    def default_values(self) -> dict:
        return {f.name: f.initial_value() for f in self.fields}


class TemplateRegistry:
    """Prompt templates by name."""

    def __init__(self, templates: Optional[list[InputTemplate]] = None):
        self._templates: dict[str, InputTemplate] = {}
        for template in templates or []:
            self.add(template)

    def add(self, template: InputTemplate) -> None:
        self._templates[template.name] = template

    def get(self, name: str) -> Optional[InputTemplate]:
        return self._templates.get(name)

    def names(self) -> list[str]:
        return sorted(self._templates)

    def __len__(self) -> int:
        return len(self._templates)


def parse_template(data: dict) -> InputTemplate:
    fields = [
        TemplateField(
            name=item["name"],
            label=item.get("label", ""),
            field_type=item.get("type", "text"),
            default=item.get("default"),
            choices=[
                {"value": c["value"], "label": c.get("label", str(c["value"]))}
                for c in item.get("choices", [])
            ]
        )
        for item in data.get("fields", [])
    ]
    return InputTemplate(name=data["name"], fields=fields)


def load_templates(path: str | Path) -> TemplateRegistry:
    """Load prompt templates from a YAML file."""
    data = load_yaml_file(Path(path))
    registry = TemplateRegistry()
    if not data:
        return registry

    validate_document(data, "input_template")

    for template_data in data.get("templates", []):
        registry.add(parse_template(template_data))

    logger.debug(f"Loaded {len(registry)} prompt templates from {path}")
    return registry
