"""
Console dialog.

Answers formula prompts interactively on the terminal. Ctrl-C or end of
input dismisses the dialog, which the engine treats as "no answer".
"""

from typing import Callable, Optional

from sheetphrase.core.context import Dialog
from sheetphrase.core.expression import format_value
from sheetphrase.core.preprocess import UserInputSpec
from sheetphrase.templates import InputTemplate, TemplateField


class DialogDismissed(Exception):
    """The user closed the dialog without submitting."""


class ConsoleDialog(Dialog):
    """Dialog reading answers with input()."""

    def __init__(self, input_func: Callable[[str], str] = input, output: Callable[..., None] = print):
        self.input = input_func
        self.output = output

    def _ask(self, prompt: str) -> str:
        try:
            return self.input(prompt).strip()
        except (EOFError, KeyboardInterrupt):
            self.output()
            raise DialogDismissed() from None

    def _pick(self, label: str, choices: list[tuple]) -> Optional[object]:
        """Show numbered choices of (value, label) and return the chosen value."""
        self.output(f"  {label}:")
        for i, (_, choice_label) in enumerate(choices, 1):
            self.output(f"    {i}. {choice_label}")

        answer = self._ask("  Choose [1]: ")
        if not answer:
            return choices[0][0]
        try:
            idx = int(answer) - 1
        except ValueError:
            self.output(f"  Invalid choice: {answer}")
            return choices[0][0]
        if idx < 0 or idx >= len(choices):
            self.output(f"  Invalid choice: {answer}")
            return choices[0][0]
        return choices[idx][0]

    def _ask_value(self, label: str, default, checkbox: bool = False):
        if checkbox:
            answer = self._ask(f"  {label} [y/N]: ").lower()
            return answer in ("y", "yes")

        shown_default = format_value(default)
        suffix = f" [{shown_default}]" if shown_default else ""
        answer = self._ask(f"  {label}{suffix}: ")
        return answer if answer else default

    def prompt(self, specs: list[UserInputSpec]) -> dict:
        values = {}
        self.output()
        try:
            for spec in specs:
                label = format_value(spec.display_name)
                if spec.has_choices:
                    values[spec.name] = self._pick(
                        label, [(c.name, format_value(c.display_value)) for c in spec.values]
                    )
                else:
                    values[spec.name] = self._ask_value(
                        label, spec.default_value, checkbox=spec.input_type == "checkbox"
                    )
        except DialogDismissed:
            return {}
        return values

    def _ask_field(self, field: TemplateField):
        if field.field_type == "label":
            return field.initial_value()
        if field.field_type == "select" and field.choices:
            return self._pick(
                field.display_name, [(c["value"], c["label"]) for c in field.choices]
            )
        return self._ask_value(
            field.display_name, field.initial_value(), checkbox=field.field_type == "checkbox"
        )

    def prompt_template(self, template: InputTemplate, trigger_entity=None, reference=None) -> dict:
        self.output()
        self.output(f"  {template.name}")
        try:
            return {field.name: self._ask_field(field) for field in template.fields}
        except DialogDismissed:
            return {}
