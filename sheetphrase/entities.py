"""
In-memory entities and the entity resolver.

An entity is anything carrying a property bag that formulas can read or
write: characters, items, templates. Entities are addressed from formulas by
name or by one of the special tokens (selected, target, attached, self, item).
"""

import copy
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from .core.errors import UncomputableError
from .core.functions import deep_merge

logger = logging.getLogger(__name__)


@dataclass
class ConditionalModifier:
    """A modifier on one property, active while its group is switched on."""
    key: str
    group: Optional[str] = None


@dataclass
class Entity:
    """A named property bag, optionally attached to a parent entity."""
    name: str
    props: dict = field(default_factory=dict)
    entity_type: str = "character"
    parent: Optional["Entity"] = None
    update_log: list[dict] = field(default_factory=list)
    modifiers: list[ConditionalModifier] = field(default_factory=list)

    def update(self, changes: dict) -> None:
        """Merge property changes into this entity."""
        logger.debug(f"Updating {self.name}: {changes}")
        self.props = deep_merge(self.props, changes)
        self.update_log.append(copy.deepcopy(changes))

    def conditional_modifier_values(self) -> dict:
        """Current values of the properties targeted by grouped modifiers."""
        return {
            modifier.key: self.props[modifier.key]
            for modifier in self.modifiers
            if modifier.group and modifier.key in self.props
        }

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "type": self.entity_type,
            "props": self.props,
            "parent": self.parent.name if self.parent else None
        }


class EntityResolver(ABC):
    """Resolves the entity tokens used by cross-entity formula functions."""

    @abstractmethod
    def resolve(
        self,
        token: str,
        trigger_entity: Optional[Entity] = None,
        linked_entity: Optional[Entity] = None
    ) -> Optional[Entity]:
        """Return the entity for a token, or None if nothing matches."""
        pass


class EntityRegistry(EntityResolver):
    """
    Holds entities by name and resolves formula entity tokens.

    Token resolution:
    - selected: the selected entity, or the registry's default character
    - target: the current target
    - attached: the parent of the triggering entity
    - self: the triggering entity
    - item: the linked entity
    - anything else: an entity by name
    """

    def __init__(self, entities: Optional[list[Entity]] = None):
        self._entities: dict[str, Entity] = {}
        self.selected: Optional[str] = None
        self.target: Optional[str] = None
        self.default_character: Optional[str] = None

        for entity in entities or []:
            self.add(entity)

    def add(self, entity: Entity) -> Entity:
        self._entities[entity.name] = entity
        return entity

    def get(self, name: str) -> Optional[Entity]:
        return self._entities.get(name)

    def all(self) -> list[Entity]:
        return list(self._entities.values())

    def select(self, name: Optional[str]) -> None:
        self.selected = name

    def set_target(self, name: Optional[str]) -> None:
        self.target = name

    def resolve(
        self,
        token: str,
        trigger_entity: Optional[Entity] = None,
        linked_entity: Optional[Entity] = None
    ) -> Optional[Entity]:
        if token == "selected":
            return self.get(self.selected or self.default_character or "")
        if token == "target":
            return self.get(self.target or "")
        if token == "attached":
            return trigger_entity.parent if trigger_entity else None
        if token == "self":
            if trigger_entity is None:
                raise UncomputableError(
                    "No entity linked to the formula, could not update any property",
                    "self"
                )
            return trigger_entity
        if token == "item":
            if linked_entity is None:
                raise UncomputableError(
                    "No entity linked to the formula, could not update any property",
                    "item"
                )
            return linked_entity
        return self.get(token)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "EntityRegistry":
        """
        Build a registry from a document like:

            entities:
              - name: Aria
                props: {str: 12, flanking: 2}
                modifiers:
                  - {key: flanking, group: Situational}
              - name: Sword
                type: item
                parent: Aria
            selected: Aria
            target: Goblin
        """
        registry = cls()
        if not data:
            return registry

        pending_parents = {}
        for item in data.get("entities", []):
            entity = registry.add(Entity(
                name=item["name"],
                props=item.get("props", {}),
                entity_type=item.get("type", "character"),
                modifiers=[
                    ConditionalModifier(key=m["key"], group=m.get("group"))
                    for m in item.get("modifiers", [])
                ]
            ))
            if item.get("parent"):
                pending_parents[entity.name] = item["parent"]

        for name, parent_name in pending_parents.items():
            parent = registry.get(parent_name)
            if parent is None:
                logger.warning(f"Parent entity {parent_name} of {name} not found")
            registry.get(name).parent = parent

        registry.selected = data.get("selected")
        registry.target = data.get("target")
        return registry
