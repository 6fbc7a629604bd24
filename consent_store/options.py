"""
Consent Store Options

Runtime options for an adapter instance. Unlike Settings (environment driven),
options are built in code by the embedding application: table and column
names, extra fields, id generation, plugins and database hooks.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from consent_store.db.fields import FieldSpec

if TYPE_CHECKING:
    from consent_store.db.hooks.types import DatabaseHooks
    from consent_store.plugins.base import PluginBase

DEFAULT_FIND_MANY_LIMIT = 100


@dataclass
class EntityOptions:
    """
    Per-entity persistence overrides.

    Attributes:
        entity_name:       Table name. None keeps the entity's logical name.
        fields:            Column renames, field key -> column name.
        additional_fields: Extra fields stored alongside the core fields.
    """

    entity_name: str | None = None
    fields: dict[str, str] = field(default_factory=dict)
    additional_fields: dict[str, FieldSpec] = field(default_factory=dict)


@dataclass
class AdvancedOptions:
    """
    generate_id:
        True   - 21 character random id generated by the application
        False  - ids are generated by the database (auto increment)
        callable(model) -> str - custom application id generator
    """

    generate_id: bool | Callable[[str], str] = True
    default_find_many_limit: int = DEFAULT_FIND_MANY_LIMIT


@dataclass
class ConsentOptions:
    app_name: str = "consent-store"
    secret: str | None = None
    entities: dict[str, EntityOptions] = field(default_factory=dict)
    advanced: AdvancedOptions = field(default_factory=AdvancedOptions)
    plugins: list[PluginBase] = field(default_factory=list)
    database_hooks: DatabaseHooks | None = None
    # Create unknown purpose codes on the fly instead of rejecting them
    auto_create_purposes: bool = False

    def entity(self, name: str) -> EntityOptions:
        return self.entities.get(name) or EntityOptions()

    @property
    def database_generated_ids(self) -> bool:
        return self.advanced.generate_id is False
