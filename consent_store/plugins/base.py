"""
Plugin Base Classes

PluginMeta:  declarative metadata for a plugin (name, version, config schema).
PluginTable: fields a plugin adds to an entity, or a whole new table.
PluginBase:  abstract base class all plugins must subclass.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from consent_store.db.fields import FieldSpec

if TYPE_CHECKING:
    from consent_store.db.hooks.types import DatabaseHooks


@dataclass
class PluginMeta:
    """
    Declarative metadata describing a plugin.

    Attributes:
        name:          Machine-readable slug, e.g. "geo", "tenant".
        version:       Semver string, e.g. "1.0.0".
        description:   Human-readable description.
        author:        Plugin author (defaults to "Consent Store Team").
        config_schema: JSON Schema fragments describing configurable options.
    """

    name: str
    version: str
    description: str
    author: str = "Consent Store Team"
    config_schema: dict[str, Any] = field(default_factory=dict)


@dataclass
class PluginTable:
    """
    Schema contribution for one entity.

    For a core entity only ``fields`` are used and are appended after the
    configured fields. For any other entity name the plugin owns a new table,
    named ``table_name`` or the entity name.
    """

    fields: dict[str, FieldSpec] = field(default_factory=dict)
    table_name: str | None = None


class PluginBase(ABC):
    """
    Abstract base class for all consent store plugins.

    Subclasses must implement the `meta` property. Schema and hook
    contributions default to nothing so subclasses only override what they
    need.
    """

    @property
    @abstractmethod
    def meta(self) -> PluginMeta:
        """Return the plugin's metadata."""
        ...

    @property
    def schema(self) -> dict[str, PluginTable]:
        """Entity name -> fields (or new table) contributed by this plugin."""
        return {}

    @property
    def database_hooks(self) -> DatabaseHooks | None:
        """Before/after mutation hooks, run after the configured hooks."""
        return None

    async def on_load(self, config: dict[str, Any]) -> None:  # noqa: B027
        """
        Called once at startup with the plugin's config dict.

        Override to perform one-time initialisation.
        """

    async def on_unload(self) -> None:  # noqa: B027
        """Called when the store shuts down. Override to release resources."""
