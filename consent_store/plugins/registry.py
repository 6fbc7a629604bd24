"""
Plugin Registry

PluginRegistry: stores the plugins of one store instance in registration
order and exposes their schema and hook contributions.

Unlike event dispatch, plugin failures here are not isolated: a plugin
that raises during load or inside a database hook fails the operation.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from consent_store.db.tables import CORE_TABLES
from consent_store.exceptions import ConfigurationError, SchemaConflictError

if TYPE_CHECKING:
    from consent_store.db.hooks.types import DatabaseHooks
    from consent_store.plugins.base import PluginBase, PluginTable

logger = logging.getLogger(__name__)


class PluginRegistry:
    """
    Registry for consent store plugins.

    Registration order is significant: schema fields and database hooks are
    applied in the order plugins were registered.
    """

    def __init__(self, plugins: Iterable[PluginBase] = ()) -> None:
        self._plugins: dict[str, PluginBase] = {}
        for plugin in plugins:
            self.register(plugin)

    # ── Registration ──────────────────────────────────────────────────────────

    def register(self, plugin: PluginBase) -> None:
        """Register a plugin. Names must be unique."""
        if plugin.meta.name in self._plugins:
            raise ConfigurationError(f"Plugin '{plugin.meta.name}' is already registered", setting="plugins")
        self._plugins[plugin.meta.name] = plugin
        logger.debug("Plugin registered: %s v%s", plugin.meta.name, plugin.meta.version)

    # ── Lookup ────────────────────────────────────────────────────────────────

    def get(self, name: str) -> PluginBase | None:
        """Return the plugin with the given name, or None if not registered."""
        return self._plugins.get(name)

    def all_plugins(self) -> list[PluginBase]:
        """Return all registered plugins in registration order."""
        return list(self._plugins.values())

    def is_registered(self, name: str) -> bool:
        return name in self._plugins

    # ── Contributions ─────────────────────────────────────────────────────────

    def field_extensions(self, entity_name: str) -> list[tuple[str, PluginTable]]:
        """(plugin name, contribution) pairs extending an existing entity."""
        return [
            (plugin.meta.name, plugin.schema[entity_name])
            for plugin in self._plugins.values()
            if entity_name in plugin.schema
        ]

    def contributed_tables(self) -> dict[str, tuple[str, PluginTable]]:
        """New tables owned by plugins, keyed by entity name."""
        contributed: dict[str, tuple[str, PluginTable]] = {}
        for plugin in self._plugins.values():
            for entity_name, table in plugin.schema.items():
                if entity_name in CORE_TABLES:
                    continue
                if entity_name in contributed:
                    raise SchemaConflictError(
                        model=entity_name,
                        field="*",
                        source=f"plugin '{plugin.meta.name}'",
                    )
                contributed[entity_name] = (plugin.meta.name, table)
        return contributed

    def database_hooks(self) -> list[tuple[str, DatabaseHooks]]:
        """(plugin name, hooks) for every plugin that declares database hooks."""
        return [
            (plugin.meta.name, plugin.database_hooks)
            for plugin in self._plugins.values()
            if plugin.database_hooks is not None
        ]

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def load_all(self, configs: dict[str, dict[str, Any]] | None = None) -> None:
        """Call on_load() on every plugin with its config (empty when absent)."""
        configs = configs or {}
        for plugin in self._plugins.values():
            await plugin.on_load(configs.get(plugin.meta.name, {}))
            logger.debug("Plugin loaded: %s", plugin.meta.name)

    async def unload_all(self) -> None:
        for plugin in reversed(list(self._plugins.values())):
            await plugin.on_unload()
