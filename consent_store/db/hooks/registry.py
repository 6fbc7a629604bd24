"""
Hook Registry

Collects the database hooks of a store in a stable order: hooks from the
options first, then each plugin's hooks in plugin registration order. The
registry never reorders or de-duplicates.
"""

from __future__ import annotations

import logging
from collections import defaultdict

from consent_store.db.hooks.types import AfterHook, BeforeHook, DatabaseHooks, Operation
from consent_store.options import ConsentOptions
from consent_store.plugins.registry import PluginRegistry

logger = logging.getLogger(__name__)


class HookRegistry:
    def __init__(self) -> None:
        self._before: dict[tuple[str, Operation], list[BeforeHook]] = defaultdict(list)
        self._after: dict[tuple[str, Operation], list[AfterHook]] = defaultdict(list)

    @classmethod
    def from_options(cls, options: ConsentOptions) -> HookRegistry:
        registry = cls()
        if options.database_hooks is not None:
            registry.add(options.database_hooks)
        for plugin_name, hooks in PluginRegistry(options.plugins).database_hooks():
            logger.debug("Registering database hooks from plugin %s", plugin_name)
            registry.add(hooks)
        return registry

    # ── Registration ──────────────────────────────────────────────────────────

    def add(self, hooks: DatabaseHooks) -> None:
        """Append every hook of ``hooks`` after the ones already registered."""
        for model, entity_hooks in hooks.entities.items():
            for operation in ("create", "update"):
                mutation = entity_hooks.for_operation(operation)  # type: ignore[arg-type]
                if mutation is None:
                    continue
                if mutation.before is not None:
                    self._before[(model, operation)].append(mutation.before)  # type: ignore[index]
                if mutation.after is not None:
                    self._after[(model, operation)].append(mutation.after)  # type: ignore[index]

    # ── Lookup ────────────────────────────────────────────────────────────────

    def before(self, model: str, operation: Operation) -> list[BeforeHook]:
        return list(self._before.get((model, operation), ()))

    def after(self, model: str, operation: Operation) -> list[AfterHook]:
        return list(self._after.get((model, operation), ()))
