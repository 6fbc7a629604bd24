"""
Hook Pipeline

Wraps adapter create/update calls with the registered before/after hooks.
Id generation and defaults are applied by the adapter's input transform once
the hooks have produced the final payload.

A rejected mutation returns None. That is a policy decision by a hook, not
an error; callers decide what None means for them.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Mapping
from dataclasses import replace
from types import MappingProxyType
from typing import Any

from consent_store.db.adapters.base import Adapter, Where
from consent_store.db.hooks.registry import HookRegistry
from consent_store.db.hooks.types import HookContext, Operation, Proceed, Reject
from consent_store.exceptions import ConfigurationError
from consent_store.logging_config import bind_request_id, request_id_var

logger = logging.getLogger(__name__)

ContextInput = HookContext | Mapping[str, Any] | None


def _build_context(model: str, operation: Operation, where: Where, context: ContextInput) -> HookContext:
    if isinstance(context, HookContext):
        return replace(context, model=model, operation=operation, where=tuple(where))
    extra = dict(context or {})
    return HookContext(
        model=model,
        operation=operation,
        where=tuple(where),
        request_id=extra.pop("request_id", None) or request_id_var.get() or None,
        actor=extra.pop("actor", None),
        extra=MappingProxyType(extra),
    )


class HookPipeline:
    def __init__(self, adapter: Adapter, hooks: HookRegistry | None = None) -> None:
        self.adapter = adapter
        self.hooks = hooks if hooks is not None else HookRegistry.from_options(adapter.options)

    def bind(self, adapter: Adapter) -> HookPipeline:
        """Same hooks on another adapter (e.g. one bound to a transaction)."""
        return HookPipeline(adapter, self.hooks)

    # ── Hook execution ────────────────────────────────────────────────────────

    async def _run_before(self, data: Mapping[str, Any], context: HookContext) -> dict[str, Any] | None:
        payload = dict(data)
        for hook in self.hooks.before(context.model, context.operation):
            result = hook(MappingProxyType(payload), context)
            if inspect.isawaitable(result):
                result = await result

            if isinstance(result, Reject):
                logger.info(
                    "%s on %s rejected by hook %s: %s",
                    context.operation,
                    context.model,
                    getattr(hook, "__name__", repr(hook)),
                    result.reason,
                )
                return None
            if isinstance(result, Proceed):
                payload = {**payload, **result.changes}
            elif result is not None:
                raise ConfigurationError(
                    f"Before hook {getattr(hook, '__name__', repr(hook))} returned {type(result).__name__}; "
                    "expected Proceed, Reject or None",
                    setting="database_hooks",
                )
        return payload

    async def _run_after(self, row: Mapping[str, Any], context: HookContext) -> None:
        for hook in self.hooks.after(context.model, context.operation):
            result = hook(MappingProxyType(dict(row)), context)
            if inspect.isawaitable(result):
                await result

    # ── Mutations ─────────────────────────────────────────────────────────────
    #
    # The hook context's request id is bound to the logging context while a
    # mutation runs, so hook and adapter log lines carry it.

    async def create_with_hooks(
        self,
        data: Mapping[str, Any],
        model: str,
        unique_field: str | None = None,
        context: ContextInput = None,
    ) -> dict[str, Any] | None:
        hook_context = _build_context(model, "create", (), context)
        with bind_request_id(hook_context.request_id):
            payload = await self._run_before(data, hook_context)
            if payload is None:
                return None

            created = await self.adapter.create(model, payload, unique_field=unique_field)
            await self._run_after(created, hook_context)
            return created

    async def update_with_hooks(
        self,
        data: Mapping[str, Any],
        where: Where,
        model: str,
        context: ContextInput = None,
    ) -> dict[str, Any] | None:
        hook_context = _build_context(model, "update", where, context)
        with bind_request_id(hook_context.request_id):
            payload = await self._run_before(data, hook_context)
            if payload is None:
                return None

            updated = await self.adapter.update(model, where, payload)
            if updated is not None:
                await self._run_after(updated, hook_context)
            return updated

    async def update_many_with_hooks(
        self,
        data: Mapping[str, Any],
        where: Where,
        model: str,
        context: ContextInput = None,
    ) -> list[dict[str, Any]] | None:
        hook_context = _build_context(model, "update", where, context)
        with bind_request_id(hook_context.request_id):
            payload = await self._run_before(data, hook_context)
            if payload is None:
                return None

            updated = await self.adapter.update_many(model, where, payload)
            for row in updated:
                await self._run_after(row, hook_context)
            return updated
