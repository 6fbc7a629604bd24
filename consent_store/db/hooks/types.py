"""
Hook types.

A before-hook receives a read-only view of the payload and the HookContext
and answers with one of:

    Proceed(changes)  merge ``changes`` into the payload and continue
    Reject(reason)    cancel the mutation; the pipeline returns None
    None              continue with the payload unchanged

After-hooks receive the persisted row; whatever they return is ignored.
Hooks may be plain functions or coroutines.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Literal, Union

Operation = Literal["create", "update"]


@dataclass(frozen=True)
class Proceed:
    changes: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Reject:
    reason: str | None = None


HookResult = Union[Proceed, Reject, None]


@dataclass(frozen=True)
class HookContext:
    """
    Read-only information about the mutation being performed.

    Attributes:
        model:      Entity name, e.g. "consent".
        operation:  "create" or "update".
        where:      Where list of an update (empty for create).
        request_id: Correlation id of the calling request, if any.
        actor:      Who triggered the mutation, if known.
        extra:      Caller-supplied values (endpoint context).
    """

    model: str
    operation: Operation
    where: tuple[Any, ...] = ()
    request_id: str | None = None
    actor: str | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)


BeforeHook = Callable[[Mapping[str, Any], HookContext], Union[HookResult, Awaitable[HookResult]]]
AfterHook = Callable[[Mapping[str, Any], HookContext], Union[Any, Awaitable[Any]]]


@dataclass(frozen=True)
class MutationHook:
    before: BeforeHook | None = None
    after: AfterHook | None = None


@dataclass(frozen=True)
class EntityHooks:
    create: MutationHook | None = None
    update: MutationHook | None = None

    def for_operation(self, operation: Operation) -> MutationHook | None:
        return self.create if operation == "create" else self.update


@dataclass
class DatabaseHooks:
    """Entity name -> hooks, e.g. ``DatabaseHooks({"consent": EntityHooks(create=...)})``."""

    entities: dict[str, EntityHooks] = field(default_factory=dict)

    def get(self, model: str) -> EntityHooks | None:
        return self.entities.get(model)
