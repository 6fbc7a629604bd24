"""
Database hooks: before/after callbacks around create and update.
"""

from .pipeline import HookPipeline
from .registry import HookRegistry
from .types import DatabaseHooks, EntityHooks, HookContext, MutationHook, Proceed, Reject

__all__ = [
    "DatabaseHooks",
    "EntityHooks",
    "HookContext",
    "HookPipeline",
    "HookRegistry",
    "MutationHook",
    "Proceed",
    "Reject",
]
