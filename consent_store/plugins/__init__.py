"""
Consent Store Plugin System

Public API for the plugin system:
    PluginMeta      — plugin metadata dataclass
    PluginTable     — schema contribution (extra fields or a new table)
    PluginBase      — abstract base class for all plugins
    PluginRegistry  — ordered registry of a store's plugins
"""

from .base import PluginBase, PluginMeta, PluginTable
from .registry import PluginRegistry

__all__ = ["PluginBase", "PluginMeta", "PluginRegistry", "PluginTable"]
