"""
Schema Assembler

Merges the core field definitions with configuration and plugin extensions
into one resolved TableSchema per entity. Assembly runs in a fixed order:

    core fields -> column renames -> configured additional fields -> plugin fields

Later layers may add fields but never replace or remove one. Resolution is
pure: the same options and plugin set always produce the same schema.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, replace
from types import MappingProxyType

from consent_store.db.fields import FieldSpec, FieldType
from consent_store.db.tables import CORE_TABLES, core_fields
from consent_store.exceptions import ConfigurationError, SchemaConflictError, UnknownModelError
from consent_store.options import ConsentOptions
from consent_store.plugins.registry import PluginRegistry

logger = logging.getLogger(__name__)

ID_FIELD = "id"

# Plugin-contributed tables are created after every core table
_PLUGIN_TABLE_ORDER_START = 100


@dataclass(frozen=True)
class TableSchema:
    """The resolved, read-only schema of one entity."""

    entity_name: str
    table_name: str
    fields: Mapping[str, FieldSpec]
    order: int

    def field(self, key: str) -> FieldSpec:
        try:
            return self.fields[key]
        except KeyError:
            raise ConfigurationError(f"Unknown field '{key}' on model '{self.entity_name}'") from None

    def column_name(self, key: str) -> str:
        return self.field(key).column_name(key)

    def has_field(self, key: str) -> bool:
        return key in self.fields

    def column_map(self) -> dict[str, str]:
        """Field key -> storage column."""
        return {key: spec.column_name(key) for key, spec in self.fields.items()}


def _id_spec(database_generated: bool) -> FieldSpec:
    return FieldSpec(
        type=FieldType.NUMBER if database_generated else FieldType.STRING,
        required=True,
        unique=True,
        sortable=True,
    )


def _adapt_reference(spec: FieldSpec, database_generated: bool) -> FieldSpec:
    # Foreign keys follow the storage type of the id they point at
    if spec.references is not None and database_generated:
        return replace(spec, type=FieldType.NUMBER)
    return spec


def _add_fields(
    entity_name: str,
    fields: dict[str, FieldSpec],
    extra: Mapping[str, FieldSpec],
    source: str,
    database_generated: bool,
) -> None:
    for key, spec in extra.items():
        if key in fields:
            raise SchemaConflictError(model=entity_name, field=key, source=source)
        fields[key] = _adapt_reference(spec, database_generated)


def resolve_schema(options: ConsentOptions, entity_name: str) -> TableSchema:
    """
    Resolve the schema of one entity.

    Raises:
        UnknownModelError:   entity_name is neither core nor plugin-contributed.
        SchemaConflictError: an extension redefines an existing field.
        ConfigurationError:  a column rename targets a field that does not exist.
    """
    database_generated = options.database_generated_ids
    plugins = PluginRegistry(options.plugins)
    plugin_tables = plugins.contributed_tables()

    fields: dict[str, FieldSpec] = {ID_FIELD: _id_spec(database_generated)}
    if entity_name in CORE_TABLES:
        order = CORE_TABLES[entity_name][0]
        _add_fields(entity_name, fields, core_fields(entity_name), "core", database_generated)
        default_table = entity_name
    elif entity_name in plugin_tables:
        plugin_name, table = plugin_tables[entity_name]
        order = _PLUGIN_TABLE_ORDER_START + list(plugin_tables).index(entity_name)
        _add_fields(entity_name, fields, table.fields, f"plugin '{plugin_name}'", database_generated)
        default_table = table.table_name or entity_name
    else:
        raise UnknownModelError(entity_name)

    entity_options = options.entity(entity_name)

    for key, column in entity_options.fields.items():
        if key not in fields:
            raise ConfigurationError(
                f"Cannot rename unknown field '{key}' on model '{entity_name}'",
                setting=f"entities.{entity_name}.fields",
            )
        fields[key] = fields[key].renamed(column)

    _add_fields(entity_name, fields, entity_options.additional_fields, "configuration", database_generated)

    if entity_name in CORE_TABLES:
        for plugin_name, table in plugins.field_extensions(entity_name):
            _add_fields(entity_name, fields, table.fields, f"plugin '{plugin_name}'", database_generated)

    return TableSchema(
        entity_name=entity_name,
        table_name=entity_options.entity_name or default_table,
        fields=MappingProxyType(fields),
        order=order,
    )


class SchemaRegistry:
    """
    Every resolved table of one options set, resolved once.

    Adapters build a SchemaRegistry at construction and look schemas up from
    it per operation.
    """

    def __init__(self, options: ConsentOptions) -> None:
        names = list(CORE_TABLES) + list(PluginRegistry(options.plugins).contributed_tables())
        resolved = [resolve_schema(options, name) for name in names]
        resolved.sort(key=lambda schema: schema.order)
        self._schemas: dict[str, TableSchema] = {schema.entity_name: schema for schema in resolved}
        logger.debug("Resolved %d table schemas", len(self._schemas))

    def get(self, model: str) -> TableSchema:
        try:
            return self._schemas[model]
        except KeyError:
            raise UnknownModelError(model) from None

    def __contains__(self, model: object) -> bool:
        return model in self._schemas

    def __iter__(self) -> Iterator[TableSchema]:
        return iter(self._schemas.values())

    def names(self) -> list[str]:
        return list(self._schemas)
