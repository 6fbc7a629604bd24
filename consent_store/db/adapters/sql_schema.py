"""
SQLAlchemy Core tables built from the resolved schemas.

Tables are derived, never declared: column names, types, nullability and
foreign keys all come from the TableSchema of each entity and the active
dialect strategy.
"""

from __future__ import annotations

from sqlalchemy import Column, ForeignKey, MetaData, Table

from consent_store.db.adapters.dialects import DialectStrategy
from consent_store.db.schema import ID_FIELD, SchemaRegistry, TableSchema


def _column(schemas: SchemaRegistry, schema: TableSchema, key: str, dialect: DialectStrategy, database_generated: bool) -> Column:
    spec = schema.fields[key]
    name = spec.column_name(key)

    if key == ID_FIELD:
        return Column(
            name,
            dialect.id_type(database_generated),
            primary_key=True,
            autoincrement=database_generated,
        )

    args = []
    if spec.references is not None:
        target = schemas.get(spec.references.model)
        args.append(
            ForeignKey(
                f"{target.table_name}.{target.column_name(spec.references.field)}",
                ondelete=dialect.on_delete(spec.references.on_delete, target.entity_name == schema.entity_name),
            )
        )

    return Column(
        name,
        dialect.column_type(spec),
        *args,
        nullable=not spec.required,
        unique=spec.unique or None,
        index=(spec.sortable and not spec.unique) or None,
    )


def build_tables(
    schemas: SchemaRegistry,
    dialect: DialectStrategy,
    database_generated: bool,
) -> tuple[MetaData, dict[str, Table]]:
    """Return the MetaData and a model name -> Table map, in creation order."""
    metadata = MetaData()
    tables: dict[str, Table] = {}
    for schema in schemas:
        columns = [_column(schemas, schema, key, dialect, database_generated) for key in schema.fields]
        tables[schema.entity_name] = Table(schema.table_name, metadata, *columns)
    return metadata, tables
