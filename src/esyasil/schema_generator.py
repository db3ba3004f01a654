from __future__ import annotations

import argparse
import json
from typing import Any, Dict, List, Type

from .models.base import DBSerializableModel
from .models.ledger import LedgerEntry
from .models.usage import UsageLogEntry
from .models.user import UserAccount


MODEL_REGISTRY: List[Type[DBSerializableModel]] = [
    UserAccount,
    UsageLogEntry,
    LedgerEntry,
]

# Indexes the services rely on: revoke-by-customer lookups and log scans.
INDEXES: Dict[str, List[Dict[str, Any]]] = {
    UserAccount.collection_name: [{"keys": {"billing_customer_id": 1}}],
    UsageLogEntry.collection_name: [{"keys": {"user_id": 1, "timestamp": -1}}],
    LedgerEntry.collection_name: [{"keys": {"user_id": 1, "created_at": -1}}],
}


def generate_logical_schema() -> Dict[str, Any]:
    """
    Backend-agnostic logical schema for all persisted models.
    """
    return {model.collection_name: model.db_schema() for model in MODEL_REGISTRY}


def render_sql_ddl(schema: Dict[str, Any], dialect: str = "postgres") -> str:
    lines: List[str] = []
    for table_name, spec in schema.items():
        props = spec["properties"]
        pk = spec.get("primary_key") or "id"
        columns: List[str] = []
        for field_name, meta in props.items():
            sql_type = _map_logical_to_sql(meta["type"], dialect=dialect)
            nullable = "NOT NULL" if field_name in spec.get("required", []) else "NULL"
            columns.append(f'    "{field_name}" {sql_type} {nullable}')
        columns.append(f'    PRIMARY KEY ("{pk}")')
        ddl = f'CREATE TABLE IF NOT EXISTS "{table_name}" (\n' + ",\n".join(columns) + "\n);\n"
        lines.append(ddl)
    return "\n".join(lines)


def render_nosql_schema(schema: Dict[str, Any]) -> str:
    """
    JSON description for document stores, with the recommended indexes.
    """
    collections = {
        name: {**spec, "indexes": INDEXES.get(name, [])}
        for name, spec in schema.items()
    }
    return json.dumps(collections, indent=2, default=str)


def _map_logical_to_sql(logical_type: str, dialect: str) -> str:
    logical_type = logical_type.lower()
    if logical_type == "integer":
        return "INTEGER"
    if logical_type == "number":
        return "DOUBLE PRECISION"
    if logical_type == "boolean":
        return "BOOLEAN"
    if logical_type == "string":
        return "TEXT"
    if logical_type in {"datetime", "date"}:
        return "TIMESTAMPTZ" if dialect == "postgres" else "TIMESTAMP"
    if logical_type == "object":
        return "JSONB" if dialect == "postgres" else "TEXT"
    return "TEXT"


def render(backend: str, dialect: str = "postgres") -> str:
    schema = generate_logical_schema()
    if backend == "sql":
        return render_sql_ddl(schema, dialect=dialect)
    return render_nosql_schema(schema)


def add_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--backend",
        choices=["sql", "nosql"],
        required=True,
        help="Type of schema to generate.",
    )
    parser.add_argument(
        "--dialect",
        default="postgres",
        help="SQL dialect hint (e.g. postgres, mysql).",
    )


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Generate DB schemas for the account and usage collections."
    )
    add_arguments(parser)
    args = parser.parse_args()
    print(render(args.backend, dialect=args.dialect))


if __name__ == "__main__":
    main()
