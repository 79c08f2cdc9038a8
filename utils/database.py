import json
from typing import Any, List, Optional, TypeVar

from pydantic import BaseModel

T = TypeVar("T", bound=BaseModel)


def row_to_model(row: tuple, model_class: type[T], column_names: list[str]) -> T:
    """
    Convert a database row tuple to a Pydantic BaseModel instance.

    Args:
        row: Database row tuple
        model_class: Pydantic BaseModel class
        column_names: List of column names in the same order as the row tuple

    Returns:
        Instance of the specified model class
    """
    row_dict = dict(zip(column_names, row))
    return model_class(**row_dict)


def row_to_model_with_cursor(row: tuple, model_class: type[T], cursor) -> T:
    """
    Convert a database row tuple to a Pydantic BaseModel instance using cursor description.

    Args:
        row: Database row tuple
        model_class: Pydantic BaseModel class
        cursor: Database cursor with executed query

    Returns:
        Instance of the specified model class
    """
    column_names = [desc[0] for desc in cursor.description]
    return row_to_model(row, model_class, column_names)


def fetch_one_model(cursor, model_class: type[T]) -> Optional[T]:
    """Fetch the next row from an executed cursor as a model, or None."""
    row = cursor.fetchone()
    return row_to_model_with_cursor(row, model_class, cursor) if row else None


def fetch_all_models(cursor, model_class: type[T]) -> List[T]:
    """Fetch all remaining rows from an executed cursor as models."""
    rows = cursor.fetchall()
    return [row_to_model_with_cursor(r, model_class, cursor) for r in rows]


def decode_json_list(value: Any) -> list:
    """Decode a JSON array column; Postgres JSONB arrives as a list, SQLite as text."""
    if value is None or value == "":
        return []
    if isinstance(value, str):
        return list(json.loads(value))
    return list(value)
