"""Column types shared by the content tables."""

from enum import Enum
from typing import Iterable, Optional

from sqlalchemy import JSON, String
from sqlalchemy.dialects import postgresql
from sqlalchemy.types import TypeDecorator


class StringList(TypeDecorator):
    """A list of short strings: hashtags, media URLs, target platform names.

    Stored as ``text[]`` on Postgres and as a JSON array on SQLite. Enum
    members (e.g. ``SocialPlatform.linkedin``) are written as their value,
    so a post's platforms can be assigned either way and always read back
    as plain strings.
    """

    cache_ok = True
    impl = JSON

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(postgresql.ARRAY(String()))
        return dialect.type_descriptor(JSON())

    def process_bind_param(self, value: Optional[Iterable], dialect) -> Optional[list[str]]:
        if value is None:
            return None
        return [item.value if isinstance(item, Enum) else str(item) for item in value]

    def process_result_value(self, value: Optional[Iterable], dialect) -> Optional[list[str]]:
        if value is None:
            return None
        return list(value)
