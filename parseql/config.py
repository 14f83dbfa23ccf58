from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@dataclass
class ParseQLConfig:
    """Runtime knobs shared by the schema compiler, resolvers and storage.

    Attributes:
        max_page_size: Hard cap applied to every ``find`` and relation page.
        user_class_name: The principal class; sign-up through ``add<User>``
            mints a session and gets a ``sessionToken`` field on its type.
        reserved_prefix: Single leading character stripped from class names
            to build GraphQL type names (``_User`` -> ``User``).
        database_url: SQLAlchemy async URL used by ``SQLStorage.from_config``.
        sql_echo: Forwarded to ``create_async_engine(echo=...)``.
        auto_camel_case: Forwarded to ``StrawberryConfig``. Parse field names
            are already camelCase so this stays off by default.
    """

    max_page_size: int = 100
    user_class_name: str = "_User"
    reserved_prefix: str = "_"
    database_url: str = DEFAULT_DATABASE_URL
    sql_echo: bool = False
    auto_camel_case: bool = False

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "ParseQLConfig":
        """Build a config from ``PARSEQL_*`` environment variables (``.env`` aware)."""
        load_dotenv(dotenv_path)
        defaults = cls()
        return cls(
            max_page_size=int(os.getenv("PARSEQL_MAX_PAGE_SIZE", defaults.max_page_size)),
            user_class_name=os.getenv("PARSEQL_USER_CLASS", defaults.user_class_name),
            database_url=os.getenv("PARSEQL_DATABASE_URL", defaults.database_url),
            sql_echo=os.getenv("PARSEQL_SQL_ECHO", "0") == "1",
        )
