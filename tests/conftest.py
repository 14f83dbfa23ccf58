"""Test configuration and fixtures for parseql."""

import asyncio
import os
import sys

import pytest
from dotenv import load_dotenv
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from parseql.auth import master
from parseql.config import ParseQLConfig
from parseql.context import RequestContext
from parseql.registry import ParseGraphQLSchema
from parseql.schema import ParseSchema
from parseql.storage.models import Base
from parseql.storage.sql import SQLStorage

# Try to load environment variables from .env file
load_dotenv()


BLOG_SCHEMA = [
    {
        'className': '_User',
        'fields': {
            'nickname': {'type': 'String'},
        },
    },
    {
        'className': 'Author',
        'fields': {
            'name': {'type': 'String'},
            'favorite': {'type': 'Pointer', 'targetClass': 'Post'},
            'posts': {'type': 'Relation', 'targetClass': 'Post'},
        },
    },
    {
        'className': 'Post',
        'fields': {
            'title': {'type': 'String'},
            'views': {'type': 'Number'},
            'published': {'type': 'Boolean'},
            'publishedAt': {'type': 'Date'},
            'location': {'type': 'GeoPoint'},
            'cover': {'type': 'File'},
            'tags': {'type': 'Array'},
            'author': {'type': 'Pointer', 'targetClass': 'Author'},
        },
    },
]


@pytest.fixture(scope="session", autouse=True)
def event_loop_policy():
    """Set event loop policy for Windows compatibility."""
    if sys.platform.startswith("win"):
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
    yield


@pytest.fixture(scope="function")
async def engine():
    """Create a test database engine for each test function.

    ``PARSEQL_TEST_DATABASE_URL`` points the suite at an external database;
    otherwise an in-memory SQLite database shared through ``StaticPool`` is used.
    """
    test_db_url = os.getenv('PARSEQL_TEST_DATABASE_URL')
    if test_db_url:
        engine = create_async_engine(test_db_url, echo=False, future=True)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
            await conn.run_sync(Base.metadata.create_all)
    else:
        engine = create_async_engine(
            "sqlite+aiosqlite:///:memory:",
            echo=False,
            future=True,
            poolclass=StaticPool,
        )
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    yield engine

    if test_db_url:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def config():
    return ParseQLConfig()


@pytest.fixture
def blog_schema():
    return ParseSchema.from_dict(BLOG_SCHEMA)


@pytest.fixture
async def storage(engine):
    return SQLStorage.from_engine(engine)


@pytest.fixture
def registry(blog_schema, config):
    return ParseGraphQLSchema(blog_schema, config=config)


@pytest.fixture
def schema(registry):
    return registry.to_strawberry()


@pytest.fixture
def ctx(storage, config):
    """Anonymous request context."""
    return RequestContext(storage=storage, config=config)


@pytest.fixture
def master_ctx(storage, config):
    return RequestContext(storage=storage, config=config, auth=master())


@pytest.fixture
def make_object(storage, blog_schema):
    """Create an object through storage with master auth; returns its objectId."""
    async def _make(class_name, **data):
        res = await storage.create(master(), class_name, data, blog_schema)
        return res['objectId']
    return _make
