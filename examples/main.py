"""FastAPI app exposing a parseql schema with the GraphiQL playground.

Run this file to start a local server and open http://127.0.0.1:8000/graphql

Environment variables (a .env file is honored):
  PARSEQL_DATABASE_URL   SQLAlchemy async URL, defaults to sqlite+aiosqlite:///:memory:
  PARSEQL_SQL_ECHO       set to '1' to log SQL
  PARSEQL_MAX_PAGE_SIZE  page size cap for find and relation fields (default 100)
  DEMO_SEED              set to '0' to skip demo data seeding (default '1')

Requests authenticate with the ``X-Parse-Session-Token`` header returned by
``addUser``; ``X-Parse-Installation-Id`` is forwarded to the auth context.
"""
from __future__ import annotations

import asyncio
import logging
import os
import sys

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import RedirectResponse
from strawberry.fastapi import GraphQLRouter

from parseql.auth import master
from parseql.config import ParseQLConfig
from parseql.context import RequestContext
from parseql.errors import InvalidSessionToken
from parseql.registry import ParseGraphQLSchema
from parseql.storage.sql import SQLStorage

DEMO_SCHEMA = [
    {'className': '_User', 'fields': {'nickname': {'type': 'String'}}},
    {'className': 'Author', 'fields': {
        'name': {'type': 'String'},
        'posts': {'type': 'Relation', 'targetClass': 'Post'},
    }},
    {'className': 'Post', 'fields': {
        'title': {'type': 'String'},
        'views': {'type': 'Number'},
        'publishedAt': {'type': 'Date'},
        'location': {'type': 'GeoPoint'},
        'author': {'type': 'Pointer', 'targetClass': 'Author'},
    }},
]

config = ParseQLConfig.from_env()
storage = SQLStorage.from_config(config)
registry = ParseGraphQLSchema(DEMO_SCHEMA, config=config)
schema = registry.to_strawberry()

app = FastAPI(title="parseql GraphQL Playground")


async def _seed_demo() -> None:
    auth = master()
    if await storage.find(auth, 'Author', {}, registry.schema):
        return
    author = await storage.create(auth, 'Author', {'name': 'Ada'}, registry.schema)
    pointer = {'__type': 'Pointer', 'className': 'Author', 'objectId': author['objectId']}
    related = []
    for i, title in enumerate(('Hello parseql', 'Relations', 'Pagination')):
        post = await storage.create(auth, 'Post', {'title': title, 'views': i * 10, 'author': pointer}, registry.schema)
        related.append({'__type': 'Pointer', 'className': 'Post', 'objectId': post['objectId']})
    await storage.update(auth, 'Author', author['objectId'], {'posts': {'__op': 'AddRelation', 'objects': related}}, registry.schema)


@app.on_event("startup")
async def on_startup() -> None:
    # Windows: use SelectorEventLoop for broad driver compatibility
    if sys.platform.startswith("win"):
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
    if config.sql_echo:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)
    logging.getLogger("parseql").setLevel(logging.INFO)
    await storage.create_tables()
    if os.getenv("DEMO_SEED", "1") != "0":
        await _seed_demo()


@app.get("/")
async def root() -> RedirectResponse:
    return RedirectResponse(url="/graphql")


async def get_context(request: Request) -> dict:
    try:
        ctx = await RequestContext.for_session(
            storage,
            config=config,
            session_token=request.headers.get("x-parse-session-token"),
            installation_id=request.headers.get("x-parse-installation-id"),
        )
    except InvalidSessionToken as exc:
        raise HTTPException(status_code=401, detail=exc.message) from exc
    # Strawberry's FastAPI integration only accepts dict or BaseContext contexts
    return {"parseql": ctx}


graphql_router = GraphQLRouter(
    schema,
    graphiql=True,  # enables GraphiQL playground UI
    context_getter=get_context,
)

app.include_router(graphql_router, prefix="/graphql")


if __name__ == "__main__":
    # Local dev runner
    import uvicorn

    uvicorn.run(app, host="127.0.0.1", port=8000)
