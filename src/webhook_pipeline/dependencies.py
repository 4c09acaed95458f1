from functools import lru_cache

import aiosqlite
from fastapi import Depends, Request

from webhook_pipeline.config import Settings
from webhook_pipeline.jobs import SQLiteJobQueue


@lru_cache
def get_settings() -> Settings:
    return Settings()


async def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


async def get_db(request: Request) -> aiosqlite.Connection:
    return request.app.state.db


async def get_queue(
    db: aiosqlite.Connection = Depends(get_db),
) -> SQLiteJobQueue:
    return SQLiteJobQueue(db)
