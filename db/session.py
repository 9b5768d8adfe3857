# db/session.py
from __future__ import annotations

import logging
import os
import pathlib
from typing import Iterable

from dotenv import load_dotenv
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

logger = logging.getLogger("property-concierge")


def _load_env_files(candidates: Iterable[str]) -> None:
    """
    Load env files from both CWD and project root (relative to this file),
    without overriding values already provided by the platform.
    """
    here = pathlib.Path(__file__).resolve()
    roots = {
        pathlib.Path.cwd(),
        here.parent.parent,
    }
    for fname in candidates:
        for root in roots:
            p = root / fname
            if p.exists():
                load_dotenv(p, override=False)


# Load secrets if present (won't override variables already set by the platform)
_load_env_files(("cloud.secrets.env", ".env.local", "env.local", ".env"))

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./concierge_history.db"
DATABASE_URL = os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL
# Avoid printing secrets; just show which backend is used
logger.info("History database backend: %s", DATABASE_URL.split("://", 1)[0])

engine = create_async_engine(
    DATABASE_URL,
    pool_pre_ping=True,
    echo=bool(os.getenv("SQL_ECHO")),
)


Session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def ping() -> bool:
    """Simple connectivity check to call at startup."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception:
        logger.warning("Database ping failed", exc_info=True)
        return False
