"""FastAPI dependencies for database sessions and the job queue."""
from typing import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from relay.database import Database
from relay.queue.base import JobQueue


def get_database(request: Request) -> Database:
    """Database handle created at startup."""
    return request.app.state.database


def get_job_queue(request: Request) -> JobQueue:
    """Job queue handle created at startup."""
    return request.app.state.job_queue


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    Database session dependency.

    Yields:
        AsyncSession: Database session for the request lifecycle
    """
    async with get_database(request).session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
