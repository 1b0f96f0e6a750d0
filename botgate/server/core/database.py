"""
Database Connection and Session Management.

This module sets up the asynchronous SQLAlchemy engine and session factory
used by the server's repositories.
"""

from botgate.agent_core.repos.sql import create_all, create_engine, create_sessionmaker
from botgate.server.core.config import settings

"""
engine:
    The global SQLAlchemy AsyncEngine instance, bound to ``settings.database_url``.
"""
engine = create_engine(settings.database_url)

"""
async_session_maker:
    A global factory for new AsyncSession instances, configured to NOT expire
    on commit (typical for async).
"""
async_session_maker = create_sessionmaker(engine)


async def init_db() -> None:
    """
    Initialize the database.

    Creates all tables defined in the agent core ORM metadata if they do not
    exist. Production deployments apply the Alembic migration instead.
    """
    await create_all(engine)
