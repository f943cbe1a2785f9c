"""
数据库连接：异步 engine / session 与 ORM 基类
"""
from pathlib import Path
from typing import AsyncGenerator, Tuple

from sqlalchemy.ext.asyncio import AsyncSession, AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from orderflow.core.config import settings

Base = declarative_base()


def _ensure_sqlite_dir(url: str) -> None:
    """sqlite 文件所在目录不存在时先创建，避免 'unable to open database file'"""
    if not url.startswith("sqlite") or ":memory:" in url or ":///" not in url:
        return
    db_path = url.split(":///", 1)[-1]
    if not db_path:
        return
    Path(db_path).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)


def _create_engine() -> AsyncEngine:
    _ensure_sqlite_dir(settings.DATABASE_URL)
    return create_async_engine(
        settings.DATABASE_URL,
        echo=settings.DATABASE_ECHO,
        future=True,
    )


engine = _create_engine()
AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI 依赖：每个请求一个会话，异常时回滚"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


def create_async_engine_and_session_for_celery() -> Tuple[AsyncEngine, async_sessionmaker]:
    """
    Celery 任务内使用：每个任务在自己的事件循环里创建 engine/session，
    不能复用全局 AsyncSessionLocal，否则会报 "Future attached to a different loop"。
    """
    task_engine = _create_engine()
    session_factory = async_sessionmaker(task_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    return task_engine, session_factory
