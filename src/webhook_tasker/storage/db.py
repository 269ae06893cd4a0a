"""
Инициализация базы данных и сессий SQLAlchemy.

Назначение:
- Создание engine
- Контекстный менеджер для сессий
- Единая точка доступа к БД для всех сервисов
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager, contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from webhook_tasker.common.config import get_settings

SessionScope = Callable[[], AbstractContextManager[Session]]

# =============================================================================
# ENGINE / SESSION FACTORY
# =============================================================================
_settings = get_settings()

engine = create_engine(
    _settings.postgres_dsn,
    pool_pre_ping=True,
)

SessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
)


# =============================================================================
# CONTEXT MANAGERS
# =============================================================================
@contextmanager
def session_scope(factory: sessionmaker) -> Iterator[Session]:
    """
    Транзакция на время блока: commit при успехе, rollback при ошибке.
    """
    session: Session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def db_session() -> AbstractContextManager[Session]:
    """
    Контекстный менеджер для работы с основной БД.

    Использование:
        with db_session() as session:
            session.add(...)
    """
    return session_scope(SessionLocal)


def scope_for(factory: sessionmaker) -> SessionScope:
    """
    Фабрика контекстов сессий для произвольного sessionmaker (тесты, скрипты).
    """
    return lambda: session_scope(factory)
