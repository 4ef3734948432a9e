"""
Driver and facade factory.

Turns ``Settings`` into a concrete ``Driver`` and a ready ``DatabaseFacade``.
This is the only place that knows which engines are available; everything
downstream talks to the ``Driver`` protocol and the ``Dialect`` it carries.
"""

from __future__ import annotations

from typing import Callable, Dict, Optional
from urllib.parse import quote

from sagadb.config import Settings, get_settings
from sagadb.infrastructure.drivers import Driver, PostgresDriver, SqliteDriver


def build_dsn(settings: Optional[Settings] = None) -> str:
    """Compose a Postgres DSN string from settings."""
    settings = settings or get_settings()
    return (
        f"postgresql://{quote(settings.db_user, safe='')}:{quote(settings.db_password, safe='')}"
        f"@{settings.db_host}:{settings.db_port}/{settings.db_name}"
    )


def _sqlite(settings: Settings) -> Driver:
    return SqliteDriver(settings.db_path, timeout=float(settings.db_connect_timeout))


def _postgres(settings: Settings) -> Driver:
    return PostgresDriver(
        build_dsn(settings),
        connect_timeout=settings.db_connect_timeout,
        pool_min_size=settings.pool_min_size,
        pool_max_size=settings.pool_max_size,
    )


DRIVERS: Dict[str, Callable[[Settings], Driver]] = {
    "sqlite": _sqlite,
    "postgres": _postgres,
}


def create_driver(settings: Optional[Settings] = None) -> Driver:
    """
    Instantiate the driver selected by ``settings.db_driver``.

    Raises
    ------
    ValueError
        If the driver name is not one of the supported drivers.
    """
    settings = settings or get_settings()
    try:
        factory = DRIVERS[settings.db_driver]
    except KeyError as exc:
        supported = ", ".join(sorted(DRIVERS))
        raise ValueError(
            f"Unknown database driver '{settings.db_driver}'. Supported: {supported}"
        ) from exc
    return factory(settings)


def create_database(settings: Optional[Settings] = None):
    """Build a ``DatabaseFacade`` for the configured driver; the primary connection is opened eagerly."""
    from sagadb.facade import DatabaseFacade

    settings = settings or get_settings()
    return DatabaseFacade(create_driver(settings), settings)


__all__ = ["DRIVERS", "build_dsn", "create_driver", "create_database"]
