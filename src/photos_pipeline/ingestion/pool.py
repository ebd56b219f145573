"""Process-scoped database pool with lazily resolved credentials."""

import threading
from contextlib import ExitStack, contextmanager
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional

import httpx
import psycopg
from psycopg.conninfo import conninfo_to_dict
from psycopg_pool import ConnectionPool

from ..core.exceptions import DatabaseConnectionError
from ..core.protocols import ConfigSourceProtocol, LoggerProtocol

HEROKU_API_URL = "https://api.heroku.com"
HEROKU_ACCEPT = "application/vnd.heroku+json; version=3"

DEFAULT_MAX_IDLE = 120.0
DEFAULT_CONNECT_TIMEOUT = 10.0


class PoolState(str, Enum):
    UNINITIALIZED = "uninitialized"
    RESOLVING = "resolving"
    READY = "ready"
    FAILED = "failed"


def parse_connection_string(dsn: Any) -> Dict[str, Any]:
    """
    Parse a connection string returned by the credential source.

    The value is untrusted: anything that is not a string, does not parse,
    or lacks a host or database name is rejected.

    Raises:
        DatabaseConnectionError: If the value is not a usable connection string
    """
    if not isinstance(dsn, str) or not dsn.strip():
        raise DatabaseConnectionError("Credential source returned an empty connection string")
    try:
        params = conninfo_to_dict(dsn.strip())
    except (psycopg.Error, ValueError, TypeError) as exc:
        raise DatabaseConnectionError(f"Malformed connection string: {exc}") from exc

    missing = [name for name in ("host", "dbname") if not params.get(name)]
    if missing:
        raise DatabaseConnectionError(f"Connection string is missing {', '.join(missing)}")
    return params


def _select_database_url(payload: Any) -> str:
    # the addon config is a list of {"name": ..., "value": ...}; the first
    # *_URL entry holding a postgres URL wins, then any non-empty value
    if not isinstance(payload, list) or not payload:
        raise DatabaseConnectionError("Addon config response is not a non-empty list")

    entries: List[Dict[str, Any]] = [entry for entry in payload if isinstance(entry, dict)]
    for entry in entries:
        name = str(entry.get("name", ""))
        value = entry.get("value")
        if name.upper().endswith("URL") and isinstance(value, str) and value.startswith("postgres"):
            return value
    for entry in entries:
        if isinstance(entry.get("value"), str) and entry["value"]:
            return entry["value"]
    raise DatabaseConnectionError("Addon config response holds no connection string")


class HerokuConfigSource:
    """Fetch a Postgres addon's connection string from the Heroku platform API."""

    def __init__(
        self,
        api_key: str,
        api_url: str = HEROKU_API_URL,
        timeout: float = DEFAULT_CONNECT_TIMEOUT,
        client: Optional[httpx.Client] = None,
    ):
        self._api_key = api_key
        self._api_url = api_url.rstrip("/")
        self._client = client or httpx.Client(timeout=timeout)

    def fetch_database_url(self, resource_id: str) -> str:
        url = f"{self._api_url}/addons/{resource_id}/config"
        headers = {"Authorization": f"Bearer {self._api_key}", "Accept": HEROKU_ACCEPT}
        try:
            response = self._client.get(url, headers=headers)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as exc:
            raise DatabaseConnectionError(
                f"Addon config request failed with HTTP {exc.response.status_code}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise DatabaseConnectionError(f"Addon config request failed: {exc}") from exc
        return _select_database_url(payload)


PoolFactory = Callable[[Dict[str, Any]], Any]


def build_connection_pool(
    params: Dict[str, Any],
    max_idle: float = DEFAULT_MAX_IDLE,
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
    open: bool = True,
) -> ConnectionPool:
    """
    A pool of at most one connection; invocations in one process serialize on it.

    With ``min_size=0`` the connection is closed once it has sat idle for
    ``max_idle`` seconds, and ``check`` validates it on every checkout so a
    connection dropped by the server is replaced instead of handed out.
    """
    kwargs = dict(params)
    kwargs.setdefault("sslmode", "require")
    kwargs.setdefault("connect_timeout", int(connect_timeout))
    return ConnectionPool(
        conninfo="",
        kwargs=kwargs,
        min_size=0,
        max_size=1,
        check=ConnectionPool.check_connection,
        max_idle=max_idle,
        timeout=connect_timeout,
        name="photos-meta",
        open=open,
    )


class ConnectionLifecycleManager:
    """
    Owns the process-wide pool: UNINITIALIZED -> RESOLVING -> READY, or FAILED.

    Credentials are resolved once per process and the pool is reused by every
    later invocation. It is never closed explicitly; process teardown
    reclaims it. A failed resolution leaves no pool behind and raises, and the
    next call starts a fresh resolution.
    """

    def __init__(
        self,
        config_source: ConfigSourceProtocol,
        resource_id: str,
        logger: LoggerProtocol,
        pool_factory: Optional[PoolFactory] = None,
        max_idle: float = DEFAULT_MAX_IDLE,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
    ):
        self._config_source = config_source
        self._resource_id = resource_id
        self._logger = logger
        self._connect_timeout = connect_timeout
        self._pool_factory = pool_factory or (
            lambda params: build_connection_pool(params, max_idle, connect_timeout)
        )
        self._lock = threading.Lock()
        self._state = PoolState.UNINITIALIZED
        self._pool: Optional[Any] = None
        self._failure_reason: Optional[str] = None

    @property
    def state(self) -> PoolState:
        return self._state

    @property
    def failure_reason(self) -> Optional[str]:
        return self._failure_reason

    def ensure_pool(self) -> Any:
        """
        Return the ready pool, resolving credentials on first use.

        Raises:
            DatabaseConnectionError: If credentials cannot be resolved or parsed,
                or the pool cannot be built
        """
        with self._lock:
            if self._state is PoolState.READY and self._pool is not None:
                self._logger.debug("Database pool already initialized")
                return self._pool

            self._state = PoolState.RESOLVING
            self._logger.info(f"Resolving database credentials for {self._resource_id}")
            try:
                dsn = self._config_source.fetch_database_url(self._resource_id)
                params = parse_connection_string(dsn)
                pool = self._pool_factory(params)
            except Exception as exc:
                self._pool = None
                self._state = PoolState.FAILED
                self._failure_reason = str(exc)
                self._logger.error(f"Could not initialize database pool: {exc}")
                if isinstance(exc, DatabaseConnectionError):
                    raise
                raise DatabaseConnectionError(f"Could not initialize database pool: {exc}") from exc

            self._pool = pool
            self._state = PoolState.READY
            self._failure_reason = None
            self._logger.info(f"Database pool ready (host={params.get('host')}, dbname={params.get('dbname')})")
            return pool

    @contextmanager
    def connection(self) -> Iterator[Any]:
        """
        Yield one pooled connection and always hand it back.

        The pool's context commits on a clean exit and rolls back when the
        block raises.
        """
        pool = self.ensure_pool()
        with ExitStack() as stack:
            try:
                conn = stack.enter_context(pool.connection(timeout=self._connect_timeout))
            except psycopg.OperationalError as exc:
                raise DatabaseConnectionError(f"Could not acquire a database connection: {exc}") from exc
            yield conn
