"""
events/providers/registry.py -- One provider factory per ClientType.

ClientType is a closed enum, and _FACTORIES must cover all of it; the module
refuses to import otherwise. Unknown kinds are rejected with a
ConfigurationError instead of falling through to a guess.
"""

from __future__ import annotations

from typing import Any, Callable, Union

from core.errors import ConfigurationError
from core.models import ClientType
from events.models import EventIngestionProvider
from events.providers.columnar import ColumnarEventProvider
from events.providers.embedded import EmbeddedEventProvider
from events.providers.http import HttpEventProvider
from events.providers.relational import RelationalEventProvider


def _relational(client: Any, table_name: str, **options: Any) -> EventIngestionProvider:
    return RelationalEventProvider(client, table_name=table_name, **options)


def _embedded(client: Any, table_name: str, **options: Any) -> EventIngestionProvider:
    return EmbeddedEventProvider(client, table_name=table_name, **options)


def _columnar(client: Any, table_name: str, **options: Any) -> EventIngestionProvider:
    return ColumnarEventProvider(client, table_name=table_name, **options)


def _webhook(client: Any, table_name: str, **options: Any) -> EventIngestionProvider:
    # No table: the receiving endpoint owns storage.
    return HttpEventProvider(str(client), **options)


_FACTORIES: dict[ClientType, Callable[..., EventIngestionProvider]] = {
    ClientType.sqlalchemy: _relational,
    ClientType.postgres: _relational,
    ClientType.sqlite: _embedded,
    ClientType.clickhouse: _columnar,
    ClientType.https: _webhook,
}

if set(_FACTORIES) != set(ClientType):
    raise RuntimeError("events provider registry does not cover every ClientType")


def create_provider(
    client_type: Union[ClientType, str],
    client: Any,
    table_name: str = "auth_events",
    **options: Any,
) -> EventIngestionProvider:
    """Wrap an already-connected client in the provider for its kind.

    Raises ConfigurationError for an unknown kind or a missing client, and
    ProviderError when the backend rejects table creation.
    """
    try:
        kind = ClientType(client_type)
    except ValueError:
        allowed = ", ".join(c.value for c in ClientType)
        raise ConfigurationError(f"Unknown events client type {client_type!r}. Expected one of: {allowed}.") from None
    if client is None:
        raise ConfigurationError(f"No client supplied for events client type {kind.value!r}.")
    try:
        return _FACTORIES[kind](client, table_name, **options)
    except TypeError as e:
        raise ConfigurationError(f"Invalid options for {kind.value} events provider: {e}") from e
