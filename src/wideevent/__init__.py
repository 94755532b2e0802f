"""wideevent: ingest, query and sample wide events.

One self-describing record per unit of work, stored in a semi-structured
column store and queryable by any field without a predeclared schema.
"""

from wideevent.adapters.frameworks.asgi import WideEventMiddleware, create_asgi_app
from wideevent.adapters.frameworks.context import current_builder, current_event
from wideevent.adapters.transport import HttpIngestTransport, InProcessTransport
from wideevent.core.builder import WideEventBuilder, build_event
from wideevent.core.discovery import FieldDiscovery
from wideevent.core.errors import (
    AuthError,
    DependencyError,
    InvalidRequestError,
    PersistenceError,
    ProjectBindingError,
    QuotaExceeded,
    StoreError,
    ValidationError,
    WideEventError,
)
from wideevent.core.filters import compile_predicate
from wideevent.core.gate import IngestionGate, IngestResult
from wideevent.core.models import FilterCondition, QueryOptions, WideEvent
from wideevent.core.query import QueryEngine
from wideevent.core.quota import QuotaCache
from wideevent.core.sampling import SamplingConfig, should_keep

__all__ = [
    "AuthError",
    "DependencyError",
    "FieldDiscovery",
    "FilterCondition",
    "HttpIngestTransport",
    "InProcessTransport",
    "IngestResult",
    "IngestionGate",
    "InvalidRequestError",
    "PersistenceError",
    "ProjectBindingError",
    "QueryEngine",
    "QueryOptions",
    "QuotaCache",
    "QuotaExceeded",
    "SamplingConfig",
    "StoreError",
    "ValidationError",
    "WideEvent",
    "WideEventBuilder",
    "WideEventError",
    "WideEventMiddleware",
    "build_event",
    "compile_predicate",
    "create_asgi_app",
    "current_builder",
    "current_event",
    "should_keep",
]
