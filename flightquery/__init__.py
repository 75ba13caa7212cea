# FlightQuery - Streaming flight search assistant client
"""
FlightQuery: incremental assembly of streamed flight answers and SQL

Receives typed answer/SQL fragments over server-sent events, renders them
continuously, and segments the final answer into title, flights and summary.
"""

__version__ = "0.1.0"
__author__ = "FlightQuery Team"

__all__ = [
    "__version__",
    "FlightQueryClient",
    "FlightQueryConfig",
    "StreamSession",
    "Snapshot",
    "Segments",
    "normalize",
    "format_query",
    "segment",
]


# Lazy imports so that `flightquery --help` does not load aiohttp / sqlglot
def __getattr__(name):
    """Lazy import for public API."""
    if name in ("FlightQueryClient", "create_client"):
        from flightquery.api.client import FlightQueryClient, create_client
        return FlightQueryClient if name == "FlightQueryClient" else create_client
    if name == "FlightQueryConfig":
        from flightquery.api.base import FlightQueryConfig
        return FlightQueryConfig
    if name in ("StreamSession", "Snapshot", "Segments", "normalize", "format_query", "segment"):
        import flightquery.stream as stream
        return getattr(stream, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
