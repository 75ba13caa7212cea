"""Incremental stream assembly.

サーバーから届く型付きフラグメントをチャネルごとに組み立て、
表示可能な回答（Markdown）とクエリ（SQL）を常に提供する。

Example:
    >>> from flightquery.stream import SSETransport, StreamSession, segment
    >>>
    >>> session = StreamSession("cheapest flight to Hanoi?", SSETransport())
    >>> session.subscribe(lambda snapshot: render(snapshot.answer, snapshot.query))
    >>> session.start()
    >>> final = await session.wait()
    >>> segment(final.answer).title
"""

from flightquery.stream.envelope import parse_envelope, strip_data_label
from flightquery.stream.formatter import format_query, pretty_print
from flightquery.stream.normalizer import normalize, strip_reasoning
from flightquery.stream.segmenter import SegmenterConfig, segment, split_parts
from flightquery.stream.session import (
    ErrorListener,
    SnapshotListener,
    StreamSession,
    validate_query,
)
from flightquery.stream.transport import (
    SSETransport,
    ScriptedTransport,
    TransportConfig,
    TransportProtocol,
    answer_event,
    done_event,
    error_event,
    iter_server_events,
    sql_event,
)
from flightquery.stream.types import (
    Channel,
    ChannelBuffer,
    ControlSignal,
    Fragment,
    Segments,
    ServerEvent,
    SessionStatus,
    Snapshot,
)

__all__ = [
    # Types
    "Channel",
    "ChannelBuffer",
    "ControlSignal",
    "Fragment",
    "Segments",
    "ServerEvent",
    "SessionStatus",
    "Snapshot",
    # Transforms
    "normalize",
    "strip_reasoning",
    "format_query",
    "pretty_print",
    "segment",
    "split_parts",
    "SegmenterConfig",
    # Envelope
    "parse_envelope",
    "strip_data_label",
    # Transport
    "TransportConfig",
    "TransportProtocol",
    "SSETransport",
    "ScriptedTransport",
    "iter_server_events",
    "answer_event",
    "sql_event",
    "done_event",
    "error_event",
    # Session
    "StreamSession",
    "SnapshotListener",
    "ErrorListener",
    "validate_query",
]
