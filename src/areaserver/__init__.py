"""
=============================================================================
AREASERVER - Concurrent Rectangle-Area TCP Server
=============================================================================

A TCP server that receives batches of rectangles as comma-separated text,
computes every area on its own thread, and answers with the total followed
by each area in input order.

    Client sends:   2,3,4,5
    Server sends:   26,6,20

=============================================================================
PROJECT OVERVIEW
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                       AREASERVER ARCHITECTURE                        │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   1. RAW SOCKET PROGRAMMING                                         │
    │      - TCP listener with mapped bind errors                         │
    │      - Accept loop on a background thread                           │
    │      - Per-read or delimiter framing                                │
    │                                                                      │
    │   2. WIRE PROTOCOL                                                  │
    │      - "w1,h1,...,wN,hN" → "total,a1,...,aN"                        │
    │      - Skip-invalid or strict parsing of malformed pairs            │
    │                                                                      │
    │   3. CONCURRENCY                                                    │
    │      - Thread pool: one worker per live connection                  │
    │      - Area engine: one thread per rectangle, join barrier          │
    │      - Cancellation of in-flight batches on close/stop              │
    │                                                                      │
    │   4. OBSERVABILITY                                                  │
    │      - Observer interface (logging, queue for UIs, fan-out)         │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
MODULE STRUCTURE
=============================================================================

    areaserver/
    ├── __init__.py          # Package exports
    ├── __main__.py          # CLI entry point (python -m areaserver)
    ├── server.py            # AreaServer orchestrator
    ├── config.py            # ServerConfig
    ├── errors.py            # ParseError, BindError, OperationCancelled
    ├── engine.py            # AreaEngine (thread per rectangle)
    ├── state.py             # Last computed result
    ├── observer.py          # Observer interface + implementations
    ├── client.py            # AreaClient + areaclient CLI
    ├── protocol/
    │   └── codec.py         # Parse requests, format responses
    └── core/
        ├── socket_server.py # TCP listener
        ├── connection.py    # Connection wrapper, framing
        ├── handler.py       # Per-connection receive loop
        ├── registry.py      # Live connections by id
        └── thread_pool.py   # Worker threads

=============================================================================
QUICK START
=============================================================================

    from areaserver import AreaServer, ServerConfig

    server = AreaServer(ServerConfig(port=8080, per_rectangle_delay=0.5))
    server.run()

    # elsewhere
    from areaserver import AreaClient

    with AreaClient("127.0.0.1", 8080) as client:
        total, areas = client.request([(2, 3), (4, 5)])   # 26.0, [6.0, 20.0]

=============================================================================
"""

__version__ = "1.0.0"

from .server import AreaServer, create_app
from .config import ServerConfig
from .client import AreaClient
from .engine import AreaEngine, BatchResult
from .errors import (
    BindError,
    BindErrorKind,
    OperationCancelled,
    ParseError,
    ParseErrorKind,
    SendFailed,
)
from .observer import (
    EventKind,
    LoggingObserver,
    ObserverEvent,
    ObserverGroup,
    QueueObserver,
    ServerObserver,
)

__all__ = [
    "AreaServer",
    "create_app",
    "ServerConfig",
    "AreaClient",
    "AreaEngine",
    "BatchResult",
    "BindError",
    "BindErrorKind",
    "OperationCancelled",
    "ParseError",
    "ParseErrorKind",
    "SendFailed",
    "EventKind",
    "LoggingObserver",
    "ObserverEvent",
    "ObserverGroup",
    "QueueObserver",
    "ServerObserver",
    "__version__",
]
