"""
=============================================================================
EXAMPLE: LIVE MONITOR
=============================================================================

Runs the area server in the background and follows it the way a UI
would: by consuming events from a QueueObserver on its own thread.

    python examples/monitor.py --port 8080 --delay 1

Then, in another terminal:

    areaclient 127.0.0.1 8080 2,3,4,5

    ┌─────────────────────┐   events    ┌─────────────────────────────┐
    │  AreaServer threads │ ──────────► │ QueueObserver ──► this loop │
    └─────────────────────┘  (no wait)  └─────────────────────────────┘

=============================================================================
"""

import argparse
import logging

from areaserver import (
    AreaServer,
    EventKind,
    LoggingObserver,
    ObserverGroup,
    QueueObserver,
    ServerConfig,
)


def describe(event, server: AreaServer) -> str:
    """One status line per interesting event."""
    if event.kind is EventKind.CONNECTION_OPENED:
        host, port = event.data["address"][:2]
        return f"+ {event.connection_id} from {host}:{port} ({server.connection_count} open)"
    if event.kind is EventKind.CONNECTION_CLOSED:
        return f"- {event.connection_id} {event.data['reason'] or ''} ({server.connection_count} open)"
    if event.kind is EventKind.BATCH_FINISHED:
        return f"  {event.connection_id} rectangle {event.data['index']} done"
    if event.kind is EventKind.RESULT_UPDATED:
        result = event.data["result"]
        return f"= {event.connection_id} total {result.total:g} areas {result.areas}"
    if event.kind is EventKind.SERVER_ERROR:
        return f"! server error: {event.data['error']}"
    return ""


def main():
    parser = argparse.ArgumentParser(description="Area server with a live event monitor")
    parser.add_argument("--port", "-p", type=int, default=8080)
    parser.add_argument("--delay", "-d", type=float, default=2.0)
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    events = QueueObserver(maxsize=1000)
    server = AreaServer(
        ServerConfig(port=args.port, per_rectangle_delay=args.delay),
        observer=ObserverGroup(LoggingObserver(), events),
    )

    host, port = server.start()
    print(f"Monitoring area server on {host}:{port} (Ctrl+C to stop)")

    try:
        while server.is_running:
            event = events.get(timeout=0.5)
            if event is None:
                continue
            line = describe(event, server)
            if line:
                print(line)
    except KeyboardInterrupt:
        pass
    finally:
        server.stop()
        if events.dropped_events:
            print(f"({events.dropped_events} events dropped)")


if __name__ == "__main__":
    main()
