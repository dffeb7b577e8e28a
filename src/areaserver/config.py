"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Centralized configuration for the area server.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── python -m areaserver --port 9000 --delay 0.5              │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── AREA_PORT=9000 AREA_DELAY=0.5 python -m areaserver        │
    │                                                                      │
    │   3. Default values (in this dataclass)                            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Validation happens once, at startup (AreaServer.__init__), so a bad value
fails immediately instead of on the first request.

=============================================================================
"""

import os
from dataclasses import dataclass
from typing import Optional


PARSE_POLICIES = ("skip", "strict")
LOG_FORMATS = ("text", "json")


@dataclass
class ServerConfig:
    """
    Configuration for the area server.

    NETWORK SETTINGS
    - host, port, backlog, buffer_size, timeout

    PROTOCOL SETTINGS
    - parse_policy, frame_delimiter, max_frame_size

    COMPUTATION SETTINGS
    - per_rectangle_delay, delay_jitter

    THREADING SETTINGS
    - min_workers, max_workers, queue_size

    LOGGING
    - log_level, log_format
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "127.0.0.1"
    """
    The IP address to bind to.
    - "127.0.0.1" - Localhost only
    - "0.0.0.0" - All network interfaces
    """

    port: int = 8080
    """Port to listen on. 0 asks the OS for a free one (tests)."""

    backlog: int = 128
    """Maximum number of handshakes queued before accept()."""

    buffer_size: int = 1024
    """Bytes per recv(). In per-read framing this is the largest request."""

    timeout: Optional[float] = None
    """
    Idle timeout per connection, in seconds.
    None = wait for the client forever (clients stay connected between
    requests and may be idle for a long time).
    """

    # ─────────────────────────────────────────────────────────────────────
    # PROTOCOL SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    parse_policy: str = "skip"
    """
    What to do with a pair that isn't numeric.
    - "skip" - drop the pair, answer with the rest
    - "strict" - reject the request (answered with "0")
    """

    frame_delimiter: Optional[str] = None
    """
    Frame terminator, e.g. "\\n".
    None = one recv() is one frame (what existing clients expect).
    """

    max_frame_size: int = 1024 * 1024
    """Largest delimited frame accepted before the connection is dropped."""

    # ─────────────────────────────────────────────────────────────────────
    # COMPUTATION SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    per_rectangle_delay: float = 2.0
    """Simulated processing time per rectangle, in seconds."""

    delay_jitter: float = 0.0
    """Extra random delay in [0, jitter) per rectangle."""

    # ─────────────────────────────────────────────────────────────────────
    # THREAD POOL SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    min_workers: int = 4
    """Connection workers created at startup."""

    max_workers: int = 16
    """Upper bound on connections served in parallel."""

    queue_size: int = 100
    """Connections waiting for a worker before new ones are rejected."""

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    """Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)."""

    log_format: str = "text"
    """Event log format: 'text' or 'json'."""

    @property
    def delimiter_bytes(self) -> Optional[bytes]:
        if not self.frame_delimiter:
            return None
        return self.frame_delimiter.encode("utf-8")

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Create configuration from environment variables.

        AREA_HOST           Server host (default: 127.0.0.1)
        AREA_PORT           Server port (default: 8080)
        AREA_DELAY          Per-rectangle delay in seconds (default: 2)
        AREA_JITTER         Random extra delay in seconds (default: 0)
        AREA_PARSE_POLICY   skip | strict (default: skip)
        AREA_DELIMITER      Frame delimiter, "\\n" allowed (default: none)
        AREA_WORKERS        Max connection workers (default: 16)
        AREA_LOG_LEVEL      Logging level (default: INFO)
        AREA_LOG_FORMAT     text | json (default: text)
        """
        delimiter = os.getenv("AREA_DELIMITER")
        if delimiter:
            delimiter = delimiter.encode("utf-8").decode("unicode_escape")

        max_workers = int(os.getenv("AREA_WORKERS", "16"))
        return cls(
            host=os.getenv("AREA_HOST", "127.0.0.1"),
            port=int(os.getenv("AREA_PORT", "8080")),
            per_rectangle_delay=float(os.getenv("AREA_DELAY", "2.0")),
            delay_jitter=float(os.getenv("AREA_JITTER", "0")),
            parse_policy=os.getenv("AREA_PARSE_POLICY", "skip"),
            frame_delimiter=delimiter or None,
            min_workers=min(4, max_workers),
            max_workers=max_workers,
            log_level=os.getenv("AREA_LOG_LEVEL", "INFO"),
            log_format=os.getenv("AREA_LOG_FORMAT", "text"),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ValueError: Describing the first invalid field.
        """
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.buffer_size < 64:
            raise ValueError("buffer_size must be >= 64")

        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be > 0 or None")

        if self.per_rectangle_delay < 0:
            raise ValueError("per_rectangle_delay must be >= 0")

        if self.delay_jitter < 0:
            raise ValueError("delay_jitter must be >= 0")

        if self.min_workers < 1:
            raise ValueError("min_workers must be >= 1")

        if self.max_workers < self.min_workers:
            raise ValueError("max_workers must be >= min_workers")

        if self.queue_size < 1:
            raise ValueError("queue_size must be >= 1")

        if self.parse_policy not in PARSE_POLICIES:
            raise ValueError(
                f"parse_policy must be one of {PARSE_POLICIES}, got {self.parse_policy!r}"
            )

        if self.log_format not in LOG_FORMATS:
            raise ValueError(
                f"log_format must be one of {LOG_FORMATS}, got {self.log_format!r}"
            )

        if self.frame_delimiter is not None and self.frame_delimiter == "":
            raise ValueError("frame_delimiter must be non-empty or None")

        if self.frame_delimiter and any(ch in "0123456789+-.,eE" for ch in self.frame_delimiter):
            raise ValueError(f"frame_delimiter {self.frame_delimiter!r} collides with the payload")

        if self.max_frame_size < self.buffer_size:
            raise ValueError("max_frame_size must be >= buffer_size")
