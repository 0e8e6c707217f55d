from __future__ import annotations

"""
Lightweight metrics helper with optional StatsD/Datadog UDP sink.

Usage (non-blocking, safe in failures):
  from marketplace.utils.metrics import incr
  incr('payments.webhook.applied', tags={'provider': 'cardlink'})

Env:
  METRICS_STATSD_ADDR = "host:port" (e.g., "127.0.0.1:8125")
  METRICS_TAGS = "1" enables Datadog-style tag suffix (|#key:val,...)
"""

import os
import socket
import time
from typing import Dict, Optional

_ADDR = os.getenv("METRICS_STATSD_ADDR", "").strip()
_USE_TAGS = os.getenv("METRICS_TAGS", "1") not in ("0", "false", "False")
_SOCK: Optional[socket.socket] = None


def _get_sock() -> Optional[socket.socket]:
    global _SOCK
    if not _ADDR:
        return None
    if _SOCK is not None:
        return _SOCK
    try:
        host, port = _ADDR.split(":", 1)
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        s.connect((host, int(port)))
        _SOCK = s
        return _SOCK
    except (OSError, ValueError):
        return None


def _format_tags(tags: Optional[Dict[str, object]]) -> str:
    if not tags or not _USE_TAGS:
        return ""
    parts = []
    for k, v in tags.items():
        if k is None:
            continue
        ks = str(k).replace(",", "_")
        vs = str(v).replace(",", "_")
        parts.append(f"{ks}:{vs}")
    return "|#" + ",".join(parts) if parts else ""


def incr(name: str, value: int = 1, tags: Optional[Dict[str, object]] = None) -> None:
    s = _get_sock()
    if not s:
        return
    msg = f"{name}:{int(value)}|c{_format_tags(tags)}"
    try:
        s.send(msg.encode("utf-8"))
    except OSError:
        # best-effort only
        pass


def timing_ms(name: str, ms: float, tags: Optional[Dict[str, object]] = None) -> None:
    s = _get_sock()
    if not s:
        return
    msg = f"{name}:{float(ms):.2f}|ms{_format_tags(tags)}"
    try:
        s.send(msg.encode("utf-8"))
    except OSError:
        pass


class Timer:
    """Report the wrapped block's duration via ``timing_ms`` on exit."""

    def __init__(self, name: str, tags: Optional[Dict[str, object]] = None):
        self.name = name
        self.tags = tags or {}
        self._t0: Optional[float] = None

    def __enter__(self):
        self._t0 = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb):
        if self._t0 is not None:
            timing_ms(self.name, (time.perf_counter() - self._t0) * 1000.0, tags=self.tags)
        return False
