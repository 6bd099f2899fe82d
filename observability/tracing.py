"""Simple span helper for recording step timings."""
from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List


@contextmanager
def span(events: List[Dict[str, Any]], name: str) -> Iterator[None]:
    start = time.time()
    try:
        yield
    finally:
        elapsed_ms = int((time.time() - start) * 1000)
        events.append({"span": name, "ms": elapsed_ms})


__all__ = ["span"]
