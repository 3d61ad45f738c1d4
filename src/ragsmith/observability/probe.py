"""
Performance probing for pipeline stages.
Emits a structured log line, Prometheus metrics and an OpenTelemetry span.
"""

import contextlib
import time

from opentelemetry import trace
from prometheus_client import Counter, Histogram

from .logging import get_logger

log = get_logger("ragsmith.probe")

tracer = trace.get_tracer("ragsmith")

REQS = Counter("ragsmith_operations_total", "Total probed operations", ["op", "ok"])
LAT = Histogram("ragsmith_operation_latency_seconds", "Probed operation latency", ["op"])


@contextlib.contextmanager
def probe(op: str, **labels):
    """
    Time a block of work.

    Args:
        op: Operation name (e.g., "engine.retrieve")
        **labels: Additional fields for the log line and span attributes
    """
    start_time = time.perf_counter()
    ok = "true"
    error_type = None

    with tracer.start_as_current_span(op) as span:
        for key, value in labels.items():
            span.set_attribute(f"ragsmith.{key}", str(value))
        try:
            yield
        except Exception as e:
            ok = "false"
            error_type = type(e).__name__
            raise
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000

            fields = dict(labels)
            if error_type:
                fields["error"] = error_type
            log.info(f"op={op} ok={ok}", op=op, ms=duration_ms, **fields)

            REQS.labels(op=op, ok=ok).inc()
            LAT.labels(op=op).observe(duration_ms / 1000.0)
