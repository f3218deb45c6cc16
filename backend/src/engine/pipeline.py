"""Operation pipeline: applies an ordered chain of operations to a pixel buffer.

The chain stops at the first failing step; failures are terminal for that
call and are reported back in the ChainResult, never retried.
Includes rolling timing stats and slow-step warnings.
"""

import logging
import time
from collections import defaultdict, deque
from dataclasses import dataclass, field

import sentry_sdk

from effects import registry
from engine.container import OperationContainer
from imaging.buffer import PixelBuffer

logger = logging.getLogger(__name__)

# Maximum operations in a single chain
MAX_CHAIN_DEPTH = 10

# Per-step timing threshold (milliseconds)
EFFECT_WARN_MS = 2000

# Rolling timing stats per operation
_effect_timing: dict[str, deque] = defaultdict(lambda: deque(maxlen=100))


@dataclass
class ChainResult:
    ok: bool = True
    failed_effect: str | None = None
    error: str | None = None
    timings_ms: dict[str, float] = field(default_factory=dict)


def record_timing(effect_id: str, elapsed_ms: float):
    """Record a timing sample for an operation."""
    _effect_timing[effect_id].append(elapsed_ms)


def get_effect_stats() -> dict[str, dict]:
    """Return p50/p95/max per operation."""
    result = {}
    for eid, samples in _effect_timing.items():
        s = sorted(samples)
        result[eid] = {
            "p50": s[len(s) // 2] if s else 0,
            "p95": s[int(len(s) * 0.95)] if len(s) >= 20 else None,
            "max": max(s) if s else 0,
            "samples": len(s),
        }
    return result


def flush_timing():
    """Clear all timing stats."""
    _effect_timing.clear()


def apply_chain(buffer: PixelBuffer, chain: list[dict]) -> ChainResult:
    """Apply an ordered chain of operations to ``buffer`` in place.

    Args:
        buffer: Pixel buffer to transform.
        chain:  List of operation instances, each:
                {"effect_id": str, "params": dict, "enabled": bool}.

    Returns:
        ChainResult. On failure ``buffer`` holds whatever the failing step
        left behind (e.g. dimmed but not composited).

    Raises:
        ValueError: If chain exceeds MAX_CHAIN_DEPTH or contains unknown ids.
    """
    if len(chain) > MAX_CHAIN_DEPTH:
        raise ValueError(f"Chain depth {len(chain)} exceeds maximum {MAX_CHAIN_DEPTH}")

    result = ChainResult()

    for i, instance in enumerate(chain):
        if not instance.get("enabled", True):
            continue

        effect_id = instance.get("effect_id")
        params = dict(instance.get("params", {}))

        info = registry.get(effect_id)
        if info is None:
            raise ValueError(f"unknown effect: {effect_id}")

        sentry_sdk.add_breadcrumb(
            category="operation",
            message=f"Processing {effect_id}",
            data={"chain_position": i},
            level="info",
        )

        container = OperationContainer(info["fn"], effect_id)

        t0 = time.monotonic()
        ok = container.process(buffer, params)
        elapsed_ms = (time.monotonic() - t0) * 1000

        record_timing(effect_id, elapsed_ms)
        result.timings_ms[effect_id] = elapsed_ms

        if not ok:
            result.ok = False
            result.failed_effect = effect_id
            result.error = f"{type(container.last_error).__name__}: {container.last_error}"
            return result

        if elapsed_ms > EFFECT_WARN_MS:
            logger.warning(
                "Operation %s took %.0fms (>%dms warn threshold) on %dx%d",
                effect_id,
                elapsed_ms,
                EFFECT_WARN_MS,
                buffer.width,
                buffer.height,
            )

    return result
