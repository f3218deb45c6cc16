"""Operation container: runs one image operation and turns failures into a status."""

import logging

import sentry_sdk

from imaging.buffer import PixelBuffer

logger = logging.getLogger(__name__)


def _capture_with_context(e: Exception, effect_id: str, extra: dict):
    """Capture exception to Sentry with operation-level context and fingerprint dedup."""
    with sentry_sdk.new_scope() as scope:
        scope.set_tag("effect_id", effect_id)
        scope.fingerprint = ["operation-failure", effect_id, type(e).__name__]
        scope.set_context("operation", extra)
        sentry_sdk.capture_exception(e, scope=scope)


class OperationContainer:
    """Container that wraps an operation's apply() function.

    Operations raise on invalid input or allocation failure. The container
    catches that, records it in ``last_error`` and reports a plain
    success/failure result. There is no retry.
    """

    def __init__(self, operation_fn, effect_id: str):
        self.operation_fn = operation_fn
        self.effect_id = effect_id
        self.last_error: Exception | None = None

    def process(self, buffer: PixelBuffer, params: dict) -> bool:
        """Run the operation on ``buffer``. Returns True on success."""
        self.last_error = None

        # Params pass through untouched; non-finite values fail validation
        op_params = dict(params)

        # Context for Sentry (PII-safe: keys only, no values)
        sentry_ctx = {
            "param_keys": list(op_params.keys()),
            "width": buffer.width if buffer is not None else 0,
            "height": buffer.height if buffer is not None else 0,
        }

        try:
            self.operation_fn(buffer, op_params)
        except (ValueError, TypeError, MemoryError) as e:
            self.last_error = e
            _capture_with_context(e, self.effect_id, sentry_ctx)
            logger.error(
                "Operation %s failed: %s",
                self.effect_id,
                type(e).__name__,
            )
            logger.debug("Operation %s exception detail: %s", self.effect_id, e)
            return False

        return True
