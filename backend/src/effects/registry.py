"""Operation registry: central lookup for all registered image operations."""

from typing import Callable

from imaging.buffer import PixelBuffer

OperationFn = Callable[[PixelBuffer, dict], PixelBuffer]

_REGISTRY: dict[str, dict] = {}


def register(effect_id: str, fn: OperationFn, params: dict, name: str, category: str):
    """Register an operation."""
    _REGISTRY[effect_id] = {
        "fn": fn,
        "params": params,
        "name": name,
        "category": category,
    }


def get(effect_id: str) -> dict | None:
    """Get operation info by ID."""
    return _REGISTRY.get(effect_id)


def list_all() -> list[dict]:
    """List all registered operations with metadata."""
    return [
        {
            "id": eid,
            "name": info["name"],
            "category": info["category"],
            "params": info["params"],
        }
        for eid, info in _REGISTRY.items()
    ]


def defaults(effect_id: str) -> dict:
    """Default parameter values for an operation (empty for unknown ids)."""
    info = _REGISTRY.get(effect_id)
    if info is None:
        return {}
    return {k: pdef.get("default") for k, pdef in info["params"].items()}


def _auto_register():
    """Import and register all built-in operations."""
    from effects.fx import kaleidoscope
    from effects.util import dim

    for mod in [kaleidoscope, dim]:
        register(
            mod.EFFECT_ID, mod.apply, mod.PARAMS, mod.EFFECT_NAME, mod.EFFECT_CATEGORY
        )


_auto_register()
