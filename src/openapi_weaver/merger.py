"""Deep-merge algebra shared by @extend expansion and static includes.

    map      + map      -> merged key by key, recursing on shared keys
    sequence + sequence -> concatenated (so merging twice is not idempotent)
    map      + sequence -> MergeConflictTypeMismatch
    anything else       -> one side wins, chosen by ``overlay_wins``

@extend merges with the enclosing (local) value winning; includes are
layered on top of the generated document with the include winning.
"""

import copy

from openapi_weaver.errors import MergeConflictError


def _shape(value) -> str:
    if isinstance(value, dict):
        return "map"
    if isinstance(value, list):
        return "sequence"
    return "scalar"


def _merge(base, overlay, overlay_wins: bool, path: str):
    base_shape, overlay_shape = _shape(base), _shape(overlay)
    if base_shape == "map" and overlay_shape == "map":
        for key, value in overlay.items():
            if key in base:
                base[key] = _merge(base[key], value, overlay_wins, f"{path}/{key}")
            else:
                base[key] = value
        return base
    if base_shape == "sequence" and overlay_shape == "sequence":
        base.extend(overlay)
        return base
    if {base_shape, overlay_shape} == {"map", "sequence"}:
        raise MergeConflictError(
            f"cannot merge a {overlay_shape} into a {base_shape} at '{path or '/'}'"
        )
    return overlay if overlay_wins else base


def deep_merge(base, overlay, *, overlay_wins: bool = True, path: str = ""):
    """Return a new value combining ``overlay`` into ``base``; inputs are untouched."""
    return _merge(copy.deepcopy(base), copy.deepcopy(overlay), overlay_wins, path)


def merge_layers(base: dict, layers: list[dict], *, overlay_wins: bool = True) -> dict:
    """Apply each layer in order on top of ``base``."""
    result = copy.deepcopy(base)
    for layer in layers:
        result = _merge(result, copy.deepcopy(layer), overlay_wins, "")
    return result
