from __future__ import annotations

import json
import math
from typing import Any

DEFAULT_ESTIMATE_MULTIPLIER = 2.5


def canonical_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=str)


def estimate_size(value: Any, multiplier: float = DEFAULT_ESTIMATE_MULTIPLIER) -> int:
    """Approximate the in-memory byte cost of ``value``.

    The canonical JSON length is scaled by ``multiplier`` to account for
    wide string storage and engine overhead beyond the raw payload.
    """
    if multiplier <= 0:
        raise ValueError("multiplier must be positive")
    return math.ceil(len(canonical_json(value)) * multiplier)
