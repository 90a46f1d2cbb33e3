"""Engine defaults and logging setup.

Defaults can be overridden with ``KAREL_*`` environment variables, which is
handy for tests and for tightening limits on a shared server. Per-instance
tuning happens on the controller itself.
"""

import logging
import os
from typing import Dict, Optional


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


# Primitive invocations allowed per recording before STEP_LIMIT
MAX_STEPS = _env_int("KAREL_MAX_STEPS", 10000)
# Wall-clock budget for executing one program (seconds)
MAX_TIME_S = _env_float("KAREL_MAX_TIME_S", 2.0)
# Subprocess recording: wall-clock timeout and rlimits
SUBPROCESS_TIMEOUT_S = _env_float("KAREL_SUBPROCESS_TIMEOUT_S", 5.0)
SUBPROCESS_CPU_SECONDS = _env_int("KAREL_SUBPROCESS_CPU_SECONDS", 3)
SUBPROCESS_MEM_LIMIT_MB = _env_int("KAREL_SUBPROCESS_MEM_LIMIT_MB", 512)

# Slider positions of the lesson UI, slowest last
SPEED_PRESETS: Dict[str, int] = {
    "Instant": 0,
    "Very Fast": 50,
    "Fast": 150,
    "Normal": 300,
    "Slow": 600,
    "Very Slow": 1000,
}
DEFAULT_STEP_DELAY_MS = _env_int("KAREL_STEP_DELAY_MS", SPEED_PRESETS["Normal"])
MAX_STEP_DELAY_MS = 5000

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """Configure the ``backend`` logger hierarchy once.

    `level` falls back to ``KAREL_LOG_LEVEL`` and then WARNING. Calling this
    repeatedly only updates the level.
    """
    level_name = (level or os.environ.get("KAREL_LOG_LEVEL") or "WARNING").upper()
    logger = logging.getLogger("backend")
    logger.setLevel(getattr(logging, level_name, logging.WARNING))
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
