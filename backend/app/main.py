"""FastAPI application entrypoints for the Karel engine.

Handlers stay small: each request builds a fresh `ExecutionController` so no
world or execution state is ever shared between requests. Server-side caps
are enforced so clients cannot raise resource/safety limits above the
engine defaults.
"""

import logging
import time
from typing import Any, Dict, List, Optional

from fastapi import FastAPI
from pydantic import BaseModel

from ..karel import config
from ..karel.controller import ExecutionController
from ..karel.lesson import AllowedFeatures, TestSuite, WorldGoal, goal_predicate
from ..karel.validator import ValidationResult, validate
from ..karel.world import World, create_default_world

logger = logging.getLogger(__name__)

app = FastAPI(title="Karel API", version="0.1")

# Server-side engine defaults; tests may lower these to exercise limits
controller_defaults = ExecutionController(step_delay_ms=0)


def _cap_settings(settings: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Enforce server-side safe caps for runtime tunables.

    Clients may include a `settings` object with per-run tunables. The
    server establishes a ceiling from `controller_defaults` and applies the
    client's requested values up to those ceilings.
    """
    safe = {
        "max_steps": controller_defaults.max_steps,
        "max_time_s": controller_defaults.max_time_s,
        "use_subprocess": controller_defaults.use_subprocess,
    }
    if not settings:
        return safe
    caps = dict(safe)
    caps["max_steps"] = max(1, min(int(settings.get("max_steps", safe["max_steps"])), safe["max_steps"]))
    caps["max_time_s"] = max(0.01, min(float(settings.get("max_time_s", safe["max_time_s"])), safe["max_time_s"]))
    # isolation can be requested, never switched off when the server enforces it
    caps["use_subprocess"] = bool(settings.get("use_subprocess", False)) or safe["use_subprocess"]
    return caps


@app.on_event("startup")
def startup():
    """FastAPI startup event: configure logging."""
    config.configure_logging()


class ValidateRequest(BaseModel):
    code: str
    allowed_features: Optional[AllowedFeatures] = None


class RunRequest(BaseModel):
    """Pydantic model for the `/run` request body.

    Fields:
        code: student program text.
        world: starting world; the default 10x10 world when omitted.
        allowed_features: optional lesson restrictions.
        settings: optional runtime tunables; will be capped server-side.
    """

    code: str
    world: Optional[World] = None
    allowed_features: Optional[AllowedFeatures] = None
    settings: Optional[Dict[str, Any]] = None


class TestRunRequest(BaseModel):
    code: str
    worlds: Dict[str, World]
    goals: Dict[str, WorldGoal]
    allowed_features: Optional[AllowedFeatures] = None
    settings: Optional[Dict[str, Any]] = None


def _controller(world: Optional[World], code: str, features: Optional[AllowedFeatures], settings) -> ExecutionController:
    capped = _cap_settings(settings or {})
    return ExecutionController(
        world if world is not None else create_default_world(),
        code,
        allowed_features=features,
        step_delay_ms=0,
        max_steps=capped["max_steps"],
        max_time_s=capped["max_time_s"],
        use_subprocess=capped["use_subprocess"],
    )


def _frames(ctrl: ExecutionController) -> List[Dict[str, Any]]:
    return [
        {"step": t.index + 1, "line": t.line, "primitive": t.primitive}
        for t in ctrl.history
    ]


def _server_error(start: float, e: Exception) -> Dict[str, Any]:
    logger.exception("request failed")
    return {
        "status": "error",
        "duration_ms": int((time.time() - start) * 1000),
        "errors": {"code": "SERVER_ERROR", "message": str(e)},
    }


@app.post("/validate", response_model=ValidationResult)
async def validate_code(req: ValidateRequest):
    features = req.allowed_features or AllowedFeatures()
    return validate(
        req.code,
        karel_commands=features.karel_commands,
        python_features=features.python_features,
    )


@app.post("/run")
async def run_code(req: RunRequest):
    """Validate and run a program to completion at zero delay.

    The response carries the final state and world plus the list of frames
    (one per primitive) so a client can animate or highlight lines itself.
    Any unexpected exception becomes a SERVER_ERROR payload.
    """
    start = time.time()
    try:
        ctrl = _controller(req.world, req.code, req.allowed_features, req.settings)
        state = ctrl.run()
    except Exception as e:
        return _server_error(start, e)
    errors = None
    if state.error is not None:
        errors = {"code": state.error_code, "message": state.error, "line": state.error_line}
    return {
        "status": state.status.value,
        "state": state.model_dump(mode="json"),
        "world": ctrl.world.model_dump(mode="json"),
        "frames": _frames(ctrl),
        "duration_ms": int((time.time() - start) * 1000),
        "errors": errors,
    }


@app.post("/test")
async def run_tests(req: TestRunRequest):
    """Run the program against each named world and check it against its goal."""
    start = time.time()
    missing = sorted(set(req.worlds) - set(req.goals))
    if missing:
        return {
            "passed": False,
            "results": [],
            "errors": {"code": "BAD_REQUEST", "message": f"no goal for worlds: {', '.join(missing)}"},
        }
    checks = {name: goal_predicate(goal) for name, goal in req.goals.items()}
    # every world has its own goal: one single-world suite per world
    results = []
    try:
        for name, world in req.worlds.items():
            suite = TestSuite(worlds={name: world}, validate=checks[name])
            ctrl = _controller(world, req.code, req.allowed_features, req.settings)
            results.extend(ctrl.run_tests(suite).results)
    except Exception as e:
        return _server_error(start, e)
    return {
        "passed": all(r.passed for r in results),
        "results": [r.model_dump(mode="json") for r in results],
        "duration_ms": int((time.time() - start) * 1000),
        "errors": None,
    }


@app.get("/presets")
async def list_presets():
    return config.SPEED_PRESETS
