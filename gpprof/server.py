#
# Copyright (C) 2022 Intel Corporation
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
"""
pprof endpoints a la Go's net/http/pprof:
    - /debug/pprof/: List the available profiles.
    - /debug/pprof/profile: Collect a CPU profile (?seconds=N, default 30).
    - /debug/pprof/cmdline: The running program's command line.
"""
import io
import sys
from typing import Dict, Optional, Type

from fastapi import APIRouter, FastAPI, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, Response

from gpprof import __version__
from gpprof.cpu_profiler import CPUProfiler
from gpprof.exceptions import (
    EncodeFailure,
    EngineResolutionFailure,
    EngineStartFailure,
    EngineStopFailure,
    InvalidDuration,
    PartialProfile,
    ProfilingError,
    SessionBusy,
    SessionFailure,
    SinkWriteFailure,
    TraceReadFailure,
    UnsupportedPlatform,
)
from gpprof.log import get_logger_adapter

logger = get_logger_adapter(__name__)

DEFAULT_PROFILE_SECONDS = 30.0
# set when the engine failed to stop cleanly, so the profile may lack its last samples
PARTIAL_PROFILE_HEADER = "X-Profile-Partial"

ERROR_STATUS_CODES: Dict[Type[ProfilingError], int] = {
    InvalidDuration: 400,
    SessionBusy: 409,
    UnsupportedPlatform: 501,
    EngineResolutionFailure: 500,
    EngineStartFailure: 500,
    EngineStopFailure: 500,
    TraceReadFailure: 500,
    EncodeFailure: 500,
    SinkWriteFailure: 500,
    SessionFailure: 500,
}

_INDEX_TEMPLATE = """<html>
<head><title>/debug/pprof/</title></head>
<body>
/debug/pprof/<br>
<br>
Types of profiles available:
<table>
<tr><td><a href="profile?seconds={seconds:g}">profile</a></td>
<td>CPU profile. You can specify the duration in the seconds GET parameter.
After you get the profile file, use the go tool pprof command to investigate the profile.</td></tr>
<tr><td><a href="cmdline">cmdline</a></td><td>The command line invocation of the current program.</td></tr>
</table>
</body>
</html>
"""


def status_code_for(error: ProfilingError) -> int:
    for error_type in type(error).__mro__:
        if error_type in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[error_type]  # type: ignore[index]
    return 500


def create_router(profiler: CPUProfiler, default_seconds: float = DEFAULT_PROFILE_SECONDS) -> APIRouter:
    router = APIRouter(prefix="/debug/pprof")

    @router.get("/", response_class=HTMLResponse)
    def index() -> str:
        return _INDEX_TEMPLATE.format(seconds=default_seconds)

    @router.get("/cmdline", response_class=PlainTextResponse)
    def cmdline() -> str:
        return "\0".join(sys.argv)

    # a plain "def" route - FastAPI runs it on its thread pool, so the blocking session doesn't stall the loop.
    @router.get("/profile")
    def profile(seconds: Optional[float] = Query(None)) -> Response:
        duration = seconds if seconds is not None else default_seconds
        # the whole profile is buffered, so a failed session is answered with an error status
        # rather than a truncated body.
        sink = io.BytesIO()
        headers = {
            "Content-Encoding": "gzip",
            "Content-Disposition": 'attachment; filename="profile"',
            "X-Content-Type-Options": "nosniff",
        }
        try:
            profiler.run(duration, sink)
        except PartialProfile as e:
            logger.warning(f"Returning a profile that may be partial: {e}", samples=e.samples)
            headers[PARTIAL_PROFILE_HEADER] = "true"
        return Response(sink.getvalue(), media_type="application/octet-stream", headers=headers)

    return router


def register_pprof_handlers(
    app: FastAPI, profiler: CPUProfiler, default_seconds: float = DEFAULT_PROFILE_SECONDS
) -> None:
    app.include_router(create_router(profiler, default_seconds))

    @app.exception_handler(ProfilingError)
    async def profiling_error_handler(request: Request, exc: ProfilingError) -> JSONResponse:
        status_code = status_code_for(exc)
        if status_code >= 500:
            logger.error(f"Profiling request failed: {exc}", path=request.url.path)
        return JSONResponse(status_code=status_code, content={"error": type(exc).__name__, "message": str(exc)})


def create_app(profiler: CPUProfiler, default_seconds: float = DEFAULT_PROFILE_SECONDS) -> FastAPI:
    app = FastAPI(title="gpprof", version=__version__)
    register_pprof_handlers(app, profiler, default_seconds)
    return app
