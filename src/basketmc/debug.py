"""
Copyright 2025 The Flame Authors.
Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at
    http://www.apache.org/licenses/LICENSE-2.0
Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License.
"""

import logging
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request as FastAPIRequest, Response as FastAPIResponse
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from .client import value_basket
from .codec import decode_request, encode_aggregate, encode_partial
from .config import BasketContext
from .engine import simulate
from .rng import NormalSource
from .types import BasketError, PartialResult

logger = logging.getLogger(__name__)


def create_app(context: Optional[BasketContext] = None) -> FastAPI:
    """Build the debug service: the worker use cases behind plain HTTP routes."""
    app = FastAPI(title="basketmc debug service")
    app.state.context = context if context is not None else BasketContext.load()

    app.add_api_route("/simulate", simulate_api, methods=["POST"])
    app.add_api_route("/value", value_api, methods=["POST"])

    return app


def _error_response(e: BasketError) -> JSONResponse:
    logger.error(f"Request failed ({e.code.name}): {e.message}")
    status_code = 400 if e.is_configuration_error() else 500
    return JSONResponse(status_code=status_code, content={"code": e.code.name, "message": e.message})


async def simulate_api(s: FastAPIRequest):
    body = await s.body()

    try:
        request = decode_request(body)
        value = await run_in_threadpool(
            simulate,
            request.basket,
            request.risk_free_rate,
            request.time_horizon,
            request.path_count,
            NormalSource.for_unit(request.seed, 0),
        )
    except BasketError as e:
        return _error_response(e)

    partial = PartialResult(value=value, paths=request.path_count)
    return FastAPIResponse(status_code=200, content=encode_partial(partial), media_type="application/json")


async def value_api(s: FastAPIRequest):
    context: BasketContext = s.app.state.context
    body = await s.body()

    try:
        request = decode_request(body)
        result = await run_in_threadpool(
            value_basket,
            request,
            max_workers=context.max_workers,
            timeout=context.timeout,
        )
    except BasketError as e:
        return _error_response(e)

    return FastAPIResponse(status_code=200, content=encode_aggregate(result), media_type="application/json")


def run_debug_service(context: Optional[BasketContext] = None) -> None:
    context = context if context is not None else BasketContext.load()
    context.apply_log_level()

    logger.info("🚀 Starting basketmc debug service")
    logger.info("=" * 50)

    uvicorn.run(create_app(context), host=context.debug_host, port=context.debug_port)


def main() -> None:
    try:
        run_debug_service()
    except KeyboardInterrupt:
        logger.info("\n🛑 Server stopped by user")
    except BasketError as e:
        logger.error(f"\n❌ Error: {e.message}")


if __name__ == "__main__":
    main()
