"""
Example service tracing a roles endpoint and a call to a downstream store.

Run with a local X-Ray daemon listening on 127.0.0.1:2000:

    uvicorn examples.roles_service:app --port 8080
"""

import logging
import os
import time
from contextlib import asynccontextmanager

import httpx
from dotenv import load_dotenv
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from xray_tracer import (
    MetadataSizeExceededError,
    Recorder,
    RecorderConfig,
    RouteSegmentNamer,
    XRayMiddleware,
    get_trace_context,
    trace_extensions,
    traced_async_client,
)

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
)
logger = logging.getLogger(__name__)

ROLE_STORE_URL = os.environ.get("ROLE_STORE_URL", "http://localhost:8000")

recorder = Recorder(RecorderConfig.from_env(service_name="roles-service", service_version="0.1.0"))


def build_roles_detail(ctx, count: int):
    roles = []
    for index in range(count):
        time.sleep(0.004)
        roles.append({"id": index, "name": f"role-{index}"})
    try:
        ctx.put_metadata("No. roles built", len(roles))
    except MetadataSizeExceededError as e:
        logger.warning(f"Roles metadata dropped: {e}")
    return roles


def get_roles(request: Request):
    # Sync endpoint; Starlette runs it in its threadpool.
    ctx = get_trace_context(request)
    with ctx.capture("BuildRolesDetail") as child:
        roles = build_roles_detail(child, 50)
    return JSONResponse({"roles": roles})


async def get_role_store(request: Request):
    ctx = get_trace_context(request)
    async with traced_async_client(base_url=ROLE_STORE_URL, timeout=2.0) as client:
        try:
            response = await client.get("/roles", extensions=trace_extensions(ctx, "RoleStore"))
        except httpx.TimeoutException as e:
            return JSONResponse({"error": f"role store timed out: {e}"}, status_code=504)
    return JSONResponse(response.json(), status_code=response.status_code)


@asynccontextmanager
async def lifespan(app):
    yield
    recorder.close()


app = Starlette(
    routes=[Route("/roles", get_roles), Route("/store", get_role_store)],
    middleware=[
        Middleware(
            XRayMiddleware,
            recorder=recorder,
            segment_namer=RouteSegmentNamer({"GET /roles": "GetRoles", "GET /store": "GetRoleStore"}),
        )
    ],
    lifespan=lifespan,
)
