from typing import Awaitable, Callable

from fastapi import FastAPI, Request
from starlette.responses import Response

from .config import get_settings
from .exception_handlers import register_exception_handlers
from .routers import registrations, slots, waitlist
from .utils.logging_setup import configure_logging
from .utils.request_id import REQUEST_ID_HEADER, bind_request_id, set_request_id


async def request_id_middleware(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
    request_id = bind_request_id(request.headers.get(REQUEST_ID_HEADER))
    try:
        response = await call_next(request)
    finally:
        set_request_id(None)
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


configure_logging(get_settings().log_level)

app = FastAPI(title="Event Slot Registration API")
app.middleware("http")(request_id_middleware)
register_exception_handlers(app)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


app.include_router(slots.router)
app.include_router(registrations.router)
app.include_router(waitlist.router)
