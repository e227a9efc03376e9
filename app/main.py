import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

# Load .env early so settings and os.getenv see values, using absolute project path
_PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
load_dotenv(dotenv_path=os.path.join(_PROJECT_ROOT, ".env"))

from app.routes import integrations, oauth  # noqa: E402
from config.settings import settings  # noqa: E402
from connectors.errors import IntegrationError  # noqa: E402

logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Document Import API")


@app.exception_handler(IntegrationError)
async def integration_error_handler(request: Request, exc: IntegrationError) -> JSONResponse:
    if exc.detail:
        logger.info(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message} ({exc.detail})")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    # loc is ("body" | "query" | ..., field, ...); list indexes are dropped
    field = ".".join(str(part) for part in first.get("loc", ())[1:] if isinstance(part, str))
    reason = first.get("msg", "invalid value")
    message = f"Invalid {field}: {reason}" if field else f"Invalid request: {reason}"
    return JSONResponse(status_code=400, content={"error": message})


@app.get("/api/v1/health")
def health():
    return {"status": "ok"}


app.include_router(integrations.router, prefix="/integrations", tags=["integrations"])
app.include_router(oauth.router, prefix="/auth", tags=["oauth"])
