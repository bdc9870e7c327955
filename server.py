import asyncio
import traceback
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, StrictStr, field_validator, model_validator

from customization import config
from customization.config import logger
from customization.engine import CustomizationEngine, UnknownModificationError
from customization.entities import Bilingual
from customization.intent_resolver import build_intent_resolver
from customization.rate_limiter import RateLimiter
from customization.session_store import InMemorySessionStore, SessionStateStore

INVALID_REQUEST = Bilingual.of("The request is missing or has malformed fields.", "الطلب يفتقد حقولًا مطلوبة أو يحتوي على حقول غير صالحة.")
MISSING_SESSION = Bilingual.of("No session was provided for this request.", "لم يتم تحديد جلسة لهذا الطلب.")
RATE_LIMITED = Bilingual.of("Too many requests. Please wait a moment.", "عدد الطلبات كبير جدًا. يرجى الانتظار قليلًا.")
FORBIDDEN = Bilingual.of("You are not allowed to modify this architecture.", "غير مسموح لك بتعديل هذه البنية.")
NOT_FOUND = Bilingual.of("No architecture exists for this session yet.", "لا توجد بنية لهذه الجلسة بعد.")
SERVER_ERROR = Bilingual.of("Something went wrong while processing the request.", "حدث خطأ أثناء معالجة الطلب.")


def _error(status_code: int, message: str, explanation: Bilingual, **extra) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={"message": message, "explanation": explanation.to_wire(), **extra},
    )


# -----------------------
# Request bodies
# -----------------------

class DocumentBody(BaseModel):
    # the UI historically sends "architecture"; both names are accepted
    document: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _architecture_alias(cls, data):
        if isinstance(data, dict) and "document" not in data and "architecture" in data:
            data = dict(data)
            data["document"] = data.pop("architecture")
        if isinstance(data, dict) and data.get("document") is None:
            data = {**data, "document": {}}
        return data


class CommandRequest(DocumentBody):
    command: StrictStr

    @field_validator("command")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("command must not be empty")
        return v.strip()


class Modification(BaseModel):
    kind: StrictStr
    target: Optional[str] = None
    options: Optional[Dict[str, Any]] = None

    @model_validator(mode="before")
    @classmethod
    def _type_alias(cls, data):
        if isinstance(data, dict) and "kind" not in data and "type" in data:
            data = dict(data)
            data["kind"] = data.pop("type")
        return data


class DeepModifyRequest(DocumentBody):
    modification: Modification


class BatchRequest(DocumentBody):
    commands: List[StrictStr] = Field(min_length=1)


# -----------------------
# Dependencies
# -----------------------

def get_engine(request: Request) -> CustomizationEngine:
    engine = request.app.state.engine
    if engine is None:
        raise _error(503, "Engine not initialized", SERVER_ERROR)
    return engine


def get_session_id(x_session_id: Optional[str] = Header(default=None)) -> str:
    if not x_session_id or not x_session_id.strip():
        raise _error(401, "Missing X-Session-Id header", MISSING_SESSION)
    return x_session_id.strip()


def enforce_rate_limit(
    request: Request,
    session_id: str = Depends(get_session_id),
    x_caller_id: Optional[str] = Header(default=None),
) -> str:
    caller_id = (x_caller_id or "").strip() or session_id
    limiter: RateLimiter = request.app.state.rate_limiter
    if not limiter.allow(caller_id):
        retry_after = limiter.retry_after(caller_id)
        raise HTTPException(
            status_code=429,
            detail={"message": "Rate limit exceeded", "explanation": RATE_LIMITED.to_wire()},
            headers={"Retry-After": str(int(retry_after) + 1)},
        )
    return session_id


def require_write_role(request: Request, x_caller_role: Optional[str] = Header(default=None)) -> None:
    write_role = request.app.state.write_role
    if write_role and (x_caller_role or "").strip() != write_role:
        raise _error(403, "Write access requires the operator role", FORBIDDEN)


# -----------------------
# Routes
# -----------------------

router = APIRouter(prefix="/api/customization")


@router.post("/command", dependencies=[Depends(require_write_role)])
async def process_command(
    body: CommandRequest,
    session_id: str = Depends(enforce_rate_limit),
    engine: CustomizationEngine = Depends(get_engine),
):
    result = await engine.process_command(session_id, body.command, body.document)
    return result.to_wire()


@router.post("/suggestions")
async def get_suggestions(
    body: DocumentBody,
    session_id: str = Depends(enforce_rate_limit),
    engine: CustomizationEngine = Depends(get_engine),
):
    suggestions = await engine.suggestions(body.document)
    return {"suggestions": [s.to_wire() for s in suggestions]}


@router.post("/deep-modify", dependencies=[Depends(require_write_role)])
async def deep_modify(
    body: DeepModifyRequest,
    session_id: str = Depends(enforce_rate_limit),
    engine: CustomizationEngine = Depends(get_engine),
):
    mod = body.modification
    try:
        result = await engine.deep_modification(
            session_id,
            mod.kind,
            body.document,
            target=mod.target,
            options=mod.options,
        )
    except UnknownModificationError as e:
        raise _error(400, str(e), INVALID_REQUEST)
    return result.to_wire()


@router.post("/batch", dependencies=[Depends(require_write_role)])
async def batch(
    body: BatchRequest,
    session_id: str = Depends(enforce_rate_limit),
    engine: CustomizationEngine = Depends(get_engine),
):
    results = await engine.batch_commands(session_id, list(body.commands), body.document)
    return {"results": [r.to_wire() for r in results]}


@router.post("/undo", dependencies=[Depends(require_write_role)])
async def undo(
    session_id: str = Depends(enforce_rate_limit),
    engine: CustomizationEngine = Depends(get_engine),
):
    outcome = await engine.undo(session_id)
    if outcome.nothing_to_undo:
        raise _error(404, "Nothing to undo", outcome.message, nothingToUndo=True)
    return outcome.to_wire()


@router.get("/history")
async def history(
    session_id: str = Depends(enforce_rate_limit),
    engine: CustomizationEngine = Depends(get_engine),
):
    return {"history": [r.to_wire() for r in engine.history(session_id)]}


@router.get("/document")
async def current_document(
    session_id: str = Depends(enforce_rate_limit),
    engine: CustomizationEngine = Depends(get_engine),
):
    document = engine.current_document(session_id)
    if document is None:
        raise _error(404, "Unknown session", NOT_FOUND)
    return {"currentDocument": document}


# -----------------------
# App
# -----------------------

def build_store() -> SessionStateStore:
    if config.SESSION_STORE == "sql":
        from customization.db import create_session_factory
        from customization.sql_session_store import SqlSessionStore

        return SqlSessionStore(create_session_factory(), ttl_seconds=config.SESSION_TTL_SECONDS)
    if config.SESSION_STORE != "memory":
        logger.warning(f"[CONFIG] Unknown SESSION_STORE={config.SESSION_STORE!r}, using memory")
    return InMemorySessionStore(ttl_seconds=config.SESSION_TTL_SECONDS)


def build_engine() -> CustomizationEngine:
    return CustomizationEngine(build_store(), build_intent_resolver())


async def _sweep_forever(app: FastAPI) -> None:
    while True:
        await asyncio.sleep(config.SWEEP_INTERVAL_SECONDS)
        try:
            app.state.engine.sweep()
            app.state.rate_limiter.sweep()
        except Exception as e:
            logger.warning(f"Session sweep failed: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if app.state.engine is None:
        app.state.engine = build_engine()
    sweeper = asyncio.create_task(_sweep_forever(app))
    try:
        yield
    finally:
        sweeper.cancel()


def create_app(
    engine: CustomizationEngine | None = None,
    *,
    rate_limiter: RateLimiter | None = None,
    write_role: str | None = config.WRITE_ROLE,
) -> FastAPI:
    app = FastAPI(title="Architecture Customization Engine", lifespan=lifespan)

    # CORS configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Allow all origins for dev
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.engine = engine
    app.state.rate_limiter = rate_limiter or RateLimiter(config.RATE_LIMIT_PER_MINUTE)
    app.state.write_role = write_role

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={
                "detail": {
                    "message": "Invalid request body",
                    "errors": jsonable_encoder(
                        [{"loc": e.get("loc"), "msg": e.get("msg"), "type": e.get("type")} for e in exc.errors()]
                    ),
                    "explanation": INVALID_REQUEST.to_wire(),
                }
            },
        )

    @app.exception_handler(Exception)
    async def _unhandled_error(request: Request, exc: Exception):
        logger.info(f"Error while processing {request.url.path}: {exc}")
        traceback.print_exc()
        return JSONResponse(
            status_code=500,
            content={"detail": {"message": str(exc), "explanation": SERVER_ERROR.to_wire()}},
        )

    @app.get("/health")
    async def health(request: Request):
        engine = request.app.state.engine
        token_usage = getattr(getattr(engine, "resolver", None), "token_usage", None)
        return {"status": "ok", "tokenUsage": token_usage() if token_usage else {}}

    app.include_router(router)
    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
