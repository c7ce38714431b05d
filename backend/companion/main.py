import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from fastapi import APIRouter, Body, Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database

from .config import Settings
from .conversation import ChatService
from .errors import CompanionError, NotFoundError, StorageError, ValidationError
from .llm_client import LLMClient
from .memory import MemoryStore
from .models import ChatRequest, ChatResponse, TaskCreate, TaskUpdate
from .prompting import PromptAssembler
from .tasks import TaskStore
from .templates import TemplateStore
from .utils.db import ensure_indexes, get_database, ping

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    db: Database
    templates: TemplateStore
    memory: MemoryStore
    llm: LLMClient
    chat: ChatService
    tasks: TaskStore


def build_services(
    settings: Settings,
    database: Optional[Database] = None,
    llm: Optional[LLMClient] = None,
    templates: Optional[TemplateStore] = None,
) -> Services:
    db = database if database is not None else get_database(settings)
    templates = templates or TemplateStore(settings.prompts_dir)
    memory = MemoryStore(db)
    llm = llm or LLMClient(settings)
    chat = ChatService(
        memory=memory,
        templates=templates,
        assembler=PromptAssembler(templates),
        llm=llm,
        memory_limit=settings.memory_limit,
        role_messages=settings.llm_role_messages,
    )
    return Services(
        settings=settings,
        db=db,
        templates=templates,
        memory=memory,
        llm=llm,
        chat=chat,
        tasks=TaskStore(db),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


router = APIRouter()

# ------------------------
# Chat
# ------------------------

@router.post("/chat")
def chat(payload: ChatRequest, services: Services = Depends(get_services)):
    status = services.chat.is_ready()
    if not status.ready:
        return JSONResponse(
            status_code=503,
            content={"error": "Service not ready", "issues": status.issues},
        )

    result = services.chat.process_message(payload.user_id, payload.message, payload.overrides)
    if not result.ok:
        logger.warning(f"Chat degraded to fallback for user {payload.user_id}: {result.error!r}")

    debug_view = None
    if payload.debug:
        debug_view = services.chat.get_debug_view(payload.user_id, payload.message, payload.overrides)

    return ChatResponse(
        response=result.response,
        context=result.context,
        metadata=result.metadata,
        debug_view=debug_view,
    )


@router.get("/chat/history")
def chat_history(
    user_id: str = Query(..., alias="userId", min_length=1),
    limit: int = Query(50, ge=1, le=500),
    services: Services = Depends(get_services),
):
    history = services.chat.get_history(user_id, limit)
    return {"history": history, "count": len(history)}


@router.delete("/chat")
def reset_chat(
    user_id: str = Query(..., alias="userId", min_length=1),
    services: Services = Depends(get_services),
):
    success = services.chat.reset_conversation(user_id)
    return {
        "reset": success,
        "message": "Conversation reset successfully" if success else "Failed to reset conversation",
    }


@router.get("/health")
def health(services: Services = Depends(get_services)):
    return services.chat.is_ready()


@router.get("/models")
def models(services: Services = Depends(get_services)):
    return {"models": services.llm.list_models()}

# ------------------------
# Prompts / Memory
# ------------------------

@router.get("/prompts")
def list_prompts(services: Services = Depends(get_services)):
    return {"prompts": services.templates.list_available()}


@router.get("/prompts/{name:path}")
def get_prompt(name: str, services: Services = Depends(get_services)):
    try:
        template = services.templates.load(name)
    except NotFoundError:
        raise HTTPException(404, f"Prompt template not found: {name}")
    return template.model_dump(by_alias=True, exclude_none=True)


@router.post("/prompts/validate")
def validate_prompt(template: dict = Body(...), services: Services = Depends(get_services)):
    valid, errors = services.templates.validate(template)
    return {"valid": valid, "errors": errors}


@router.get("/memory/stats")
def memory_stats(
    user_id: str = Query(..., alias="userId", min_length=1),
    services: Services = Depends(get_services),
):
    return services.memory.memory_stats(user_id)

# ------------------------
# Tasks
# ------------------------

def _task_user(request: Request, user_id: Optional[str] = Query(None, alias="userId")) -> str:
    return user_id or request.app.state.services.settings.default_user_id


@router.get("/tasks")
def list_tasks(
    user_id: str = Depends(_task_user),
    status: Optional[str] = None,
    category: Optional[str] = None,
    priority: Optional[str] = None,
    services: Services = Depends(get_services),
):
    return {"tasks": services.tasks.list_tasks(user_id, status=status, category=category, priority=priority)}


@router.post("/tasks", status_code=201)
def create_task(
    task: TaskCreate,
    user_id: str = Depends(_task_user),
    services: Services = Depends(get_services),
):
    return services.tasks.create_task(user_id, task)


@router.get("/tasks/{task_id}")
def get_task(task_id: str, user_id: str = Depends(_task_user), services: Services = Depends(get_services)):
    try:
        return services.tasks.get_task(user_id, task_id)
    except NotFoundError:
        raise HTTPException(404, "Task not found")


@router.put("/tasks/{task_id}")
def update_task(
    task_id: str,
    updates: TaskUpdate,
    user_id: str = Depends(_task_user),
    services: Services = Depends(get_services),
):
    try:
        return services.tasks.update_task(user_id, task_id, updates)
    except NotFoundError:
        raise HTTPException(404, "Task not found")
    except ValidationError as e:
        return JSONResponse(status_code=400, content={"error": e.message, "issues": e.issues})


@router.delete("/tasks/{task_id}")
def delete_task(task_id: str, user_id: str = Depends(_task_user), services: Services = Depends(get_services)):
    try:
        services.tasks.delete_task(user_id, task_id)
    except NotFoundError:
        raise HTTPException(404, "Task not found")
    return {"deleted": True}

# ------------------------
# App factory
# ------------------------

async def _validation_error_handler(request: Request, exc: RequestValidationError):
    issues = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        issues.append(f"{location}: {error.get('msg')}" if location else error.get("msg"))
    return JSONResponse(status_code=400, content={"error": "Invalid request data", "issues": issues})


async def _storage_error_handler(request: Request, exc: StorageError):
    logger.error(f"Storage failure on {request.url.path}: {exc.message}", exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


async def _companion_error_handler(request: Request, exc: CompanionError):
    logger.error(f"Unhandled {type(exc).__name__} on {request.url.path}: {exc.message}", exc_info=exc)
    return JSONResponse(status_code=500, content={"error": exc.message})


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    llm: Optional[LLMClient] = None,
    templates: Optional[TemplateStore] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    logging.basicConfig(level=settings.log_level)
    services = build_services(settings, database=database, llm=llm, templates=templates)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if ping(services.db):
            ensure_indexes(services.db)
        yield

    app = FastAPI(title="Companion", lifespan=lifespan)
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"]
    )
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(StorageError, _storage_error_handler)
    app.add_exception_handler(CompanionError, _companion_error_handler)
    app.include_router(router)
    return app


def run():
    import uvicorn

    uvicorn.run(create_app(), host="127.0.0.1", port=8000)


if __name__ == "__main__":
    run()
