from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

import config
from assistant import AnthropicCompleter
from database import (
    init_db,
    list_tasks,
    get_task_db,
    find_duplicate_db,
    create_task_db,
    update_task_db,
    delete_task_db,
    get_conversation,
    save_conversation,
    clear_conversation,
)
from errors import InvalidTimeFormat, RepositoryFailure
from google_calendar import build_calendar_source
from logger import get_logger, setup_logging
from models import AssistantRequest, Message, ScheduleProposal, Task, TaskCreate, TaskUpdate
from turns import process_turn

log = get_logger("main")

# Stored conversation is capped; only the last few turns reach the model anyway
MAX_STORED_MESSAGES = 50


@asynccontextmanager
async def lifespan(_app: FastAPI):
    # Startup
    setup_logging()
    init_db()
    log.info("startup", environment=config.ENVIRONMENT, gcal=config.ENABLE_GCAL)
    yield
    # Shutdown (nothing to do)


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Collaborators used by the assistant endpoint
completer = AnthropicCompleter()
calendar_source = build_calendar_source()


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/tasks")
def get_tasks(user_id: int) -> list[Task]:
    return list_tasks(user_id)


@app.post("/tasks", status_code=201)
def create_task(task_data: TaskCreate) -> Task:
    try:
        if find_duplicate_db(task_data):
            raise HTTPException(status_code=409, detail="An identical task already exists")
        return create_task_db(task_data)
    except InvalidTimeFormat as e:
        raise HTTPException(status_code=400, detail=str(e))
    except RepositoryFailure as e:
        raise HTTPException(status_code=500, detail=str(e))


@app.patch("/tasks/{task_id}")
def update_task(task_id: str, task_data: TaskUpdate) -> Task:
    try:
        result = update_task_db(task_id, **task_data.model_dump(exclude_unset=True))
    except (InvalidTimeFormat, ValidationError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except RepositoryFailure as e:
        raise HTTPException(status_code=500, detail=str(e))
    if not result:
        raise HTTPException(status_code=404, detail="Task not found")
    return result


@app.delete("/tasks/{task_id}")
def delete_task(task_id: str) -> dict:
    if get_task_db(task_id) is None:
        raise HTTPException(status_code=404, detail="Task not found")
    try:
        deleted = delete_task_db(task_id)
    except RepositoryFailure as e:
        raise HTTPException(status_code=500, detail=str(e))
    if deleted is None:
        raise HTTPException(status_code=404, detail="Task not found")
    return {"status": "deleted", "task": deleted.model_dump(mode="json", by_alias=True)}


@app.get("/conversation")
def get_conversation_endpoint(user_id: int) -> list[Message]:
    """Get saved conversation history."""
    return get_conversation(user_id)


@app.delete("/conversation")
def clear_conversation_endpoint(user_id: int) -> dict:
    """Start a new conversation."""
    clear_conversation(user_id)
    return {"status": "cleared"}


@app.post("/assistant/process")
async def process_assistant(request: AssistantRequest) -> ScheduleProposal:
    """Process a natural-language scheduling request through Claude."""
    if not request.input.strip():
        raise HTTPException(status_code=400, detail="Input is required")

    history = request.conversation_history
    if history is None:
        history = get_conversation(request.user_id)

    log.info("assistant_request", user_id=request.user_id, history_length=len(history))
    proposal = await process_turn(
        request.input,
        request.user_id,
        request.user_timezone,
        history,
        completer=completer,
        calendar=calendar_source,
    )

    # Save conversation with assistant response
    conversation = history + [
        Message(role="user", content=request.input),
        Message(role="assistant", content=proposal.message, proposal=proposal),
    ]
    save_conversation(request.user_id, conversation[-MAX_STORED_MESSAGES:])

    log.info(
        "assistant_response",
        user_id=request.user_id,
        status=proposal.status.value if proposal.status else None,
        tasks_created=proposal.tasks_created,
    )
    return proposal


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
