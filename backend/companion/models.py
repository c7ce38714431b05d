from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

Mood = Literal["happy", "stressed", "neutral", "excited", "tired"]
Energy = Literal["high", "medium", "low"]
TaskStatus = Literal["pending", "in_progress", "completed", "cancelled"]
TaskPriority = Literal["low", "medium", "high"]
Sender = Literal["user", "assistant"]


class CamelModel(BaseModel):
    """Python side speaks snake_case, JSON side speaks camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ------------------------
# Conversation state
# ------------------------

class ConversationContext(CamelModel):
    user_id: str
    current_task: Optional[str] = None
    mood: Optional[Mood] = None
    energy: Optional[Energy] = None
    recent_topics: List[str] = Field(default_factory=list)
    active_modules: List[str] = Field(default_factory=list)


class Memory(CamelModel):
    id: str
    user_id: str
    key: str
    value: str
    type: str = "general"
    expires_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class ConversationRecord(CamelModel):
    id: str
    user_id: str
    content: str
    metadata: Optional[Dict[str, Any]] = None
    timestamp: datetime


class ChatMessage(CamelModel):
    id: str
    content: str
    sender: Sender
    timestamp: datetime
    metadata: Optional[Dict[str, Any]] = None


# ------------------------
# Prompts
# ------------------------

class PromptStyle(CamelModel):
    tone: Optional[Literal["formal", "casual", "encouraging", "strict"]] = None
    humour: Optional[Literal["none", "light", "moderate"]] = None
    formality: Optional[Literal["very_formal", "formal", "casual", "very_casual"]] = None

    def is_empty(self) -> bool:
        return self.tone is None and self.humour is None and self.formality is None


class PromptTemplate(CamelModel):
    """One JSON fragment file: a single body field plus optional guidelines."""

    system_prompt: Optional[str] = None
    task_prompt: Optional[str] = None
    module_prompt: Optional[str] = None
    guidelines: List[str] = Field(default_factory=list)
    style: Optional[PromptStyle] = None


class PromptConfig(CamelModel):
    system_prompt: str
    task_prompt: str
    module_prompts: Dict[str, str] = Field(default_factory=dict)
    style: Optional[PromptStyle] = None


class PromptOverride(CamelModel):
    system_prompt: Optional[str] = None
    task_prompt: Optional[str] = None
    module_prompts: Optional[Dict[str, str]] = None
    style: Optional[PromptStyle] = None


# ------------------------
# Model gateway
# ------------------------

class LLMUsage(CamelModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class LLMResponse(CamelModel):
    content: str
    usage: Optional[LLMUsage] = None
    metadata: Optional[Dict[str, Any]] = None


# ------------------------
# Chat API
# ------------------------

class ChatMetadata(CamelModel):
    prompt_length: int = 0
    response_time: int = 0
    tokens_used: Optional[int] = None


class ChatRequest(CamelModel):
    user_id: str = Field(min_length=1)
    message: str = Field(min_length=1, max_length=2000)
    overrides: Optional[PromptOverride] = None
    debug: bool = False


class ChatResponse(CamelModel):
    response: str
    context: ConversationContext
    metadata: ChatMetadata
    debug_view: Optional[str] = None


class ReadinessReport(CamelModel):
    ready: bool
    issues: List[str] = Field(default_factory=list)


# ------------------------
# Tasks
# ------------------------

class Task(CamelModel):
    id: str
    user_id: str
    title: str
    description: Optional[str] = None
    category: str = "Personal"
    priority: TaskPriority = "medium"
    status: TaskStatus = "pending"
    due_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class TaskCreate(CamelModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    category: str = "Personal"
    priority: TaskPriority = "medium"
    due_date: Optional[datetime] = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Title is required")
        return value.strip()


class TaskUpdate(CamelModel):
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    priority: Optional[TaskPriority] = None
    status: Optional[TaskStatus] = None
    due_date: Optional[datetime] = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            raise ValueError("Title is required")
        return value.strip() if value is not None else value
