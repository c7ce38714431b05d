# companion/conversation.py
import logging
import time
from dataclasses import dataclass
from typing import List, Optional, Union

from .context_inference import DEFAULT_TABLES, ExtractorTables, update_context
from .errors import CompanionError
from .llm_client import LLMClient
from .memory import CONVERSATION_TYPE, MemoryStore
from .models import (
    ChatMessage,
    ChatMetadata,
    ConversationContext,
    Memory,
    PromptOverride,
    ReadinessReport,
)
from .prompting import PromptAssembler
from .templates import TemplateStore
from .utils.dates import utcnow

logger = logging.getLogger(__name__)

FALLBACK_RESPONSE = "I'm sorry, I'm having trouble processing that right now. Could you try again?"
EMPTY_REPLY_RESPONSE = "I'm sorry, I couldn't generate a response at this time. Could you please try again?"

USER_ROLE = "user"
ASSISTANT_ROLE = "assistant"


@dataclass
class ChatSuccess:
    response: str
    context: ConversationContext
    metadata: ChatMetadata

    ok = True


@dataclass
class ChatFallback:
    """Degraded reply; `error` is the failure the pipeline recovered from."""

    response: str
    context: ConversationContext
    metadata: ChatMetadata
    error: BaseException

    ok = False


ChatResult = Union[ChatSuccess, ChatFallback]


def format_memory_digest(memories: List[Memory]) -> str:
    """
    Renders memories as "<key>: <value> (<date>)" joined with "; ".
    """
    if not memories:
        return ""
    return "; ".join(f"{m.key}: {m.value} ({m.updated_at.date().isoformat()})" for m in memories)


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


class ChatService:
    """
    Runs one chat turn end to end: context and memory lookup, prompt assembly,
    model call, heuristic context update, persistence.
    """

    def __init__(
        self,
        memory: MemoryStore,
        templates: TemplateStore,
        assembler: PromptAssembler,
        llm: LLMClient,
        memory_limit: int = 10,
        role_messages: bool = False,
        tables: ExtractorTables = DEFAULT_TABLES,
    ):
        self.memory = memory
        self.templates = templates
        self.assembler = assembler
        self.llm = llm
        self.memory_limit = memory_limit
        self.role_messages = role_messages
        self.tables = tables

    def _memory_digest(self, user_id: str, context: ConversationContext) -> str:
        memories = self.memory.get_relevant_memories(user_id, context, self.memory_limit)
        return format_memory_digest(memories)

    def process_message(
        self,
        user_id: str,
        user_message: str,
        overrides: Optional[PromptOverride] = None,
    ) -> ChatResult:
        start = time.perf_counter()

        try:
            # 1. Context (empty for a new user)
            context = self.memory.get_conversation_context(user_id)

            # 2. Relevant memories
            memory_digest = self._memory_digest(user_id, context)

            # 3. Prompt
            prompt = self.assembler.build(user_message, context, memory_digest, overrides)
            prompt_text = prompt.text

            # 4. Model
            llm_response = self.llm.complete(
                prompt_text,
                messages=prompt.messages() if self.role_messages else None,
            )
            reply = llm_response.content
            if not reply:
                logger.warning("Model returned an empty or unparseable response content.")
                reply = EMPTY_REPLY_RESPONSE
            tokens_used = llm_response.usage.total_tokens if llm_response.usage else None

            # 5. Context update
            updated_context = update_context(context, user_message, reply, self.tables)

            # 6. Persist
            self.memory.append_message(user_id, user_message, {"type": USER_ROLE, "timestamp": utcnow()})
            self.memory.append_message(
                user_id,
                reply,
                {
                    "type": ASSISTANT_ROLE,
                    "timestamp": utcnow(),
                    "promptLength": len(prompt_text),
                    "tokensUsed": tokens_used,
                },
            )
            self.memory.store_conversation_context(user_id, updated_context)

            return ChatSuccess(
                response=reply,
                context=updated_context,
                metadata=ChatMetadata(
                    prompt_length=len(prompt_text),
                    response_time=_elapsed_ms(start),
                    tokens_used=tokens_used,
                ),
            )
        except Exception as e:
            logger.error(f"Error processing message for user {user_id}: {e}", exc_info=True)
            return ChatFallback(
                response=FALLBACK_RESPONSE,
                context=ConversationContext(user_id=user_id),
                metadata=ChatMetadata(prompt_length=0, response_time=_elapsed_ms(start)),
                error=e,
            )

    def get_debug_view(
        self,
        user_id: str,
        user_message: str,
        overrides: Optional[PromptOverride] = None,
    ) -> str:
        try:
            context = self.memory.get_conversation_context(user_id)
            memory_digest = self._memory_digest(user_id, context)
            return self.assembler.debug_view(user_message, context, memory_digest, overrides)
        except Exception as e:
            logger.error(f"Error generating debug view for user {user_id}: {e}")
            return f"Error generating debug view: {e}"

    def get_history(self, user_id: str, limit: int = 50) -> List[ChatMessage]:
        try:
            records = self.memory.recent_messages(user_id, limit)
            return [
                ChatMessage(
                    id=record.id,
                    content=record.content,
                    sender=ASSISTANT_ROLE if (record.metadata or {}).get("type") == ASSISTANT_ROLE else USER_ROLE,
                    timestamp=record.timestamp,
                    metadata=record.metadata,
                )
                for record in records
            ]
        except Exception as e:
            logger.error(f"Error getting conversation history: {e}")
            return []

    def is_ready(self) -> ReadinessReport:
        issues = []

        if not self.llm.is_available():
            issues.append("LLM service is not available")

        try:
            if not self.templates.list_available():
                issues.append("No prompt templates found")
        except Exception as e:
            logger.warning(f"Failed to load prompt templates: {e}")
            issues.append("Failed to load prompt templates")

        return ReadinessReport(ready=len(issues) == 0, issues=issues)

    def reset_conversation(self, user_id: str) -> bool:
        try:
            return self.memory.reset_user(user_id, memory_type=CONVERSATION_TYPE)
        except CompanionError as e:
            logger.error(f"Error resetting conversation for user {user_id}: {e}")
            return False
