# companion/prompting.py
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Literal, Optional

from .errors import CompanionError, NotFoundError, PromptAssemblyError
from .models import ConversationContext, PromptConfig, PromptOverride, PromptStyle
from .templates import SYSTEM_TEMPLATE, TASK_TEMPLATE, TemplateStore

logger = logging.getLogger(__name__)

DEBUG_HEADER = "🔧 Assembled Prompt"

ROLE_TAGS = {"system": "[System]", "user": "[User]"}


@dataclass
class PromptBlock:
    role: Literal["system", "user"]
    text: str

    def render(self) -> str:
        return f"{ROLE_TAGS[self.role]} {self.text}"


@dataclass
class AssembledPrompt:
    blocks: List[PromptBlock] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "\n\n".join(block.render() for block in self.blocks)

    def messages(self) -> List[Dict[str, str]]:
        """
        Role-based view of the same prompt: consecutive system blocks collapse
        into one system message.
        """
        messages: List[Dict[str, str]] = []
        for block in self.blocks:
            if messages and messages[-1]["role"] == block.role == "system":
                messages[-1]["content"] += "\n\n" + block.text
            else:
                messages.append({"role": block.role, "content": block.text})
        return messages


def _with_guidelines(body: str, guidelines: List[str]) -> str:
    if not guidelines:
        return body
    bullets = "\n".join(f"- {line}" for line in guidelines)
    return f"{body}\nGuidelines:\n{bullets}"


def _style_line(style: Optional[PromptStyle]) -> Optional[str]:
    if style is None or style.is_empty():
        return None
    parts = [f"{name}={value}" for name, value in style.model_dump(exclude_none=True).items()]
    return "Style: " + ", ".join(parts)


class PromptAssembler:
    """
    Layers persona, task guidance, active module guidance, memory digest and
    the user's message into one ordered prompt.
    """

    def __init__(self, templates: TemplateStore):
        self.templates = templates

    def build(
        self,
        user_message: str,
        context: ConversationContext,
        memory_digest: str = "",
        overrides: Optional[PromptOverride] = None,
    ) -> AssembledPrompt:
        try:
            system = self.templates.load(SYSTEM_TEMPLATE)
            tasks = self.templates.load(TASK_TEMPLATE)
        except CompanionError as e:
            raise PromptAssemblyError("Failed to build prompt", e) from e

        module_prompts: Dict[str, str] = {}
        module_guidelines: Dict[str, List[str]] = {}
        for module_name in context.active_modules:
            try:
                module = self.templates.load_module(module_name)
            except NotFoundError:
                logger.warning(f"Module prompt not found for {module_name}")
                continue
            except PromptAssemblyError as e:
                logger.warning(f"Skipping unreadable module prompt {module_name}: {e}")
                continue
            if module.module_prompt:
                module_prompts[module_name] = module.module_prompt
                module_guidelines[module_name] = module.guidelines

        config = PromptConfig(
            system_prompt=system.system_prompt or "",
            task_prompt=tasks.task_prompt or "",
            module_prompts=module_prompts,
            style=system.style,
        )
        if overrides is not None:
            config = self.templates.merge(config, overrides)

        persona = _with_guidelines(config.system_prompt, system.guidelines)
        style = _style_line(config.style)
        if style:
            persona = f"{persona}\n{style}"

        blocks = [
            PromptBlock("system", persona),
            PromptBlock("system", _with_guidelines(config.task_prompt, tasks.guidelines)),
        ]

        for module_name, prompt in config.module_prompts.items():
            body = _with_guidelines(prompt, module_guidelines.get(module_name, []))
            blocks.append(PromptBlock("system", f"Module: {module_name} → {body}"))

        if memory_digest.strip():
            blocks.append(PromptBlock("system", f"Memory: {memory_digest}"))

        blocks.append(PromptBlock("user", user_message))
        return AssembledPrompt(blocks)

    def debug_view(
        self,
        user_message: str,
        context: ConversationContext,
        memory_digest: str = "",
        overrides: Optional[PromptOverride] = None,
    ) -> str:
        assembled = self.build(user_message, context, memory_digest, overrides)
        return f"{DEBUG_HEADER}\n\n{assembled.text}"
