# companion/templates.py
import json
import logging
from pathlib import Path
from typing import Dict, List, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from .errors import NotFoundError, PromptAssemblyError
from .models import PromptConfig, PromptOverride, PromptStyle, PromptTemplate

logger = logging.getLogger(__name__)

# ------------------------
# Constants
# ------------------------

SYSTEM_TEMPLATE = "system"
TASK_TEMPLATE = "tasks"
MODULES_DIR = "modules"

PROMPT_FIELDS = ("systemPrompt", "taskPrompt", "modulePrompt")

INJECTION_PHRASES = [
    "ignore previous",
    "ignore all previous",
    "system prompt",
    "you are now",
    "forget everything",
]


class TemplateStore:
    """
    Loads prompt fragments from JSON files under a prompts directory:

        system.json, tasks.json, modules/<moduleName>.json
    """

    def __init__(self, prompts_dir: Union[str, Path]):
        self.prompts_dir = Path(prompts_dir)

    def _path_for(self, name: str) -> Path:
        # Names must stay inside the prompts directory
        root = self.prompts_dir.resolve()
        path = (root / f"{name}.json").resolve()
        if not path.is_relative_to(root):
            raise NotFoundError(f"Prompt template not found: {name}")
        return path

    def load(self, name: str) -> PromptTemplate:
        path = self._path_for(name)
        if not path.is_file():
            raise NotFoundError(f"Prompt template not found: {name}")

        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            return PromptTemplate.model_validate(raw)
        except (OSError, json.JSONDecodeError, PydanticValidationError) as e:
            raise PromptAssemblyError(f"Failed to load prompt from {name}", e) from e

    def load_module(self, module_name: str) -> PromptTemplate:
        return self.load(f"{MODULES_DIR}/{module_name}")

    def list_available(self) -> List[str]:
        prompts: List[str] = []
        try:
            if not self.prompts_dir.is_dir():
                return prompts

            for name in (SYSTEM_TEMPLATE, TASK_TEMPLATE):
                if self._path_for(name).is_file():
                    prompts.append(name)

            modules_dir = self.prompts_dir / MODULES_DIR
            if modules_dir.is_dir():
                for path in sorted(modules_dir.glob("*.json")):
                    prompts.append(f"{MODULES_DIR}/{path.stem}")
        except OSError as e:
            logger.warning(f"Failed to list available prompts: {e}")

        return prompts

    # ------------------------
    # Merge / validation
    # ------------------------

    @staticmethod
    def merge(defaults: PromptConfig, overrides: PromptOverride) -> PromptConfig:
        """
        Scalars replace when the override sets a non-empty value, module prompts
        merge key by key, style merges field by field.
        """
        merged = defaults.model_copy(deep=True)

        if overrides.system_prompt:
            merged.system_prompt = overrides.system_prompt

        if overrides.task_prompt:
            merged.task_prompt = overrides.task_prompt

        if overrides.module_prompts:
            module_prompts: Dict[str, str] = dict(merged.module_prompts)
            module_prompts.update(overrides.module_prompts)
            merged.module_prompts = module_prompts

        if overrides.style is not None:
            base = merged.style.model_dump() if merged.style else {}
            base.update(overrides.style.model_dump(exclude_none=True))
            merged.style = PromptStyle(**base)

        return merged

    @staticmethod
    def validate(template: dict) -> Tuple[bool, List[str]]:
        errors: List[str] = []

        if not any(template.get(field) for field in PROMPT_FIELDS):
            errors.append("Template must contain at least one prompt field")

        content = json.dumps(template).lower()
        for phrase in INJECTION_PHRASES:
            if phrase in content:
                errors.append(f"Template contains potentially harmful pattern: {phrase}")

        return len(errors) == 0, errors
