import pytest

from companion.errors import PromptAssemblyError
from companion.models import ConversationContext, PromptOverride, PromptStyle
from companion.prompting import DEBUG_HEADER, PromptAssembler
from companion.templates import TemplateStore


@pytest.fixture
def assembler(template_store):
    return PromptAssembler(template_store)


def test_blocks_follow_fixed_order(assembler, template_store):
    context = ConversationContext(user_id="u1", active_modules=["coding", "languagePractice"])
    prompt = assembler.build("Hello there", context, "likes: tea (2026-01-01)")

    roles = [block.role for block in prompt.blocks]
    assert roles == ["system"] * 5 + ["user"]

    texts = [block.text for block in prompt.blocks]
    assert texts[0].startswith(template_store.load("system").system_prompt)
    assert texts[1].startswith(template_store.load("tasks").task_prompt)
    assert texts[2].startswith("Module: coding → ")
    assert texts[3].startswith("Module: languagePractice → ")
    assert texts[4] == "Memory: likes: tea (2026-01-01)"
    assert texts[5] == "Hello there"


def test_text_uses_role_tags(assembler):
    prompt = assembler.build("Hi", ConversationContext(user_id="u1"))
    assert prompt.text.startswith("[System] ")
    assert prompt.text.endswith("[User] Hi")
    assert "\n\n[System] " in prompt.text


def test_missing_module_is_skipped(assembler, caplog):
    context = ConversationContext(user_id="u1", active_modules=["astrology", "coding"])
    prompt = assembler.build("Hi", context)
    modules = [b.text for b in prompt.blocks if b.text.startswith("Module:")]
    assert len(modules) == 1
    assert modules[0].startswith("Module: coding")
    assert "Module prompt not found for astrology" in caplog.text


def test_blank_memory_is_omitted(assembler):
    prompt = assembler.build("Hi", ConversationContext(user_id="u1"), "   ")
    assert not any(b.text.startswith("Memory:") for b in prompt.blocks)


def test_override_replaces_persona_and_style(assembler):
    overrides = PromptOverride(system_prompt="You are a pirate.", style=PromptStyle(tone="strict"))
    prompt = assembler.build("Ahoy", ConversationContext(user_id="u1"), overrides=overrides)
    persona = prompt.blocks[0].text
    assert persona.startswith("You are a pirate.")
    assert "tone=strict" in persona
    # packaged style keeps the fields the override did not set
    assert "humour=light" in persona


def test_override_module_prompt_for_active_module(assembler):
    context = ConversationContext(user_id="u1", active_modules=["coding"])
    overrides = PromptOverride(module_prompts={"coding": "Only answer in Rust."})
    prompt = assembler.build("help", context, overrides=overrides)
    assert any(b.text.startswith("Module: coding → Only answer in Rust.") for b in prompt.blocks)


def test_messages_collapse_system_blocks(assembler):
    prompt = assembler.build("Hi", ConversationContext(user_id="u1"), "fact: 1 (2026-01-01)")
    messages = prompt.messages()
    assert [m["role"] for m in messages] == ["system", "user"]
    assert "Memory: fact: 1" in messages[0]["content"]
    assert messages[1]["content"] == "Hi"


def test_missing_system_template_is_fatal(tmp_path):
    (tmp_path / "tasks.json").write_text('{"taskPrompt": "t"}', encoding="utf-8")
    assembler = PromptAssembler(TemplateStore(tmp_path))
    with pytest.raises(PromptAssemblyError):
        assembler.build("Hi", ConversationContext(user_id="u1"))


def test_debug_view_wraps_assembly(assembler):
    context = ConversationContext(user_id="u1")
    view = assembler.debug_view("Hi", context)
    assert view.startswith(DEBUG_HEADER)
    assert view.endswith(assembler.build("Hi", context).text)
