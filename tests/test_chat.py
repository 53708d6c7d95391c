import pytest

from photoguide.core.errors import ClientInputError
from photoguide.services.chat import ChatService, build_chat_prompt, is_facts_request

from stubs import StubModel


@pytest.mark.parametrize("message", [None, "", "   ", "facts", "Guide", " HISTORY "])
def test_facts_mode_triggers(message):
    assert is_facts_request(message)
    prompt = build_chat_prompt("Eiffel Tower", message)
    assert prompt.startswith("Write a short visitor guide for Eiffel Tower")
    assert "Visiting tips" in prompt


@pytest.mark.parametrize("message", ["How tall is it?", "facts about the lift", "guided tours?"])
def test_questions_use_qa_mode(message):
    assert not is_facts_request(message)
    prompt = build_chat_prompt("Eiffel Tower", message)
    assert "local guide for Eiffel Tower" in prompt
    assert f"Question: {message}" in prompt


def test_custom_facts_instruction_replaces_template():
    prompt = build_chat_prompt("Louvre", "facts", facts_instruction="List three facts about {place}.")
    assert prompt == "List three facts about Louvre."


def test_photo_context_is_appended():
    prompt = build_chat_prompt("Louvre", "When does it open?", photo_context="A glass pyramid at dusk.")
    assert prompt.endswith("The visitor's photo shows: A glass pyramid at dusk.")


@pytest.mark.asyncio
async def test_answer_uses_text_mode():
    model = StubModel(text="Built for the 1889 World's Fair.")
    text = await ChatService(model).answer("  Eiffel Tower ", "When was it built?")
    assert text == "Built for the 1889 World's Fair."
    assert model.calls[0]["schema"] is None
    assert model.calls[0]["image_bytes"] is None
    assert "local guide for Eiffel Tower." in model.calls[0]["prompt"]


@pytest.mark.asyncio
@pytest.mark.parametrize("place", ["", "   "])
async def test_missing_place_is_rejected(place):
    model = StubModel()
    with pytest.raises(ClientInputError):
        await ChatService(model).answer(place, "facts")
    assert model.calls == []
