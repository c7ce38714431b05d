import os
import sys

import mongomock
import pytest
from fastapi.testclient import TestClient

# Add the 'backend' directory to the Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from companion.config import PACKAGED_PROMPTS_DIR, Settings
from companion.conversation import ChatService
from companion.llm_client import LLMClient
from companion.main import create_app
from companion.memory import MemoryStore
from companion.prompting import PromptAssembler
from companion.templates import TemplateStore

MOCKED_REPLY = "Mocked model response"


def make_response(mocker, status_code=200, json_data=None, text=""):
    """
    Builds a stand-in for requests.Response with the attributes the client reads.
    """
    response = mocker.Mock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.reason = "OK" if response.ok else "Error"
    response.text = text
    response.json.return_value = json_data if json_data is not None else {}
    return response


def chat_completion(content, total_tokens=42):
    return {
        "model": "llama-2-7b-chat",
        "choices": [{"message": {"role": "assistant", "content": content}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 30, "completion_tokens": total_tokens - 30, "total_tokens": total_tokens},
    }


@pytest.fixture
def settings():
    return Settings(prompts_dir=PACKAGED_PROMPTS_DIR)


@pytest.fixture
def db():
    """
    Fresh in-memory MongoDB database for every test.
    """
    return mongomock.MongoClient()["companion_test"]


@pytest.fixture
def memory_store(db):
    return MemoryStore(db)


@pytest.fixture
def template_store(settings):
    return TemplateStore(settings.prompts_dir)


@pytest.fixture
def chat_service(settings, memory_store, template_store):
    return ChatService(
        memory=memory_store,
        templates=template_store,
        assembler=PromptAssembler(template_store),
        llm=LLMClient(settings),
        memory_limit=settings.memory_limit,
    )


@pytest.fixture(autouse=True)
def mock_external_services(mocker):
    """
    Mocks the local model backend (requests.post / requests.get) for all tests
    so nothing leaves the process.
    """
    mock_post = mocker.patch('requests.post', return_value=make_response(mocker, json_data=chat_completion(MOCKED_REPLY)))
    mock_get = mocker.patch(
        'requests.get',
        return_value=make_response(mocker, json_data={"data": [{"id": "llama-2-7b-chat"}]}),
    )
    return {"post": mock_post, "get": mock_get}


@pytest.fixture
def client(settings, db):
    """
    Provides a TestClient wired to the in-memory database.
    """
    app = create_app(settings=settings, database=db)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def fake_response(mocker):
    """
    Helper fixture to build mocked backend responses inside a test.
    """
    def _make(status_code=200, json_data=None, text=""):
        return make_response(mocker, status_code=status_code, json_data=json_data, text=text)
    return _make


@pytest.fixture
def completion_body():
    return chat_completion
