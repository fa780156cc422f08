import os

# Offline collaborators for every test; set before the app module is imported
os.environ["JUDGE_BACKEND"] = "mock"
os.environ["LLM_PROVIDER"] = "openrouter"
os.environ["OPENROUTER_API_KEY"] = ""
os.environ["ELEVENLABS_API_KEY"] = ""
os.environ["DEEPGRAM_API_KEY"] = ""
os.environ["RESEND_API_KEY"] = ""

import pytest


@pytest.fixture
def sample_transcript():
    return [
        {"role": "assistant", "content": "Hello. I'm Dr. Hayes. I'm pretty busy, so what have you got?"},
        {"role": "user", "content": "Our Universal cones are ream-only, with 12, 18 and 24 degree tapers."},
        {"role": "assistant", "content": "I already use Stryker cones. Why switch?"},
        {"role": "user", "content": "One tray for cones versus ten to twelve for Stryker."},
    ]


@pytest.fixture
def app_module(tmp_path):
    from cone_trainer import main

    main.database.database_url = f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"
    yield main
    main.database.database_url = None


@pytest.fixture
def client(app_module):
    from fastapi.testclient import TestClient

    with TestClient(app_module.app) as test_client:
        yield test_client
