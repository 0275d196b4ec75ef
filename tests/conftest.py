"""Shared fixtures. The environment is set up before ``app`` is imported."""

import os
import tempfile

import pytest

_TMP_DIR = tempfile.mkdtemp(prefix="rights-tool-tests-")

os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ["UPLOAD_DIR"] = os.path.join(_TMP_DIR, "uploads")
os.environ["RATE_LIMIT_PER_IP"] = "1000/minute"
os.environ["DAILY_ANALYSIS_CAP"] = "100000"
os.environ.pop("GEMINI_API_KEY", None)

from fastapi.testclient import TestClient  # noqa: E402

from app.main import app  # noqa: E402


@pytest.fixture(scope="session")
def client():
    """Provide test client for FastAPI app."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def fake_gemini(monkeypatch):
    """Replace the outbound Gemini call with canned text.

    Returns the list of prompts the fake received; set ``reply`` on the
    fixture's ``state`` dict to change the answer.
    """
    from app import gemini

    state = {"reply": "No licensing concerns found.", "prompts": []}

    async def _fake_generate(client, prompt):
        state["prompts"].append(prompt)
        return state["reply"]

    monkeypatch.setattr(gemini, "_generate_content", _fake_generate)
    return state
