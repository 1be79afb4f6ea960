"""
Test configuration and fixtures for the Storefront Scan API.

No broker, Redis or OpenAI access is needed: Celery dispatch, the result
backend and the AI client are patched per test.
"""

import os
from typing import Generator

from dotenv import load_dotenv

import pytest
from fastapi.testclient import TestClient

load_dotenv()

# Never reach a real provider from the test suite
os.environ["OPENAI_API_KEY"] = ""
os.environ.setdefault("COMPETITOR_LOOKUP_ENABLED", "false")


@pytest.fixture(scope="session")
def test_app():
    """Create FastAPI test application."""
    from app.main import app

    return app


@pytest.fixture(scope="function")
def client(test_app) -> Generator[TestClient, None, None]:
    """
    Create a test client for making HTTP requests.
    A fresh TestClient per test keeps handler state isolated.
    """
    with TestClient(test_app) as test_client:
        yield test_client
