"""Pytest configuration and global fixtures for Sidequest tests.

Every test that requests ``db_path`` gets a fresh SQLite database; the
oracle is patched out everywhere so no test reaches a real LLM.
"""

import pytest

from sidequest.c1_database_session.database_manager import (
    DB_PATH_ENV,
    DatabaseManager,
    dispose_managers,
)
from tests.fixtures.factories import add_project, add_quest
from tests.fixtures.mock_llm_provider import MockLLMProvider


@pytest.fixture
def mock_llm_provider():
    """Provide a fresh mock oracle for each test.

    Usage:
        async def test_something(mock_llm_provider):
            mock_llm_provider.response = {"sprints": [...]}
            await SprintPlanService.organize_sprints(qid, oracle=mock_llm_provider)
            assert mock_llm_provider.call_count == 1

    Returns:
        MockLLMProvider instance
    """
    provider = MockLLMProvider()
    yield provider
    provider.reset()


@pytest.fixture(autouse=True)
def no_configured_oracle(monkeypatch):
    """Keep the configured-provider lookup from building a real client."""
    monkeypatch.setattr(
        "sidequest.c2_sprint_planner.sprint_service.get_llm_provider",
        lambda: None,
    )


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    """Point get_db() at a fresh database with all tables created."""
    path = str(tmp_path / "sidequest_test.db")
    monkeypatch.setenv(DB_PATH_ENV, path)

    manager = DatabaseManager(path)
    manager.create_tables()
    manager.dispose()

    yield path

    dispose_managers()


@pytest.fixture
def project_id(db_path):
    return add_project()


@pytest.fixture
def quest_id(project_id):
    return add_quest(project_id)
