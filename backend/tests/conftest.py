"""
Shared fixtures.

Process-wide singletons (settings, entity registry, decision service) are
reset around every test so one test's wiring never leaks into the next.
"""
import pytest

from sales_assistant.core import config
from sales_assistant.services.decision import entities, orchestration


@pytest.fixture(autouse=True)
def reset_globals():
    config.reset_settings()
    entities.set_entity_registry(None)
    orchestration.set_decision_service(None)
    yield
    config.reset_settings()
    entities.set_entity_registry(None)
    orchestration.set_decision_service(None)
