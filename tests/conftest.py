from pathlib import Path

import pytest

from caseflow.contracts import ServiceRequestCreationData
from caseflow.engine import WorkflowEngine
from caseflow.persistence import InMemoryRequestStore
from caseflow.registry import InMemoryUserDirectory, WorkflowDefinitionRegistry

FIXTURES = Path(__file__).parent / "fixtures"


@pytest.fixture
def fixtures_dir() -> Path:
    return FIXTURES


@pytest.fixture
def registry() -> WorkflowDefinitionRegistry:
    return WorkflowDefinitionRegistry.from_yaml(FIXTURES / "workflows.yaml")


@pytest.fixture
def users() -> InMemoryUserDirectory:
    return InMemoryUserDirectory.from_yaml(FIXTURES / "users.yaml")


@pytest.fixture
def store() -> InMemoryRequestStore:
    return InMemoryRequestStore()


@pytest.fixture
def engine(registry, store, users) -> WorkflowEngine:
    return WorkflowEngine(
        registry, store, users, offices={"office1": "Colombo DS", "office8": "Head Office"}
    )


@pytest.fixture
def land_intake() -> ServiceRequestCreationData:
    return ServiceRequestCreationData(
        nic_number="199012345678",
        citizen_name="Nimal Perera",
        citizen_address="12 Temple Road",
        citizen_contact="0771234567",
        subject_id="sc1",
        initial_documents_present=True,
        parcel="LOT-7",
    )
