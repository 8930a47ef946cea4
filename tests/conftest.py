"""Pytest configuration and shared fixtures."""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from approvalhub.api import deps
from approvalhub.api.main import app
from approvalhub.core.workflow.documents import DocumentType, document_types
from approvalhub.core.workflow.registry import WorkflowRegistry
from approvalhub.db.base import Base
from approvalhub.db.session import create_db_engine
from approvalhub.services.events import InMemoryEventBus
from approvalhub.services.stores import SqlAlchemyWorkflowStore
from tests.factories import SampleDocument, create_workflow


SAMPLE_WORKFLOW_ID = 149
PARTITIONED_WORKFLOW_ID = 200


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
def db_engine():
    """Fresh in-memory SQLite database per test."""
    engine = create_db_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    session = sessionmaker(bind=db_engine, autoflush=False, expire_on_commit=False)()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def registry(db_session):
    return WorkflowRegistry(SqlAlchemyWorkflowStore(db=db_session))


@pytest.fixture
def event_sink():
    return MagicMock()


# ---------------------------------------------------------------------------
# Workflows and engines
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_workflow(db_session):
    """Two-level workflow: role 101 then role 102."""
    return create_workflow(
        db_session,
        workflow_id=SAMPLE_WORKFLOW_ID,
        levels=[(1, "101"), (2, "102")],
    )


@pytest.fixture
def partitioned_workflow(db_session):
    """Per cost-centre-type chains; role 202 acts on level 2 of both."""
    return create_workflow(
        db_session,
        workflow_id=PARTITIONED_WORKFLOW_ID,
        partitioned=True,
        levels=[
            (1, "201", "PROJECT"),
            (2, "202", "PROJECT"),
            (1, "301", "OFFICE"),
            (2, "202", "OFFICE"),
            (3, "303", "OFFICE"),
        ],
    )


@pytest.fixture
def sample_doc_type():
    return DocumentType(
        key="sample",
        workflow_id=SAMPLE_WORKFLOW_ID,
        model=SampleDocument,
        entity_type="Sample Document",
        search_fields=("title", "reference"),
        reference_field="reference",
    )


@pytest.fixture
def partitioned_doc_type():
    return DocumentType(
        key="sample-cc",
        workflow_id=PARTITIONED_WORKFLOW_ID,
        model=SampleDocument,
        entity_type="Cost Centre Document",
        reference_field="reference",
        reject_field="review_status",
    )


@pytest.fixture
def engine(db_session, registry, event_sink, sample_workflow, sample_doc_type):
    return sample_doc_type.build_engine(db_session, registry, event_sink)


@pytest.fixture
def partitioned_engine(db_session, registry, event_sink, partitioned_workflow, partitioned_doc_type):
    return partitioned_doc_type.build_engine(db_session, registry, event_sink)


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------


@pytest.fixture
def api_session_factory(tmp_path):
    """File-backed SQLite so the API and the registry can use separate connections."""
    engine = create_db_engine(f"sqlite:///{tmp_path / 'api.db'}")
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def api_event_bus():
    return InMemoryEventBus()


@pytest.fixture
def client(api_session_factory, api_event_bus, sample_doc_type, partitioned_doc_type):
    api_registry = WorkflowRegistry(SqlAlchemyWorkflowStore(api_session_factory))

    def override_get_db():
        db = api_session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[deps.get_db] = override_get_db
    app.dependency_overrides[deps.get_registry] = lambda: api_registry
    app.dependency_overrides[deps.get_event_sink] = lambda: api_event_bus
    app.dependency_overrides[deps.get_event_bus] = lambda: api_event_bus
    document_types.register(sample_doc_type)
    document_types.register(partitioned_doc_type)

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    document_types.unregister(sample_doc_type.key)
    document_types.unregister(partitioned_doc_type.key)
