"""Tests for document type registration."""

import pytest

from approvalhub.core.exceptions import DocumentTypeNotFound
from approvalhub.core.workflow.documents import DocumentType, DocumentTypeRegistry
from approvalhub.core.workflow.states import MessageEvent
from tests.factories import SampleDocument


class TestDocumentTypeRegistry:
    """Test lookups by key and workflow."""

    def test_register_and_get(self, sample_doc_type):
        types = DocumentTypeRegistry()
        types.register(sample_doc_type)

        assert types.get("sample") is sample_doc_type
        assert types.for_workflow(149) == [sample_doc_type]
        assert types.for_workflow(150) == []

    def test_unknown_key(self):
        with pytest.raises(DocumentTypeNotFound) as exc:
            DocumentTypeRegistry().get("itemCode")
        assert exc.value.status_code == 404

    def test_unregister(self, sample_doc_type):
        types = DocumentTypeRegistry()
        types.register(sample_doc_type)
        types.unregister("sample")
        types.unregister("sample")
        assert types.all() == []


class TestDocumentType:
    """Test labels and messages."""

    def test_label_defaults_to_model_name(self):
        doc = DocumentType(key="raw", workflow_id=1, model=SampleDocument)
        assert doc.label == "SampleDocument"
        assert doc.to_dict()["entity_type"] == "SampleDocument"

    def test_reference_in_messages(self, sample_doc_type):
        entity = SampleDocument(title="Bolt", reference="IC-42")
        assert sample_doc_type.message(entity, MessageEvent.CREATED) == "New Sample Document Created: IC-42"
        assert sample_doc_type.message(entity, MessageEvent.APPROVED) == "Sample Document IC-42 has been approved"

    def test_custom_message_builder(self):
        doc = DocumentType(
            key="custom",
            workflow_id=1,
            model=SampleDocument,
            message_builder=lambda entity, event: f"{entity.title}:{event.value}",
        )
        assert doc.message(SampleDocument(title="Bolt"), MessageEvent.REJECTED) == "Bolt:rejected"

    def test_build_engine(self, db_session, registry, event_sink, sample_doc_type):
        engine = sample_doc_type.build_engine(db_session, registry, event_sink, enforce_route_role=True)

        assert engine.workflow_id == 149
        assert engine.entity_type == "Sample Document"
        assert engine.enforce_route_role
        assert engine.notifications.event_sink is event_sink
        assert engine.db is db_session
