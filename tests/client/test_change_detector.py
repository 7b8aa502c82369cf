"""Tests de l'empreinte de contenu des brouillons."""

from docdesk.client.change_detector import fingerprint, should_save
from docdesk.domain.documents import DocumentDraft, DocumentStatus


def _draft(**overrides) -> DocumentDraft:
    fields = {
        "document_type": "absence-report",
        "title": "Absence",
        "content": "Motif",
        "metadata": {"date": "2026-03-03", "reason": "medical"},
    }
    fields.update(overrides)
    return DocumentDraft(**fields)


def test_metadata_key_order_does_not_matter() -> None:
    a = _draft(metadata={"date": "2026-03-03", "reason": "medical"})
    b = _draft(metadata={"reason": "medical", "date": "2026-03-03"})

    assert fingerprint(a) == fingerprint(b)


def test_identity_status_and_timestamps_are_ignored() -> None:
    a = _draft()
    b = _draft(identity=12, status=DocumentStatus.COMPLETED, last_fingerprint="x")

    assert fingerprint(a) == fingerprint(b)


def test_editable_fields_change_fingerprint() -> None:
    base = fingerprint(_draft())

    assert fingerprint(_draft(title="Autre")) != base
    assert fingerprint(_draft(metadata={"date": "2026-03-04", "reason": "medical"})) != base
    assert fingerprint(_draft(generated_content="texte")) != base


def test_should_save() -> None:
    draft = _draft()
    dirty, fp = should_save(draft, None)
    assert dirty is True

    draft.last_fingerprint = fp
    assert should_save(draft, draft.last_fingerprint) == (False, fp)

    draft.content = "Motif modifié"
    assert should_save(draft, draft.last_fingerprint)[0] is True
