#!/usr/bin/env python3
"""
Functional Test for record backends and the local blob store
"""

import json
import threading
import sys
from pathlib import Path

import pytest

# Add repo root to path for imports
repo_root = Path(__file__).resolve().parent.parent.parent
sys.path.insert(0, str(repo_root))

from engines.storage import get_blob_store, get_record_backend
from errors import PersistenceError, StaleVersionError, ValidationError
from signatures import SignaturePlacementStore
from utilities import Print
from pdf_fixtures import placement


def _record(document_id="doc-1", recipient="alice@example.com", placements=None):
    return {
        'schemaVersion': 1,
        'documentId': document_id,
        'recipientEmail': recipient,
        'status': 'signed',
        'placements': placements or [],
    }


def test_memory_backend_compare_and_set():
    Print("HEADER", "=== Storage: memory backend ===")
    backend = get_record_backend("memory", {})

    stored = backend.put_record(_record(), expected_version=0)
    assert stored['version'] == 1

    with pytest.raises(StaleVersionError):
        backend.put_record(_record(), expected_version=0)

    assert backend.put_record(_record(), expected_version=1)['version'] == 2
    with pytest.raises(StaleVersionError):
        backend.delete_record("doc-1", "alice@example.com", expected_version=1)
    assert backend.delete_record("doc-1", "alice@example.com", expected_version=2) is True
    assert backend.delete_record("doc-1", "alice@example.com") is False


def test_memory_backend_hands_out_copies():
    backend = get_record_backend("memory", {})
    backend.put_record(_record(), expected_version=0)

    copy = backend.get_record("doc-1", "alice@example.com")
    copy['placements'].append({'id': 'sneaky'})

    assert backend.get_record("doc-1", "alice@example.com")['placements'] == []


def test_jsonfile_backend_survives_restart(tmp_path):
    Print("HEADER", "=== Storage: jsonfile backend ===")
    path = tmp_path / "store" / "placements.json"
    store = SignaturePlacementStore(get_record_backend("jsonfile", {'path': str(path)}))
    store.replace_all("doc-1", "alice@example.com", [placement("p1")])

    reopened = SignaturePlacementStore(get_record_backend("jsonfile", {'path': str(path)}))
    record = reopened.get_record("doc-1", "alice@example.com")

    assert [p.id for p in record.placements] == ["p1"]
    assert reopened.document_status("doc-1").value == "signed"
    assert json.loads(path.read_text())['formatVersion'] == 1


def test_jsonfile_backend_rejects_unknown_format(tmp_path):
    path = tmp_path / "placements.json"
    path.write_text(json.dumps({'formatVersion': 99, 'records': []}))
    with pytest.raises(PersistenceError):
        get_record_backend("jsonfile", {'path': str(path)})


def test_jsonfile_backend_rolls_back_failed_write(tmp_path, monkeypatch):
    path = tmp_path / "placements.json"
    backend = get_record_backend("jsonfile", {'path': str(path)})
    backend.put_record(_record(), expected_version=0)

    def disk_full(payload):
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(backend, "_write_payload", disk_full)
    with pytest.raises(PersistenceError):
        backend.put_record(_record(placements=[{'id': 'lost'}]), expected_version=1)
    with pytest.raises(PersistenceError):
        backend.put_record(_record(recipient="bob@example.com"), expected_version=0)

    monkeypatch.undo()
    assert backend.get_record("doc-1", "alice@example.com")['version'] == 1
    assert backend.get_record("doc-1", "alice@example.com")['placements'] == []
    assert backend.get_record("doc-1", "bob@example.com") is None


def test_jsonfile_backends_on_one_path_see_each_other(tmp_path):
    Print("HEADER", "=== Storage: two jsonfile backends, one file ===")
    path = str(tmp_path / "placements.json")
    first = SignaturePlacementStore(get_record_backend("jsonfile", {'path': path}))
    second = SignaturePlacementStore(get_record_backend("jsonfile", {'path': path}))

    first.replace_all("doc-1", "alice@example.com", [placement("a1")])
    second.replace_all("doc-1", "bob@example.com", [placement("b1")])

    fresh = SignaturePlacementStore(get_record_backend("jsonfile", {'path': path}))
    assert [r.recipient_email for r in fresh.list_records("doc-1")] == ["alice@example.com", "bob@example.com"]
    assert [r.recipient_email for r in first.list_records("doc-1")] == ["alice@example.com", "bob@example.com"]

    second.clear_all("doc-1", "alice@example.com")
    assert first.get_record("doc-1", "alice@example.com") is None
    assert first.document_status("doc-1").value == "signed"


def test_jsonfile_stale_write_from_other_instance_is_rejected(tmp_path):
    path = str(tmp_path / "placements.json")
    first = SignaturePlacementStore(get_record_backend("jsonfile", {'path': path}))
    second = SignaturePlacementStore(get_record_backend("jsonfile", {'path': path}))

    seen = first.replace_all("doc-1", "alice@example.com", [placement("p1")]).record.version
    second.update_one("doc-1", "alice@example.com", "p1", {'x': 5}, expected_version=seen)

    with pytest.raises(StaleVersionError) as info:
        first.update_one("doc-1", "alice@example.com", "p1", {'x': 9}, expected_version=seen)
    assert (info.value.expected, info.value.actual) == (1, 2)

    # Without an expected version the latest record on disk is the base
    outcome = first.update_one("doc-1", "alice@example.com", "p1", {'y': 7})
    stored = outcome.record.placements[0]
    assert (stored.x, stored.y, outcome.record.version) == (5, 7, 3)


def test_jsonfile_backend_raw_compare_and_set_across_instances(tmp_path):
    path = str(tmp_path / "placements.json")
    first = get_record_backend("jsonfile", {'path': path})
    second = get_record_backend("jsonfile", {'path': path})

    first.put_record(_record(), expected_version=0)
    with pytest.raises(StaleVersionError):
        second.put_record(_record(), expected_version=0)
    assert second.put_record(_record(), expected_version=1)['version'] == 2
    with pytest.raises(StaleVersionError):
        first.delete_record("doc-1", "alice@example.com", expected_version=1)


@pytest.mark.parametrize("backend_name", ["memory", "jsonfile"])
def test_status_follows_records_under_concurrent_writers(tmp_path, backend_name):
    Print("HEADER", f"=== Storage: concurrent status updates ({backend_name}) ===")
    backend = get_record_backend(backend_name, {'path': str(tmp_path / "placements.json")})
    store = SignaturePlacementStore(backend, {'probe_images': False})
    start = threading.Barrier(2)

    def churn(recipient, keep_last):
        start.wait()
        for round_number in range(15):
            store.replace_all("doc-1", recipient, [placement(f"{recipient}-{round_number}")])
            if round_number < 14 or not keep_last:
                store.replace_all("doc-1", recipient, [])

    workers = [
        threading.Thread(target=churn, args=("alice@example.com", False)),
        threading.Thread(target=churn, args=("bob@example.com", True)),
    ]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join()

    assert [r.recipient_email for r in store.list_records("doc-1")] == ["bob@example.com"]
    assert store.document_status("doc-1").value == "signed"

    store.replace_all("doc-1", "bob@example.com", [])
    assert store.document_status("doc-1").value == "unsigned"


def test_unknown_backend():
    with pytest.raises(ValueError):
        get_record_backend("postgres", {})


def test_local_blob_store_round_trip(tmp_path):
    Print("HEADER", "=== Storage: local blob store ===")
    blobs = get_blob_store("local", {'root': str(tmp_path)})

    url = blobs.put("session/merged.pdf", b"%PDF-1.7 data", "application/pdf")

    assert url.startswith("file://")
    assert url.endswith("session/merged.pdf")
    assert blobs.get("session/merged.pdf") == b"%PDF-1.7 data"


@pytest.mark.parametrize("path", ["/etc/passwd", "../escape.pdf", "a/../../b.pdf", ""])
def test_local_blob_store_rejects_escaping_paths(tmp_path, path):
    blobs = get_blob_store("local", {'root': str(tmp_path)})
    with pytest.raises(ValidationError):
        blobs.put(path, b"x", "application/pdf")


def test_local_blob_store_write_failure(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("file in the way")
    blobs = get_blob_store("local", {'root': str(blocker)})
    with pytest.raises(PersistenceError):
        blobs.put("doc.pdf", b"x", "application/pdf")
