#!/usr/bin/env python3
"""
Functional Test for the Signature Placement Store

Verifies replace-all / add / update / delete / clear semantics, placement
validation, the signed/unsigned document status transitions and
optimistic concurrency on records.
"""

import sys
from pathlib import Path

import pytest

# Add repo root to path for imports
repo_root = Path(__file__).resolve().parent.parent.parent
sys.path.insert(0, str(repo_root))

from engines.storage import get_record_backend
from errors import RecordNotFound, StaleVersionError, ValidationError
from signatures import DocumentStatus, PlacementSource, RecipientScope, SignaturePlacementStore
from signatures.validation import apply_position_update, normalize_placement
from utilities import Print
from pdf_fixtures import placement


DOC = "doc-1"
ALICE = "alice@example.com"
BOB = "bob@example.com"

STORE_CONFIG = {
    'min_image_data_length': 10,
    'probe_images': True,
    'recipient_aliases': {'fast-sign-docs@view-all': 'fast-sign@system'},
    'all_recipients_token': 'fast-sign-docs@view-all',
}


@pytest.fixture
def store():
    return SignaturePlacementStore(get_record_backend("memory", {}), STORE_CONFIG)


# =========================================================================
# replace_all
# =========================================================================

def test_replace_all_stores_placements_and_signs_document(store):
    Print("HEADER", "=== Placement store: replace_all ===")
    outcome = store.replace_all(DOC, ALICE, [placement("p1"), placement("p2", page=2)])

    assert [p.id for p in outcome.record.placements] == ["p1", "p2"]
    assert outcome.record.version == 1
    assert outcome.record.signed_at is not None
    assert outcome.status is DocumentStatus.SIGNED
    assert store.document_status(DOC) is DocumentStatus.SIGNED


def test_replace_all_with_empty_list_deletes_record(store):
    store.replace_all(DOC, ALICE, [placement("p1")])

    outcome = store.replace_all(DOC, ALICE, [])

    assert outcome.record is None
    assert outcome.removed == 1
    assert store.get_record(DOC, ALICE) is None
    assert store.document_status(DOC) is DocumentStatus.UNSIGNED


def test_replace_all_drops_placement_without_image(store):
    Print("HEADER", "=== Placement store: invalid placements dropped ===")
    no_content = placement("p1")
    del no_content['imageData']

    outcome = store.replace_all(DOC, ALICE, [no_content, placement("p2")])

    assert [p.id for p in outcome.record.placements] == ["p2"]
    assert len(outcome.warnings) == 1
    assert [p.id for p in store.get_record(DOC, ALICE).placements] == ["p2"]


def test_replace_all_fails_when_every_placement_is_invalid(store):
    store.replace_all(DOC, ALICE, [placement("keep")])

    with pytest.raises(ValidationError):
        store.replace_all(DOC, ALICE, [placement("a", imageData="short"), placement("b", imageData=None)])

    # Nothing written: the previous record is intact
    assert [p.id for p in store.get_record(DOC, ALICE).placements] == ["keep"]


def test_replace_all_rejects_undecodable_image(store):
    with pytest.raises(ValidationError):
        store.replace_all(DOC, ALICE, [placement("p1", imageData="data:image/png;base64,aGVsbG8gd29ybGQ=")])


def test_replace_all_defaults_non_finite_geometry(store):
    outcome = store.replace_all(DOC, ALICE, [
        placement("p1", x=float('nan'), y=None, width=float('inf'), height=-5, page="two", relativeX=3.5),
    ])
    stored = outcome.record.placements[0]

    assert (stored.x, stored.y, stored.width, stored.height, stored.page) == (0.0, 0.0, 120.0, 60.0, 1)
    assert stored.relative_x == 1.0


def test_replace_all_derives_relative_coordinates_from_page_size(store):
    outcome = store.replace_all(DOC, ALICE, [placement("p1", x=61.2, y=79.2, width=122.4, height=39.6)],
                                page_sizes={1: (612, 792)})
    stored = outcome.record.placements[0]

    assert stored.relative_x == pytest.approx(0.1)
    assert stored.relative_y == pytest.approx(0.1)
    assert stored.relative_width == pytest.approx(0.2)
    assert stored.relative_height == pytest.approx(0.05)


def test_replace_all_drops_duplicate_ids(store):
    outcome = store.replace_all(DOC, ALICE, [placement("p1"), placement("p1", page=2)])
    assert [p.page for p in outcome.record.placements] == [1]
    assert len(outcome.warnings) == 1


def test_replace_all_drops_placement_on_missing_page(store):
    Print("HEADER", "=== Placement store: placements outside the document ===")
    sizes = {1: (612, 792), 2: (612, 792)}

    outcome = store.replace_all(DOC, ALICE, [placement("p1"), placement("p9", page=9)], page_sizes=sizes)

    assert [p.id for p in outcome.record.placements] == ["p1"]
    assert len(outcome.warnings) == 1
    assert "page 9" in outcome.warnings[0]


def test_replace_all_with_only_missing_pages_stays_unsigned(store):
    with pytest.raises(ValidationError):
        store.replace_all(DOC, ALICE, [placement("p9", page=9)], page_sizes={1: (612, 792), 2: (612, 792)})

    assert store.get_record(DOC, ALICE) is None
    assert store.document_status(DOC) is DocumentStatus.UNSIGNED


def test_update_one_rejects_move_to_missing_page(store):
    store.replace_all(DOC, ALICE, [placement("p1")])
    with pytest.raises(ValidationError):
        store.update_one(DOC, ALICE, "p1", {'page': 5}, page_sizes={1: (612, 792), 2: (612, 792)})
    assert store.get_record(DOC, ALICE).placements[0].page == 1


def test_replace_all_accepts_nested_position(store):
    raw = placement("p1")
    for key in ('page', 'x', 'y', 'width', 'height'):
        raw.pop(key)
    raw['position'] = {'page': 3, 'x': 10, 'y': 20, 'width': 30, 'height': 40}

    stored = store.replace_all(DOC, ALICE, [raw]).record.placements[0]

    assert (stored.page, stored.x, stored.y, stored.width, stored.height) == (3, 10, 20, 30, 40)


def test_unknown_source_is_invalid():
    with pytest.raises(ValidationError):
        normalize_placement(placement("p1", source="fax"))


def test_upload_source_and_generated_id():
    raw = placement("p1", source="upload")
    del raw['id']
    normalized = normalize_placement(raw)
    assert normalized.source is PlacementSource.UPLOAD
    assert normalized.id


# =========================================================================
# add / update / delete / clear
# =========================================================================

def test_add_one_numbers_content_sequentially(store):
    store.add_one(DOC, ALICE, placement("p1"))
    outcome = store.add_one(DOC, ALICE, placement("p2"))

    assert [p.content for p in outcome.record.placements] == ["1", "2"]
    assert outcome.record.version == 2
    assert store.document_status(DOC) is DocumentStatus.SIGNED


def test_add_one_rejects_existing_id(store):
    store.add_one(DOC, ALICE, placement("p1"))
    with pytest.raises(ValidationError):
        store.add_one(DOC, ALICE, placement("p1"))


def test_update_one_merges_position_only(store):
    Print("HEADER", "=== Placement store: update_one ===")
    original = store.replace_all(DOC, ALICE, [placement("p1"), placement("p2")]).record.placements[0]

    outcome = store.update_one(DOC, ALICE, "p1", {'x': 300, 'relativeX': 0.5})
    updated = outcome.record.placements[0]

    assert updated.x == 300
    assert updated.relative_x == 0.5
    assert (updated.y, updated.width, updated.image_data, updated.timestamp) == (
        original.y, original.width, original.image_data, original.timestamp
    )
    assert outcome.record.placements[1].id == "p2"


def test_update_one_rederives_relatives_when_page_size_known(store):
    store.replace_all(DOC, ALICE, [placement("p1")])
    outcome = store.update_one(DOC, ALICE, "p1", {'x': 306, 'y': 396}, page_sizes={1: (612, 792)})
    updated = outcome.record.placements[0]
    assert (updated.relative_x, updated.relative_y) == (0.5, 0.5)


def test_update_one_validates_fields(store):
    store.replace_all(DOC, ALICE, [placement("p1")])
    with pytest.raises(ValidationError):
        store.update_one(DOC, ALICE, "p1", {'imageData': 'data:image/png;base64,AAAA'})
    with pytest.raises(ValidationError):
        store.update_one(DOC, ALICE, "p1", {'x': float('nan')})


def test_update_missing_placement_or_record(store):
    with pytest.raises(RecordNotFound):
        store.update_one(DOC, ALICE, "p1", {'x': 1})
    store.replace_all(DOC, ALICE, [placement("p1")])
    with pytest.raises(RecordNotFound):
        store.update_one(DOC, ALICE, "nope", {'x': 1})


def test_delete_one_removes_record_with_last_placement(store):
    store.replace_all(DOC, ALICE, [placement("p1"), placement("p2")])

    first = store.delete_one(DOC, ALICE, "p1")
    assert [p.id for p in first.record.placements] == ["p2"]
    assert store.document_status(DOC) is DocumentStatus.SIGNED

    last = store.delete_one(DOC, ALICE, "p2")
    assert last.record is None
    assert store.get_record(DOC, ALICE) is None
    assert store.document_status(DOC) is DocumentStatus.UNSIGNED


def test_status_reverts_only_when_last_record_goes(store):
    store.replace_all(DOC, ALICE, [placement("a1")])
    store.replace_all(DOC, BOB, [placement("b1")])

    store.clear_all(DOC, ALICE)
    assert store.document_status(DOC) is DocumentStatus.SIGNED

    store.clear_all(DOC, BOB)
    assert store.document_status(DOC) is DocumentStatus.UNSIGNED


def test_status_reverts_to_prior_state(store):
    store.register_document(DOC, DocumentStatus.DRAFT)
    store.replace_all(DOC, ALICE, [placement("p1")])
    assert store.document_status(DOC) is DocumentStatus.SIGNED

    store.replace_all(DOC, ALICE, [])
    assert store.document_status(DOC) is DocumentStatus.DRAFT


def test_clear_all_recipients(store):
    Print("HEADER", "=== Placement store: clear_all ===")
    store.replace_all(DOC, ALICE, [placement("a1"), placement("a2")])
    store.replace_all(DOC, BOB, [placement("b1")])
    store.replace_all("other-doc", ALICE, [placement("o1")])

    outcome = store.clear_all(DOC, RecipientScope.ALL)

    assert outcome.removed == 3
    assert store.list_records(DOC) == []
    assert store.get_record("other-doc", ALICE) is not None
    assert store.document_status(DOC) is DocumentStatus.UNSIGNED


def test_all_recipients_token_clears_everyone(store):
    store.replace_all(DOC, ALICE, [placement("a1")])
    store.replace_all(DOC, BOB, [placement("b1")])

    store.clear_all(DOC, "fast-sign-docs@view-all")

    assert store.list_records(DOC) == []


def test_recipient_alias(store):
    store.replace_all(DOC, "fast-sign-docs@view-all", [placement("p1")])
    assert store.list_records(DOC)[0].recipient_email == "fast-sign@system"
    assert store.get_record(DOC, "fast-sign@system") is not None


def test_empty_recipient_rejected(store):
    with pytest.raises(ValidationError):
        store.replace_all(DOC, "  ", [placement("p1")])


# =========================================================================
# concurrency
# =========================================================================

def test_stale_expected_version_is_rejected(store):
    Print("HEADER", "=== Placement store: optimistic concurrency ===")
    first = store.replace_all(DOC, ALICE, [placement("p1"), placement("p2")])
    seen_version = first.record.version

    store.update_one(DOC, ALICE, "p1", {'x': 10}, expected_version=seen_version)

    with pytest.raises(StaleVersionError) as info:
        store.update_one(DOC, ALICE, "p2", {'x': 20}, expected_version=seen_version)
    assert info.value.expected == 1
    assert info.value.actual == 2

    assert store.get_record(DOC, ALICE).placements[1].x == 100


def test_create_with_expected_version_zero(store):
    store.replace_all(DOC, ALICE, [placement("p1")], expected_version=0)
    with pytest.raises(StaleVersionError):
        store.replace_all(DOC, ALICE, [placement("p2")], expected_version=0)


def test_apply_position_update_rejects_empty():
    base = normalize_placement(placement("p1"))
    with pytest.raises(ValidationError):
        apply_position_update(base, {})
