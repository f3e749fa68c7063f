"""
Test Suite for the Inspection Orchestrator

Key tests:
1. Draft creation: code, config snapshot, audit event
2. Responses: merge, unknown indicators, snapshot thresholds
3. Submission: completeness gate, terminal state, concurrent submit
4. Immutability of submitted inspections and dispatched samples
5. Details with ordered audit history
6. Listing and stats
"""
import re
import threading
from datetime import datetime
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from inspection_app.errors import (
    NotFoundError, ImmutabilityViolation, IncompleteDataError, InvalidInputError,
    PersistenceError,
)
from inspection_app.models.db_models import (
    AuditAction, InspectionStatus, RiskLevel, SampleStatus, PhotoCategory,
)
from inspection_app.models.domain import DraftInspection, SubmittedInspection
from inspection_app.services.catalog import CatalogService
from inspection_app.services.inspection import InspectionService
from inspection_app.services.inspection.inspection_service import DEFAULT_DISTRICT_ID


INSPECTION_DATE = datetime(2025, 1, 15, 10, 0)


def inspection_data(district_id="dist-01", **overrides):
    data = {
        "institution_name": "Government Boys Hostel",
        "institution_address": "12 College Road",
        "officer_id": "officer-1",
        "inspection_date": INSPECTION_DATE,
        "district_id": district_id,
        "head_of_institution": {"name": "S. Rao", "mobile": "9000000001"},
    }
    data.update(overrides)
    return data


def answers(indicators, **values):
    return [
        {"indicator_id": indicators[key].id, "response": value}
        for key, value in values.items()
    ]


SAMPLE_DATA = {
    "sample_name": "Cooked rice",
    "sample_code": "SC-2025-001",
    "place_of_collection": "Serving counter",
    "packing_type": "loose",
    "collection_datetime": datetime(2025, 1, 15, 11, 0),
    "witness_name": "M. Das",
    "witness_address": "Staff quarters",
    "witness_mobile": "9000000002",
    "photo_refs": ["img-1"],
}

PHOTO_DATA = {
    "filename": "kitchen-1.jpg",
    "original_name": "IMG_0001.jpg",
    "file_url": "/uploads/kitchen-1.jpg",
    "category": "kitchen",
    "latitude": "17.38",
    "longitude": "78.48",
}


@pytest.fixture
def service(db, recorder, small_catalog):
    return InspectionService(db, recorder)


@pytest.fixture
def draft(service):
    return service.create_inspection(inspection_data())


# =============================================================================
# TEST: CREATE
# =============================================================================

class TestCreateInspection:

    def test_creates_draft_with_snapshot(self, service, recorder):
        inspection = service.create_inspection(inspection_data())

        assert isinstance(inspection, DraftInspection)
        assert inspection.status == InspectionStatus.DRAFT
        assert re.fullmatch(r"INS\d{8}DIST010001", inspection.code)
        assert inspection.config_snapshot == {
            "low_risk_max_score": 15,
            "medium_risk_max_score": 35,
            "high_risk_indicator_threshold": 5,
        }
        assert inspection.total_score is None
        assert inspection.institution.responsible_persons["head_of_institution"]["name"] == "S. Rao"

        history = recorder.history(inspection.id)
        assert [e.action for e in history] == [AuditAction.CREATED]
        assert history[0].details == {"inspection_code": inspection.code}

    def test_code_sequence_per_district(self, service):
        first = service.create_inspection(inspection_data("dist-01"))
        second = service.create_inspection(inspection_data("dist-01"))
        other = service.create_inspection(inspection_data("dist-02"))

        assert first.code.endswith("DIST010001")
        assert second.code.endswith("DIST010002")
        assert other.code.endswith("DIST020001")

    def test_code_clash_takes_next_sequence(self, service):
        service.create_inspection(inspection_data())
        service.codes.count_in_district = lambda district_id: 0
        service.codes.last_sequence_for_prefix = lambda prefix: 0

        second = service.create_inspection(inspection_data())

        assert second.code.endswith("DIST010002")

    def test_districts_sharing_a_tag_get_distinct_codes(self, service):
        north = [service.create_inspection(inspection_data("district-north")) for _ in range(5)]

        south = service.create_inspection(inspection_data("district-south"))

        assert south.code.endswith("DISTRI0006")
        assert south.code not in {i.code for i in north}
        assert service.repository.count_in_district("district-south") == 1

    def test_placeholder_district_shares_tag_without_clash(self, service):
        for _ in range(5):
            service.create_inspection(inspection_data("default-zone"))

        inspection = service.create_inspection(inspection_data(district_id=None))

        assert inspection.code.endswith("DEFAUL0006")

    def test_missing_district_uses_placeholder(self, service):
        inspection = service.create_inspection(inspection_data(district_id=None))
        assert inspection.district_id == DEFAULT_DISTRICT_ID

    def test_missing_required_field(self, service):
        with pytest.raises(InvalidInputError) as exc:
            service.create_inspection(inspection_data(institution_name=""))
        assert exc.value.details == {"field": "institution_name"}

    def test_blank_required_field(self, service):
        with pytest.raises(InvalidInputError):
            service.create_inspection(inspection_data(officer_id="   "))

    def test_catalog_outage_is_persistence_error(self, recorder):
        db = MagicMock()
        db.query.side_effect = OperationalError("SELECT 1", {}, Exception("db down"))

        with pytest.raises(PersistenceError):
            InspectionService(db, recorder).create_inspection(inspection_data())
        assert db.rollback.called


# =============================================================================
# TEST: RESPONSES
# =============================================================================

class TestSubmitResponses:

    def test_scores_and_persists_draft(self, service, draft, small_catalog):
        result = service.submit_responses(
            draft.id, answers(small_catalog, A="no", B="no", C="yes"), "officer-1",
        )

        assert result.total_score == 15
        assert result.high_risk_count == 1
        assert result.risk_classification == RiskLevel.LOW

        stored = service.repository.get_inspection(draft.id)
        assert stored.status == InspectionStatus.DRAFT
        assert stored.total_score == 15
        assert stored.risk_classification == RiskLevel.LOW
        assert {d.indicator_id for d in stored.deviations} == {small_catalog["A"].id, small_catalog["B"].id}

        responses = {r.indicator_id: r for r in service.repository.get_responses(draft.id)}
        a = responses[small_catalog["A"].id]
        assert a.indicator_name == "Pest-free storage"
        assert a.pillar_name == "Storage"
        assert a.risk_level == RiskLevel.HIGH
        assert a.score_contribution == 5
        assert responses[small_catalog["C"].id].score_contribution == 0

    def test_later_submission_merges_by_indicator(self, service, draft, small_catalog):
        service.submit_responses(draft.id, answers(small_catalog, A="no"), "officer-1")
        merged = service.submit_responses(draft.id, answers(small_catalog, B="no", C="no"), "officer-1")
        assert merged.total_score == 18
        assert merged.risk_classification == RiskLevel.MEDIUM

        corrected = service.submit_responses(draft.id, answers(small_catalog, A="yes"), "officer-1")

        assert corrected.total_score == 13
        assert corrected.risk_classification == RiskLevel.LOW
        assert len(service.repository.get_responses(draft.id)) == 3

    def test_unknown_indicator_rejected(self, service, draft, small_catalog):
        responses = answers(small_catalog, A="no") + [{"indicator_id": "ghost", "response": "no"}]

        with pytest.raises(NotFoundError) as exc:
            service.submit_responses(draft.id, responses, "officer-1")

        assert exc.value.details == {"indicator_ids": ["ghost"]}
        assert service.repository.get_responses(draft.id) == []

    def test_unknown_inspection(self, service, small_catalog):
        with pytest.raises(NotFoundError):
            service.submit_responses("missing", answers(small_catalog, A="no"), "officer-1")

    def test_scored_with_creation_time_thresholds(self, service, db, draft, small_catalog):
        """Changing live thresholds after creation does not move this inspection's bands."""
        CatalogService(db).update_config("low_risk_max_score", "5", updated_by="admin-1")
        responses = answers(small_catalog, A="no", B="no", C="yes")

        stored_result = service.submit_responses(draft.id, responses, "officer-1")
        preview = service.calculate_risk_score(responses)

        assert stored_result.risk_classification == RiskLevel.LOW
        assert preview.risk_classification == RiskLevel.MEDIUM
        assert service.repository.get_inspection(draft.id).config_snapshot["low_risk_max_score"] == 15

    def test_preview_does_not_persist(self, service, draft, small_catalog):
        service.calculate_risk_score(answers(small_catalog, A="no"))
        assert service.repository.get_responses(draft.id) == []


# =============================================================================
# TEST: SUBMIT
# =============================================================================

class TestSubmitInspection:

    def test_incomplete_responses_rejected(self, service, draft, small_catalog):
        service.submit_responses(draft.id, answers(small_catalog, A="no", B="yes"), "officer-1")

        with pytest.raises(IncompleteDataError) as exc:
            service.submit_inspection(draft.id, "officer-1")

        assert "2 of 3" in str(exc.value)
        assert service.repository.get_inspection(draft.id).status == InspectionStatus.DRAFT

    def test_submit_freezes_record(self, service, draft, small_catalog, recorder):
        service.submit_responses(draft.id, answers(small_catalog, A="no", B="no", C="no"), "officer-1")

        submitted = service.submit_inspection(draft.id, "officer-2", ["Fix storage racks"])

        assert isinstance(submitted, SubmittedInspection)
        assert submitted.status == InspectionStatus.SUBMITTED
        assert submitted.total_score == 18
        assert submitted.risk_classification == RiskLevel.MEDIUM
        assert submitted.recommendations == ("Fix storage racks",)
        assert submitted.submitted_at is not None

        history = recorder.history(draft.id)
        assert history[-1].action == AuditAction.SUBMITTED
        assert history[-1].performed_by == "officer-2"

    def test_second_submit_rejected(self, service, draft, small_catalog):
        service.submit_responses(draft.id, answers(small_catalog, A="yes", B="yes", C="yes"), "officer-1")
        service.submit_inspection(draft.id, "officer-1")

        with pytest.raises(ImmutabilityViolation):
            service.submit_inspection(draft.id, "officer-1")

    def test_unknown_inspection(self, service):
        with pytest.raises(NotFoundError):
            service.submit_inspection("missing", "officer-1")

    def test_submitted_inspection_rejects_all_mutations(self, service, draft, small_catalog):
        service.submit_responses(draft.id, answers(small_catalog, A="no", B="no", C="no"), "officer-1")
        service.add_sample(draft.id, SAMPLE_DATA, "officer-1")
        service.submit_inspection(draft.id, "officer-1")
        before = service.get_inspection_details(draft.id)

        with pytest.raises(ImmutabilityViolation):
            service.add_sample(draft.id, SAMPLE_DATA, "officer-1")
        with pytest.raises(ImmutabilityViolation):
            service.add_photo(draft.id, PHOTO_DATA, "officer-1")
        with pytest.raises(ImmutabilityViolation):
            service.submit_responses(draft.id, answers(small_catalog, A="yes"), "officer-1")
        with pytest.raises(ImmutabilityViolation):
            service.dispatch_sample(draft.id, before.samples[0].id, "State Food Lab", "officer-1")

        after = service.get_inspection_details(draft.id)
        assert after.inspection == before.inspection
        assert after.responses == before.responses
        assert after.samples == before.samples
        assert after.photos == before.photos

    def test_empty_catalog_submits_as_low(self, db, recorder):
        service = InspectionService(db, recorder)
        inspection = service.create_inspection(inspection_data())

        submitted = service.submit_inspection(inspection.id, "officer-1")

        assert submitted.total_score == 0
        assert submitted.risk_classification == RiskLevel.LOW
        assert submitted.config_snapshot == {}

    def test_concurrent_submit_exactly_one_wins(self, file_engine, recorder, catalog_builder):
        Session = sessionmaker(autocommit=False, autoflush=False, bind=file_engine)
        setup = Session()
        indicators = catalog_builder(setup)
        setup_service = InspectionService(setup, recorder)
        inspection = setup_service.create_inspection(inspection_data())
        setup_service.submit_responses(
            inspection.id, answers(indicators, A="yes", B="no", C="yes"), "officer-1",
        )
        setup.close()

        barrier = threading.Barrier(2)
        outcomes = []
        lock = threading.Lock()

        def submit(officer_id):
            session = Session()
            try:
                service = InspectionService(session, recorder)
                write = service.repository.mark_submitted_if_draft

                def gated_write(*args, **kwargs):
                    # Both callers have passed the status check before either writes
                    barrier.wait(timeout=10)
                    return write(*args, **kwargs)

                service.repository.mark_submitted_if_draft = gated_write
                try:
                    service.submit_inspection(inspection.id, officer_id)
                    outcome = "submitted"
                except ImmutabilityViolation:
                    outcome = "rejected"
                with lock:
                    outcomes.append(outcome)
            finally:
                session.close()

        threads = [threading.Thread(target=submit, args=(f"officer-{n}",)) for n in (1, 2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert sorted(outcomes) == ["rejected", "submitted"]
        submitted_events = [e for e in recorder.history(inspection.id) if e.action == AuditAction.SUBMITTED]
        assert len(submitted_events) == 1


# =============================================================================
# TEST: SAMPLES & PHOTOS
# =============================================================================

class TestSamplesAndPhotos:

    def test_add_sample(self, service, draft, recorder):
        sample = service.add_sample(draft.id, SAMPLE_DATA, "officer-1")

        assert sample.status == SampleStatus.COLLECTED
        assert sample.photo_refs == ("img-1",)
        assert service.repository.get_samples(draft.id) == [sample]
        assert recorder.history(draft.id)[-1].details == {"sample_code": "SC-2025-001"}

    def test_dispatch_sample_once(self, service, draft):
        sample = service.add_sample(draft.id, SAMPLE_DATA, "officer-1")

        dispatched = service.dispatch_sample(draft.id, sample.id, "State Food Lab", "officer-1")

        assert dispatched.status == SampleStatus.DISPATCHED
        assert dispatched.lab_name == "State Food Lab"
        assert dispatched.lab_dispatch_date is not None
        with pytest.raises(ImmutabilityViolation):
            service.dispatch_sample(draft.id, sample.id, "Other Lab", "officer-1")
        assert service.repository.get_sample(sample.id).lab_name == "State Food Lab"

    def test_dispatch_unknown_sample(self, service, draft):
        with pytest.raises(NotFoundError):
            service.dispatch_sample(draft.id, "missing", "State Food Lab", "officer-1")

    def test_dispatch_sample_of_other_inspection(self, service, draft):
        other = service.create_inspection(inspection_data())
        sample = service.add_sample(other.id, SAMPLE_DATA, "officer-1")

        with pytest.raises(NotFoundError):
            service.dispatch_sample(draft.id, sample.id, "State Food Lab", "officer-1")

    def test_add_photo(self, service, draft):
        photo = service.add_photo(draft.id, PHOTO_DATA, "officer-1")

        assert photo.category == PhotoCategory.KITCHEN
        assert photo.watermark_applied is False
        assert service.repository.get_photos(draft.id) == [photo]

    def test_invalid_photo_category(self, service, draft):
        with pytest.raises(ValueError):
            service.add_photo(draft.id, dict(PHOTO_DATA, category="roof"), "officer-1")


# =============================================================================
# TEST: DETAILS, LISTING, STATS
# =============================================================================

class TestReads:

    def test_details_with_ordered_history(self, service, draft, small_catalog):
        service.submit_responses(draft.id, answers(small_catalog, A="no", B="yes", C="na"), "officer-1")
        service.add_sample(draft.id, SAMPLE_DATA, "officer-1")
        service.add_photo(draft.id, PHOTO_DATA, "officer-1")
        service.submit_inspection(draft.id, "officer-1")

        details = service.get_inspection_details(draft.id)

        assert details.inspection.status == InspectionStatus.SUBMITTED
        assert len(details.responses) == 3
        assert len(details.samples) == 1
        assert len(details.photos) == 1
        assert [e.action for e in details.history] == [
            AuditAction.CREATED,
            AuditAction.RESPONSES_SUBMITTED,
            AuditAction.SAMPLE_ADDED,
            AuditAction.PHOTO_ADDED,
            AuditAction.SUBMITTED,
        ]
        timestamps = [e.timestamp for e in details.history]
        assert timestamps == sorted(timestamps)

    def test_details_unknown(self, service):
        with pytest.raises(NotFoundError):
            service.get_inspection_details("missing")

    def test_stats_and_listing(self, service, small_catalog):
        first = service.create_inspection(inspection_data("dist-01"))
        service.create_inspection(inspection_data("dist-01"))
        service.create_inspection(inspection_data("dist-02", officer_id="officer-9"))
        service.submit_responses(first.id, answers(small_catalog, A="no", B="no", C="no"), "officer-1")
        service.submit_inspection(first.id, "officer-1")

        stats = service.get_stats()
        assert (stats.total, stats.draft, stats.submitted) == (3, 2, 1)
        assert (stats.high_risk, stats.medium_risk, stats.low_risk) == (0, 1, 0)

        district_stats = service.get_stats("dist-02")
        assert (district_stats.total, district_stats.draft) == (1, 1)

        assert len(service.list_inspections(district_id="dist-01")) == 2
        assert len(service.list_inspections(officer_id="officer-9")) == 1
        submitted = service.list_inspections(status=InspectionStatus.SUBMITTED)
        assert [i.id for i in submitted] == [first.id]

    def test_validate_editable(self, service, draft, small_catalog):
        assert service.validate_editable(draft.id) is True
        service.submit_responses(draft.id, answers(small_catalog, A="yes", B="yes", C="yes"), "officer-1")
        service.submit_inspection(draft.id, "officer-1")
        assert service.validate_editable(draft.id) is False
        assert service.validate_editable("missing") is False
