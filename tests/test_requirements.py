"""Tests for requirement codes, versioning, history and links."""
import pytest

from taskboard_core import crud, models, schemas
from taskboard_core.config import get_settings
from taskboard_core.errors import (
    ConflictError,
    NotFoundError,
    PreconditionFailedError,
    ValidationFailedError,
)
from taskboard_core.models import RequirementStatus, RequirementType
from taskboard_core.state_machine import StateTransitionError

GOOD_DESCRIPTION = "The system should send a confirmation email within one minute of signup."


@pytest.fixture
def make_requirement(db, project, owner, null_dispatcher):
    def _make(title="User can reset password", **fields):
        fields.setdefault("description", GOOD_DESCRIPTION)
        return crud.create_requirement(
            db,
            schemas.RequirementCreate(project_id=project.id, title=title, **fields),
            author_id=owner.id,
            dispatcher=null_dispatcher,
        )

    return _make


def history(db, requirement):
    return crud.get_requirement_history(db, requirement.id)


class TestRequirementCodes:
    """Codes are {project key}-{type prefix}-{sequence:03d}, per type."""

    def test_sequence_per_type(self, make_requirement):
        first = make_requirement("Login form")
        second = make_requirement("Logout button")
        nfr = make_requirement("Page load time", type=RequirementType.NON_FUNCTIONAL)
        rule = make_requirement("Refund policy", type=RequirementType.BUSINESS_RULE)

        assert first.code == "WEB-FR-001"
        assert second.code == "WEB-FR-002"
        assert nfr.code == "WEB-NFR-001"
        assert rule.code == "WEB-BR-001"

    def test_format_helper(self):
        assert crud.format_requirement_code("API", RequirementType.TECHNICAL, 7) == "API-TR-007"
        assert crud.format_requirement_code("API", RequirementType.CONSTRAINT, 1234) == "API-CR-1234"

    def test_missing_counter_is_seeded_from_existing_codes(self, db, project, make_requirement):
        make_requirement("one")
        make_requirement("two")
        db.query(models.ProjectSequence).filter(
            models.ProjectSequence.project_id == project.id,
            models.ProjectSequence.name == crud.requirement_sequence_name(RequirementType.FUNCTIONAL),
        ).delete()
        db.commit()

        third = make_requirement("three")

        assert third.code == "WEB-FR-003"

    def test_codes_survive_deletion(self, db, make_requirement):
        first = make_requirement("one")
        crud.delete_requirement(db, first.id)

        assert make_requirement("two").code == "WEB-FR-002"

    def test_unknown_project(self, db, owner, null_dispatcher):
        with pytest.raises(NotFoundError):
            crud.create_requirement(
                db, schemas.RequirementCreate(project_id="missing", title="x"), owner.id, null_dispatcher
            )


class TestCreateRequirement:

    def test_starts_at_version_one_in_draft(self, db, make_requirement):
        requirement = make_requirement(acceptance_criteria=["Email arrives", "Link expires"])

        assert requirement.version == 1
        assert requirement.status == RequirementStatus.DRAFT
        assert requirement.quality_score is None
        assert requirement.acceptance_criteria == ["Email arrives", "Link expires"]

    def test_created_history_entry(self, db, owner, make_requirement):
        requirement = make_requirement()

        entries = history(db, requirement)

        assert len(entries) == 1
        assert entries[0].version == 1
        assert entries[0].changed_by_user_id == owner.id
        assert entries[0].changes["action"] == "created"
        assert entries[0].changes["title"] == "User can reset password"
        assert entries[0].changes["type"] == "functional"

    def test_inline_analysis_stores_score(self, db, project, owner, inline_dispatcher):
        requirement = crud.create_requirement(
            db,
            schemas.RequirementCreate(
                project_id=project.id,
                title="User can reset password",
                description=GOOD_DESCRIPTION,
                acceptance_criteria=["Email arrives"],
            ),
            owner.id,
            inline_dispatcher,
        )

        db.refresh(requirement)
        assert requirement.quality_score == 70

    def test_failed_analysis_does_not_fail_creation(self, db, project, owner, session_factory, monkeypatch):
        from taskboard_core.analysis_jobs import InlineAnalysisDispatcher

        def explode(*args):
            raise RuntimeError("analysis backend down")

        monkeypatch.setattr(crud, "perform_ai_analysis", explode)

        requirement = crud.create_requirement(
            db,
            schemas.RequirementCreate(project_id=project.id, title="Export to CSV"),
            owner.id,
            InlineAnalysisDispatcher(session_factory),
        )

        db.refresh(requirement)
        assert requirement.version == 1
        assert requirement.quality_score is None


class TestUpdateRequirement:
    """Significant fields bump the version; every real change is audited."""

    def test_significant_change_bumps_version(self, db, owner, make_requirement, null_dispatcher):
        requirement = make_requirement()

        updated = crud.update_requirement(
            db, requirement.id, {"title": "User can reset a forgotten password"},
            changed_by=owner.id, dispatcher=null_dispatcher,
        )

        assert updated.version == 2
        latest = history(db, requirement)[0]
        assert latest.version == 2
        assert latest.changes == {
            "action": "updated",
            "title": {"from": "User can reset password", "to": "User can reset a forgotten password"},
        }

    @pytest.mark.parametrize("patch", [
        {"status": RequirementStatus.UNDER_REVIEW},
        {"priority": models.RequirementPriority.MUST_HAVE},
        {"tags": ["auth"]},
    ])
    def test_cosmetic_change_keeps_version_but_is_audited(self, db, make_requirement, null_dispatcher, patch):
        requirement = make_requirement()

        updated = crud.update_requirement(db, requirement.id, patch, dispatcher=null_dispatcher)

        assert updated.version == 1
        entries = history(db, requirement)
        assert len(entries) == 2
        assert all(e.version == 1 for e in entries)
        update = next(e for e in entries if e.changes["action"] == "updated")
        assert set(update.changes) == {"action", *patch}

    def test_unchanged_significant_field_bumps_without_history(self, db, make_requirement, null_dispatcher):
        requirement = make_requirement()

        updated = crud.update_requirement(
            db, requirement.id, {"title": requirement.title}, dispatcher=null_dispatcher
        )

        assert updated.version == 2
        assert len(history(db, requirement)) == 1

    def test_list_fields_compared_by_value(self, db, make_requirement, null_dispatcher):
        requirement = make_requirement(acceptance_criteria=["a", "b"])

        crud.update_requirement(
            db, requirement.id, {"acceptance_criteria": ["a", "b"], "tags": []}, dispatcher=null_dispatcher
        )

        assert len(history(db, requirement)) == 1

    def test_several_fields_in_one_entry(self, db, make_requirement, null_dispatcher):
        requirement = make_requirement()

        crud.update_requirement(
            db, requirement.id,
            {"description": "Users should get a reset link by email.", "tags": ["auth"]},
            dispatcher=null_dispatcher,
        )

        latest = history(db, requirement)[0]
        assert set(latest.changes) == {"action", "description", "tags"}
        assert latest.changes["tags"] == {"from": [], "to": ["auth"]}

    def test_stale_expected_version(self, db, make_requirement, null_dispatcher):
        requirement = make_requirement()
        crud.update_requirement(db, requirement.id, {"title": "Second title"}, dispatcher=null_dispatcher)

        with pytest.raises(ConflictError):
            crud.update_requirement(
                db, requirement.id, {"title": "Third title"}, expected_version=1, dispatcher=null_dispatcher
            )
        db.rollback()

        fresh = crud.get_requirement(db, requirement.id)
        assert fresh.title == "Second title"
        assert fresh.version == 2

    def test_current_expected_version(self, db, make_requirement, null_dispatcher):
        requirement = make_requirement()

        updated = crud.update_requirement(
            db, requirement.id, {"title": "Second title"}, expected_version=1, dispatcher=null_dispatcher
        )

        assert updated.version == 2

    def test_code_cannot_be_patched(self, db, make_requirement, null_dispatcher):
        requirement = make_requirement()
        with pytest.raises(ValidationFailedError):
            crud.update_requirement(db, requirement.id, {"code": "WEB-FR-999"}, dispatcher=null_dispatcher)

    def test_missing_requirement(self, db, null_dispatcher):
        with pytest.raises(NotFoundError):
            crud.update_requirement(db, "missing", {"title": "x"}, dispatcher=null_dispatcher)

    def test_reanalysis_only_for_analyzed_fields(self, db, make_requirement):
        scheduled = []

        class RecordingDispatcher:
            def submit(self, name, job, *args):
                scheduled.append(name)

        requirement = make_requirement()
        crud.update_requirement(db, requirement.id, {"tags": ["auth"]}, dispatcher=RecordingDispatcher())
        assert scheduled == []

        crud.update_requirement(db, requirement.id, {"title": "Reset password"}, dispatcher=RecordingDispatcher())
        assert scheduled == [f"analyze-requirement-{requirement.id}"]


class TestStatusTransitions:
    """Transitions are free by default and checked when enforcement is on."""

    def test_any_transition_by_default(self, db, make_requirement, null_dispatcher):
        requirement = make_requirement()

        updated = crud.update_requirement(
            db, requirement.id, {"status": RequirementStatus.APPROVED}, dispatcher=null_dispatcher
        )

        assert updated.status == RequirementStatus.APPROVED

    def test_enforced_transitions(self, db, make_requirement, null_dispatcher, monkeypatch):
        monkeypatch.setattr(get_settings(), "enforce_requirement_transitions", True)
        requirement = make_requirement()

        with pytest.raises(StateTransitionError) as exc_info:
            crud.update_requirement(
                db, requirement.id, {"status": RequirementStatus.APPROVED}, dispatcher=null_dispatcher
            )
        db.rollback()
        assert "under_review" in exc_info.value.message

        updated = crud.update_requirement(
            db, requirement.id, {"status": RequirementStatus.UNDER_REVIEW}, dispatcher=null_dispatcher
        )
        assert updated.status == RequirementStatus.UNDER_REVIEW


class TestDeleteAndLinks:

    def test_delete_removes_history(self, db, make_requirement):
        requirement = make_requirement()

        crud.delete_requirement(db, requirement.id)

        assert crud.get_requirement(db, requirement.id) is None
        assert db.query(models.RequirementHistory).count() == 0

    def test_delete_blocked_by_links(self, db, make_requirement, make_task):
        requirement = make_requirement()
        task = make_task("Build reset form")
        crud.link_requirement_to_task(db, requirement.id, task.id)

        with pytest.raises(PreconditionFailedError):
            crud.delete_requirement(db, requirement.id)

        crud.unlink_requirement_from_task(db, requirement.id, task.id)
        crud.delete_requirement(db, requirement.id)

    def test_link_records_task_activity(self, db, owner, make_requirement, make_task):
        requirement = make_requirement()
        task = make_task("Build reset form")

        link = crud.link_requirement_to_task(db, requirement.id, task.id, "tests", owner.id)

        assert link.link_type == "tests"
        assert [link.task_id for link in crud.get_requirement_links(db, requirement.id)] == [task.id]
        messages = [a.message for a in task.activities]
        assert "Linked to requirement WEB-FR-001 (tests)" in messages

    def test_duplicate_link(self, db, make_requirement, make_task):
        requirement = make_requirement()
        task = make_task("Build reset form")
        crud.link_requirement_to_task(db, requirement.id, task.id)

        with pytest.raises(ConflictError):
            crud.link_requirement_to_task(db, requirement.id, task.id)

    def test_unlink_missing(self, db, make_requirement, make_task):
        requirement = make_requirement()
        task = make_task("Build reset form")
        with pytest.raises(NotFoundError):
            crud.unlink_requirement_from_task(db, requirement.id, task.id)


class TestRequirementQueries:

    def test_filters_and_search(self, db, project, make_requirement):
        make_requirement("Login form")
        make_requirement("Page load time", type=RequirementType.NON_FUNCTIONAL)
        make_requirement("Logout button", tags=["auth"])

        items, total = crud.get_requirements(db, project.id, requirement_type=RequirementType.FUNCTIONAL)
        assert total == 2

        items, total = crud.get_requirements(db, project.id, search="nfr")
        assert [r.title for r in items] == ["Page load time"]

        items, total = crud.get_requirements(db, project.id, skip=0, limit=1)
        assert total == 3
        assert len(items) == 1

    def test_history_newest_first(self, db, make_requirement, null_dispatcher):
        requirement = make_requirement()
        crud.update_requirement(db, requirement.id, {"title": "Second"}, dispatcher=null_dispatcher)
        crud.update_requirement(db, requirement.id, {"title": "Third"}, dispatcher=null_dispatcher)

        assert [e.version for e in history(db, requirement)] == [3, 2, 1]
        assert len(crud.get_requirement_history(db, requirement.id, limit=2)) == 2

    def test_coverage(self, db, project, make_requirement, null_dispatcher):
        assert crud.get_requirement_coverage(db, project.id)["implementation_coverage"] == 0.0

        done = make_requirement("Login form", acceptance_criteria=["User logs in"])
        make_requirement("Logout button")
        crud.update_requirement(
            db, done.id, {"status": RequirementStatus.IMPLEMENTED}, dispatcher=null_dispatcher
        )
        crud.generate_test_cases(db, done.id)

        coverage = crud.get_requirement_coverage(db, project.id)

        assert coverage["total"] == 2
        assert coverage["implemented"] == 1
        assert coverage["tested"] == 1
        assert coverage["implementation_coverage"] == 50.0
        assert coverage["test_coverage"] == 50.0

    def test_generate_test_cases_records_ids(self, db, make_requirement):
        requirement = make_requirement(acceptance_criteria=["User logs in", "Session expires"])

        test_cases = crud.generate_test_cases(db, requirement.id)

        assert len(test_cases) == 3
        assert crud.get_requirement(db, requirement.id).test_cases == [t["id"] for t in test_cases]

    def test_detect_duplicates(self, db, project, make_requirement):
        existing = make_requirement("User can reset their password")
        make_requirement("Page load time", description="Pages render in under two seconds.")

        matches = crud.detect_duplicates(db, project.id, "user can reset their password")

        assert [r.id for r in matches] == [existing.id]
