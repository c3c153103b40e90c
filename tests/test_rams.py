"""
RAMS documents: risk scoring, method step numbering and the review workflow.

    Draft → PendingReview → Approved → Archived
                 └→ Rejected → PendingReview
"""

import pytest

from siteops.models.rams import risk_level

BASE = "/api/v1/rams"

AUTHOR = ("Rams.View", "Rams.Create", "Rams.Edit", "Rams.Delete", "Rams.Submit")
REVIEWER = ("Rams.View", "Rams.Approve")

RISK = {
    "task_activity": "Working at height",
    "hazard_identified": "Fall from scaffold",
    "who_at_risk": "Operatives",
    "initial_likelihood": 4,
    "initial_severity": 5,
    "control_measures": "Edge protection, harness",
    "residual_likelihood": 2,
    "residual_severity": 2,
}


@pytest.fixture()
def author(auth_headers):
    return auth_headers(*AUTHOR)


@pytest.fixture()
def reviewer(auth_headers):
    return auth_headers(*REVIEWER)


def _document(client, headers, reference="RAMS-001", **extra):
    res = client.post(BASE, json={
        "project_name": "Library refurbishment", "project_reference": reference,
        "proposed_start_date": "2026-11-02", "proposed_end_date": "2026-12-18", **extra,
    }, headers=headers)
    assert res.status_code == 201, res.get_json()
    return res.get_json()


def _ready_document(client, headers):
    doc = _document(client, headers)
    assert client.post(f"{BASE}/{doc['id']}/risks", json=RISK, headers=headers).status_code == 201
    res = client.post(f"{BASE}/{doc['id']}/steps", json={"step_title": "Erect scaffold"}, headers=headers)
    assert res.status_code == 201
    return doc


@pytest.mark.parametrize("rating,level", [(1, "Low"), (4, "Low"), (5, "Medium"), (12, "Medium"),
                                          (15, "High"), (25, "High")])
def test_risk_level_bands(rating, level):
    assert risk_level(rating) == level


class TestDocuments:
    def test_create_and_get(self, client, author):
        doc = _document(client, author)
        assert doc["status"] == "Draft"
        got = client.get(f"{BASE}/{doc['id']}", headers=author).get_json()
        assert got["risk_assessments"] == []
        assert got["method_steps"] == []

    def test_reference_is_unique_per_tenant(self, client, author):
        _document(client, author)
        res = client.post(BASE, json={"project_name": "Again", "project_reference": "RAMS-001"}, headers=author)
        assert res.status_code == 409

    def test_end_before_start_rejected(self, client, author):
        res = client.post(BASE, json={
            "project_name": "X", "project_reference": "R-9",
            "proposed_start_date": "2026-12-01", "proposed_end_date": "2026-11-01",
        }, headers=author)
        assert res.status_code == 400

    def test_unknown_safety_officer_is_404(self, client, author):
        res = client.post(BASE, json={
            "project_name": "X", "project_reference": "R-10", "safety_officer_id": 999,
        }, headers=author)
        assert res.status_code == 404


class TestRisksAndSteps:
    def test_risk_ratings_and_levels(self, client, author):
        doc = _document(client, author)
        res = client.post(f"{BASE}/{doc['id']}/risks", json=RISK, headers=author)
        assert res.status_code == 201
        risk = res.get_json()
        assert risk["initial_risk_rating"] == 20
        assert risk["initial_risk_level"] == "High"
        assert risk["residual_risk_rating"] == 4
        assert risk["residual_risk_level"] == "Low"

    @pytest.mark.parametrize("field,value", [("initial_likelihood", 0), ("residual_severity", 6)])
    def test_scores_outside_range_rejected(self, client, author, field, value):
        doc = _document(client, author)
        res = client.post(f"{BASE}/{doc['id']}/risks", json={**RISK, field: value}, headers=author)
        assert res.status_code == 400
        assert field in res.get_json()["details"]

    def test_steps_are_numbered_and_renumbered(self, client, author):
        doc = _document(client, author)
        ids = []
        for title in ("Set up exclusion zone", "Erect scaffold", "Strip roof"):
            res = client.post(f"{BASE}/{doc['id']}/steps", json={"step_title": title}, headers=author)
            ids.append(res.get_json()["id"])
            assert res.get_json()["step_number"] == len(ids)

        assert client.delete(f"{BASE}/{doc['id']}/steps/{ids[0]}", headers=author).status_code == 204
        steps = client.get(f"{BASE}/{doc['id']}", headers=author).get_json()["method_steps"]
        assert [(s["step_number"], s["step_title"]) for s in steps] == [(1, "Erect scaffold"), (2, "Strip roof")]

    def test_step_linked_to_foreign_risk_rejected(self, client, author):
        doc = _document(client, author)
        other = _document(client, author, reference="RAMS-002")
        risk = client.post(f"{BASE}/{other['id']}/risks", json=RISK, headers=author).get_json()
        res = client.post(f"{BASE}/{doc['id']}/steps",
                          json={"step_title": "Lift", "linked_risk_assessment_id": risk["id"]}, headers=author)
        assert res.status_code == 400

    def test_deleting_risk_unlinks_steps(self, client, author):
        doc = _document(client, author)
        risk = client.post(f"{BASE}/{doc['id']}/risks", json=RISK, headers=author).get_json()
        client.post(f"{BASE}/{doc['id']}/steps",
                    json={"step_title": "Lift", "linked_risk_assessment_id": risk["id"]}, headers=author)

        assert client.delete(f"{BASE}/{doc['id']}/risks/{risk['id']}", headers=author).status_code == 204
        step = client.get(f"{BASE}/{doc['id']}", headers=author).get_json()["method_steps"][0]
        assert step["linked_risk_assessment_id"] is None


class TestWorkflow:
    def test_submit_requires_risk_and_step(self, client, author):
        doc = _document(client, author)
        assert client.post(f"{BASE}/{doc['id']}/submit", headers=author).status_code == 400
        client.post(f"{BASE}/{doc['id']}/risks", json=RISK, headers=author)
        assert client.post(f"{BASE}/{doc['id']}/submit", headers=author).status_code == 400

    def test_approve_then_locked(self, client, author, reviewer):
        doc = _ready_document(client, author)
        assert client.post(f"{BASE}/{doc['id']}/submit", headers=author).status_code == 200

        res = client.post(f"{BASE}/{doc['id']}/approve", json={"comments": "Good to go"}, headers=reviewer)
        assert res.status_code == 200
        body = res.get_json()
        assert body["status"] == "Approved"
        assert body["approved_by"] == body["reviewed_by"]
        assert body["approval_comments"] == "Good to go"

        res = client.post(f"{BASE}/{doc['id']}/steps", json={"step_title": "Late"}, headers=author)
        assert res.status_code == 400

    def test_reject_requires_comments_and_allows_resubmit(self, client, author, reviewer):
        doc = _ready_document(client, author)
        client.post(f"{BASE}/{doc['id']}/submit", headers=author)

        assert client.post(f"{BASE}/{doc['id']}/reject", json={}, headers=reviewer).status_code == 400
        res = client.post(f"{BASE}/{doc['id']}/reject", json={"comments": "Add rescue plan"}, headers=reviewer)
        assert res.get_json()["status"] == "Rejected"

        # Rejected documents are editable again.
        res = client.post(f"{BASE}/{doc['id']}/steps", json={"step_title": "Rescue plan"}, headers=author)
        assert res.status_code == 201
        assert client.post(f"{BASE}/{doc['id']}/submit", headers=author).get_json()["status"] == "PendingReview"

    def test_author_cannot_approve(self, client, author):
        doc = _ready_document(client, author)
        client.post(f"{BASE}/{doc['id']}/submit", headers=author)
        assert client.post(f"{BASE}/{doc['id']}/approve", headers=author).status_code == 403

    def test_archive_needs_admin_and_approved(self, client, author, reviewer, auth_headers):
        admin = auth_headers("Rams.View", "Rams.Admin")
        doc = _ready_document(client, author)
        assert client.post(f"{BASE}/{doc['id']}/archive", headers=admin).status_code == 409

        client.post(f"{BASE}/{doc['id']}/submit", headers=author)
        client.post(f"{BASE}/{doc['id']}/approve", headers=reviewer)
        assert client.post(f"{BASE}/{doc['id']}/archive", headers=reviewer).status_code == 403
        res = client.post(f"{BASE}/{doc['id']}/archive", headers=admin)
        assert res.status_code == 200
        assert res.get_json()["status"] == "Archived"

    def test_only_draft_can_be_deleted(self, client, author):
        doc = _ready_document(client, author)
        client.post(f"{BASE}/{doc['id']}/submit", headers=author)
        assert client.delete(f"{BASE}/{doc['id']}", headers=author).status_code == 400
