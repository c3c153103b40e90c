"""
Scheduler API and CLI: job registry, manual runs, enable/disable.
"""

from datetime import date

import pytest

from siteops.models import db
from siteops.models.core import Company
from siteops.models.proposals import Proposal
from siteops.services.jwt_service import decode_access_token

BASE = "/api/v1/scheduler/jobs"

JOB_NAMES = [
    "expire_proposals", "mark_overdue_talks", "process_toolbox_schedules", "send_toolbox_talk_reminders",
]


@pytest.fixture()
def h(auth_headers):
    return auth_headers("Core.Admin")


class TestJobsApi:
    def test_list_registers_every_job(self, client, h):
        res = client.get(BASE, headers=h)
        assert res.status_code == 200
        body = res.get_json()
        assert [j["job_name"] for j in body["jobs"]] == JOB_NAMES
        assert body["total"] == 4
        assert all(j["db_record"]["is_enabled"] for j in body["jobs"])

    def test_job_status(self, client, h):
        client.get(BASE, headers=h)
        res = client.get(f"{BASE}/mark_overdue_talks", headers=h)
        assert res.status_code == 200
        assert res.get_json()["schedule_config"]["description"] == "Daily at 00:30"
        assert client.get(f"{BASE}/nightly_backup", headers=h).status_code == 404

    def test_run_job(self, client, h):
        res = client.post(f"{BASE}/mark_overdue_talks/run", headers=h)
        assert res.status_code == 200
        body = res.get_json()
        assert body["status"] == "success"
        assert body["result"] == {"talks_marked_overdue": 0}

        status = client.get(f"{BASE}/mark_overdue_talks", headers=h).get_json()
        assert status["run_count"] == 1
        assert status["last_run_status"] == "success"

    def test_run_unknown_job(self, client, h):
        assert client.post(f"{BASE}/nightly_backup/run", headers=h).status_code == 404

    def test_disabled_job_is_skipped_unless_forced(self, client, h):
        res = client.patch(f"{BASE}/expire_proposals/toggle", json={"enabled": False}, headers=h)
        assert res.status_code == 200
        assert res.get_json()["status"] == "paused"

        skipped = client.post(f"{BASE}/expire_proposals/run", headers=h).get_json()
        assert skipped["status"] == "skipped"

        forced = client.post(f"{BASE}/expire_proposals/run", json={"force": True}, headers=h).get_json()
        assert forced["status"] == "success"
        assert forced["result"] == {"proposals_expired": 0}

        client.patch(f"{BASE}/expire_proposals/toggle", json={"enabled": True}, headers=h)
        assert client.get(f"{BASE}/expire_proposals", headers=h).get_json()["status"] == "active"

    @pytest.mark.parametrize("body", [{}, {"enabled": "yes"}, {"enabled": 1}])
    def test_toggle_needs_boolean(self, client, h, body):
        assert client.patch(f"{BASE}/expire_proposals/toggle", json=body, headers=h).status_code == 400

    def test_toggle_unknown_job(self, client, h):
        res = client.patch(f"{BASE}/nightly_backup/toggle", json={"enabled": False}, headers=h)
        assert res.status_code == 404

    def test_admin_permission_required(self, client, auth_headers):
        res = client.get(BASE, headers=auth_headers("Core.ManageSites"))
        assert res.status_code == 403

    def test_expire_job_changes_proposals(self, client, h, default_tenant):
        company = Company(tenant_id=default_tenant.id, company_code="OLD", company_name="Old Client Ltd")
        db.session.add(company)
        db.session.flush()
        db.session.add(Proposal(
            tenant_id=default_tenant.id, proposal_number="PROP-2020-0001", company_id=company.id,
            project_name="Old quote", proposal_date=date(2020, 1, 1), valid_until_date=date(2020, 1, 31),
            status="Submitted",
        ))
        db.session.commit()
        body = client.post(f"{BASE}/expire_proposals/run", headers=h).get_json()
        assert body["result"] == {"proposals_expired": 1}


class TestCli:
    def test_issue_token(self, app, make_user, default_tenant):
        user = make_user(email="foreman@example.com")
        result = app.test_cli_runner().invoke(
            args=["issue-token", "Foreman@Example.com", "--tenant-id", str(default_tenant.id)],
        )
        assert result.exit_code == 0, result.output
        payload = decode_access_token(result.output.strip())
        assert payload["sub"] == str(user.id)
        assert payload["tenant_id"] == default_tenant.id

    def test_issue_token_unknown_user(self, app, default_tenant):
        result = app.test_cli_runner().invoke(
            args=["issue-token", "nobody@example.com", "--tenant-id", str(default_tenant.id)],
        )
        assert result.exit_code != 0
        assert "No user nobody@example.com" in result.output

    def test_run_job(self, app):
        result = app.test_cli_runner().invoke(args=["run-job", "mark_overdue_talks"])
        assert result.exit_code == 0, result.output
        assert result.output.startswith("mark_overdue_talks: success")

    def test_run_unknown_job(self, app):
        result = app.test_cli_runner().invoke(args=["run-job", "nightly_backup"])
        assert result.exit_code != 0
        assert "Unknown job" in result.output
