"""
Toolbox talk library, settings and schedule processing.

Processing a schedule creates one ScheduledTalk per unprocessed
assignment. Once-off schedules then complete; Weekly / Monthly /
Annually schedules advance next_run_date by exactly one interval until
the end date is passed.
"""

from datetime import date, timedelta

import pytest

from siteops.models import db
from siteops.models.core import Employee
from siteops.models.toolbox import (
    ScheduledTalk,
    ToolboxTalk,
    ToolboxTalkSchedule,
    ToolboxTalkSection,
)
from siteops.services import toolbox_schedule_service
from siteops.services.toolbox_schedule_service import next_occurrence

BASE = "/api/v1/toolbox"

SCHEDULER = ("ToolboxTalks.View", "ToolboxTalks.Schedule", "ToolboxTalks.ViewReports")


# ═════════════════════════════════════════════════════════════════════════════
# ORM Helper Factories
# ═════════════════════════════════════════════════════════════════════════════


def _employee(tenant, code, language=None, active=True):
    e = Employee(tenant_id=tenant.id, employee_code=code, first_name="Emp", last_name=code,
                 preferred_language=language, is_active=active)
    db.session.add(e)
    db.session.commit()
    return e


def _talk(tenant, title="Manual Handling", active=True, sections=2):
    talk = ToolboxTalk(tenant_id=tenant.id, title=title, is_active=active, requires_quiz=False,
                       minimum_video_watch_percent=90)
    for n in range(1, sections + 1):
        talk.sections.append(ToolboxTalkSection(section_number=n, title=f"Part {n}", content="..."))
    db.session.add(talk)
    db.session.commit()
    return talk


def _schedule(tenant, talk, employees, frequency="Once", scheduled=date(2026, 1, 5), end=None,
              assign_all=False):
    return toolbox_schedule_service.create_schedule(tenant.id, {
        "toolbox_talk_id": talk.id,
        "scheduled_date": scheduled.isoformat(),
        "end_date": end.isoformat() if end else None,
        "frequency": frequency,
        "assign_to_all_employees": assign_all,
        "employee_ids": [e.id for e in employees],
    })


@pytest.fixture()
def headers(auth_headers):
    return auth_headers(*SCHEDULER)


# ═════════════════════════════════════════════════════════════════════════════
# Recurrence arithmetic
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.parametrize("current,frequency,expected", [
    (date(2026, 1, 5), "Weekly", date(2026, 1, 12)),
    (date(2026, 12, 28), "Weekly", date(2027, 1, 4)),
    (date(2026, 1, 15), "Monthly", date(2026, 2, 15)),
    (date(2026, 1, 31), "Monthly", date(2026, 2, 28)),
    (date(2028, 1, 31), "Monthly", date(2028, 2, 29)),
    (date(2026, 12, 31), "Monthly", date(2027, 1, 31)),
    (date(2026, 3, 1), "Annually", date(2027, 3, 1)),
    (date(2028, 2, 29), "Annually", date(2029, 2, 28)),
])
def test_next_occurrence(current, frequency, expected):
    assert next_occurrence(current, frequency) == expected


def test_once_does_not_recur():
    with pytest.raises(ValueError):
        next_occurrence(date(2026, 1, 1), "Once")


# ═════════════════════════════════════════════════════════════════════════════
# Talk library & settings
# ═════════════════════════════════════════════════════════════════════════════


class TestTalkLibrary:
    def test_create_talk_with_sections_and_quiz(self, client, auth_headers):
        h = auth_headers("ToolboxTalks.View", "ToolboxTalks.Create")
        res = client.post(f"{BASE}/talks", json={
            "title": "Working at Height",
            "requires_quiz": True,
            "passing_score": 75,
            "sections": [
                {"title": "Ladders", "content": "Three points of contact"},
                {"title": "Scaffolds", "content": "Check the tag"},
            ],
            "questions": [
                {"question_text": "Points of contact?", "question_type": "ShortAnswer",
                 "correct_answer": "3", "points": 1},
            ],
        }, headers=h)
        assert res.status_code == 201
        body = res.get_json()
        assert [s["section_number"] for s in body["sections"]] == [1, 2]
        assert body["questions"][0]["question_number"] == 1
        assert body["section_count"] == 2

    def test_quiz_requires_passing_score(self, client, auth_headers):
        h = auth_headers("ToolboxTalks.Create")
        res = client.post(f"{BASE}/talks", json={"title": "Quiz", "requires_quiz": True}, headers=h)
        assert res.status_code == 400

    def test_duplicate_section_numbers_rejected(self, client, auth_headers):
        h = auth_headers("ToolboxTalks.Create")
        res = client.post(f"{BASE}/talks", json={"title": "Dup", "sections": [
            {"title": "A", "content": "a", "section_number": 1},
            {"title": "B", "content": "b", "section_number": 1},
        ]}, headers=h)
        assert res.status_code == 400

    def test_new_section_numbered_after_kept_ones(self, client, auth_headers, default_tenant):
        talk = _talk(default_tenant, sections=2)
        second = next(s for s in talk.sections if s.section_number == 2)
        h = auth_headers("ToolboxTalks.View", "ToolboxTalks.Edit")
        res = client.put(f"{BASE}/talks/{talk.id}", json={"sections": [
            {"id": second.id},
            {"title": "Part 3", "content": "New material"},
        ]}, headers=h)
        assert res.status_code == 200, res.get_json()
        numbers = {s["title"]: s["section_number"] for s in res.get_json()["sections"]}
        assert numbers == {"Part 2": 2, "Part 3": 3}

    def test_talk_with_live_schedule_cannot_be_deleted(self, client, auth_headers, default_tenant):
        talk = _talk(default_tenant)
        _schedule(default_tenant, talk, [_employee(default_tenant, "E1")])
        db.session.commit()
        h = auth_headers("ToolboxTalks.Delete")
        assert client.delete(f"{BASE}/talks/{talk.id}", headers=h).status_code == 400

    def test_settings_created_with_defaults(self, client, headers):
        res = client.get(f"{BASE}/settings", headers=headers)
        assert res.status_code == 200
        assert res.get_json()["default_due_days"] == 7

    def test_settings_update_needs_admin(self, client, headers, auth_headers):
        assert client.put(f"{BASE}/settings", json={"default_due_days": 3}, headers=headers).status_code == 403
        admin = auth_headers("ToolboxTalks.Admin")
        assert client.put(f"{BASE}/settings", json={"default_due_days": 0}, headers=admin).status_code == 400
        res = client.put(f"{BASE}/settings", json={"default_due_days": 3}, headers=admin)
        assert res.status_code == 200
        assert res.get_json()["default_due_days"] == 3


# ═════════════════════════════════════════════════════════════════════════════
# Schedules
# ═════════════════════════════════════════════════════════════════════════════


class TestScheduleCrud:
    def test_create_targets_explicit_employees(self, client, headers, default_tenant):
        talk = _talk(default_tenant)
        e1, e2 = _employee(default_tenant, "E1"), _employee(default_tenant, "E2")
        res = client.post(f"{BASE}/schedules", json={
            "toolbox_talk_id": talk.id, "scheduled_date": "2026-02-02",
            "employee_ids": [e1.id, e2.id, e1.id],
        }, headers=headers)

        assert res.status_code == 201
        body = res.get_json()
        assert body["status"] == "Draft"
        assert body["frequency"] == "Once"
        assert body["next_run_date"] == "2026-02-02"
        assert body["assignment_count"] == 2
        assert sorted(a["employee_id"] for a in body["assignments"]) == [e1.id, e2.id]

    def test_inactive_employee_rejected(self, client, headers, default_tenant):
        talk = _talk(default_tenant)
        gone = _employee(default_tenant, "OLD", active=False)
        res = client.post(f"{BASE}/schedules", json={
            "toolbox_talk_id": talk.id, "scheduled_date": "2026-02-02", "employee_ids": [gone.id],
        }, headers=headers)
        assert res.status_code == 400
        assert res.get_json()["details"] == {"employee_ids": [gone.id]}

    def test_targets_required(self, client, headers, default_tenant):
        talk = _talk(default_tenant)
        res = client.post(f"{BASE}/schedules", json={
            "toolbox_talk_id": talk.id, "scheduled_date": "2026-02-02",
        }, headers=headers)
        assert res.status_code == 400

    def test_inactive_talk_rejected(self, client, headers, default_tenant):
        talk = _talk(default_tenant, active=False)
        e = _employee(default_tenant, "E1")
        res = client.post(f"{BASE}/schedules", json={
            "toolbox_talk_id": talk.id, "scheduled_date": "2026-02-02", "employee_ids": [e.id],
        }, headers=headers)
        assert res.status_code == 400

    def test_unknown_frequency_rejected(self, client, headers, default_tenant):
        talk = _talk(default_tenant)
        e = _employee(default_tenant, "E1")
        res = client.post(f"{BASE}/schedules", json={
            "toolbox_talk_id": talk.id, "scheduled_date": "2026-02-02", "frequency": "Daily",
            "employee_ids": [e.id],
        }, headers=headers)
        assert res.status_code == 400

    def test_update_keeps_staying_employees(self, client, headers, default_tenant):
        talk = _talk(default_tenant)
        e1, e2, e3 = (_employee(default_tenant, c) for c in ("E1", "E2", "E3"))
        schedule = _schedule(default_tenant, talk, [e1, e2])
        db.session.commit()
        res = client.put(f"{BASE}/schedules/{schedule.id}", json={"employee_ids": [e2.id, e3.id]},
                         headers=headers)
        assert res.status_code == 200
        assert res.get_json()["assignment_count"] == 2

    def test_cancelled_schedule_cannot_be_processed(self, client, headers, default_tenant):
        talk = _talk(default_tenant)
        schedule = _schedule(default_tenant, talk, [_employee(default_tenant, "E1")])
        db.session.commit()
        assert client.post(f"{BASE}/schedules/{schedule.id}/cancel", headers=headers).status_code == 200

        res = client.post(f"{BASE}/schedules/{schedule.id}/process", headers=headers)
        assert res.status_code == 400
        assert res.get_json()["error"] == "Cannot process a cancelled schedule."
        assert client.post(f"{BASE}/schedules/{schedule.id}/cancel", headers=headers).status_code == 409


class TestProcessing:
    def test_once_off_creates_talks_and_completes(self, client, headers, default_tenant):
        talk = _talk(default_tenant, sections=3)
        e1 = _employee(default_tenant, "E1", language="pl")
        e2 = _employee(default_tenant, "E2")
        schedule = _schedule(default_tenant, talk, [e1, e2])
        db.session.commit()

        res = client.post(f"{BASE}/schedules/{schedule.id}/process", headers=headers)
        assert res.status_code == 200
        assert res.get_json() == {"talks_created": 2, "schedule_completed": True, "next_run_date": None}

        talks = ScheduledTalk.query.filter_by(schedule_id=schedule.id).order_by(ScheduledTalk.employee_id).all()
        assert [t.status for t in talks] == ["Pending", "Pending"]
        assert [t.language_code for t in talks] == ["pl", "en"]
        assert talks[0].required_date == date.today()
        assert talks[0].due_date == date.today() + timedelta(days=7)
        assert len(talks[0].section_progress) == 3

        again = client.post(f"{BASE}/schedules/{schedule.id}/process", headers=headers)
        assert again.status_code == 400
        assert again.get_json()["error"] == "Schedule has already been completed."

    def test_due_days_follow_tenant_settings(self, client, headers, auth_headers, default_tenant):
        client.put(f"{BASE}/settings", json={"default_due_days": 3},
                   headers=auth_headers("ToolboxTalks.Admin"))
        talk = _talk(default_tenant)
        schedule = _schedule(default_tenant, talk, [_employee(default_tenant, "E1")])
        db.session.commit()

        client.post(f"{BASE}/schedules/{schedule.id}/process", headers=headers)
        st = ScheduledTalk.query.filter_by(schedule_id=schedule.id).one()
        assert st.due_date == date.today() + timedelta(days=3)

    def test_weekly_advances_one_interval(self, default_tenant):
        talk = _talk(default_tenant)
        schedule = _schedule(default_tenant, talk, [_employee(default_tenant, "E1")], frequency="Weekly")

        result = toolbox_schedule_service.process_schedule(default_tenant.id, schedule.id, today=date(2026, 1, 5))
        db.session.commit()

        assert result == {"talks_created": 1, "schedule_completed": False, "next_run_date": "2026-01-12"}
        assert schedule.status == "Active"
        assert all(not a.is_processed for a in schedule.assignments)

        # A late run still only moves one interval.
        toolbox_schedule_service.process_schedule(default_tenant.id, schedule.id, today=date(2026, 2, 1))
        assert schedule.next_run_date == date(2026, 1, 19)
        assert ScheduledTalk.query.filter_by(schedule_id=schedule.id).count() == 2

    def test_recurring_completes_past_end_date(self, default_tenant):
        talk = _talk(default_tenant)
        schedule = _schedule(default_tenant, talk, [_employee(default_tenant, "E1")], frequency="Monthly",
                             scheduled=date(2026, 1, 31), end=date(2026, 3, 15))

        first = toolbox_schedule_service.process_schedule(default_tenant.id, schedule.id, today=date(2026, 1, 31))
        assert first["next_run_date"] == "2026-02-28"
        second = toolbox_schedule_service.process_schedule(default_tenant.id, schedule.id, today=date(2026, 2, 28))
        assert second == {"talks_created": 1, "schedule_completed": True, "next_run_date": None}
        assert schedule.status == "Completed"
        assert schedule.next_run_date is None

    def test_assign_to_all_picks_up_staff_changes(self, default_tenant):
        e1 = _employee(default_tenant, "E1")
        e2 = _employee(default_tenant, "E2")
        talk = _talk(default_tenant)
        schedule = _schedule(default_tenant, talk, [], frequency="Weekly", assign_all=True)
        first = toolbox_schedule_service.process_schedule(default_tenant.id, schedule.id, today=date(2026, 1, 5))
        db.session.commit()
        assert first["talks_created"] == 2

        e2.is_active = False
        e3 = _employee(default_tenant, "E3")
        second = toolbox_schedule_service.process_schedule(default_tenant.id, schedule.id, today=date(2026, 1, 12))
        db.session.commit()

        assert second["talks_created"] == 2
        latest = ScheduledTalk.query.filter_by(schedule_id=schedule.id, required_date=date(2026, 1, 12)).all()
        assert sorted(t.employee_id for t in latest) == [e1.id, e3.id]

    def test_process_due_schedules_across_tenants(self, default_tenant, other_tenant):
        due_here = _schedule(default_tenant, _talk(default_tenant), [_employee(default_tenant, "E1")],
                             scheduled=date(2026, 1, 5))
        due_there = _schedule(other_tenant, _talk(other_tenant), [_employee(other_tenant, "X1")],
                              scheduled=date(2026, 1, 4))
        future = _schedule(default_tenant, _talk(default_tenant, "Later"), [_employee(default_tenant, "E2")],
                           scheduled=date(2026, 2, 1))
        db.session.commit()

        summary = toolbox_schedule_service.process_due_schedules(today=date(2026, 1, 5))

        assert summary == {"due": 2, "processed": 2, "failed": 0, "talks_created": 2, "schedules_completed": 2}
        assert db.session.get(ToolboxTalkSchedule, due_here.id).status == "Completed"
        assert db.session.get(ToolboxTalkSchedule, due_there.id).status == "Completed"
        assert db.session.get(ToolboxTalkSchedule, future.id).status == "Draft"

    def test_process_needs_schedule_permission(self, client, auth_headers, default_tenant):
        talk = _talk(default_tenant)
        schedule = _schedule(default_tenant, talk, [_employee(default_tenant, "E1")])
        db.session.commit()
        h = auth_headers("ToolboxTalks.View")
        assert client.post(f"{BASE}/schedules/{schedule.id}/process", headers=h).status_code == 403
