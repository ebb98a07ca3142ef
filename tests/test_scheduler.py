from datetime import datetime, timedelta

import pytest

from fitplan.models import db, AdaptationRun
from scheduler import needs_catch_up, start_scheduler


def _finished_run(days_ago):
    finished = datetime.utcnow() - timedelta(days=days_ago)
    db.session.add(AdaptationRun(status='success', started_at=finished, finished_at=finished))
    db.session.commit()


def test_no_catch_up_without_active_plans(app):
    assert needs_catch_up(app) is False


def test_catch_up_when_never_run(app, active_plan):
    assert needs_catch_up(app) is True


@pytest.mark.parametrize('days_ago, expected', [(2, False), (8, True)])
def test_catch_up_after_a_missed_week(app, active_plan, days_ago, expected):
    _finished_run(days_ago)
    assert needs_catch_up(app) is expected


def test_weekly_job_configuration(app):
    scheduler = start_scheduler(app, paused=True)
    try:
        job = scheduler.get_job('weekly_adaptation')
        assert job is not None
        assert job.coalesce is True
        assert job.max_instances == 1
        assert job.misfire_grace_time == 3600
        assert 'mon' in str(job.trigger)
        assert scheduler.get_job('adaptation_catch_up') is None
    finally:
        scheduler.shutdown(wait=False)


def test_catch_up_policy_adds_one_off_run(app, active_plan):
    app.config['ADAPTATION_MISSED_RUN_POLICY'] = 'catch_up'
    scheduler = start_scheduler(app, paused=True)
    try:
        assert scheduler.get_job('weekly_adaptation').misfire_grace_time is None
        assert scheduler.get_job('adaptation_catch_up') is not None
    finally:
        scheduler.shutdown(wait=False)


def test_unknown_policy_rejected(app):
    app.config['ADAPTATION_MISSED_RUN_POLICY'] = 'panic'
    with pytest.raises(ValueError):
        start_scheduler(app, paused=True)
