"""
Scheduler for the weekly plan adaptation
Can run as a separate service or inside the app process
"""

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from datetime import datetime, timedelta
from fitplan import create_app
from fitplan.adaptation import run_weekly_adaptation
from fitplan.models import AdaptationRun, FitnessPlan
from config import Config
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

MISSED_RUN_POLICIES = ('skip', 'catch_up')
CATCH_UP_AFTER = timedelta(days=7)


def run_adaptation(app=None, trigger='scheduled'):
    """Adapt every user with an active plan"""
    logger.info("Starting weekly adaptation (%s)...", trigger)
    app = app or create_app()
    results = run_weekly_adaptation(app, trigger=trigger)
    logger.info("Adaptation completed: %d users, %d processed, %d failed",
                results['total_users'], results['processed_users'], results['failed_users'])
    return results


def needs_catch_up(app, now=None):
    """True when the last finished run is over a week old, or there was none while plans are active."""
    now = now or datetime.utcnow()
    with app.app_context():
        last = AdaptationRun.query.filter(
            AdaptationRun.finished_at.isnot(None)
        ).order_by(AdaptationRun.finished_at.desc()).first()
        if last:
            return now - last.finished_at > CATCH_UP_AFTER
        return FitnessPlan.query.filter_by(status='active').count() > 0


def start_scheduler(app=None, config_class=Config, paused=False):
    """Start the scheduler"""
    app = app or create_app(config_class)
    policy = app.config.get('ADAPTATION_MISSED_RUN_POLICY', 'skip')
    if policy not in MISSED_RUN_POLICIES:
        raise ValueError(f"ADAPTATION_MISSED_RUN_POLICY must be one of {MISSED_RUN_POLICIES}, got {policy!r}")
    timezone = app.config.get('ADAPTATION_TIMEZONE', 'UTC')

    scheduler = BackgroundScheduler(timezone=timezone)

    # Once a week, Monday 6:00 by default. coalesce folds a backlog into one run.
    scheduler.add_job(
        run_adaptation,
        CronTrigger(
            day_of_week=app.config.get('ADAPTATION_DAY_OF_WEEK', 'mon'),
            hour=app.config.get('ADAPTATION_HOUR', 6),
            minute=0,
            timezone=timezone,
        ),
        args=[app],
        id='weekly_adaptation',
        name='Weekly Plan Adaptation',
        misfire_grace_time=None if policy == 'catch_up' else app.config.get('ADAPTATION_MISFIRE_GRACE_SECONDS', 3600),
        coalesce=True,
        max_instances=1,
    )

    if policy == 'catch_up' and needs_catch_up(app):
        logger.info("Last adaptation run is over a week old, catching up now")
        scheduler.add_job(
            run_adaptation,
            'date',
            args=[app, 'catch_up'],
            id='adaptation_catch_up',
            name='Missed Weekly Adaptation',
        )

    scheduler.start(paused=paused)
    logger.info("Scheduler started (missed-run policy: %s)", policy)
    return scheduler


if __name__ == '__main__':
    # Manual run
    run_adaptation(trigger='manual')
