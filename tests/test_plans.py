from datetime import date, timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from fitplan.errors import NotFoundError, PermissionDenied, PreconditionError, SafetyRejection, ValidationError
from fitplan.models import db, ActivityLog, FitnessPlan


def _first_workout(plan):
    return plan.get_week(1).workouts[0]


# ---------- creation & listing ----------

def test_create_plan_is_empty_draft(user, service, plan_params):
    plan = service.create_plan(user.id, dict(plan_params, name='My plan'))
    assert plan.status == 'draft'
    assert plan.name == 'My plan'
    assert plan.weeks == []
    assert plan.rest_days_per_week == 4
    assert plan.is_generated is False


def test_create_plan_rejects_past_start(user, service, plan_params):
    plan_params['start_date'] = (date.today() - timedelta(days=3)).isoformat()
    with pytest.raises(ValidationError):
        service.create_plan(user.id, plan_params)


def test_list_plans_filters_and_paginates(user, service, plan_params):
    service.create_plan(user.id, dict(plan_params, plan_type='endurance', duration_weeks=4))
    service.create_plan(user.id, dict(plan_params, plan_type='muscle_gain', duration_weeks=12))
    service.create_plan(user.id, dict(plan_params, plan_type='muscle_gain', duration_weeks=6,
                                      available_equipment=['dumbbells']))

    result = service.list_plans(user.id, {'plan_type': 'muscle_gain'})
    assert result['total'] == 2

    result = service.list_plans(user.id, {'min_duration': 5}, sort_by='duration_weeks', sort_order='asc')
    assert [p.duration_weeks for p in result['plans']] == [6, 12]

    result = service.list_plans(user.id, {'equipment': 'dumbbells'})
    assert result['total'] == 1

    page = service.list_plans(user.id, limit=1, offset=1)
    assert page['total'] == 3 and len(page['plans']) == 1


def test_list_plans_rejects_unknown_sort(user, service):
    with pytest.raises(ValidationError):
        service.list_plans(user.id, sort_by='password')


def test_get_plan_checks_owner(draft_plan, make_user, service):
    stranger = make_user()
    with pytest.raises(PermissionDenied):
        service.get_plan(draft_plan.id, stranger.id)
    with pytest.raises(NotFoundError):
        service.get_plan(99999)


# ---------- lifecycle ----------

def test_activation_pauses_previous_active_plan(user, service, generator, plan_params):
    first = generator.generate_fitness_plan(user.id, plan_params)
    second = generator.generate_fitness_plan(user.id, plan_params)

    service.activate_plan(first.id, user.id)
    service.activate_plan(second.id, user.id)
    db.session.expire_all()

    assert db.session.get(FitnessPlan, first.id).status == 'paused'
    assert db.session.get(FitnessPlan, second.id).status == 'active'
    assert FitnessPlan.query.filter_by(user_id=user.id, status='active').count() == 1


def test_database_rejects_two_active_plans(user, plan_params, generator):
    first = generator.generate_fitness_plan(user.id, plan_params)
    second = generator.generate_fitness_plan(user.id, plan_params)
    first.status = 'active'
    second.status = 'active'
    with pytest.raises(IntegrityError):
        db.session.commit()
    db.session.rollback()


def test_illegal_transitions(active_plan, service):
    with pytest.raises(PreconditionError):
        service.resume_plan(active_plan.id, active_plan.user_id)

    service.complete_plan(active_plan.id, active_plan.user_id)
    assert active_plan.completion_percentage == 100.0
    for action in (service.activate_plan, service.pause_plan, service.cancel_plan):
        with pytest.raises(PreconditionError):
            action(active_plan.id, active_plan.user_id)


def test_pause_and_resume(active_plan, service):
    service.pause_plan(active_plan.id, active_plan.user_id)
    assert active_plan.status == 'paused'
    assert active_plan.paused_at is not None
    service.resume_plan(active_plan.id, active_plan.user_id)
    assert active_plan.status == 'active'


def test_draft_cannot_be_paused(draft_plan, service):
    with pytest.raises(PreconditionError):
        service.pause_plan(draft_plan.id, draft_plan.user_id)


def test_expired_plan_cannot_be_activated(draft_plan, service):
    draft_plan.start_date = date.today() - timedelta(days=100)
    draft_plan.end_date = date.today() - timedelta(days=45)
    db.session.commit()
    with pytest.raises(PreconditionError):
        service.activate_plan(draft_plan.id, draft_plan.user_id)


# ---------- update & delete ----------

def test_update_draft_revalidates_and_trims_weeks(draft_plan, service):
    plan = service.update_plan(draft_plan.id, draft_plan.user_id, {'duration_weeks': 6, 'workouts_per_week': 4})
    assert plan.duration_weeks == 6
    assert len(plan.weeks) == 6
    assert plan.rest_days_per_week == 3
    assert plan.end_date == plan.start_date + timedelta(days=41)


def test_update_rejects_invalid_values(draft_plan, service):
    with pytest.raises(ValidationError):
        service.update_plan(draft_plan.id, draft_plan.user_id, {'workouts_per_week': 0})
    assert draft_plan.workouts_per_week == 3


def test_active_plan_only_accepts_pause(active_plan, service):
    with pytest.raises(PreconditionError):
        service.update_plan(active_plan.id, active_plan.user_id, {'name': 'Renamed'})
    plan = service.update_plan(active_plan.id, active_plan.user_id, {'status': 'paused'})
    assert plan.status == 'paused'
    plan = service.update_plan(plan.id, plan.user_id, {'name': 'Renamed'})
    assert plan.name == 'Renamed'


def test_delete_active_plan_rejected(active_plan, service):
    with pytest.raises(PreconditionError):
        service.delete_plan(active_plan.id, active_plan.user_id)


def test_delete_keeps_activity_logs(active_plan, service):
    workout = _first_workout(active_plan)
    service.record_progress(active_plan.id, active_plan.user_id, {'workout_id': workout.id})
    plan_id = active_plan.id
    service.cancel_plan(plan_id, active_plan.user_id)
    service.delete_plan(plan_id, active_plan.user_id)

    assert db.session.get(FitnessPlan, plan_id) is None
    log = ActivityLog.query.one()
    assert log.plan_id is None and log.workout_id is None


# ---------- progress ----------

def test_progress_requires_active_plan(draft_plan, service):
    with pytest.raises(PreconditionError):
        service.record_progress(draft_plan.id, draft_plan.user_id, {'workout_id': _first_workout(draft_plan).id})


def test_record_progress_updates_counters_and_logs(active_plan, service):
    workout = _first_workout(active_plan)
    exercise = workout.exercises[0]
    service.record_progress(active_plan.id, active_plan.user_id, {
        'workout_id': workout.id,
        'duration_minutes': 40,
        'intensity': 7,
        'calories': 250,
        'satisfaction': 4,
        'exercises': [{'id': exercise.id, 'reps': [10, 10], 'rpe': 6}],
    })

    assert workout.status == 'completed'
    assert exercise.status == 'completed'
    assert active_plan.total_workouts_completed == 1
    assert active_plan.total_minutes_exercised == 40
    assert active_plan.total_calories_burned == 250
    assert active_plan.average_satisfaction == 4
    assert active_plan.completion_percentage == round(100.0 / 24, 1)

    week = active_plan.get_week(1)
    assert week.completed_workouts == 1
    assert week.adherence_score == pytest.approx(33.3)

    log = ActivityLog.query.one()
    assert (log.user_id, log.plan_id, log.workout_id) == (active_plan.user_id, active_plan.id, workout.id)
    assert log.completed and log.intensity == 7


def test_skip_logs_incomplete_activity(active_plan, service):
    workout = _first_workout(active_plan)
    service.record_progress(active_plan.id, active_plan.user_id,
                            {'workout_id': workout.id, 'completed': False, 'skip_reason': 'travel'})
    assert workout.status == 'skipped'
    assert workout.skip_reason == 'travel'
    assert active_plan.total_workouts_completed == 0
    assert ActivityLog.query.one().completed is False


def test_workout_cannot_be_completed_twice(active_plan, service):
    workout = _first_workout(active_plan)
    service.record_progress(active_plan.id, active_plan.user_id, {'workout_id': workout.id})
    with pytest.raises(PreconditionError):
        service.record_progress(active_plan.id, active_plan.user_id, {'workout_id': workout.id})
    assert active_plan.total_workouts_completed == 1


def test_progress_rejects_out_of_range_values(active_plan, service):
    workout = _first_workout(active_plan)
    with pytest.raises(ValidationError):
        service.record_progress(active_plan.id, active_plan.user_id, {'workout_id': workout.id, 'intensity': 11})
    assert workout.status == 'planned'


def test_workout_from_other_plan_not_found(active_plan, service, make_user, generator, plan_params):
    other = generator.generate_fitness_plan(make_user().id, plan_params)
    with pytest.raises(NotFoundError):
        service.record_progress(active_plan.id, active_plan.user_id,
                                {'workout_id': _first_workout(other).id})


def test_progress_summary(active_plan, service):
    workout = _first_workout(active_plan)
    exercise = workout.exercises[0]
    service.record_progress(active_plan.id, active_plan.user_id, {
        'workout_id': workout.id,
        'exercises': [{'id': exercise.id, 'reps': [12, 12], 'weights': [20, 20], 'rpe': 5}],
    })
    summary = service.progress_summary(active_plan.id, active_plan.user_id)
    assert summary['current_week'] == 1
    assert summary['total_workouts_completed'] == 1
    assert summary['total_planned_workouts'] == 24
    assert summary['weight_trends'][exercise.exercise_name] == [20]
    assert exercise.exercise_name in summary['progression_suggestions']
    assert summary['next_week']['week_number'] == 2


# ---------- sessions ----------

def test_workout_start_requires_active_plan(draft_plan, service):
    with pytest.raises(PreconditionError):
        service.workout_action(_first_workout(draft_plan).id, draft_plan.user_id, 'start')


def test_workout_modify_records_changes(draft_plan, service):
    workout = service.workout_action(_first_workout(draft_plan).id, draft_plan.user_id, 'modify',
                                     {'name': 'Morning session', 'day_of_week': 2})
    assert workout.status == 'modified'
    assert workout.name == 'Morning session'
    assert workout.day_of_week == 2
    assert workout.modifications[-1]['changes']['day_of_week'] == 2


def test_exercise_modify_is_safety_checked(draft_plan, service):
    exercise = _first_workout(draft_plan).exercises[0]
    with pytest.raises(SafetyRejection):
        service.exercise_action(exercise.id, draft_plan.user_id, 'modify', {'target_sets': 15})
    modified = service.exercise_action(exercise.id, draft_plan.user_id, 'modify', {'target_sets': 2})
    assert modified.target_sets == 2
    assert modified.status == 'modified'


def test_unknown_actions(draft_plan, service):
    workout = _first_workout(draft_plan)
    with pytest.raises(ValidationError):
        service.workout_action(workout.id, draft_plan.user_id, 'teleport')
    with pytest.raises(ValidationError):
        service.exercise_action(workout.exercises[0].id, draft_plan.user_id, 'teleport')


# ---------- cloning, adaptation & stats ----------

def test_clone_copies_structure_with_fresh_progress(active_plan, service):
    service.record_progress(active_plan.id, active_plan.user_id, {'workout_id': _first_workout(active_plan).id})
    start = date.today() + timedelta(days=7)
    clone = service.clone_plan(active_plan.id, active_plan.user_id, {'start_date': start.isoformat()})

    assert clone.status == 'draft'
    assert clone.cloned_from_id == active_plan.id
    assert clone.start_date == start
    assert clone.total_workouts_completed == 0
    assert clone.total_planned_workouts() == active_plan.total_planned_workouts()
    for original, copy in zip(active_plan.weeks, clone.weeks):
        assert copy.start_date == original.start_date + timedelta(days=7)
        assert [w.name for w in copy.workouts] == [w.name for w in original.workouts]
        assert all(w.status == 'planned' for w in copy.workouts)
        assert copy.adherence_score is None


def test_clone_permission(draft_plan, make_user, service):
    stranger = make_user()
    with pytest.raises(PermissionDenied):
        service.clone_plan(draft_plan.id, stranger.id)

    draft_plan.is_template = True
    draft_plan.is_public = True
    db.session.commit()
    clone = service.clone_plan(draft_plan.id, stranger.id)
    assert clone.user_id == stranger.id


def test_adapt_week_records_history(draft_plan, service):
    week = service.adapt_week(draft_plan.id, draft_plan.user_id, 3, {'workouts_per_week': 2})
    assert len(week.workouts) == 2
    assert draft_plan.adaptation_history[-1]['week_number'] == 3
    assert draft_plan.adaptation_history[-1]['trigger'] == 'manual'


def test_adapt_week_keeps_logged_progress(active_plan, service):
    workout = _first_workout(active_plan)
    service.record_progress(active_plan.id, active_plan.user_id, {'workout_id': workout.id, 'intensity': 6})

    week = service.adapt_week(active_plan.id, active_plan.user_id, 1, {'adjust_volume': -10})

    log = ActivityLog.query.one()
    assert log.workout_id is None
    assert log.plan_id == active_plan.id
    assert log.completed is True
    assert week.workouts
    assert week.completed_workouts == 0


def test_adapt_week_rejected_for_cancelled_plan(draft_plan, service):
    service.cancel_plan(draft_plan.id, draft_plan.user_id)
    with pytest.raises(PreconditionError):
        service.adapt_week(draft_plan.id, draft_plan.user_id, 2)


def test_validate_generated_plan(draft_plan, service):
    report = service.validate_plan(draft_plan.id, draft_plan.user_id)
    assert report['valid'] is True
    assert report['plan']['valid'] is True


def test_validate_exercise_parameters_uses_body_weight(service):
    result = service.validate_exercise_parameters(
        {'exercise_name': 'Squats', 'sets': 3, 'reps': 12, 'weight': 250, 'body_weight': 70}
    )
    assert result.valid
    assert any('very high relative to body weight' in w for w in result.warnings)

    with pytest.raises(ValidationError):
        service.validate_exercise_parameters({'sets': 3, 'reps': 10})


def test_stats(active_plan, service, plan_params):
    service.create_plan(active_plan.user_id, plan_params)
    stats = service.stats(active_plan.user_id)
    assert stats['total_plans'] == 2
    assert stats['by_status'] == {'active': 1, 'draft': 1}
    assert stats['by_type'] == {'general_fitness': 2}
