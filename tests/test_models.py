from datetime import date

import pytest

from fitplan.errors import PreconditionError, ValidationError
from fitplan.models import (
    FitnessPlan, FitnessPlanExercise, FitnessPlanWeek, FitnessPlanWorkout, overlapping_terms,
)


def _exercise(**kwargs):
    values = dict(exercise_name='Squats', status='planned', target_sets=3, target_reps_per_set=10,
                  actual_reps=[], actual_weights=[], actual_sets_completed=0)
    values.update(kwargs)
    return FitnessPlanExercise(**values)


def test_overlapping_terms_is_bidirectional():
    assert overlapping_terms(['knee'], ['Knee injury'])
    assert overlapping_terms(['lower back pain'], ['back'])
    assert not overlapping_terms(['shoulder'], ['knee'])
    assert not overlapping_terms(None, ['knee'])


def test_week_feedback_and_deload_signal(app):
    week = FitnessPlanWeek(week_number=2, adherence_score=90.0)
    week.provide_feedback(fatigue=4, soreness=4, motivation=3)
    assert not week.should_recommend_deload()
    assert week.intensity_adjustment() == 1.0

    week.provide_feedback(stress=5, comment='rough week')
    assert week.should_recommend_deload()
    assert week.intensity_adjustment() == 0.8
    assert week.user_feedback == 'rough week'

    with pytest.raises(ValidationError):
        week.provide_feedback(fatigue=6)


def test_week_feeling_fresh_steps_up(app):
    week = FitnessPlanWeek(week_number=1)
    week.provide_feedback(fatigue=1, motivation=5)
    assert week.intensity_adjustment() == 1.1


def test_week_progress_counts_workouts(app):
    week = FitnessPlanWeek(week_number=1)
    week.workouts = [
        FitnessPlanWorkout(name='A', day_of_week=1, status='completed'),
        FitnessPlanWorkout(name='B', day_of_week=3, status='skipped'),
        FitnessPlanWorkout(name='C', day_of_week=5, status='planned'),
    ]
    week.update_progress()
    assert week.target_workouts == 3
    assert week.completed_workouts == 1
    assert week.adherence_score == pytest.approx(33.3)
    assert week.is_completed is False


def test_workout_transitions_do_not_cascade(app):
    workout = FitnessPlanWorkout(name='Legs', day_of_week=3, status='planned')
    workout.exercises = [_exercise(), _exercise(exercise_name='Lunges')]
    assert workout.day_name == 'Wednesday'

    workout.exercises[0].start()
    workout.exercises[0].complete(reps=[10, 10, 10])
    assert workout.status == 'planned'
    assert workout.completion_rate() == 50.0

    workout.start()
    workout.complete(duration_minutes=40, intensity=7)
    assert workout.completion_percentage == 50.0
    assert workout.exercises[1].status == 'planned'
    with pytest.raises(PreconditionError):
        workout.skip('too late')


def test_add_set_and_volume(app):
    exercise = _exercise()
    exercise.start()
    for weight in (60, 60, 65):
        exercise.add_set(10, weight)
    assert exercise.actual_sets_completed == 3
    assert exercise.volume == pytest.approx(3 * 30 * (185 / 3))
    assert exercise.intensity_load == pytest.approx(exercise.volume * 5)

    exercise.complete(rpe=6)
    with pytest.raises(PreconditionError):
        exercise.add_set(10, 65)


def test_weight_progression_suggestions(app):
    easy = _exercise(status='completed', actual_reps=[10, 10, 10], actual_weights=[100, 100, 100],
                     actual_sets_completed=3, actual_rpe=6)
    assert easy.should_progress_weight()
    assert easy.progression_suggestion() == {
        'action': 'increase', 'weight_kg': 105.0, 'reason': 'All target reps completed with effort to spare',
    }

    light = _exercise(status='completed', actual_reps=[10, 10, 10], actual_weights=[20, 20, 20],
                      actual_sets_completed=3, difficulty_rating=2)
    assert light.progression_suggestion()['weight_kg'] == 22.5

    failed = _exercise(status='completed', actual_reps=[10, 8, 7], actual_weights=[50, 50, 50],
                       actual_sets_completed=3, actual_rpe=7)
    assert failed.should_reduce_weight()
    assert failed.progression_suggestion()['action'] == 'decrease'
    assert failed.progression_suggestion()['weight_kg'] == 45.0

    pending = _exercise(target_weight_kg=40)
    assert pending.progression_suggestion()['action'] == 'maintain'


def test_plan_state_machine(app):
    plan = FitnessPlan(status='draft', start_date=date(2030, 1, 7), duration_weeks=4, deload_frequency=4)
    assert plan.compute_end_date(plan.start_date, 4) == date(2030, 2, 3)

    with pytest.raises(PreconditionError):
        plan.resume()
    plan.activate()
    plan.pause()
    plan.resume()
    plan.complete()
    assert plan.completion_percentage == 100.0
    with pytest.raises(PreconditionError):
        plan.cancel()

    assert plan.is_deload_week(4) and not plan.is_deload_week(3)
    assert plan.current_week_number(date(2029, 12, 1)) == 1
    assert plan.current_week_number(date(2030, 1, 21)) == 3
    assert plan.current_week_number(date(2030, 6, 1)) == 4
