import pytest

from fitplan.errors import ConflictError, NotFoundError, ValidationError
from fitplan.exercises import ExerciseLibrary, SuitabilityProfile, EXERCISES
from fitplan.models import db, Exercise


@pytest.fixture
def library(app):
    return ExerciseLibrary()


def test_seed_loads_catalog_once(library):
    total = sum(len(entries) for entries in EXERCISES.values())
    assert Exercise.query.count() == total
    assert library.seed_catalog() == 0
    assert Exercise.query.count() == total


def test_seed_resolves_progression_links(library):
    push_up = Exercise.query.filter_by(name='Push-Up').one()
    linked = [db.session.get(Exercise, i) for i in push_up.progression_exercise_ids + push_up.regression_exercise_ids]
    assert linked and all(e is not None for e in linked)


def test_create_rejects_duplicate_name(library):
    with pytest.raises(ConflictError):
        library.create({'name': 'push-up', 'category': 'calisthenics', 'primary_muscle_group': 'chest'})


def test_create_rejects_bodyweight_with_equipment(library):
    with pytest.raises(ValidationError):
        library.create({
            'name': 'Weighted Thing', 'category': 'resistance', 'primary_muscle_group': 'chest',
            'is_bodyweight': True, 'equipment': ['dumbbells'],
        })


def test_created_exercise_needs_approval(library):
    exercise = library.create(
        {'name': 'Towel Row', 'category': 'calisthenics', 'primary_muscle_group': 'back',
         'equipment': ['bodyweight'], 'is_bodyweight': True},
        created_by=7,
    )
    assert exercise.is_approved is False
    profile = SuitabilityProfile(available_equipment=['bodyweight'])
    assert exercise not in library.suitable(profile)

    library.approve(exercise.id, 'coach@example.com')
    assert exercise in library.suitable(profile)


def test_get_unknown_exercise(library):
    with pytest.raises(NotFoundError):
        library.get(99999)


def test_delete_is_soft(library):
    exercise = Exercise.query.filter_by(name='Plank').one()
    library.delete(exercise.id)
    assert db.session.get(Exercise, exercise.id).is_active is False
    names = [e.name for e in library.query({'search': 'Plank'})['exercises']]
    assert 'Plank' not in names


def test_suitable_filters_equipment_level_health_and_dislikes(library):
    profile = SuitabilityProfile(
        experience_level='beginner',
        available_equipment=['bodyweight'],
        health_conditions=['Glaucoma'],
        disliked_exercises=['wall sit'],
    )
    candidates = library.suitable(profile)
    assert len(candidates) >= 10
    for exercise in candidates:
        assert exercise.required_equipment == set()
        assert exercise.difficulty_level == 'beginner'
        assert 'glaucoma' not in [c.lower() for c in exercise.health_conditions_to_avoid or []]
    assert 'Wall Sit' not in [e.name for e in candidates]


def test_suitable_orders_compounds_first_for_strength_goals(library):
    profile = SuitabilityProfile(available_equipment=['bodyweight'], goal='strength_building')
    candidates = library.suitable(profile)
    flags = [e.is_compound for e in candidates]
    assert flags == sorted(flags, reverse=True)


def test_suitable_orders_by_rating_otherwise(library):
    profile = SuitabilityProfile(available_equipment=['bodyweight'])
    ratings = [e.average_rating for e in library.suitable(profile)]
    assert ratings == sorted(ratings, reverse=True)


def test_suitable_puts_preferred_muscles_first(library):
    profile = SuitabilityProfile(available_equipment=['bodyweight'], preferred_muscle_groups=['glutes'])
    candidates = library.suitable(profile)
    first_other = next(i for i, e in enumerate(candidates) if e.primary_muscle_group != 'glutes')
    assert all(e.primary_muscle_group != 'glutes' for e in candidates[first_other:])


def test_rating_uses_running_average(library):
    exercise = Exercise.query.filter_by(name='Glute Bridge').one()
    avg, n = exercise.average_rating, exercise.total_ratings
    library.rate(exercise.id, 1)
    assert exercise.total_ratings == n + 1
    assert exercise.average_rating == pytest.approx((avg * n + 1) / (n + 1))


def test_rating_out_of_range(library):
    exercise = Exercise.query.filter_by(name='Glute Bridge').one()
    with pytest.raises(ValidationError):
        library.rate(exercise.id, 6)


def test_query_filters_and_paginates(library):
    page = library.query({'primary_muscle_group': 'core', 'is_bodyweight': True}, limit=2, offset=0)
    assert page['total'] >= 3
    assert len(page['exercises']) == 2
    assert all(e.primary_muscle_group == 'core' for e in page['exercises'])


def test_by_muscle_group_includes_secondary(library):
    names = [e.name for e in library.by_muscle_group('triceps', limit=50)]
    assert 'Push-Up' in names


def test_by_muscle_group_unknown(library):
    with pytest.raises(ValidationError):
        library.by_muscle_group('wings')


def test_alternatives_share_primary_muscle(library):
    squat = Exercise.query.filter_by(name='Bodyweight Squat').one()
    alternatives = library.alternatives(squat.id)
    assert alternatives
    assert all(e.primary_muscle_group == 'quadriceps' and e.id != squat.id for e in alternatives)


def test_stats_and_popular(library):
    squat = Exercise.query.filter_by(name='Bodyweight Squat').one()
    library.record_usage(squat.id)
    library.record_usage(squat.id)
    assert library.popular(limit=1)[0].id == squat.id
    stats = library.stats()
    assert stats['most_used'][0]['name'] == 'Bodyweight Squat'
    assert stats['by_muscle_group']['quadriceps'] >= 3


def test_recommended_sets_and_reps():
    exercise = Exercise(name='X', category='resistance', primary_muscle_group='chest',
                        default_sets=3, default_reps_min=8, default_reps_max=12)
    assert exercise.recommended_sets('beginner') == 2
    assert exercise.recommended_sets('expert') == 4
    assert exercise.recommended_reps('beginner') == (6, 10)
    assert exercise.recommended_reps('advanced') == (10, 15)


def test_estimated_calories_uses_met():
    exercise = Exercise(name='X', category='cardio', primary_muscle_group='cardio', met_value=8.0)
    assert exercise.estimated_calories(30, 70) == pytest.approx(280.0)
