import pytest

from fitplan.models import Exercise, FitnessPlan
from fitplan.safety import SafetyValidator, SafetyProfile, VOLUME_LIMITS


@pytest.fixture
def validator():
    return SafetyValidator()


def _exercise(**overrides):
    values = dict(
        name='Jump Squat', category='calisthenics', difficulty_level='beginner',
        primary_muscle_group='quadriceps', health_conditions_to_avoid=[], contraindications=[],
        injury_warnings=[], tags=[],
    )
    values.update(overrides)
    return Exercise(**values)


def _workout(total_sets, per_exercise=3):
    """Balanced workout dicts adding up to total_sets."""
    names = ['Squat', 'Push-Up', 'Inverted Row', 'Lunge', 'Plank', 'Bridge', 'Pull-Up', 'Press']
    items, left, i = [], total_sets, 0
    while left > 0:
        sets = min(per_exercise, left)
        items.append({
            'exercise_name': names[i % len(names)], 'exercise_type': 'compound',
            'target_sets': sets, 'target_reps_per_set': 8, 'rest_seconds': 30, 'intensity_level': 6,
        })
        left -= sets
        i += 1
    return items


# ---------- workouts ----------

@pytest.mark.parametrize('level', list(VOLUME_LIMITS))
def test_workout_volume_ceiling_per_level(validator, level):
    ceiling = VOLUME_LIMITS[level]['max']
    profile = SafetyProfile(experience_level=level)

    at_ceiling = validator.validate_workout(_workout(ceiling), profile, rest_between_exercises=30)
    assert at_ceiling.valid
    over = validator.validate_workout(_workout(ceiling + 1), profile, rest_between_exercises=30)
    assert not over.valid
    assert 'workout_volume' in over.rules('error')


def test_beginner_thirteen_sets_invalid_twelve_valid(validator):
    profile = SafetyProfile(experience_level='beginner')
    assert validator.validate_workout(_workout(12), profile, 30).valid
    assert not validator.validate_workout(_workout(13), profile, 30).valid


def test_workout_warn_threshold_is_a_warning(validator):
    result = validator.validate_workout(_workout(11), SafetyProfile(), 30)
    assert result.valid
    assert 'workout_volume' in result.rules('warning')


def test_workout_duration_over_max_is_error(validator):
    items = [{'exercise_name': 'Squat', 'target_sets': 4, 'target_reps_per_set': 10,
              'rest_seconds': 1200, 'exercise_type': 'compound'}]
    result = validator.validate_workout(items, SafetyProfile(), 90)
    assert result.metrics['estimated_minutes'] > 60
    assert 'workout_duration' in result.rules('error')


def test_workout_metrics_and_soft_checks(validator):
    items = [
        {'exercise_name': 'Bicep Curl', 'exercise_type': 'isolation', 'target_sets': 2, 'intensity_level': 9},
        {'exercise_name': 'Bench Press', 'exercise_type': 'compound', 'target_sets': 2, 'intensity_level': 9},
        {'exercise_name': 'Push Press', 'exercise_type': 'compound', 'target_sets': 2, 'intensity_level': 9},
        {'exercise_name': 'Push-Up', 'exercise_type': 'compound', 'target_sets': 2, 'intensity_level': 9},
    ]
    result = validator.validate_workout(items, SafetyProfile(experience_level='beginner'))
    assert result.metrics['total_sets'] == 8
    assert result.metrics['intensity_score'] == 9.0
    assert {'exercise_order', 'muscle_balance', 'beginner_high_intensity'} <= result.rules('warning')


# ---------- single exercise ----------

@pytest.mark.parametrize('avoid, conditions, valid', [
    (['Knee Injury'], ['knee'], False),
    (['knee'], ['Chronic KNEE injury'], False),
    (['glaucoma'], ['Hypertension'], True),
    ([], ['asthma'], True),
    (['asthma'], [], True),
])
def test_exercise_invalid_iff_health_overlap(validator, avoid, conditions, valid):
    result = validator.validate_exercise_for_user(
        _exercise(health_conditions_to_avoid=avoid), SafetyProfile(health_conditions=conditions)
    )
    assert result.valid is valid
    assert ('health_condition' in result.rules('error')) is (not valid)


def test_exercise_soft_warnings(validator):
    exercise = _exercise(
        difficulty_level='advanced', contraindications=['knee pain'], injury_warnings=['ankle'],
        tags=['high-impact'],
    )
    profile = SafetyProfile(experience_level='beginner', age=70,
                            physical_limitations=['Knee'], injury_history=['ankle sprain'])
    result = validator.validate_exercise_for_user(exercise, profile)
    assert result.valid
    assert {'physical_limitation', 'injury_history', 'experience_level', 'age_high_impact'} <= result.rules('warning')
    assert any('too advanced' in w for w in result.warnings)


def test_minor_heavy_weight_warning(validator):
    exercise = _exercise(name='Deadlift', category='resistance', tags=['heavy-weight'])
    result = validator.validate_exercise_for_user(exercise, SafetyProfile(age=16))
    assert 'age_heavy_weight' in result.rules('warning')


# ---------- exercise parameters ----------

def test_heavy_squats_relative_to_body_weight(validator):
    result = validator.validate_exercise_parameters('Squats', 3, 12, 250, SafetyProfile(weight_kg=70))
    assert result.valid
    assert any('very high relative to body weight' in w for w in result.warnings)


@pytest.mark.parametrize('sets, reps, weight, rule', [
    (0, 10, None, 'sets_range'),
    (11, 10, None, 'sets_range'),
    (3, 0, None, 'reps_range'),
    (3, 101, None, 'reps_range'),
    (3, 10, -5, 'negative_weight'),
])
def test_parameter_hard_bounds(validator, sets, reps, weight, rule):
    result = validator.validate_exercise_parameters('Row', sets, reps, weight)
    assert not result.valid
    assert rule in result.rules('error')


def test_parameter_soft_warnings(validator):
    assert 'high_reps' in validator.validate_exercise_parameters('Squat', 3, 40).rules('warning')
    assert 'low_reps_high_sets' in validator.validate_exercise_parameters('Squat', 6, 2).rules('warning')


# ---------- plans ----------

def _plan(**overrides):
    values = dict(plan_type='general_fitness', experience_level='beginner', duration_weeks=8,
                  workouts_per_week=3, progressive_overload=True, auto_progression_rate=1.05,
                  deload_frequency=4)
    values.update(overrides)
    return values


def test_plan_frequency_out_of_range_is_error(validator):
    assert not validator.validate_fitness_plan(_plan(workouts_per_week=8), SafetyProfile()).valid
    assert not validator.validate_fitness_plan(_plan(workouts_per_week=0), SafetyProfile()).valid


def test_plan_soft_rules(validator):
    result = validator.validate_fitness_plan(
        _plan(duration_weeks=2, workouts_per_week=6, auto_progression_rate=1.3, deload_frequency=10),
        SafetyProfile(),
    )
    assert result.valid
    assert {'plan_duration', 'workout_frequency', 'progression_rate', 'deload_frequency'} <= result.rules('warning')


def test_plan_goal_alignment_and_age_advice(validator):
    result = validator.validate_fitness_plan(_plan(plan_type='weight_loss', workouts_per_week=3),
                                             SafetyProfile(age=70))
    assert result.valid
    assert 'goal_alignment' in result.rules('warning')
    assert result.recommendations


def test_plan_validation_accepts_model_instances(validator):
    plan = FitnessPlan(**_plan(workouts_per_week=9))
    assert 'workout_frequency' in validator.validate_fitness_plan(plan, SafetyProfile()).rules('error')


# ---------- adaptations ----------

@pytest.mark.parametrize('level, change, valid', [
    ('beginner', 0.05, True),
    ('beginner', 0.06, False),
    ('intermediate', 0.10, True),
    ('intermediate', 0.11, False),
])
def test_adaptation_intensity_cap(validator, level, change, valid):
    adaptation = {'type': 'intensity', 'description': 'More effort', 'impact': 'medium',
                  'adjustments': {'intensity_change': change}}
    assert validator.validate_adaptation(adaptation, SafetyProfile(experience_level=level)).valid is valid


def test_adaptation_volume_cap(validator):
    ok = {'type': 'volume', 'description': 'More sets', 'adjustments': {'volume_change': 0.15}}
    too_much = {'type': 'volume', 'description': 'More sets', 'adjustments': {'volume_change': 0.2}}
    cut = {'type': 'volume', 'description': 'Fewer sets', 'adjustments': {'volume_change': -0.5}}
    profile = SafetyProfile()
    assert validator.validate_adaptation(ok, profile).valid
    assert not validator.validate_adaptation(too_much, profile).valid
    assert validator.validate_adaptation(cut, profile).valid


@pytest.mark.parametrize('change, valid', [(15, True), (-30, True), (60, True), (-500, False), (90, False)])
def test_adaptation_rest_bounds(validator, change, valid):
    adaptation = {'type': 'rest_adjustment', 'description': 'Change rest', 'adjustments': {'rest_seconds_change': change}}
    result = validator.validate_adaptation(adaptation, SafetyProfile())
    assert result.valid is valid
    if not valid:
        assert 'adaptation_rest' in result.rules('error')


@pytest.mark.parametrize('adaptation', [
    None,
    'reduce volume',
    {'type': 'teleport', 'description': 'x', 'adjustments': {}},
    {'type': 'volume', 'adjustments': {}},
    {'type': 'volume', 'description': 'x'},
    {'type': 'volume', 'description': 'x', 'adjustments': {'volume_change': 'lots'}},
    {'type': 'volume', 'description': 'x', 'impact': 'huge', 'adjustments': {}},
])
def test_malformed_adaptations_rejected(validator, adaptation):
    result = validator.validate_adaptation(adaptation, SafetyProfile())
    assert not result.valid
    assert 'adaptation_shape' in result.rules('error')


def test_progression_recommendations(validator):
    plan = FitnessPlan(**_plan())
    items = validator.progression_recommendations(plan, 40, {'fatigue': 5, 'enjoyment': 1}, week_number=2)
    types = {r['type'] for r in items}
    assert {'reduce_volume', 'deload', 'variety'} <= types

    items = validator.progression_recommendations(plan, 95, {'difficulty': 2}, week_number=4)
    types = [r['type'] for r in items]
    assert 'progress' in types and 'deload' in types
