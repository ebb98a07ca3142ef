"""
Safety rules for exercises, workouts, plans and adaptations.

Every check returns a ValidationResult: a list of violations, each with a rule id and a
severity. Only `error` violations make a result invalid; warnings are advisory. Nothing
here touches the database.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from fitplan.exercises import health_conflicts
from fitplan.models import LEVEL_RANK, overlapping_terms

logger = logging.getLogger(__name__)


# Total sets per workout
VOLUME_LIMITS = {
    'beginner': {'max': 12, 'warn': 10},
    'intermediate': {'max': 18, 'warn': 15},
    'advanced': {'max': 25, 'warn': 20},
    'expert': {'max': 30, 'warn': 25},
}

# Workout minutes
DURATION_LIMITS = {
    'beginner': {'min': 20, 'warn': 50, 'max': 60},
    'intermediate': {'min': 30, 'warn': 75, 'max': 90},
    'advanced': {'min': 40, 'warn': 100, 'max': 120},
    'expert': {'min': 45, 'warn': 120, 'max': 150},
}

MAX_FREQUENCY_BY_LEVEL = {'beginner': 4, 'intermediate': 5, 'advanced': 6, 'expert': 7}

# Recommended workouts per week by plan type
FREQUENCY_BANDS = {
    'strength_building': (3, 5),
    'muscle_gain': (3, 6),
    'weight_loss': (4, 6),
    'endurance': (4, 7),
    'rehabilitation': (2, 4),
}

SECONDS_PER_REP = 3
DEFAULT_REPS = 10
DEFAULT_REST_SECONDS = 60
DEFAULT_REST_BETWEEN_EXERCISES = 90
DEFAULT_INTENSITY = 5

MAX_PROGRESSION_RATE = 1.15
MAX_INTENSITY_INCREASE = 0.10
MAX_INTENSITY_INCREASE_BEGINNER = 0.05
MAX_VOLUME_INCREASE = 0.15
MIN_REST_CHANGE_SECONDS = -30
MAX_REST_CHANGE_SECONDS = 60

ADAPTATION_TYPES = {'volume', 'intensity', 'exercise_swap', 'rest_adjustment', 'progression'}
ADAPTATION_IMPACTS = {'low', 'medium', 'high'}

PUSH_KEYWORDS = ('press', 'push')
PULL_KEYWORDS = ('pull', 'row', 'chin')


@dataclass
class Violation:
    rule: str
    severity: str  # error, warning
    message: str

    def to_dict(self):
        return {'rule': self.rule, 'severity': self.severity, 'message': self.message}


@dataclass
class ValidationResult:
    violations: list = field(default_factory=list)
    recommendations: list = field(default_factory=list)
    metrics: dict = field(default_factory=dict)

    @property
    def valid(self):
        return not any(v.severity == 'error' for v in self.violations)

    @property
    def errors(self):
        return [v.message for v in self.violations if v.severity == 'error']

    @property
    def warnings(self):
        return [v.message for v in self.violations if v.severity == 'warning']

    def rules(self, severity=None):
        return {v.rule for v in self.violations if severity is None or v.severity == severity}

    def error(self, rule, message):
        self.violations.append(Violation(rule, 'error', message))

    def warn(self, rule, message):
        self.violations.append(Violation(rule, 'warning', message))

    def recommend(self, message):
        if message not in self.recommendations:
            self.recommendations.append(message)

    def to_dict(self):
        return {
            'valid': self.valid,
            'violations': [v.to_dict() for v in self.violations],
            'recommendations': list(self.recommendations),
            'metrics': dict(self.metrics),
        }


@dataclass
class SafetyProfile:
    experience_level: str = 'beginner'
    age: Optional[int] = None
    weight_kg: Optional[float] = None
    health_conditions: list = field(default_factory=list)
    physical_limitations: list = field(default_factory=list)
    injury_history: list = field(default_factory=list)

    @classmethod
    def from_user(cls, user, plan=None):
        """Profile of a user, widened with the conditions recorded on a plan."""
        health = list(user.health_conditions or [])
        limitations = list(user.physical_limitations or [])
        level = user.experience_level or 'beginner'
        if plan is not None:
            health += [c for c in (plan.health_conditions or []) if c not in health]
            limitations += [c for c in (plan.physical_limitations or []) if c not in limitations]
            level = plan.experience_level or level
        return cls(
            experience_level=level,
            age=user.get_real_age(),
            weight_kg=user.weight_kg,
            health_conditions=health,
            physical_limitations=limitations,
            injury_history=list(user.injury_history or []),
        )


def _get(item, name, default=None):
    if isinstance(item, dict):
        value = item.get(name, default)
    else:
        value = getattr(item, name, default)
    return default if value is None else value


def _reps_for(item):
    return _get(item, 'target_reps_per_set') or _get(item, 'target_reps_max') or DEFAULT_REPS


def estimate_duration_seconds(exercises, rest_between_exercises=DEFAULT_REST_BETWEEN_EXERCISES):
    """Σ sets·(work + rest) plus rest between consecutive exercises."""
    total = 0
    for item in exercises:
        sets = _get(item, 'target_sets', 0)
        work = _get(item, 'target_duration_seconds') or _reps_for(item) * SECONDS_PER_REP
        rest = _get(item, 'rest_seconds', DEFAULT_REST_SECONDS)
        total += sets * (work + rest)
    if len(exercises) > 1:
        total += (len(exercises) - 1) * rest_between_exercises
    return total


class SafetyValidator:
    """Stateless rule engine. Safe to share between threads."""

    # ---------- single exercise ----------

    def validate_exercise_for_user(self, exercise, profile):
        result = ValidationResult()

        conflicts = health_conflicts(exercise, profile.health_conditions)
        if conflicts:
            result.error('health_condition',
                         f"{exercise.name} is not recommended with: {', '.join(conflicts)}")

        limited = overlapping_terms(exercise.contraindications, profile.physical_limitations)
        if limited:
            result.warn('physical_limitation',
                        f"{exercise.name} may aggravate physical limitations: {', '.join(limited)}")
            result.recommend(f"Consider modifications or an alternative to {exercise.name}")

        injuries = overlapping_terms(exercise.injury_warnings, profile.injury_history)
        if injuries:
            result.warn('injury_history',
                        f"{exercise.name} stresses previously injured areas: {', '.join(injuries)}")
            result.recommend('Start with reduced load and stop if pain appears')

        if LEVEL_RANK.get(exercise.difficulty_level, 0) > LEVEL_RANK.get(profile.experience_level, 0):
            result.warn('experience_level',
                        f"{exercise.name} may be too advanced for a {profile.experience_level} level")

        tags = set(exercise.tags or [])
        if profile.age is not None and profile.age >= 65:
            if exercise.category == 'cardio' or 'high-impact' in tags:
                result.warn('age_high_impact',
                            f"{exercise.name} is high-impact; consider a low-impact option at age {profile.age}")
        if profile.age is not None and profile.age < 18:
            if exercise.category == 'resistance' and 'heavy-weight' in tags:
                result.warn('age_heavy_weight',
                            f"{exercise.name} uses heavy loads; keep weights light under 18")

        if result.warnings:
            result.recommend('Warm up thoroughly before starting')
            result.recommend('Focus on proper form over load')
        return result

    # ---------- assembled workout ----------

    def validate_workout(self, exercises, profile, rest_between_exercises=DEFAULT_REST_BETWEEN_EXERCISES):
        """
        Check a workout's volume, intensity, duration, push/pull balance and ordering.

        Args:
            exercises: plan exercises or dicts with target_sets, target_reps_*,
                       target_duration_seconds, rest_seconds, intensity_level,
                       exercise_name, exercise_type
            profile: SafetyProfile
            rest_between_exercises: seconds between consecutive exercises

        Returns:
            ValidationResult with metrics total_sets, intensity_score, estimated_minutes
        """
        result = ValidationResult()
        level = profile.experience_level if profile.experience_level in VOLUME_LIMITS else 'beginner'

        # Volume
        total_sets = sum(_get(e, 'target_sets', 0) for e in exercises)
        volume = VOLUME_LIMITS[level]
        if total_sets > volume['max']:
            result.error('workout_volume',
                         f"Total sets ({total_sets}) exceed the {level} limit of {volume['max']}")
        elif total_sets > volume['warn']:
            result.warn('workout_volume',
                        f"Total sets ({total_sets}) are high for a {level} level")

        # Intensity
        intensities = [_get(e, 'intensity_level', DEFAULT_INTENSITY) for e in exercises]
        intensity_score = sum(intensities) / len(intensities) if intensities else 0
        if intensity_score > 9:
            result.warn('workout_intensity', f"Average intensity {intensity_score:.1f}/10 is very high")
        if level == 'beginner' and sum(1 for i in intensities if i >= 8) > 3:
            result.warn('beginner_high_intensity', 'Too many high-intensity exercises for a beginner')

        # Duration
        minutes = round(estimate_duration_seconds(exercises, rest_between_exercises) / 60)
        band = DURATION_LIMITS[level]
        if minutes > band['max']:
            result.error('workout_duration',
                         f"Estimated duration ({minutes} min) exceeds the {level} maximum of {band['max']} min")
        elif minutes > band['warn']:
            result.warn('workout_duration', f"Estimated duration ({minutes} min) is long for a {level} level")
        elif exercises and minutes < band['min']:
            result.warn('workout_duration',
                        f"Estimated duration ({minutes} min) may give insufficient stimulus")

        # Push / pull balance
        names = [str(_get(e, 'exercise_name', '')).lower() for e in exercises]
        push = sum(1 for n in names if any(k in n for k in PUSH_KEYWORDS))
        pull = sum(1 for n in names if any(k in n for k in PULL_KEYWORDS))
        if push > pull * 1.5:
            result.warn('muscle_balance', 'Workout is push-dominant; add pulling movements for balance')
        elif pull > push * 1.5:
            result.warn('muscle_balance', 'Workout is pull-dominant; add pushing movements for balance')

        # Compound before isolation
        seen_isolation = False
        for e in exercises:
            is_compound = _get(e, 'exercise_type') == 'compound'
            if is_compound and seen_isolation:
                result.warn('exercise_order', 'Compound exercises should come before isolation exercises')
                break
            if _get(e, 'exercise_type') == 'isolation':
                seen_isolation = True

        result.metrics = {
            'total_sets': total_sets,
            'intensity_score': round(intensity_score, 1),
            'estimated_minutes': minutes,
        }
        return result

    # ---------- whole plan ----------

    def validate_fitness_plan(self, plan, profile):
        """`plan` may be a FitnessPlan or a dict of generation parameters."""
        result = ValidationResult()
        weeks = _get(plan, 'duration_weeks', 0)
        frequency = _get(plan, 'workouts_per_week', 0)
        plan_type = _get(plan, 'plan_type', 'general_fitness')
        level = _get(plan, 'experience_level') or profile.experience_level

        if weeks > 52:
            result.warn('plan_duration', 'Plans longer than 52 weeks should be split into phases')
        elif weeks < 4:
            result.warn('plan_duration', 'Plans shorter than 4 weeks give limited adaptation')

        if frequency > 7 or frequency < 1:
            result.error('workout_frequency', 'Workouts per week must be between 1 and 7')
        else:
            max_for_level = MAX_FREQUENCY_BY_LEVEL.get(level, 7)
            if frequency > max_for_level:
                result.warn('workout_frequency',
                            f"{frequency} workouts per week is a lot for a {level} level (max {max_for_level})")
            band = FREQUENCY_BANDS.get(plan_type)
            if band and not band[0] <= frequency <= band[1]:
                result.warn('frequency_band',
                            f"{plan_type} plans usually train {band[0]}-{band[1]} times per week")

        if _get(plan, 'progressive_overload', True):
            rate = _get(plan, 'auto_progression_rate', 1.05)
            if rate > MAX_PROGRESSION_RATE:
                result.warn('progression_rate', 'Progression above 15% per week raises injury risk')
            deload = _get(plan, 'deload_frequency', 4)
            if deload < 3 or deload > 8:
                result.warn('deload_frequency', 'Deload weeks are best scheduled every 3-8 weeks')

        if plan_type == 'weight_loss' and frequency < 4:
            result.warn('goal_alignment', 'Weight loss benefits from at least 4 sessions per week')
        if plan_type == 'muscle_gain' and frequency > 5:
            result.warn('goal_alignment', 'More than 5 sessions per week can limit recovery for muscle gain')
        if plan_type == 'strength_building' and weeks < 8:
            result.recommend('Strength plans show the best results over 8 weeks or more')

        if profile.age is not None and profile.age >= 65:
            result.recommend('Include balance and flexibility work in every week')
            result.recommend('Allow extra recovery time between sessions')
        elif profile.age is not None and profile.age < 18:
            result.recommend('Prioritise technique and bodyweight movements over heavy loads')
        return result

    # ---------- ad-hoc parameters ----------

    def validate_exercise_parameters(self, exercise_name, sets, reps, weight=None, profile=None):
        result = ValidationResult()
        if sets is None or sets < 1 or sets > 10:
            result.error('sets_range', f"Sets for {exercise_name} must be between 1 and 10")
        if reps is None or reps < 1 or reps > 100:
            result.error('reps_range', f"Reps for {exercise_name} must be between 1 and 100")
        if weight is not None and weight < 0:
            result.error('negative_weight', 'Weight cannot be negative')

        if reps is not None and reps > 30:
            result.warn('high_reps', 'More than 30 reps per set shifts the work towards endurance')
        if reps is not None and sets is not None and reps < 3 and sets > 5:
            result.warn('low_reps_high_sets', 'Many low-rep sets are very demanding on the nervous system')

        bodyweight = profile.weight_kg if profile is not None else None
        if weight and bodyweight and weight > bodyweight * 3:
            result.warn('relative_weight',
                        f"Weight ({weight} kg) is very high relative to body weight ({bodyweight} kg)")
        return result

    # ---------- adaptations ----------

    def validate_adaptation(self, adaptation, profile):
        """
        Reject malformed adaptations and increases above the weekly safety caps.

        Adjustments are fractions per week: intensity_change 0.1 means +10%.
        """
        result = ValidationResult()
        if hasattr(adaptation, 'to_dict'):
            adaptation = adaptation.to_dict()
        if not isinstance(adaptation, dict):
            result.error('adaptation_shape', 'Adaptation must be an object')
            return result

        if adaptation.get('type') not in ADAPTATION_TYPES:
            result.error('adaptation_shape', f"Unknown adaptation type: {adaptation.get('type')!r}")
        description = adaptation.get('description')
        if not isinstance(description, str) or not description.strip():
            result.error('adaptation_shape', 'Adaptation needs a description')
        if adaptation.get('impact') is not None and adaptation['impact'] not in ADAPTATION_IMPACTS:
            result.error('adaptation_shape', f"Unknown impact: {adaptation['impact']!r}")

        adjustments = adaptation.get('adjustments')
        if not isinstance(adjustments, dict):
            result.error('adaptation_shape', 'Adaptation needs an adjustments object')
            return result
        for key, value in adjustments.items():
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                result.error('adaptation_shape', f"Adjustment {key} must be numeric")
                return result

        intensity_cap = MAX_INTENSITY_INCREASE_BEGINNER if profile.experience_level == 'beginner' \
            else MAX_INTENSITY_INCREASE
        if adjustments.get('intensity_change', 0) > intensity_cap:
            result.error('adaptation_intensity',
                         f"Intensity increase above {int(intensity_cap * 100)}% per week is unsafe")
        if adjustments.get('volume_change', 0) > MAX_VOLUME_INCREASE:
            result.error('adaptation_volume',
                         f"Volume increase above {int(MAX_VOLUME_INCREASE * 100)}% per week is unsafe")
        rest_change = adjustments.get('rest_seconds_change', 0)
        if not MIN_REST_CHANGE_SECONDS <= rest_change <= MAX_REST_CHANGE_SECONDS:
            result.error('adaptation_rest',
                         f"Rest change must stay between {MIN_REST_CHANGE_SECONDS} and "
                         f"+{MAX_REST_CHANGE_SECONDS} seconds")
        return result

    def progression_recommendations(self, plan, adherence_rate, feedback=None, week_number=None):
        """
        Coaching adjustments from adherence and subjective feedback.

        Args:
            plan: FitnessPlan
            adherence_rate: 0-100
            feedback: dict with difficulty, fatigue, enjoyment on a 1-5 scale

        Returns:
            list of dicts with type, reason, adjustment, priority
        """
        feedback = feedback or {}
        difficulty = feedback.get('difficulty', 3)
        fatigue = feedback.get('fatigue', 3)
        enjoyment = feedback.get('enjoyment', 3)
        recommendations = []

        if adherence_rate >= 85 and difficulty <= 3:
            recommendations.append({
                'type': 'progress', 'priority': 'medium', 'adjustment': {'volume_change': 0.05},
                'reason': 'High adherence and manageable difficulty: ready to progress',
            })
        if adherence_rate < 60:
            recommendations.append({
                'type': 'reduce_volume', 'priority': 'high', 'adjustment': {'volume_change': -0.10},
                'reason': 'Low adherence: shorter sessions are easier to keep up',
            })
        if difficulty >= 4:
            recommendations.append({
                'type': 'reduce_intensity', 'priority': 'medium', 'adjustment': {'intensity_change': -0.05},
                'reason': 'Workouts feel too hard',
            })
        if fatigue >= 4:
            recommendations.append({
                'type': 'deload', 'priority': 'high', 'adjustment': {'volume_change': -0.15},
                'reason': 'High fatigue reported',
            })
        if enjoyment <= 2:
            recommendations.append({
                'type': 'variety', 'priority': 'low', 'adjustment': {},
                'reason': 'Low enjoyment: rotate in new exercises',
            })

        week_number = week_number or plan.current_week_number()
        if plan.is_deload_week(week_number) and not any(r['type'] == 'deload' for r in recommendations):
            recommendations.append({
                'type': 'deload', 'priority': 'medium', 'adjustment': {'volume_change': -0.15},
                'reason': f"Week {week_number} is a scheduled deload week",
            })
        return recommendations
