"""
Plan generation: builds the week -> workout -> exercise tree of a fitness plan.

Selection is deterministic for a given catalog snapshot: candidates are ordered by
fixed keys (category fit, muscle match, compound first for strength goals, rating,
name) and there is no random rotation.
"""

import logging
from dataclasses import dataclass, field, asdict
from datetime import date, timedelta
from typing import Optional

from fitplan.errors import NotFoundError, PreconditionError, SafetyRejection, ValidationError
from fitplan.exercises import ExerciseLibrary, SuitabilityProfile, STRENGTH_GOALS
from fitplan.models import (
    db, User, FitnessPlan, FitnessPlanWeek, FitnessPlanWorkout, FitnessPlanExercise, ActivityLog,
    EXPERIENCE_LEVELS, PLAN_TYPES,
)
from fitplan.safety import SafetyValidator, SafetyProfile, VOLUME_LIMITS, estimate_duration_seconds

logger = logging.getLogger(__name__)


# ========== CONFIGURATION TABLES ==========

# workouts per week -> muscle groups per workout, in order
SPLIT_TEMPLATES = {
    3: [
        ['chest', 'shoulders', 'triceps'],
        ['back', 'biceps'],
        ['quadriceps', 'hamstrings', 'glutes', 'calves'],
    ],
    4: [
        ['chest', 'triceps'],
        ['back', 'biceps'],
        ['shoulders', 'core'],
        ['quadriceps', 'hamstrings', 'glutes'],
    ],
    5: [
        ['chest'],
        ['back'],
        ['shoulders'],
        ['quadriceps', 'glutes'],
        ['hamstrings', 'calves', 'core'],
    ],
}
FALLBACK_SPLIT = 3

# workouts per week -> training days (1=Monday)
WORKOUT_DAYS = {
    1: [1],
    2: [1, 4],
    3: [1, 3, 5],
    4: [1, 2, 4, 5],
    5: [1, 2, 3, 4, 5],
    6: [1, 2, 3, 4, 5, 6],
    7: [1, 2, 3, 4, 5, 6, 7],
}

WORKOUT_CONSTRAINTS = {
    'beginner': {'max_sets_per_workout': 12, 'max_sets_per_muscle_group': 8, 'max_intensity': 6,
                 'rest_between_sets': 90, 'rest_between_exercises': 120},
    'intermediate': {'max_sets_per_workout': 18, 'max_sets_per_muscle_group': 12, 'max_intensity': 7,
                     'rest_between_sets': 75, 'rest_between_exercises': 90},
    'advanced': {'max_sets_per_workout': 24, 'max_sets_per_muscle_group': 16, 'max_intensity': 8,
                 'rest_between_sets': 60, 'rest_between_exercises': 75},
    'expert': {'max_sets_per_workout': 30, 'max_sets_per_muscle_group': 20, 'max_intensity': 9,
               'rest_between_sets': 45, 'rest_between_exercises': 60},
}

# plan type -> (sets multiplier, intensity multiplier)
PLAN_TYPE_MULTIPLIERS = {
    'weight_loss': (0.8, 0.9),
    'muscle_gain': (1.2, 1.1),
    'strength_building': (1.0, 1.2),
    'endurance': (1.1, 0.8),
    'general_fitness': (1.0, 1.0),
    'rehabilitation': (0.6, 0.7),
    'sports_specific': (1.1, 1.1),
    'flexibility': (0.7, 0.6),
    'maintenance': (0.9, 0.9),
}

BASE_INTENSITY = 6
PLAN_TYPE_INTENSITY_DELTA = {
    'weight_loss': -1, 'muscle_gain': 1, 'strength_building': 2, 'endurance': -1, 'rehabilitation': -3,
}
PREFERENCE_INTENSITY_DELTA = {'low': -2, 'moderate': 0, 'high': 2, 'varied': 0}
EXPERIENCE_INTENSITY_DELTA = {'beginner': -1, 'intermediate': 0, 'advanced': 1, 'expert': 2}

# Categories a plan type draws from first; others only when nothing fits
PREFERRED_CATEGORIES = {
    'flexibility': {'yoga', 'flexibility', 'balance', 'cool_down'},
    'rehabilitation': {'rehabilitation', 'flexibility', 'balance', 'core', 'calisthenics'},
    'endurance': {'cardio', 'calisthenics', 'functional', 'core'},
    'weight_loss': {'cardio', 'calisthenics', 'functional', 'resistance', 'core'},
}
DEFAULT_CATEGORIES = {'resistance', 'calisthenics', 'functional', 'core'}

CATEGORY_EXERCISE_TYPES = {
    'yoga': 'flexibility',
    'flexibility': 'flexibility',
    'cool_down': 'flexibility',
    'cardio': 'cardio',
    'warm_up': 'cardio',
    'balance': 'balance',
    'core': 'isometric',
    'rehabilitation': 'isolation',
}

PLAN_WORKOUT_TYPES = {
    'weight_loss': 'circuit',
    'endurance': 'cardio',
    'flexibility': 'flexibility',
    'rehabilitation': 'rehabilitation',
    'sports_specific': 'mixed',
}

PLAN_TYPE_NAMES = {
    'weight_loss': 'Weight Loss',
    'muscle_gain': 'Muscle Gain',
    'strength_building': 'Strength Building',
    'endurance': 'Endurance',
    'general_fitness': 'General Fitness',
    'rehabilitation': 'Rehabilitation',
    'sports_specific': 'Sports Specific',
    'flexibility': 'Flexibility',
    'maintenance': 'Maintenance',
}

FOCUS_AREA_MUSCLES = {
    'upper_body': ['chest', 'back', 'shoulders', 'biceps', 'triceps'],
    'lower_body': ['quadriceps', 'hamstrings', 'glutes', 'calves'],
    'legs': ['quadriceps', 'hamstrings', 'glutes', 'calves'],
    'arms': ['biceps', 'triceps', 'forearms'],
    'core': ['core'],
    'cardio': ['cardio'],
    'full_body': ['full_body'],
}

INTENSITY_PREFERENCES = {'low', 'moderate', 'high', 'varied'}
MAX_REP_PROGRESSION = 1.2
MAX_EXTRA_REST_SECONDS = 120


def parse_date(value, field_name):
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationError(f"{field_name} must be an ISO date (YYYY-MM-DD)")


def _as_list(value):
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return list(value)


@dataclass
class PlanParameters:
    """Validated inputs shared by plan creation and generation."""
    plan_type: str
    experience_level: str
    duration_weeks: int
    workouts_per_week: int
    available_equipment: list
    start_date: date
    max_workout_duration_minutes: int = 60
    name: Optional[str] = None
    description: Optional[str] = None
    location: str = 'home'
    preferred_workout_time: Optional[str] = None
    health_conditions: list = field(default_factory=list)
    physical_limitations: list = field(default_factory=list)
    disliked_exercises: list = field(default_factory=list)
    focus_areas: list = field(default_factory=list)
    primary_goals: list = field(default_factory=list)
    target_metrics: dict = field(default_factory=dict)
    intensity_preference: str = 'moderate'
    progressive_overload: bool = True
    auto_progression_rate: float = 1.05
    deload_frequency: int = 4
    is_template: bool = False
    is_public: bool = False

    @classmethod
    def from_dict(cls, data, user=None, today=None):
        data = data or {}
        today = today or date.today()

        def as_int(key, default=None):
            value = data.get(key, default)
            if value is None:
                raise ValidationError(f"{key} is required")
            try:
                return int(value)
            except (TypeError, ValueError):
                raise ValidationError(f"{key} must be an integer")

        plan_type = data.get('plan_type', 'general_fitness')
        if plan_type not in PLAN_TYPES:
            raise ValidationError(f"Unknown plan type: {plan_type}")
        level = data.get('experience_level') or (user.experience_level if user else None) or 'beginner'
        if level not in EXPERIENCE_LEVELS:
            raise ValidationError(f"Unknown experience level: {level}")

        duration_weeks = as_int('duration_weeks')
        if not 1 <= duration_weeks <= 52:
            raise ValidationError('Duration must be between 1 and 52 weeks')
        workouts_per_week = as_int('workouts_per_week')
        if not 1 <= workouts_per_week <= 7:
            raise ValidationError('Workouts per week must be between 1 and 7')
        max_minutes = as_int('max_workout_duration_minutes', 60)
        if not 15 <= max_minutes <= 180:
            raise ValidationError('Workout duration must be between 15 and 180 minutes')

        equipment = _as_list(data.get('available_equipment'))
        if not equipment and user is not None:
            equipment = list(user.equipment or [])
        if not equipment:
            raise ValidationError('At least one equipment option is required (use "bodyweight" for none)')

        start_date = parse_date(data.get('start_date'), 'start_date') or today
        if start_date < today:
            raise ValidationError('Start date cannot be in the past')

        intensity_preference = data.get('intensity_preference') or \
            (user.get_preference('intensity_preference') if user else None) or 'moderate'
        if intensity_preference not in INTENSITY_PREFERENCES:
            raise ValidationError(f"Unknown intensity preference: {intensity_preference}")

        deload_frequency = as_int('deload_frequency', 4)
        if deload_frequency < 0:
            raise ValidationError('Deload frequency cannot be negative')
        try:
            rate = float(data.get('auto_progression_rate', 1.05))
        except (TypeError, ValueError):
            raise ValidationError('auto_progression_rate must be a number')
        if rate < 1.0:
            raise ValidationError('auto_progression_rate must be at least 1.0')

        disliked = _as_list(data.get('disliked_exercises'))
        if user is not None:
            disliked += [n for n in (user.get_preference('disliked_exercises') or []) if n not in disliked]

        return cls(
            plan_type=plan_type,
            experience_level=level,
            duration_weeks=duration_weeks,
            workouts_per_week=workouts_per_week,
            available_equipment=equipment,
            start_date=start_date,
            max_workout_duration_minutes=max_minutes,
            name=data.get('name'),
            description=data.get('description'),
            location=data.get('location') or 'home',
            preferred_workout_time=data.get('preferred_workout_time'),
            health_conditions=_as_list(data.get('health_conditions')),
            physical_limitations=_as_list(data.get('physical_limitations')),
            disliked_exercises=disliked,
            focus_areas=_as_list(data.get('focus_areas')),
            primary_goals=_as_list(data.get('primary_goals')),
            target_metrics=data.get('target_metrics') or {},
            intensity_preference=intensity_preference,
            progressive_overload=bool(data.get('progressive_overload', True)),
            auto_progression_rate=rate,
            deload_frequency=deload_frequency,
            is_template=bool(data.get('is_template', False)),
            is_public=bool(data.get('is_public', False)),
        )

    def default_name(self):
        return f"{self.experience_level.title()} {PLAN_TYPE_NAMES[self.plan_type]} Plan"

    def to_plan(self, user_id):
        values = asdict(self)
        values['name'] = self.name or self.default_name()
        return FitnessPlan(
            user_id=user_id,
            status='draft',
            end_date=FitnessPlan.compute_end_date(self.start_date, self.duration_weeks),
            rest_days_per_week=7 - self.workouts_per_week,
            **values,
        )


@dataclass
class WeekAdjustments:
    """Hints that bias a regenerated week."""
    change_exercises: list = field(default_factory=list)
    adjust_volume: float = 0.0  # percent, -15 = 15% fewer sets
    increase_difficulty: bool = False
    decrease_difficulty: bool = False
    workouts_per_week: Optional[int] = None
    extra_rest_seconds: int = 0

    @classmethod
    def coerce(cls, value):
        if value is None:
            return cls()
        if isinstance(value, cls):
            hints = value
        elif isinstance(value, dict):
            try:
                hints = cls(
                    change_exercises=_as_list(value.get('change_exercises')),
                    adjust_volume=float(value.get('adjust_volume') or 0.0),
                    increase_difficulty=bool(value.get('increase_difficulty', False)),
                    decrease_difficulty=bool(value.get('decrease_difficulty', False)),
                    workouts_per_week=value.get('workouts_per_week'),
                    extra_rest_seconds=int(value.get('extra_rest_seconds') or 0),
                )
            except (TypeError, ValueError):
                raise ValidationError('Adaptation hints must be numeric')
        else:
            raise ValidationError('Adaptations must be an object')
        if hints.workouts_per_week is not None and not 1 <= int(hints.workouts_per_week) <= 7:
            raise ValidationError('Workouts per week must be between 1 and 7')
        if hints.adjust_volume < -90 or hints.adjust_volume > 50:
            raise ValidationError('Volume adjustment must be between -90% and +50%')
        if not -MAX_EXTRA_REST_SECONDS <= hints.extra_rest_seconds <= MAX_EXTRA_REST_SECONDS:
            raise ValidationError(f"Extra rest must be within {MAX_EXTRA_REST_SECONDS} seconds either way")
        return hints

    def is_empty(self):
        return self == WeekAdjustments()

    def to_dict(self):
        return asdict(self)


def workout_name(muscle_groups, index):
    labels = [m.replace('_', ' ').title() for m in muscle_groups]
    if len(labels) == 1:
        return f"{labels[0]} Workout"
    if 1 < len(labels) <= 3:
        return f"{' & '.join(labels)} Workout"
    return f"Full Body Workout {index}"


def exercise_type_for(exercise):
    if exercise.category in ('resistance', 'calisthenics', 'functional'):
        if 'plyometric' in (exercise.tags or []):
            return 'plyometric'
        return 'compound' if exercise.is_compound else 'isolation'
    return CATEGORY_EXERCISE_TYPES.get(exercise.category, 'isolation')


def _clamp(value, low, high):
    return max(low, min(high, value))


class PlanGenerator:

    def __init__(self, library=None, validator=None, min_candidates=10):
        self.library = library or ExerciseLibrary()
        self.validator = validator or SafetyValidator()
        self.min_candidates = min_candidates

    # ========== PUBLIC ==========

    def generate_fitness_plan(self, user_id, params):
        """
        Build and persist a complete plan for a user.

        Args:
            user_id: owner of the plan
            params: dict of generation parameters or a PlanParameters

        Returns:
            the persisted FitnessPlan (status draft)

        Raises:
            ValidationError on bad parameters, PreconditionError when the catalog has
            too few suitable exercises, SafetyRejection when the plan breaks a hard rule.
            Nothing is persisted when any of these is raised.
        """
        user = db.session.get(User, user_id)
        if not user:
            raise NotFoundError(f"User {user_id} not found")
        if not isinstance(params, PlanParameters):
            params = PlanParameters.from_dict(params, user)

        profile = SafetyProfile.from_user(user)
        profile.experience_level = params.experience_level
        profile.health_conditions += [c for c in params.health_conditions if c not in profile.health_conditions]
        profile.physical_limitations += [
            c for c in params.physical_limitations if c not in profile.physical_limitations
        ]

        plan_check = self.validator.validate_fitness_plan(params.__dict__, profile)
        if not plan_check.valid:
            raise SafetyRejection('Plan parameters fail safety validation', plan_check)
        for warning in plan_check.warnings:
            logger.info("Plan warning for user %s: %s", user_id, warning)

        try:
            plan = params.to_plan(user.id)
            plan.is_generated = True
            candidates = self._resolve_candidates(plan, user)

            used = {}
            for week_number in range(1, plan.duration_weeks + 1):
                week = self._new_week(plan, week_number, plan.workouts_per_week)
                week.workouts = self._build_workouts(plan, week_number, candidates, profile, WeekAdjustments(), used)
                plan.weeks.append(week)

            # One usage event per exercise placed in the plan
            for exercise in used.values():
                exercise.increment_usage()

            db.session.add(plan)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.info(
            "Generated plan %s for user %s: %d weeks, %d workouts, %d distinct exercises",
            plan.id, user_id, plan.duration_weeks, plan.total_planned_workouts(), len(used),
        )
        return plan

    def regenerate_week(self, plan_id, week_number, adaptations=None, commit=True):
        """
        Rebuild one week's workouts from the plan's current parameters.

        The week row is kept (feedback survives); its workouts and their exercises are
        replaced. `adaptations` is a WeekAdjustments or its dict form.
        """
        plan = db.session.get(FitnessPlan, plan_id)
        if not plan:
            raise NotFoundError(f"Plan {plan_id} not found")
        if not 1 <= week_number <= plan.duration_weeks:
            raise NotFoundError(f"Week {week_number} not found in plan {plan_id}")
        hints = WeekAdjustments.coerce(adaptations)

        user = db.session.get(User, plan.user_id)
        profile = SafetyProfile.from_user(user, plan)
        try:
            candidates = self._resolve_candidates(plan, user)
            workouts_per_week = int(hints.workouts_per_week or plan.workouts_per_week)

            week = plan.get_week(week_number)
            if week is None:
                week = self._new_week(plan, week_number, workouts_per_week)
                plan.weeks.append(week)
            else:
                week.target_workouts = workouts_per_week

            old_ids = [w.id for w in week.workouts if w.id is not None]
            if old_ids:
                # Logs outlive the workouts they were recorded against
                ActivityLog.query.filter(ActivityLog.workout_id.in_(old_ids)).update({'workout_id': None})

            used = {}
            week.workouts = self._build_workouts(plan, week_number, candidates, profile, hints, used)
            week.completed_workouts = 0
            week.adherence_score = None
            if not hints.is_empty():
                week.adaptations_applied = list(week.adaptations_applied or []) + [hints.to_dict()]
            for exercise in used.values():
                exercise.increment_usage()

            if commit:
                db.session.commit()
            else:
                db.session.flush()
        except Exception:
            db.session.rollback()
            raise

        logger.info("Regenerated week %d of plan %s (%d workouts)", week_number, plan.id, len(week.workouts))
        return week

    def workout_constraints(self, level, plan_type):
        base = WORKOUT_CONSTRAINTS.get(level, WORKOUT_CONSTRAINTS['beginner'])
        sets_mult, intensity_mult = PLAN_TYPE_MULTIPLIERS.get(plan_type, (1.0, 1.0))
        ceiling = VOLUME_LIMITS.get(level, VOLUME_LIMITS['beginner'])['max']
        return {
            'max_sets_per_workout': min(ceiling, max(1, round(base['max_sets_per_workout'] * sets_mult))),
            'max_sets_per_muscle_group': max(1, round(base['max_sets_per_muscle_group'] * sets_mult)),
            'max_intensity': _clamp(round(base['max_intensity'] * intensity_mult), 1, 10),
            'rest_between_sets': base['rest_between_sets'],
            'rest_between_exercises': base['rest_between_exercises'],
            'volume_ceiling': ceiling,
        }

    def exercise_intensity(self, plan, constraints):
        """Base 6 plus plan-type, preference and experience deltas, within [1, 10]."""
        intensity = (
            BASE_INTENSITY
            + PLAN_TYPE_INTENSITY_DELTA.get(plan.plan_type, 0)
            + PREFERENCE_INTENSITY_DELTA.get(plan.intensity_preference or 'moderate', 0)
            + EXPERIENCE_INTENSITY_DELTA.get(plan.experience_level, 0)
        )
        intensity = _clamp(intensity, 1, 10)
        return min(intensity, constraints['max_intensity'])

    # ========== INTERNALS ==========

    def _suitability_profile(self, plan, user):
        preferred = []
        for area in plan.focus_areas or []:
            preferred += FOCUS_AREA_MUSCLES.get(area, [area])
        preferred += [m for m in (user.get_preference('preferred_muscle_groups') or []) if m not in preferred]
        health = list(user.health_conditions or [])
        health += [c for c in (plan.health_conditions or []) if c not in health]
        return SuitabilityProfile(
            experience_level=plan.experience_level,
            available_equipment=list(plan.available_equipment or []),
            health_conditions=health,
            disliked_exercises=list(plan.disliked_exercises or []),
            preferred_muscle_groups=preferred,
            goal=plan.plan_type,
        )

    def _resolve_candidates(self, plan, user):
        candidates = self.library.suitable(self._suitability_profile(plan, user))
        if len(candidates) < self.min_candidates:
            raise PreconditionError(
                f"Not enough suitable exercises for this profile "
                f"(found {len(candidates)}, need {self.min_candidates})"
            )
        return candidates

    def _new_week(self, plan, week_number, workouts_per_week):
        is_deload = plan.is_deload_week(week_number)
        start = plan.start_date + timedelta(days=7 * (week_number - 1))
        return FitnessPlanWeek(
            week_number=week_number,
            week_type='deload' if is_deload else 'normal',
            name=f"Week {week_number} - Deload" if is_deload else f"Week {week_number}",
            start_date=start,
            end_date=start + timedelta(days=6),
            intensity_modifier=0.8 if is_deload else 1.0,
            volume_modifier=0.8 if is_deload else 1.0,
            target_workouts=workouts_per_week,
        )

    def _build_workouts(self, plan, week_number, candidates, profile, hints, used):
        workouts_per_week = int(hints.workouts_per_week or plan.workouts_per_week)
        template = SPLIT_TEMPLATES.get(workouts_per_week, SPLIT_TEMPLATES[FALLBACK_SPLIT])
        days = WORKOUT_DAYS[workouts_per_week]
        week_start = plan.start_date + timedelta(days=7 * (week_number - 1))
        constraints = self.workout_constraints(plan.experience_level, plan.plan_type)

        budget = constraints['max_sets_per_workout']
        if hints.adjust_volume:
            budget = round(budget * (1 + hints.adjust_volume / 100.0))
        budget = _clamp(budget, 1, constraints['volume_ceiling'])

        excluded = {n.strip().lower() for n in hints.change_exercises}
        rest_between = constraints['rest_between_exercises']
        is_deload = plan.is_deload_week(week_number)

        workouts = []
        for index, day in enumerate(days, start=1):
            muscles = template[(index - 1) % len(template)]
            picks = self._select_exercises(muscles, candidates, constraints, budget, plan, profile, excluded)
            slots = [
                self._plan_exercise(exercise, sets, plan, constraints, week_number, is_deload, hints)
                for exercise, sets in picks
            ]
            slots, check = self._fit_workout(slots, plan, profile, rest_between)

            for order, slot in enumerate(slots, start=1):
                slot.order = order
                used[slot.exercise_id] = next(e for e, _ in picks if e.id == slot.exercise_id)

            intensities = [s.intensity_level for s in slots]
            workout = FitnessPlanWorkout(
                order=index,
                day_of_week=day,
                scheduled_date=week_start + timedelta(days=day - 1),
                name=workout_name(muscles, index),
                description=f"Targets {', '.join(m.replace('_', ' ') for m in muscles)}",
                workout_type=PLAN_WORKOUT_TYPES.get(plan.plan_type, 'strength'),
                status='planned',
                target_muscle_groups=list(muscles),
                estimated_duration_minutes=check.metrics.get('estimated_minutes', 0),
                target_intensity=round(sum(intensities) / len(intensities)) if intensities else None,
                estimated_calories=self._estimate_calories(slots, picks, profile, rest_between),
            )
            workout.exercises = slots
            workouts.append(workout)
        return workouts

    def _select_exercises(self, muscles, candidates, constraints, budget, plan, profile, excluded):
        """
        Pick 1-2 exercises per muscle group and split that group's sets between them.

        The workout budget is shared evenly across the groups still to be filled, each
        share capped by the per-group limit. Exercises failing a hard safety rule are
        skipped and the next candidate is considered.
        """
        preferred_categories = PREFERRED_CATEGORIES.get(plan.plan_type, DEFAULT_CATEGORIES)
        compounds_first = plan.plan_type in STRENGTH_GOALS
        picks, used_ids = [], set()
        remaining = budget

        for position, muscle in enumerate(muscles):
            if remaining <= 0:
                break
            groups_left = len(muscles) - position
            group_budget = min(constraints['max_sets_per_muscle_group'], max(1, remaining // groups_left))

            pool = [
                e for e in candidates
                if e.targets_muscle(muscle) and e.id not in used_ids and e.name.lower() not in excluded
            ]
            pool.sort(key=lambda e: (
                0 if e.category in preferred_categories else 1,
                0 if e.primary_muscle_group == muscle else 1,
                0 if (compounds_first and e.is_compound) else 1,
                -(e.average_rating or 0.0),
                e.name,
            ))

            wanted = 2 if group_budget >= 6 else 1
            chosen = self._first_safe(pool, wanted, profile)
            if not chosen:
                continue

            base, extra = divmod(group_budget, len(chosen))
            for i, exercise in enumerate(chosen):
                sets = max(1, base + (1 if i < extra else 0))
                picks.append((exercise, sets))
                used_ids.add(exercise.id)
                remaining -= sets

        if not picks:
            # Nothing targets these muscles: fall back to the best general candidates
            pool = [e for e in candidates if e.name.lower() not in excluded]
            for exercise in self._first_safe(pool, 2, profile):
                picks.append((exercise, max(1, min(3, budget // 2))))

        # Compounds lead the session
        picks.sort(key=lambda p: 0 if exercise_type_for(p[0]) == 'compound' else 1)
        return picks

    def _first_safe(self, pool, wanted, profile):
        chosen = []
        for exercise in pool:
            if len(chosen) == wanted:
                break
            check = self.validator.validate_exercise_for_user(exercise, profile)
            if not check.valid:
                logger.info("Skipping %s: %s", exercise.name, '; '.join(check.errors))
                continue
            chosen.append(exercise)
        return chosen

    def _plan_exercise(self, exercise, sets, plan, constraints, week_number, is_deload, hints):
        level = plan.experience_level
        if exercise.default_duration_seconds and not exercise.default_reps_min:
            reps_min = reps_max = reps_per_set = None
            duration = exercise.default_duration_seconds
        else:
            reps_min, reps_max = exercise.recommended_reps(level)
            reps_per_set = (reps_min + reps_max + 1) // 2
            duration = None

        intensity = self.exercise_intensity(plan, constraints)
        rest = max(0, (exercise.default_rest_seconds or constraints['rest_between_sets']) + hints.extra_rest_seconds)

        if is_deload:
            sets = max(1, sets - 1)
            intensity -= 1
        elif plan.progressive_overload and week_number > 1 and reps_max:
            factor = (plan.auto_progression_rate or 1.0) ** (week_number - 1)
            reps_max = self._progress_reps(reps_max, factor)
            reps_per_set = self._progress_reps(reps_per_set, factor)

        if hints.increase_difficulty:
            intensity += 1
        if hints.decrease_difficulty:
            intensity -= 1

        return FitnessPlanExercise(
            exercise_id=exercise.id,
            exercise_name=exercise.name,
            exercise_type=exercise_type_for(exercise),
            muscle_groups=[exercise.primary_muscle_group] + list(exercise.secondary_muscle_groups or []),
            equipment=list(exercise.equipment or []),
            instructions='\n'.join(exercise.instructions or []) or exercise.description,
            target_sets=sets,
            target_reps_min=reps_min,
            target_reps_max=reps_max,
            target_reps_per_set=reps_per_set,
            target_duration_seconds=duration,
            rest_seconds=rest,
            intensity_level=_clamp(intensity, 1, 10),
            status='planned',
        )

    @staticmethod
    def _progress_reps(reps, factor):
        cap = int(reps * MAX_REP_PROGRESSION)
        return max(reps, min(cap, round(reps * factor)))

    def _fit_workout(self, slots, plan, profile, rest_between):
        """Drop trailing exercises until the workout passes validation and fits the time cap."""
        check = self.validator.validate_workout(slots, profile, rest_between)
        while len(slots) > 1 and (
            not check.valid or check.metrics['estimated_minutes'] > plan.max_workout_duration_minutes
        ):
            slots = slots[:-1]
            check = self.validator.validate_workout(slots, profile, rest_between)
        return slots, check

    def _estimate_calories(self, slots, picks, profile, rest_between):
        by_id = {e.id: e for e, _ in picks}
        total = 0.0
        for slot in slots:
            minutes = estimate_duration_seconds([slot], rest_between) / 60.0
            total += by_id[slot.exercise_id].estimated_calories(minutes, profile.weight_kg or 70)
        return int(round(total))
