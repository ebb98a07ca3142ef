"""
Plan management: lifecycle, progress tracking, cloning and reporting
"""

import logging
from datetime import date, datetime, timedelta

from sqlalchemy.exc import IntegrityError

from fitplan.errors import (
    ConflictError, NotFoundError, PermissionDenied, PreconditionError, SafetyRejection, ValidationError,
)
from fitplan.exercises import ExerciseLibrary
from fitplan.generator import PlanGenerator, PlanParameters, parse_date
from fitplan.models import (
    db, User, FitnessPlan, FitnessPlanWeek, FitnessPlanWorkout, FitnessPlanExercise, ActivityLog, AdaptationLog,
    PLAN_STATUSES, PLAN_TYPES, EXPERIENCE_LEVELS,
)
from fitplan.safety import SafetyValidator, SafetyProfile

logger = logging.getLogger(__name__)


UPDATABLE_FIELDS = [
    'name', 'description', 'duration_weeks', 'workouts_per_week', 'max_workout_duration_minutes',
    'preferred_workout_time', 'location', 'available_equipment', 'health_conditions',
    'physical_limitations', 'disliked_exercises', 'focus_areas', 'primary_goals', 'target_metrics',
    'intensity_preference', 'progressive_overload', 'auto_progression_rate', 'deload_frequency',
    'is_template', 'is_public', 'start_date',
]

# Copied by clone; counters and timestamps are not
PLAN_STRUCTURE = [
    'description', 'plan_type', 'experience_level', 'duration_weeks', 'workouts_per_week',
    'rest_days_per_week', 'max_workout_duration_minutes', 'preferred_workout_time', 'location',
    'available_equipment', 'health_conditions', 'physical_limitations', 'disliked_exercises',
    'focus_areas', 'primary_goals', 'target_metrics', 'intensity_preference', 'progressive_overload',
    'auto_progression_rate', 'deload_frequency', 'is_generated',
]
WEEK_STRUCTURE = [
    'week_number', 'week_type', 'name', 'description', 'intensity_modifier', 'volume_modifier',
    'target_workouts',
]
WORKOUT_STRUCTURE = [
    'order', 'day_of_week', 'name', 'description', 'workout_type', 'target_muscle_groups',
    'estimated_duration_minutes', 'target_intensity', 'estimated_calories',
]
EXERCISE_STRUCTURE = [
    'exercise_id', 'order', 'exercise_name', 'exercise_type', 'muscle_groups', 'equipment',
    'instructions', 'target_sets', 'target_reps_min', 'target_reps_max', 'target_reps_per_set',
    'target_weight_kg', 'target_duration_seconds', 'rest_seconds', 'intensity_level',
]

PLAN_SORT_FIELDS = {'created_at', 'start_date', 'name', 'duration_weeks', 'adherence_score', 'completion_percentage'}


def _copy(value):
    if isinstance(value, list):
        return list(value)
    if isinstance(value, dict):
        return dict(value)
    return value


def _copy_fields(source, fields):
    return {name: _copy(getattr(source, name)) for name in fields}


def _bounded(data, key, low, high, cast=float):
    value = data.get(key)
    if value is None:
        return None
    try:
        value = cast(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be a number")
    if not low <= value <= high:
        raise ValidationError(f"{key} must be between {low} and {high}")
    return value


class FitnessPlanService:

    def __init__(self, generator=None, validator=None, library=None):
        self.validator = validator or SafetyValidator()
        self.library = library or ExerciseLibrary()
        self.generator = generator or PlanGenerator(library=self.library, validator=self.validator)

    # ========== CRUD ==========

    def create_plan(self, user_id, data):
        """Persist an empty draft plan from validated parameters."""
        user = self._user(user_id)
        params = PlanParameters.from_dict(data, user)
        plan = params.to_plan(user.id)
        db.session.add(plan)
        db.session.commit()
        logger.info("Created plan %s for user %s", plan.id, user_id)
        return plan

    def generate_plan(self, user_id, data):
        return self.generator.generate_fitness_plan(user_id, data)

    def get_plan(self, plan_id, user_id=None):
        plan = db.session.get(FitnessPlan, plan_id)
        if not plan:
            raise NotFoundError(f"Plan {plan_id} not found")
        if user_id is not None and plan.user_id != user_id:
            raise PermissionDenied('You do not have access to this plan')
        return plan

    def list_plans(self, user_id, filters=None, sort_by='created_at', sort_order='desc', limit=20, offset=0):
        """
        List a user's plans.

        Args:
            filters: plan_type, status, experience_level, is_template, min_duration,
                     max_duration, start_after, start_before, equipment
            sort_by: one of PLAN_SORT_FIELDS
            limit, offset: pagination

        Returns:
            dict with plans, total, limit, offset
        """
        filters = filters or {}
        query = FitnessPlan.query.filter_by(user_id=user_id)

        if filters.get('plan_type'):
            if filters['plan_type'] not in PLAN_TYPES:
                raise ValidationError(f"Unknown plan type: {filters['plan_type']}")
            query = query.filter(FitnessPlan.plan_type == filters['plan_type'])
        if filters.get('status'):
            if filters['status'] not in PLAN_STATUSES:
                raise ValidationError(f"Unknown status: {filters['status']}")
            query = query.filter(FitnessPlan.status == filters['status'])
        if filters.get('experience_level'):
            if filters['experience_level'] not in EXPERIENCE_LEVELS:
                raise ValidationError(f"Unknown experience level: {filters['experience_level']}")
            query = query.filter(FitnessPlan.experience_level == filters['experience_level'])
        if filters.get('is_template') is not None:
            query = query.filter(FitnessPlan.is_template == bool(filters['is_template']))
        if filters.get('min_duration') is not None:
            query = query.filter(FitnessPlan.duration_weeks >= int(filters['min_duration']))
        if filters.get('max_duration') is not None:
            query = query.filter(FitnessPlan.duration_weeks <= int(filters['max_duration']))
        start_after = parse_date(filters.get('start_after'), 'start_after')
        if start_after:
            query = query.filter(FitnessPlan.start_date >= start_after)
        start_before = parse_date(filters.get('start_before'), 'start_before')
        if start_before:
            query = query.filter(FitnessPlan.start_date <= start_before)

        if sort_by not in PLAN_SORT_FIELDS:
            raise ValidationError(f"Cannot sort plans by {sort_by}")
        column = getattr(FitnessPlan, sort_by)
        query = query.order_by(column.asc() if sort_order == 'asc' else column.desc(), FitnessPlan.id)
        plans = query.all()

        # JSON column, filtered here
        equipment = filters.get('equipment')
        if equipment:
            wanted = {equipment} if isinstance(equipment, str) else set(equipment)
            plans = [p for p in plans if wanted & set(p.available_equipment or [])]

        return {
            'plans': plans[offset:offset + limit],
            'total': len(plans),
            'limit': limit,
            'offset': offset,
        }

    def update_plan(self, plan_id, user_id, data):
        """Update parameters. An ACTIVE plan only accepts a move to paused."""
        plan = self.get_plan(plan_id, user_id)
        data = dict(data or {})
        target_status = data.pop('status', None)
        changes = {k: v for k, v in data.items() if k in UPDATABLE_FIELDS}

        if plan.status == 'active' and (changes or target_status not in (None, 'paused')):
            raise PreconditionError('Active plans cannot be edited; pause the plan first')
        if plan.status in ('completed', 'cancelled') and changes:
            raise PreconditionError(f"A {plan.status} plan cannot be edited")

        if changes:
            current = {name: _copy(getattr(plan, name)) for name in UPDATABLE_FIELDS}
            current['plan_type'] = plan.plan_type
            current['experience_level'] = plan.experience_level
            merged = {**current, **changes}
            # Only a new start date has to be in the future
            today = date.today() if 'start_date' in changes else min(date.today(), plan.start_date)
            params = PlanParameters.from_dict(merged, today=today)
            for name in UPDATABLE_FIELDS:
                if name in changes:
                    setattr(plan, name, getattr(params, name))
            plan.end_date = FitnessPlan.compute_end_date(plan.start_date, plan.duration_weeks)
            plan.rest_days_per_week = 7 - plan.workouts_per_week
            plan.weeks = [w for w in plan.weeks if w.week_number <= plan.duration_weeks]

        try:
            if target_status == 'paused':
                plan.pause()
            elif target_status == 'cancelled':
                plan.cancel()
            elif target_status == 'completed':
                plan.complete()
            elif target_status == 'active':
                db.session.commit()
                return self.activate_plan(plan.id, user_id)
            elif target_status is not None and target_status != plan.status:
                raise ValidationError(f"Cannot set status to {target_status} through an update")
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return plan

    def delete_plan(self, plan_id, user_id):
        plan = self.get_plan(plan_id, user_id)
        if plan.status == 'active':
            raise PreconditionError('Active plans cannot be deleted; pause or cancel it first')
        # Logs outlive the plan they were recorded against
        ActivityLog.query.filter_by(plan_id=plan.id).update({'plan_id': None, 'workout_id': None})
        AdaptationLog.query.filter_by(plan_id=plan.id).update({'plan_id': None})
        db.session.delete(plan)
        db.session.commit()
        logger.info("Deleted plan %s", plan_id)

    # ========== LIFECYCLE ==========

    def activate_plan(self, plan_id, user_id):
        """
        Activate a plan, pausing whichever plan of the user was active.

        The user's plan rows are locked, the demotion is a single UPDATE and the
        whole sequence commits once. The partial unique index on active plans turns
        a lost race into a ConflictError.
        """
        plan = self.get_plan(plan_id, user_id)
        if not plan.can_transition('active'):
            raise PreconditionError(f"Cannot move plan from {plan.status} to active")
        if plan.is_expired():
            raise PreconditionError('This plan has already ended')

        try:
            FitnessPlan.query.filter_by(user_id=plan.user_id).with_for_update().all()
            demoted = FitnessPlan.query.filter(
                FitnessPlan.user_id == plan.user_id,
                FitnessPlan.status == 'active',
                FitnessPlan.id != plan.id,
            ).update({'status': 'paused', 'paused_at': datetime.utcnow()}, synchronize_session='fetch')
            plan.activate()
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise ConflictError('Another plan was activated at the same time, try again')
        except Exception:
            db.session.rollback()
            raise

        logger.info("Activated plan %s for user %s (%d plan(s) paused)", plan.id, plan.user_id, demoted)
        return plan

    def pause_plan(self, plan_id, user_id):
        return self._lifecycle(plan_id, user_id, 'pause')

    def resume_plan(self, plan_id, user_id):
        plan = self.get_plan(plan_id, user_id)
        if plan.status != 'paused':
            raise PreconditionError('Only paused plans can be resumed')
        return self.activate_plan(plan_id, user_id)

    def complete_plan(self, plan_id, user_id):
        return self._lifecycle(plan_id, user_id, 'complete')

    def cancel_plan(self, plan_id, user_id):
        return self._lifecycle(plan_id, user_id, 'cancel')

    def _lifecycle(self, plan_id, user_id, action):
        plan = self.get_plan(plan_id, user_id)
        getattr(plan, action)()
        db.session.commit()
        logger.info("Plan %s: %s -> %s", plan.id, action, plan.status)
        return plan

    # ========== PROGRESS ==========

    def record_progress(self, plan_id, user_id, data):
        """
        Record a finished or skipped workout of an ACTIVE plan.

        Args:
            data: workout_id, completed (default true), duration_minutes, intensity (1-10),
                  calories, difficulty (1-5), satisfaction (1-5), notes, skip_reason,
                  exercises: [{id, reps, weights, duration_seconds, rpe, form_rating, difficulty}]

        Returns:
            the updated FitnessPlanWorkout
        """
        plan = self.get_plan(plan_id, user_id)
        if plan.status != 'active':
            raise PreconditionError('Progress can only be recorded on an active plan')
        data = data or {}
        workout = self._plan_workout(plan, data.get('workout_id'))

        completed = bool(data.get('completed', True))
        intensity = _bounded(data, 'intensity', 1, 10)
        difficulty = _bounded(data, 'difficulty', 1, 5, int)
        satisfaction = _bounded(data, 'satisfaction', 1, 5, int)
        duration = _bounded(data, 'duration_minutes', 0, 600)
        calories = _bounded(data, 'calories', 0, 10000)

        try:
            if completed:
                by_id = {e.id: e for e in workout.exercises}
                for item in data.get('exercises') or []:
                    exercise = by_id.get(item.get('id'))
                    if exercise is None:
                        raise NotFoundError(f"Exercise {item.get('id')} is not part of this workout")
                    exercise.complete(
                        reps=item.get('reps'),
                        weights=item.get('weights'),
                        duration_seconds=item.get('duration_seconds'),
                        rpe=_bounded(item, 'rpe', 1, 10),
                        form_rating=_bounded(item, 'form_rating', 1, 5, int),
                        difficulty=_bounded(item, 'difficulty', 1, 5, int),
                        notes=item.get('notes'),
                    )
                if calories is None:
                    calories = workout.estimated_calories
                workout.complete(duration_minutes=duration, intensity=intensity, calories=calories,
                                 difficulty=difficulty, satisfaction=satisfaction, notes=data.get('notes'))

                plan.total_workouts_completed = (plan.total_workouts_completed or 0) + 1
                plan.total_minutes_exercised = (plan.total_minutes_exercised or 0) + (duration or 0)
                plan.total_calories_burned = (plan.total_calories_burned or 0) + (calories or 0)
                if satisfaction is not None:
                    plan.record_satisfaction(satisfaction)
            else:
                workout.skip(data.get('skip_reason'))

            workout.week.update_progress()
            planned = plan.total_planned_workouts()
            if planned:
                plan.completion_percentage = round(100.0 * (plan.total_workouts_completed or 0) / planned, 1)

            db.session.add(ActivityLog(
                user_id=plan.user_id,
                plan_id=plan.id,
                workout_id=workout.id,
                completed=completed,
                intensity=intensity,
                duration_minutes=duration,
                calories=calories if completed else None,
                source='plan',
            ))
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.info("Recorded %s workout %s on plan %s",
                    'completed' if completed else 'skipped', workout.id, plan.id)
        return workout

    def log_activity(self, user_id, data):
        """Training done outside the plan; it still counts toward adherence."""
        data = data or {}
        log = ActivityLog(
            user_id=user_id,
            completed=bool(data.get('completed', True)),
            intensity=_bounded(data, 'intensity', 1, 10),
            duration_minutes=_bounded(data, 'duration_minutes', 0, 600),
            calories=_bounded(data, 'calories', 0, 10000),
            source='manual',
        )
        db.session.add(log)
        db.session.commit()
        return log

    def progress_summary(self, plan_id, user_id, today=None):
        plan = self.get_plan(plan_id, user_id)
        current = plan.current_week_number(today)

        weight_trends = {}
        suggestions = {}
        for week in plan.weeks:
            for workout in week.workouts:
                for exercise in workout.exercises:
                    if exercise.status != 'completed':
                        continue
                    weights = [w for w in (exercise.actual_weights or []) if w]
                    if weights:
                        weight_trends.setdefault(exercise.exercise_name, []).append(max(weights))
                    # Later sessions overwrite earlier ones
                    suggestions[exercise.exercise_name] = exercise.progression_suggestion()

        next_week = plan.get_week(current + 1)
        return {
            'plan_id': plan.id,
            'status': plan.status,
            'current_week': current,
            'duration_weeks': plan.duration_weeks,
            'completion_percentage': plan.completion_percentage or 0.0,
            'adherence_score': plan.adherence_score or 0.0,
            'average_satisfaction': plan.average_satisfaction,
            'total_workouts_completed': plan.total_workouts_completed or 0,
            'total_planned_workouts': plan.total_planned_workouts(),
            'total_minutes_exercised': plan.total_minutes_exercised or 0.0,
            'total_calories_burned': plan.total_calories_burned or 0.0,
            'weeks': [w.to_dict() for w in plan.weeks],
            'weight_trends': weight_trends,
            'progression_suggestions': suggestions,
            'next_week': next_week.to_dict(include_workouts=True) if next_week else None,
        }

    def adapt_week(self, plan_id, user_id, week_number, adaptations=None):
        plan = self.get_plan(plan_id, user_id)
        if plan.status not in ('active', 'draft'):
            raise PreconditionError('Only active or draft plans can be adapted')
        try:
            week_number = int(week_number)
        except (TypeError, ValueError):
            raise ValidationError('week_number must be an integer')

        week = self.generator.regenerate_week(plan.id, week_number, adaptations, commit=False)
        plan.add_adaptation({
            'date': date.today().isoformat(),
            'week_number': week_number,
            'trigger': 'manual',
            'adaptations': adaptations or {},
        })
        db.session.commit()
        return week

    # ========== VALIDATION ==========

    def validate_plan(self, plan_id, user_id):
        """Plan-level rules plus every workout of the tree."""
        plan = self.get_plan(plan_id, user_id)
        profile = self._profile(plan)
        plan_result = self.validator.validate_fitness_plan(plan, profile)

        workouts = []
        for week in plan.weeks:
            for workout in week.workouts:
                result = self.validator.validate_workout(list(workout.exercises), profile)
                if result.violations:
                    workouts.append({
                        'week_number': week.week_number,
                        'workout_id': workout.id,
                        'name': workout.name,
                        'result': result.to_dict(),
                    })
        return {
            'valid': plan_result.valid and all(w['result']['valid'] for w in workouts),
            'plan': plan_result.to_dict(),
            'workouts': workouts,
        }

    def validate_exercise_parameters(self, data, user=None):
        data = data or {}
        if not data.get('exercise_name'):
            raise ValidationError('exercise_name is required')
        sets = _bounded(data, 'sets', -1000, 1000, int)
        reps = _bounded(data, 'reps', -1000, 1000, int)
        weight = _bounded(data, 'weight', -10000, 10000)
        profile = SafetyProfile.from_user(user) if user is not None else None
        if data.get('body_weight') is not None:
            profile = profile or SafetyProfile()
            profile.weight_kg = _bounded(data, 'body_weight', 1, 500)
        return self.validator.validate_exercise_parameters(data['exercise_name'], sets, reps, weight, profile)

    def validate_exercise_for_user(self, exercise_id, user):
        exercise = self.library.get(exercise_id)
        return self.validator.validate_exercise_for_user(exercise, SafetyProfile.from_user(user))

    def progression_recommendations(self, plan_id, user_id, adherence_rate=None, feedback=None):
        plan = self.get_plan(plan_id, user_id)
        if adherence_rate is None:
            adherence_rate = plan.adherence_score or 0.0
        current = plan.current_week_number()
        return self.validator.progression_recommendations(plan, adherence_rate, feedback, week_number=current)

    # ========== SESSIONS ==========

    def workout_action(self, workout_id, user_id, action, data=None):
        """start, complete, skip or modify a single workout."""
        data = data or {}
        workout = db.session.get(FitnessPlanWorkout, workout_id)
        if not workout:
            raise NotFoundError(f"Workout {workout_id} not found")
        plan = self.get_plan(workout.week.plan_id, user_id)

        if action == 'complete':
            return self.record_progress(plan.id, user_id, {**data, 'workout_id': workout.id, 'completed': True})
        if action == 'skip':
            return self.record_progress(plan.id, user_id, {**data, 'workout_id': workout.id, 'completed': False})
        if action == 'start':
            if plan.status != 'active':
                raise PreconditionError('Workouts can only be started on an active plan')
            workout.start()
        elif action == 'modify':
            if plan.status in ('completed', 'cancelled'):
                raise PreconditionError(f"Workouts of a {plan.status} plan cannot be modified")
            changes = {k: v for k, v in data.items() if k in ('name', 'description', 'day_of_week', 'notes')}
            if 'day_of_week' in changes and changes['day_of_week'] not in range(1, 8):
                raise ValidationError('day_of_week must be between 1 and 7')
            workout.modify(changes)
            for name, value in changes.items():
                setattr(workout, name, value)
        else:
            raise ValidationError(f"Unknown workout action: {action}")
        db.session.commit()
        return workout

    def exercise_action(self, plan_exercise_id, user_id, action, data=None):
        """start, complete, skip or modify one exercise of a workout."""
        data = data or {}
        exercise = db.session.get(FitnessPlanExercise, plan_exercise_id)
        if not exercise:
            raise NotFoundError(f"Plan exercise {plan_exercise_id} not found")
        plan = self.get_plan(exercise.workout.week.plan_id, user_id)
        if plan.status in ('completed', 'cancelled'):
            raise PreconditionError(f"Exercises of a {plan.status} plan cannot change")

        if action == 'start':
            exercise.start()
        elif action == 'complete':
            exercise.complete(
                reps=data.get('reps'),
                weights=data.get('weights'),
                duration_seconds=data.get('duration_seconds'),
                rpe=_bounded(data, 'rpe', 1, 10),
                form_rating=_bounded(data, 'form_rating', 1, 5, int),
                difficulty=_bounded(data, 'difficulty', 1, 5, int),
                notes=data.get('notes'),
            )
        elif action == 'skip':
            exercise.skip(data.get('reason'))
        elif action == 'modify':
            sets = data.get('target_sets', exercise.target_sets)
            reps = data.get('target_reps_per_set', exercise.target_reps_per_set or exercise.target_reps_max)
            weight = data.get('target_weight_kg', exercise.target_weight_kg)
            check = self.validator.validate_exercise_parameters(
                exercise.exercise_name, sets, reps, weight, self._profile(plan)
            )
            if not check.valid:
                raise SafetyRejection('Exercise parameters fail safety validation', check)
            exercise.modify(
                target_sets=data.get('target_sets'),
                target_reps_per_set=data.get('target_reps_per_set'),
                target_weight_kg=data.get('target_weight_kg'),
                notes=data.get('notes'),
            )
        else:
            raise ValidationError(f"Unknown exercise action: {action}")
        db.session.commit()
        return exercise

    # ========== CLONING & TEMPLATES ==========

    def clone_plan(self, plan_id, user_id, data=None):
        """
        Copy a plan's structure for a user: same parameters and workout tree, fresh
        progress, status draft, new dates. Public templates can be cloned by anyone.
        """
        data = data or {}
        source = self.get_plan(plan_id)
        if source.user_id != user_id and not (source.is_template and source.is_public):
            raise PermissionDenied('You do not have access to this plan')
        user = self._user(user_id)

        start_date = parse_date(data.get('start_date'), 'start_date') or date.today()
        if start_date < date.today():
            raise ValidationError('Start date cannot be in the past')
        shift = timedelta(days=(start_date - source.start_date).days)

        clone = FitnessPlan(
            user_id=user.id,
            name=data.get('name') or f"{source.name} (copy)",
            status='draft',
            start_date=start_date,
            end_date=FitnessPlan.compute_end_date(start_date, source.duration_weeks),
            cloned_from_id=source.id,
            adaptation_history=[],
            **_copy_fields(source, PLAN_STRUCTURE),
        )
        for week in source.weeks:
            new_week = FitnessPlanWeek(
                start_date=week.start_date + shift if week.start_date else None,
                end_date=week.end_date + shift if week.end_date else None,
                completed_workouts=0,
                **_copy_fields(week, WEEK_STRUCTURE),
            )
            for workout in week.workouts:
                new_workout = FitnessPlanWorkout(
                    scheduled_date=workout.scheduled_date + shift if workout.scheduled_date else None,
                    status='planned',
                    **_copy_fields(workout, WORKOUT_STRUCTURE),
                )
                new_workout.exercises = [
                    FitnessPlanExercise(status='planned', **_copy_fields(e, EXERCISE_STRUCTURE))
                    for e in workout.exercises
                ]
                new_week.workouts.append(new_workout)
            clone.weeks.append(new_week)

        try:
            db.session.add(clone)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        logger.info("Cloned plan %s into %s for user %s", source.id, clone.id, user_id)
        return clone

    def templates(self, plan_type=None, limit=20):
        query = FitnessPlan.query.filter_by(is_template=True, is_public=True, trainer_approved=True)
        if plan_type:
            query = query.filter(FitnessPlan.plan_type == plan_type)
        return query.order_by(FitnessPlan.created_at.desc(), FitnessPlan.id.desc()).limit(limit).all()

    def stats(self, user_id):
        plans = FitnessPlan.query.filter_by(user_id=user_id).all()

        def average(values):
            values = [v for v in values if v is not None]
            return round(sum(values) / len(values), 1) if values else 0.0

        by_status, by_type = {}, {}
        for plan in plans:
            by_status[plan.status] = by_status.get(plan.status, 0) + 1
            by_type[plan.plan_type] = by_type.get(plan.plan_type, 0) + 1

        return {
            'total_plans': len(plans),
            'by_status': by_status,
            'by_type': by_type,
            'average_completion': average([p.completion_percentage for p in plans]),
            'average_adherence': average([p.adherence_score for p in plans]),
            'average_satisfaction': average([p.average_satisfaction for p in plans]),
            'total_workouts_completed': sum(p.total_workouts_completed or 0 for p in plans),
            'total_calories_burned': round(sum(p.total_calories_burned or 0 for p in plans), 1),
            'total_minutes_exercised': round(sum(p.total_minutes_exercised or 0 for p in plans), 1),
        }

    # ========== HELPERS ==========

    def _user(self, user_id):
        user = db.session.get(User, user_id)
        if not user:
            raise NotFoundError(f"User {user_id} not found")
        return user

    def _profile(self, plan):
        return SafetyProfile.from_user(self._user(plan.user_id), plan)

    def _plan_workout(self, plan, workout_id):
        if workout_id is None:
            raise ValidationError('workout_id is required')
        workout = db.session.get(FitnessPlanWorkout, workout_id)
        if not workout or workout.week.plan_id != plan.id:
            raise NotFoundError(f"Workout {workout_id} not found in plan {plan.id}")
        return workout
