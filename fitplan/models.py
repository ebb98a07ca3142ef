from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import text
from datetime import datetime, date, timedelta

from fitplan.errors import PreconditionError, ValidationError

db = SQLAlchemy()


# ========== VOCABULARY ==========

EXPERIENCE_LEVELS = ['beginner', 'intermediate', 'advanced', 'expert']
LEVEL_RANK = {level: i for i, level in enumerate(EXPERIENCE_LEVELS)}

PLAN_TYPES = [
    'weight_loss', 'muscle_gain', 'strength_building', 'endurance', 'general_fitness',
    'rehabilitation', 'sports_specific', 'flexibility', 'maintenance',
]

PLAN_STATUSES = ['draft', 'active', 'paused', 'completed', 'cancelled']

# Completed and cancelled are terminal
PLAN_TRANSITIONS = {
    'draft': {'active', 'cancelled'},
    'active': {'paused', 'completed', 'cancelled'},
    'paused': {'active', 'completed', 'cancelled'},
    'completed': set(),
    'cancelled': set(),
}

WEEK_TYPES = ['normal', 'deload', 'peak', 'recovery', 'assessment']

WORKOUT_TYPES = ['strength', 'cardio', 'hiit', 'yoga', 'flexibility', 'circuit', 'rehabilitation', 'mixed']

# Shared by workouts and plan exercises
SESSION_TRANSITIONS = {
    'planned': {'in_progress', 'completed', 'skipped', 'modified'},
    'in_progress': {'completed', 'skipped', 'modified'},
    'modified': {'in_progress', 'completed', 'skipped'},
    'completed': set(),
    'skipped': set(),
}

EXERCISE_TYPES = ['compound', 'isolation', 'cardio', 'flexibility', 'balance', 'plyometric', 'isometric']

EXERCISE_CATEGORIES = [
    'resistance', 'calisthenics', 'yoga', 'cardio', 'flexibility', 'balance', 'core',
    'functional', 'rehabilitation', 'warm_up', 'cool_down',
]

EQUIPMENT_TYPES = [
    'none', 'bodyweight', 'dumbbells', 'barbell', 'resistance_bands', 'kettlebell', 'pull_up_bar',
    'yoga_mat', 'medicine_ball', 'foam_roller', 'stability_ball', 'suspension_trainer',
    'cable_machine', 'bench', 'box', 'step',
]

# Equipment entries that mean "nothing required"
NO_EQUIPMENT = {'none', 'bodyweight'}

MUSCLE_GROUPS = [
    'chest', 'back', 'shoulders', 'biceps', 'triceps', 'forearms', 'core', 'quadriceps',
    'hamstrings', 'glutes', 'calves', 'full_body', 'cardio',
]

DAY_NAMES = {1: 'Monday', 2: 'Tuesday', 3: 'Wednesday', 4: 'Thursday', 5: 'Friday', 6: 'Saturday', 7: 'Sunday'}


def overlapping_terms(left, right):
    """Items of `left` matching some item of `right`, case-insensitive substring either way."""
    right_norm = [r.strip().lower() for r in (right or []) if r and r.strip()]
    matches = []
    for item in left or []:
        if not item or not item.strip():
            continue
        norm = item.strip().lower()
        if any(norm in other or other in norm for other in right_norm):
            matches.append(item)
    return matches


def _iso(value):
    return value.isoformat() if value else None


# ========== USER PROFILE ==========

class User(db.Model):
    """User profile, read by the planner but never modified"""
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    name = db.Column(db.String(100))
    birth_year = db.Column(db.Integer)

    experience_level = db.Column(db.String(20), default='beginner')
    weight_kg = db.Column(db.Float)

    equipment = db.Column(db.JSON, default=list)
    health_conditions = db.Column(db.JSON, default=list)
    physical_limitations = db.Column(db.JSON, default=list)
    injury_history = db.Column(db.JSON, default=list)
    # disliked_exercises, preferred_muscle_groups, intensity_preference, preferred_workout_time
    preferences = db.Column(db.JSON, default=dict)

    is_admin = db.Column(db.Boolean, default=False)
    is_active = db.Column(db.Boolean, default=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    plans = db.relationship('FitnessPlan', backref='user', lazy='dynamic')

    def get_real_age(self):
        if self.birth_year:
            return datetime.now().year - self.birth_year
        return None

    def get_preference(self, key, default=None):
        return (self.preferences or {}).get(key, default)


# ========== EXERCISE CATALOG ==========

class Exercise(db.Model):
    """Shared catalog exercise"""
    __tablename__ = 'exercises'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), unique=True, nullable=False)
    description = db.Column(db.Text)
    instructions = db.Column(db.JSON, default=list)

    category = db.Column(db.String(30), nullable=False)
    difficulty_level = db.Column(db.String(20), nullable=False, default='beginner')
    primary_muscle_group = db.Column(db.String(30), nullable=False)
    secondary_muscle_groups = db.Column(db.JSON, default=list)
    equipment = db.Column(db.JSON, default=list)

    # Safety metadata
    contraindications = db.Column(db.JSON, default=list)
    health_conditions_to_avoid = db.Column(db.JSON, default=list)
    injury_warnings = db.Column(db.JSON, default=list)
    safety_notes = db.Column(db.JSON, default=list)
    form_cues = db.Column(db.JSON, default=list)
    video_url = db.Column(db.String(500))

    # Defaults
    default_sets = db.Column(db.Integer)
    default_reps_min = db.Column(db.Integer)
    default_reps_max = db.Column(db.Integer)
    default_duration_seconds = db.Column(db.Integer)
    default_rest_seconds = db.Column(db.Integer)

    # Links to other catalog entries (ids)
    progression_exercise_ids = db.Column(db.JSON, default=list)
    regression_exercise_ids = db.Column(db.JSON, default=list)
    alternative_exercise_ids = db.Column(db.JSON, default=list)

    calories_per_minute = db.Column(db.Float)
    met_value = db.Column(db.Float)
    tags = db.Column(db.JSON, default=list)

    is_compound = db.Column(db.Boolean, default=False)
    is_unilateral = db.Column(db.Boolean, default=False)
    is_bodyweight = db.Column(db.Boolean, default=False)
    is_cardio = db.Column(db.Boolean, default=False)
    is_active = db.Column(db.Boolean, default=True)
    is_approved = db.Column(db.Boolean, default=False)

    created_by = db.Column(db.String(100))
    approved_by = db.Column(db.String(100))
    approval_date = db.Column(db.DateTime)

    usage_count = db.Column(db.Integer, default=0)
    average_rating = db.Column(db.Float, default=0.0)
    total_ratings = db.Column(db.Integer, default=0)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def required_equipment(self):
        return {e.lower() for e in (self.equipment or [])} - NO_EQUIPMENT

    def targets_muscle(self, muscle_group):
        return self.primary_muscle_group == muscle_group or muscle_group in (self.secondary_muscle_groups or [])

    def is_available_for_equipment(self, available):
        available = {e.lower() for e in (available or [])}
        return self.required_equipment <= available

    def is_safe_for_conditions(self, conditions):
        return not overlapping_terms(self.health_conditions_to_avoid, conditions)

    def is_suitable_for_level(self, level):
        return LEVEL_RANK.get(self.difficulty_level, 0) <= LEVEL_RANK.get(level, 0)

    def increment_usage(self):
        self.usage_count = (self.usage_count or 0) + 1

    def update_rating(self, rating):
        if isinstance(rating, bool) or not isinstance(rating, (int, float)) or not 1 <= rating <= 5:
            raise ValidationError('Rating must be between 1 and 5')
        n = self.total_ratings or 0
        self.average_rating = ((self.average_rating or 0.0) * n + rating) / (n + 1)
        self.total_ratings = n + 1

    def approve(self, approved_by):
        self.is_approved = True
        self.approved_by = str(approved_by)
        self.approval_date = datetime.utcnow()

    def estimated_calories(self, minutes, weight_kg=70):
        """MET-based estimate, falling back to calories per minute."""
        if self.met_value:
            return round(self.met_value * (weight_kg or 70) * (minutes / 60.0), 1)
        if self.calories_per_minute:
            return round(self.calories_per_minute * minutes, 1)
        return round(5.0 * minutes, 1)

    def recommended_sets(self, level):
        base = self.default_sets or 3
        multiplier = {'beginner': 0.7, 'intermediate': 1.0, 'advanced': 1.3, 'expert': 1.5}.get(level, 1.0)
        return max(1, round(base * multiplier))

    def recommended_reps(self, level):
        base_min = self.default_reps_min or 8
        base_max = self.default_reps_max or 12
        adj_min, adj_max = {
            'beginner': (-2, -2),
            'intermediate': (0, 0),
            'advanced': (2, 3),
            'expert': (3, 5),
        }.get(level, (0, 0))
        reps_min = max(1, base_min + adj_min)
        reps_max = max(reps_min + 1, base_max + adj_max)
        return reps_min, reps_max

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'instructions': self.instructions or [],
            'category': self.category,
            'difficulty_level': self.difficulty_level,
            'primary_muscle_group': self.primary_muscle_group,
            'secondary_muscle_groups': self.secondary_muscle_groups or [],
            'equipment': self.equipment or [],
            'contraindications': self.contraindications or [],
            'health_conditions_to_avoid': self.health_conditions_to_avoid or [],
            'injury_warnings': self.injury_warnings or [],
            'safety_notes': self.safety_notes or [],
            'form_cues': self.form_cues or [],
            'default_sets': self.default_sets,
            'default_reps_min': self.default_reps_min,
            'default_reps_max': self.default_reps_max,
            'default_duration_seconds': self.default_duration_seconds,
            'default_rest_seconds': self.default_rest_seconds,
            'progression_exercise_ids': self.progression_exercise_ids or [],
            'regression_exercise_ids': self.regression_exercise_ids or [],
            'alternative_exercise_ids': self.alternative_exercise_ids or [],
            'met_value': self.met_value,
            'calories_per_minute': self.calories_per_minute,
            'tags': self.tags or [],
            'is_compound': self.is_compound,
            'is_unilateral': self.is_unilateral,
            'is_bodyweight': self.is_bodyweight,
            'is_cardio': self.is_cardio,
            'is_active': self.is_active,
            'is_approved': self.is_approved,
            'usage_count': self.usage_count or 0,
            'average_rating': round(self.average_rating or 0.0, 2),
            'total_ratings': self.total_ratings or 0,
        }


# ========== FITNESS PLAN TREE ==========

class FitnessPlan(db.Model):
    """Multi-week training plan"""
    __tablename__ = 'fitness_plans'
    __table_args__ = (
        # At most one ACTIVE plan per user
        db.Index(
            'uq_fitness_plans_one_active', 'user_id', unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)

    name = db.Column(db.String(150), nullable=False)
    description = db.Column(db.Text)
    plan_type = db.Column(db.String(30), nullable=False, default='general_fitness')
    status = db.Column(db.String(20), nullable=False, default='draft')
    experience_level = db.Column(db.String(20), nullable=False, default='beginner')

    # Schedule
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    duration_weeks = db.Column(db.Integer, nullable=False)
    workouts_per_week = db.Column(db.Integer, nullable=False)
    rest_days_per_week = db.Column(db.Integer)
    max_workout_duration_minutes = db.Column(db.Integer, default=60)
    preferred_workout_time = db.Column(db.String(20))

    # Constraints
    location = db.Column(db.String(20), default='home')
    available_equipment = db.Column(db.JSON, default=list)
    health_conditions = db.Column(db.JSON, default=list)
    physical_limitations = db.Column(db.JSON, default=list)
    disliked_exercises = db.Column(db.JSON, default=list)
    focus_areas = db.Column(db.JSON, default=list)
    primary_goals = db.Column(db.JSON, default=list)
    target_metrics = db.Column(db.JSON, default=dict)
    intensity_preference = db.Column(db.String(20), default='moderate')  # low, moderate, high, varied

    # Progression
    progressive_overload = db.Column(db.Boolean, default=True)
    auto_progression_rate = db.Column(db.Float, default=1.05)
    deload_frequency = db.Column(db.Integer, default=4)

    # Templates
    is_template = db.Column(db.Boolean, default=False)
    is_public = db.Column(db.Boolean, default=False)
    trainer_approved = db.Column(db.Boolean, default=False)
    is_generated = db.Column(db.Boolean, default=False)
    cloned_from_id = db.Column(db.Integer)

    # Progress counters
    adherence_score = db.Column(db.Float, default=0.0)
    completion_percentage = db.Column(db.Float, default=0.0)
    total_workouts_completed = db.Column(db.Integer, default=0)
    total_calories_burned = db.Column(db.Float, default=0.0)
    total_minutes_exercised = db.Column(db.Float, default=0.0)
    average_satisfaction = db.Column(db.Float)
    satisfaction_count = db.Column(db.Integer, default=0)
    adaptation_history = db.Column(db.JSON, default=list)

    activated_at = db.Column(db.DateTime)
    paused_at = db.Column(db.DateTime)
    completed_at = db.Column(db.DateTime)
    cancelled_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    weeks = db.relationship(
        'FitnessPlanWeek', backref='plan', order_by='FitnessPlanWeek.week_number',
        cascade='all, delete-orphan'
    )

    # ---------- state machine ----------

    def can_transition(self, target):
        return target in PLAN_TRANSITIONS.get(self.status, set())

    def _transition(self, target):
        if not self.can_transition(target):
            raise PreconditionError(f"Cannot move plan from {self.status} to {target}")
        self.status = target

    def activate(self):
        self._transition('active')
        self.activated_at = datetime.utcnow()

    def pause(self):
        self._transition('paused')
        self.paused_at = datetime.utcnow()

    def resume(self):
        if self.status != 'paused':
            raise PreconditionError('Only paused plans can be resumed')
        self._transition('active')
        self.paused_at = None

    def complete(self):
        self._transition('completed')
        self.completed_at = datetime.utcnow()
        self.completion_percentage = 100.0

    def cancel(self):
        self._transition('cancelled')
        self.cancelled_at = datetime.utcnow()

    # ---------- schedule ----------

    @staticmethod
    def compute_end_date(start_date, duration_weeks):
        return start_date + timedelta(days=duration_weeks * 7 - 1)

    def current_week_number(self, today=None):
        today = today or date.today()
        if today < self.start_date:
            return 1
        return max(1, min(self.duration_weeks, (today - self.start_date).days // 7 + 1))

    def is_expired(self, today=None):
        return (today or date.today()) > self.end_date

    def is_deload_week(self, week_number):
        return bool(self.deload_frequency) and week_number % self.deload_frequency == 0

    def get_week(self, week_number):
        for week in self.weeks:
            if week.week_number == week_number:
                return week
        return None

    # ---------- progress ----------

    def record_satisfaction(self, score):
        n = self.satisfaction_count or 0
        self.average_satisfaction = ((self.average_satisfaction or 0.0) * n + score) / (n + 1)
        self.satisfaction_count = n + 1

    def add_adaptation(self, entry):
        self.adaptation_history = list(self.adaptation_history or []) + [entry]

    def total_planned_workouts(self):
        return sum(len(w.workouts) for w in self.weeks)

    def to_dict(self, include_weeks=False):
        data = {
            'id': self.id,
            'user_id': self.user_id,
            'name': self.name,
            'description': self.description,
            'plan_type': self.plan_type,
            'status': self.status,
            'experience_level': self.experience_level,
            'start_date': _iso(self.start_date),
            'end_date': _iso(self.end_date),
            'duration_weeks': self.duration_weeks,
            'workouts_per_week': self.workouts_per_week,
            'rest_days_per_week': self.rest_days_per_week,
            'max_workout_duration_minutes': self.max_workout_duration_minutes,
            'preferred_workout_time': self.preferred_workout_time,
            'location': self.location,
            'available_equipment': self.available_equipment or [],
            'health_conditions': self.health_conditions or [],
            'physical_limitations': self.physical_limitations or [],
            'disliked_exercises': self.disliked_exercises or [],
            'focus_areas': self.focus_areas or [],
            'primary_goals': self.primary_goals or [],
            'target_metrics': self.target_metrics or {},
            'intensity_preference': self.intensity_preference,
            'progressive_overload': self.progressive_overload,
            'auto_progression_rate': self.auto_progression_rate,
            'deload_frequency': self.deload_frequency,
            'is_template': self.is_template,
            'is_public': self.is_public,
            'trainer_approved': self.trainer_approved,
            'is_generated': self.is_generated,
            'adherence_score': round(self.adherence_score or 0.0, 1),
            'completion_percentage': round(self.completion_percentage or 0.0, 1),
            'total_workouts_completed': self.total_workouts_completed or 0,
            'total_calories_burned': self.total_calories_burned or 0.0,
            'total_minutes_exercised': self.total_minutes_exercised or 0.0,
            'average_satisfaction': self.average_satisfaction,
            'adaptation_history': self.adaptation_history or [],
            'created_at': _iso(self.created_at),
        }
        if include_weeks:
            data['weeks'] = [w.to_dict(include_workouts=True) for w in self.weeks]
        return data


class FitnessPlanWeek(db.Model):
    __tablename__ = 'fitness_plan_weeks'
    __table_args__ = (db.UniqueConstraint('plan_id', 'week_number', name='uq_plan_week_number'),)

    id = db.Column(db.Integer, primary_key=True)
    plan_id = db.Column(db.Integer, db.ForeignKey('fitness_plans.id'), nullable=False, index=True)
    week_number = db.Column(db.Integer, nullable=False)
    week_type = db.Column(db.String(20), default='normal')
    name = db.Column(db.String(100))
    description = db.Column(db.Text)
    start_date = db.Column(db.Date)
    end_date = db.Column(db.Date)

    intensity_modifier = db.Column(db.Float, default=1.0)
    volume_modifier = db.Column(db.Float, default=1.0)

    # Progress
    target_workouts = db.Column(db.Integer, default=0)
    completed_workouts = db.Column(db.Integer, default=0)
    adherence_score = db.Column(db.Float)
    is_completed = db.Column(db.Boolean, default=False)

    # Wellness (1-5)
    fatigue_level = db.Column(db.Integer)
    soreness_level = db.Column(db.Integer)
    motivation_level = db.Column(db.Integer)
    sleep_quality = db.Column(db.Integer)
    stress_level = db.Column(db.Integer)
    difficulty_rating = db.Column(db.Integer)
    satisfaction_rating = db.Column(db.Integer)
    user_feedback = db.Column(db.Text)

    adaptations_applied = db.Column(db.JSON, default=list)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    workouts = db.relationship(
        'FitnessPlanWorkout', backref='week', order_by='FitnessPlanWorkout.order',
        cascade='all, delete-orphan'
    )

    @property
    def is_deload(self):
        return self.week_type == 'deload'

    def provide_feedback(self, fatigue=None, soreness=None, motivation=None, sleep_quality=None,
                         stress=None, difficulty=None, satisfaction=None, comment=None):
        for attr, value in (
            ('fatigue_level', fatigue), ('soreness_level', soreness), ('motivation_level', motivation),
            ('sleep_quality', sleep_quality), ('stress_level', stress),
            ('difficulty_rating', difficulty), ('satisfaction_rating', satisfaction),
        ):
            if value is None:
                continue
            if not 1 <= value <= 5:
                raise ValidationError(f"{attr} must be between 1 and 5")
            setattr(self, attr, value)
        if comment:
            self.user_feedback = comment

    def should_recommend_deload(self):
        """Three or more negative wellness signals."""
        signals = [
            (self.fatigue_level or 0) >= 4,
            (self.soreness_level or 0) >= 4,
            self.motivation_level is not None and self.motivation_level <= 2,
            self.sleep_quality is not None and self.sleep_quality <= 2,
            (self.stress_level or 0) >= 4,
            self.adherence_score is not None and self.adherence_score < 70,
        ]
        return sum(signals) >= 3

    def intensity_adjustment(self):
        if self.should_recommend_deload():
            return 0.8
        if (self.fatigue_level or 5) <= 2 and (self.motivation_level or 0) >= 4:
            return 1.1
        return 1.0

    def update_progress(self):
        scheduled = len(self.workouts)
        done = sum(1 for w in self.workouts if w.status == 'completed')
        self.target_workouts = scheduled
        self.completed_workouts = done
        self.adherence_score = round(100.0 * done / scheduled, 1) if scheduled else 0.0
        self.is_completed = scheduled > 0 and all(w.status in ('completed', 'skipped') for w in self.workouts)

    def total_sets(self):
        return sum(w.total_sets() for w in self.workouts)

    def to_dict(self, include_workouts=False):
        data = {
            'id': self.id,
            'week_number': self.week_number,
            'week_type': self.week_type,
            'name': self.name,
            'start_date': _iso(self.start_date),
            'end_date': _iso(self.end_date),
            'intensity_modifier': self.intensity_modifier,
            'volume_modifier': self.volume_modifier,
            'target_workouts': self.target_workouts,
            'completed_workouts': self.completed_workouts,
            'adherence_score': self.adherence_score,
            'adaptations_applied': self.adaptations_applied or [],
        }
        if include_workouts:
            data['workouts'] = [w.to_dict(include_exercises=True) for w in self.workouts]
        return data


class FitnessPlanWorkout(db.Model):
    __tablename__ = 'fitness_plan_workouts'

    id = db.Column(db.Integer, primary_key=True)
    week_id = db.Column(db.Integer, db.ForeignKey('fitness_plan_weeks.id'), nullable=False, index=True)
    order = db.Column(db.Integer, default=0)

    # Day of week (1=Monday, 7=Sunday)
    day_of_week = db.Column(db.Integer, nullable=False)
    scheduled_date = db.Column(db.Date)

    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text)
    workout_type = db.Column(db.String(20), default='strength')
    status = db.Column(db.String(20), default='planned')
    target_muscle_groups = db.Column(db.JSON, default=list)

    estimated_duration_minutes = db.Column(db.Integer)
    target_intensity = db.Column(db.Integer)
    estimated_calories = db.Column(db.Integer)

    # Actuals
    actual_duration_minutes = db.Column(db.Float)
    actual_intensity = db.Column(db.Float)  # RPE 1-10
    actual_calories = db.Column(db.Float)
    completion_percentage = db.Column(db.Float, default=0.0)
    difficulty_rating = db.Column(db.Integer)
    satisfaction_rating = db.Column(db.Integer)
    notes = db.Column(db.Text)
    skip_reason = db.Column(db.String(255))
    modifications = db.Column(db.JSON, default=list)

    started_at = db.Column(db.DateTime)
    completed_at = db.Column(db.DateTime)

    exercises = db.relationship(
        'FitnessPlanExercise', backref='workout', order_by='FitnessPlanExercise.order',
        cascade='all, delete-orphan'
    )

    def _transition(self, target):
        if target not in SESSION_TRANSITIONS.get(self.status, set()):
            raise PreconditionError(f"Cannot move workout from {self.status} to {target}")
        self.status = target

    def start(self):
        self._transition('in_progress')
        self.started_at = datetime.utcnow()

    def complete(self, duration_minutes=None, intensity=None, calories=None,
                 difficulty=None, satisfaction=None, notes=None):
        self._transition('completed')
        self.completed_at = datetime.utcnow()
        self.actual_duration_minutes = duration_minutes
        self.actual_intensity = intensity
        self.actual_calories = calories
        self.difficulty_rating = difficulty
        self.satisfaction_rating = satisfaction
        if notes:
            self.notes = notes
        self.completion_percentage = self.completion_rate()

    def skip(self, reason=None):
        self._transition('skipped')
        self.skip_reason = reason

    def modify(self, changes):
        self._transition('modified')
        self.modifications = list(self.modifications or []) + [
            {'at': datetime.utcnow().isoformat(), 'changes': changes}
        ]

    @property
    def day_name(self):
        return DAY_NAMES.get(self.day_of_week, 'Unknown')

    def completion_rate(self):
        if not self.exercises:
            return 0.0
        done = sum(1 for e in self.exercises if e.status == 'completed')
        return round(100.0 * done / len(self.exercises), 1)

    def total_sets(self):
        return sum(e.target_sets or 0 for e in self.exercises)

    def to_dict(self, include_exercises=False):
        data = {
            'id': self.id,
            'order': self.order,
            'day_of_week': self.day_of_week,
            'day_name': self.day_name,
            'scheduled_date': _iso(self.scheduled_date),
            'name': self.name,
            'workout_type': self.workout_type,
            'status': self.status,
            'target_muscle_groups': self.target_muscle_groups or [],
            'estimated_duration_minutes': self.estimated_duration_minutes,
            'target_intensity': self.target_intensity,
            'estimated_calories': self.estimated_calories,
            'total_sets': self.total_sets(),
            'actual_duration_minutes': self.actual_duration_minutes,
            'actual_intensity': self.actual_intensity,
            'completion_percentage': self.completion_percentage,
            'skip_reason': self.skip_reason,
        }
        if include_exercises:
            data['exercises'] = [e.to_dict() for e in self.exercises]
        return data


class FitnessPlanExercise(db.Model):
    __tablename__ = 'fitness_plan_exercises'

    id = db.Column(db.Integer, primary_key=True)
    workout_id = db.Column(db.Integer, db.ForeignKey('fitness_plan_workouts.id'), nullable=False, index=True)
    # Referenced, never owned
    exercise_id = db.Column(db.Integer, db.ForeignKey('exercises.id'))
    order = db.Column(db.Integer, nullable=False, default=0)

    exercise_name = db.Column(db.String(150), nullable=False)
    exercise_type = db.Column(db.String(20), default='compound')
    muscle_groups = db.Column(db.JSON, default=list)
    equipment = db.Column(db.JSON, default=list)
    instructions = db.Column(db.Text)

    # Targets
    target_sets = db.Column(db.Integer, nullable=False, default=3)
    target_reps_min = db.Column(db.Integer)
    target_reps_max = db.Column(db.Integer)
    target_reps_per_set = db.Column(db.Integer)
    target_weight_kg = db.Column(db.Float)
    target_duration_seconds = db.Column(db.Integer)
    rest_seconds = db.Column(db.Integer, default=60)
    intensity_level = db.Column(db.Integer, default=6)  # 1-10

    # Actuals
    status = db.Column(db.String(20), default='planned')
    actual_sets_completed = db.Column(db.Integer, default=0)
    actual_reps = db.Column(db.JSON, default=list)     # [12, 12, 10]
    actual_weights = db.Column(db.JSON, default=list)  # [20, 20, 22.5]
    actual_duration_seconds = db.Column(db.Integer)
    actual_rpe = db.Column(db.Float)
    form_rating = db.Column(db.Integer)        # 1-5
    difficulty_rating = db.Column(db.Integer)  # 1-5
    skip_reason = db.Column(db.String(255))
    notes = db.Column(db.Text)

    started_at = db.Column(db.DateTime)
    completed_at = db.Column(db.DateTime)

    catalog_exercise = db.relationship('Exercise')

    def _transition(self, target):
        if target not in SESSION_TRANSITIONS.get(self.status, set()):
            raise PreconditionError(f"Cannot move exercise from {self.status} to {target}")
        self.status = target

    def start(self):
        self._transition('in_progress')
        self.started_at = datetime.utcnow()

    def add_set(self, reps, weight_kg=None):
        if self.status in ('completed', 'skipped'):
            raise PreconditionError('Cannot log sets on a finished exercise')
        self.actual_reps = list(self.actual_reps or []) + [reps]
        self.actual_weights = list(self.actual_weights or []) + [weight_kg or 0]
        self.actual_sets_completed = len(self.actual_reps)

    def complete(self, reps=None, weights=None, duration_seconds=None, rpe=None,
                 form_rating=None, difficulty=None, notes=None):
        self._transition('completed')
        self.completed_at = datetime.utcnow()
        if reps is not None:
            self.actual_reps = list(reps)
            self.actual_sets_completed = len(reps)
        if weights is not None:
            self.actual_weights = list(weights)
        self.actual_duration_seconds = duration_seconds
        self.actual_rpe = rpe
        self.form_rating = form_rating
        self.difficulty_rating = difficulty
        if notes:
            self.notes = notes

    def skip(self, reason=None):
        self._transition('skipped')
        self.skip_reason = reason

    def modify(self, target_sets=None, target_reps_per_set=None, target_weight_kg=None, notes=None):
        self._transition('modified')
        if target_sets is not None:
            self.target_sets = target_sets
        if target_reps_per_set is not None:
            self.target_reps_per_set = target_reps_per_set
        if target_weight_kg is not None:
            self.target_weight_kg = target_weight_kg
        if notes:
            self.notes = notes

    # ---------- derived ----------

    @property
    def volume(self):
        reps = self.actual_reps or []
        weights = [w for w in (self.actual_weights or []) if w]
        if not reps or not weights:
            return 0.0
        avg_weight = sum(weights) / len(weights)
        return (self.actual_sets_completed or 0) * sum(reps) * avg_weight

    @property
    def intensity_load(self):
        return self.volume * (self.actual_rpe or 5)

    def _target_reps(self):
        return self.target_reps_per_set or self.target_reps_max or self.target_reps_min

    def should_progress_weight(self):
        target = self._target_reps()
        reps = self.actual_reps or []
        if not target or len(reps) < (self.target_sets or 0) or not reps:
            return False
        hit_all = all(r >= target for r in reps)
        felt_easy = (self.actual_rpe is not None and self.actual_rpe <= 6) or \
                    (self.difficulty_rating is not None and self.difficulty_rating <= 2)
        return hit_all and felt_easy

    def should_reduce_weight(self):
        target = self._target_reps()
        failed_sets = bool(target) and any(r < target for r in (self.actual_reps or []))
        poor_form = self.form_rating is not None and self.form_rating <= 2
        too_hard = self.actual_rpe is not None and self.actual_rpe >= 9
        return poor_form or too_hard or failed_sets

    def _working_weight(self):
        weights = [w for w in (self.actual_weights or []) if w]
        if weights:
            return max(weights)
        return self.target_weight_kg or 0

    def progression_suggestion(self):
        """Weight suggestion for the next session"""
        weight = self._working_weight()
        if self.status != 'completed':
            return {'action': 'maintain', 'weight_kg': weight or None, 'reason': 'Exercise not completed yet'}
        if self.should_reduce_weight():
            new_weight = max(0, weight - max(2.5, weight * 0.10)) if weight else None
            return {'action': 'decrease', 'weight_kg': round(new_weight, 1) if new_weight is not None else None,
                    'reason': 'Missed reps, high RPE or poor form'}
        if self.should_progress_weight():
            new_weight = weight + max(2.5, weight * 0.05) if weight else None
            return {'action': 'increase', 'weight_kg': round(new_weight, 1) if new_weight is not None else None,
                    'reason': 'All target reps completed with effort to spare'}
        return {'action': 'maintain', 'weight_kg': weight or None, 'reason': 'Performance on target'}

    def to_dict(self):
        return {
            'id': self.id,
            'exercise_id': self.exercise_id,
            'order': self.order,
            'exercise_name': self.exercise_name,
            'exercise_type': self.exercise_type,
            'muscle_groups': self.muscle_groups or [],
            'equipment': self.equipment or [],
            'target_sets': self.target_sets,
            'target_reps_min': self.target_reps_min,
            'target_reps_max': self.target_reps_max,
            'target_reps_per_set': self.target_reps_per_set,
            'target_weight_kg': self.target_weight_kg,
            'target_duration_seconds': self.target_duration_seconds,
            'rest_seconds': self.rest_seconds,
            'intensity_level': self.intensity_level,
            'status': self.status,
            'actual_sets_completed': self.actual_sets_completed or 0,
            'actual_reps': self.actual_reps or [],
            'actual_weights': self.actual_weights or [],
            'actual_rpe': self.actual_rpe,
            'volume': self.volume,
        }


# ========== ACTIVITY LOG & AUDIT ==========

class ActivityLog(db.Model):
    """Workout completion event (append-only)"""
    __tablename__ = 'activity_logs'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    plan_id = db.Column(db.Integer, db.ForeignKey('fitness_plans.id'))
    workout_id = db.Column(db.Integer, db.ForeignKey('fitness_plan_workouts.id'))

    completed = db.Column(db.Boolean, default=True)
    intensity = db.Column(db.Float)  # 1-10
    duration_minutes = db.Column(db.Float)
    calories = db.Column(db.Float)
    source = db.Column(db.String(20), default='plan')  # plan, manual, import
    logged_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    @classmethod
    def between(cls, user_id, start, end):
        return cls.query.filter(
            cls.user_id == user_id,
            cls.logged_at >= start,
            cls.logged_at <= end,
        ).order_by(cls.logged_at).all()

    def to_dict(self):
        return {
            'id': self.id,
            'workout_id': self.workout_id,
            'completed': self.completed,
            'intensity': self.intensity,
            'duration_minutes': self.duration_minutes,
            'calories': self.calories,
            'logged_at': _iso(self.logged_at),
        }


class AdaptationLog(db.Model):
    """Audit row for each weekly adaptation"""
    __tablename__ = 'adaptation_logs'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    plan_id = db.Column(db.Integer, db.ForeignKey('fitness_plans.id'))
    week_number = db.Column(db.Integer)
    trigger = db.Column(db.String(20), default='scheduled')  # scheduled, manual

    adherence_score = db.Column(db.Float)
    deficiencies = db.Column(db.JSON, default=dict)
    adaptations = db.Column(db.JSON, default=list)
    rejected_count = db.Column(db.Integer, default=0)
    recommendations = db.Column(db.JSON, default=list)
    measurement_requests = db.Column(db.JSON, default=list)
    next_week_summary = db.Column(db.JSON, default=dict)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'plan_id': self.plan_id,
            'week_number': self.week_number,
            'trigger': self.trigger,
            'adherence_score': self.adherence_score,
            'deficiencies': self.deficiencies or {},
            'adaptations': self.adaptations or [],
            'rejected_count': self.rejected_count or 0,
            'recommendations': self.recommendations or [],
            'measurement_requests': self.measurement_requests or [],
            'next_week_summary': self.next_week_summary or {},
            'created_at': _iso(self.created_at),
        }


class AdaptationRun(db.Model):
    """Batch run log"""
    __tablename__ = 'adaptation_runs'

    id = db.Column(db.Integer, primary_key=True)
    trigger = db.Column(db.String(20), default='scheduled')  # scheduled, manual, catch_up
    started_at = db.Column(db.DateTime, default=datetime.utcnow)
    finished_at = db.Column(db.DateTime)
    status = db.Column(db.String(50))  # running, success, partial, error
    error_message = db.Column(db.Text)
    total_users = db.Column(db.Integer, default=0)
    processed_users = db.Column(db.Integer, default=0)
    failed_users = db.Column(db.Integer, default=0)
