# exercises.py - Exercise catalog and library queries
# Built-in catalog grouped by primary muscle group, loaded into the `exercises` table on first start.

import logging
from dataclasses import dataclass, field

from sqlalchemy import or_

from fitplan.errors import ConflictError, NotFoundError, ValidationError
from fitplan.models import (
    db, Exercise, EXERCISE_CATEGORIES, EXPERIENCE_LEVELS, MUSCLE_GROUPS, NO_EQUIPMENT, overlapping_terms,
)

logger = logging.getLogger(__name__)


EXERCISES = {
    # ==================== CHEST ====================
    "chest": [
        {"name": "Push-Up", "category": "calisthenics", "difficulty": "beginner", "secondary": ["triceps", "shoulders", "core"], "equipment": ["bodyweight"], "compound": True, "reps": (8, 15), "met": 8.0, "rating": 4.6, "contraindications": ["wrist pain"], "injury_warnings": ["shoulder impingement"], "regression": ["Knee Push-Up"], "progression": ["Diamond Push-Up", "Archer Push-Up"]},
        {"name": "Knee Push-Up", "category": "calisthenics", "difficulty": "beginner", "secondary": ["triceps", "shoulders"], "equipment": ["bodyweight"], "compound": True, "reps": (8, 15), "met": 5.0, "rating": 4.2, "contraindications": ["wrist pain", "knee pain"], "regression": ["Wall Push-Up"], "progression": ["Push-Up"]},
        {"name": "Wall Push-Up", "category": "calisthenics", "difficulty": "beginner", "secondary": ["triceps", "shoulders"], "equipment": ["bodyweight"], "compound": True, "reps": (10, 20), "met": 3.5, "rating": 3.9, "tags": ["low-impact"], "progression": ["Knee Push-Up"]},
        {"name": "Incline Push-Up", "category": "calisthenics", "difficulty": "beginner", "secondary": ["triceps", "shoulders"], "equipment": ["bench"], "compound": True, "reps": (8, 15), "met": 4.5, "rating": 4.1, "contraindications": ["wrist pain"]},
        {"name": "Decline Push-Up", "category": "calisthenics", "difficulty": "intermediate", "secondary": ["shoulders", "triceps"], "equipment": ["bench"], "compound": True, "reps": (8, 12), "met": 8.0, "rating": 4.3, "contraindications": ["wrist pain"], "avoid": ["glaucoma"]},
        {"name": "Archer Push-Up", "category": "calisthenics", "difficulty": "advanced", "secondary": ["triceps", "shoulders", "core"], "equipment": ["bodyweight"], "compound": True, "unilateral": True, "reps": (5, 10), "met": 8.0, "rating": 4.4, "injury_warnings": ["shoulder impingement"]},
        {"name": "Dumbbell Bench Press", "category": "resistance", "difficulty": "beginner", "secondary": ["triceps", "shoulders"], "equipment": ["dumbbells", "bench"], "compound": True, "reps": (8, 12), "met": 6.0, "rating": 4.7, "injury_warnings": ["shoulder impingement"]},
        {"name": "Barbell Bench Press", "category": "resistance", "difficulty": "intermediate", "secondary": ["triceps", "shoulders"], "equipment": ["barbell", "bench"], "compound": True, "reps": (5, 10), "rest": 120, "met": 6.0, "rating": 4.8, "tags": ["heavy-weight"], "avoid": ["uncontrolled hypertension"], "injury_warnings": ["shoulder impingement", "pectoral strain"]},
        {"name": "Dumbbell Fly", "category": "resistance", "difficulty": "beginner", "secondary": ["shoulders"], "equipment": ["dumbbells", "bench"], "reps": (10, 15), "met": 4.0, "rating": 4.0, "injury_warnings": ["pectoral strain"]},
        {"name": "Cable Crossover", "category": "resistance", "difficulty": "intermediate", "secondary": ["shoulders"], "equipment": ["cable_machine"], "reps": (10, 15), "met": 4.0, "rating": 4.1},
    ],

    # ==================== BACK ====================
    "back": [
        {"name": "Superman", "category": "calisthenics", "difficulty": "beginner", "secondary": ["glutes", "hamstrings"], "equipment": ["bodyweight"], "reps": (10, 15), "met": 3.5, "rating": 3.8, "avoid": ["spondylolisthesis"]},
        {"name": "Doorframe Row", "category": "calisthenics", "difficulty": "beginner", "secondary": ["biceps", "forearms"], "equipment": ["bodyweight"], "compound": True, "reps": (10, 15), "met": 3.5, "rating": 3.9},
        {"name": "Prone Y-T Raise", "category": "calisthenics", "difficulty": "beginner", "secondary": ["shoulders"], "equipment": ["bodyweight"], "reps": (10, 15), "met": 3.0, "rating": 3.7, "tags": ["posture"]},
        {"name": "One-Arm Dumbbell Row", "category": "resistance", "difficulty": "beginner", "secondary": ["biceps", "forearms"], "equipment": ["dumbbells", "bench"], "compound": True, "unilateral": True, "reps": (8, 12), "met": 5.0, "rating": 4.6, "injury_warnings": ["lower back"]},
        {"name": "Resistance Band Row", "category": "resistance", "difficulty": "beginner", "secondary": ["biceps"], "equipment": ["resistance_bands"], "compound": True, "reps": (12, 15), "met": 4.0, "rating": 4.2},
        {"name": "Lat Pulldown", "category": "resistance", "difficulty": "beginner", "secondary": ["biceps"], "equipment": ["cable_machine"], "compound": True, "reps": (8, 12), "met": 5.0, "rating": 4.5},
        {"name": "Inverted Row", "category": "calisthenics", "difficulty": "intermediate", "secondary": ["biceps", "core"], "equipment": ["suspension_trainer"], "compound": True, "reps": (8, 12), "met": 6.0, "rating": 4.4, "progression": ["Pull-Up"]},
        {"name": "Pull-Up", "category": "calisthenics", "difficulty": "intermediate", "secondary": ["biceps", "forearms"], "equipment": ["pull_up_bar"], "compound": True, "reps": (5, 10), "rest": 120, "met": 8.0, "rating": 4.8, "injury_warnings": ["shoulder impingement", "elbow tendinitis"], "regression": ["Inverted Row"]},
        {"name": "Chin-Up", "category": "calisthenics", "difficulty": "intermediate", "secondary": ["biceps"], "equipment": ["pull_up_bar"], "compound": True, "reps": (5, 10), "rest": 120, "met": 8.0, "rating": 4.6, "injury_warnings": ["elbow tendinitis"]},
        {"name": "Barbell Bent-Over Row", "category": "resistance", "difficulty": "intermediate", "secondary": ["biceps", "hamstrings"], "equipment": ["barbell"], "compound": True, "reps": (6, 10), "rest": 120, "met": 6.0, "rating": 4.5, "tags": ["heavy-weight"], "avoid": ["herniated disc"], "injury_warnings": ["lower back"]},
        {"name": "Deadlift", "category": "resistance", "difficulty": "advanced", "secondary": ["hamstrings", "glutes", "forearms"], "equipment": ["barbell"], "compound": True, "reps": (3, 6), "rest": 180, "met": 6.0, "rating": 4.9, "tags": ["heavy-weight"], "avoid": ["herniated disc", "uncontrolled hypertension"], "contraindications": ["acute back pain"], "injury_warnings": ["lower back"]},
    ],

    # ==================== SHOULDERS ====================
    "shoulders": [
        {"name": "Arm Circles", "category": "warm_up", "difficulty": "beginner", "secondary": [], "equipment": ["bodyweight"], "duration": 30, "met": 2.5, "rating": 3.5, "tags": ["mobility", "low-impact"]},
        {"name": "Pike Push-Up", "category": "calisthenics", "difficulty": "intermediate", "secondary": ["triceps", "core"], "equipment": ["bodyweight"], "compound": True, "reps": (6, 12), "met": 7.0, "rating": 4.3, "avoid": ["glaucoma"], "injury_warnings": ["shoulder impingement"], "progression": ["Handstand Push-Up"]},
        {"name": "Dumbbell Shoulder Press", "category": "resistance", "difficulty": "beginner", "secondary": ["triceps"], "equipment": ["dumbbells"], "compound": True, "reps": (8, 12), "met": 5.0, "rating": 4.5, "injury_warnings": ["shoulder impingement"]},
        {"name": "Lateral Raise", "category": "resistance", "difficulty": "beginner", "secondary": [], "equipment": ["dumbbells"], "reps": (12, 15), "met": 3.5, "rating": 4.3},
        {"name": "Band Pull-Apart", "category": "resistance", "difficulty": "beginner", "secondary": ["back"], "equipment": ["resistance_bands"], "reps": (15, 20), "met": 3.0, "rating": 4.1, "tags": ["posture"]},
        {"name": "Banded External Rotation", "category": "rehabilitation", "difficulty": "beginner", "secondary": [], "equipment": ["resistance_bands"], "reps": (12, 15), "met": 2.5, "rating": 4.0, "tags": ["rotator cuff", "low-impact"]},
        {"name": "Barbell Overhead Press", "category": "resistance", "difficulty": "intermediate", "secondary": ["triceps", "core"], "equipment": ["barbell"], "compound": True, "reps": (5, 8), "rest": 120, "met": 6.0, "rating": 4.6, "tags": ["heavy-weight"], "avoid": ["uncontrolled hypertension"], "injury_warnings": ["shoulder impingement", "lower back"]},
        {"name": "Handstand Push-Up", "category": "calisthenics", "difficulty": "expert", "secondary": ["triceps", "core"], "equipment": ["bodyweight"], "compound": True, "reps": (3, 8), "rest": 150, "met": 8.0, "rating": 4.5, "avoid": ["glaucoma", "hypertension"], "injury_warnings": ["wrist", "neck"], "regression": ["Pike Push-Up"]},
    ],

    # ==================== BICEPS ====================
    "biceps": [
        {"name": "Dumbbell Biceps Curl", "category": "resistance", "difficulty": "beginner", "secondary": ["forearms"], "equipment": ["dumbbells"], "reps": (10, 12), "met": 3.5, "rating": 4.3, "injury_warnings": ["elbow tendinitis"]},
        {"name": "Hammer Curl", "category": "resistance", "difficulty": "beginner", "secondary": ["forearms"], "equipment": ["dumbbells"], "reps": (10, 12), "met": 3.5, "rating": 4.2},
        {"name": "Band Biceps Curl", "category": "resistance", "difficulty": "beginner", "secondary": ["forearms"], "equipment": ["resistance_bands"], "reps": (12, 15), "met": 3.0, "rating": 3.9},
        {"name": "Barbell Curl", "category": "resistance", "difficulty": "intermediate", "secondary": ["forearms"], "equipment": ["barbell"], "reps": (8, 12), "met": 4.0, "rating": 4.3, "injury_warnings": ["elbow tendinitis", "wrist"]},
    ],

    # ==================== TRICEPS ====================
    "triceps": [
        {"name": "Chair Dip", "category": "calisthenics", "difficulty": "beginner", "secondary": ["chest", "shoulders"], "equipment": ["none"], "reps": (8, 12), "met": 4.0, "rating": 4.0, "injury_warnings": ["shoulder impingement"]},
        {"name": "Diamond Push-Up", "category": "calisthenics", "difficulty": "intermediate", "secondary": ["chest", "shoulders"], "equipment": ["bodyweight"], "compound": True, "reps": (6, 12), "met": 8.0, "rating": 4.4, "contraindications": ["wrist pain"], "regression": ["Push-Up"]},
        {"name": "Overhead Dumbbell Triceps Extension", "category": "resistance", "difficulty": "beginner", "secondary": [], "equipment": ["dumbbells"], "reps": (10, 12), "met": 3.5, "rating": 4.1, "injury_warnings": ["elbow tendinitis"]},
        {"name": "Band Triceps Pushdown", "category": "resistance", "difficulty": "beginner", "secondary": [], "equipment": ["resistance_bands"], "reps": (12, 15), "met": 3.0, "rating": 3.9},
    ],

    # ==================== CORE ====================
    "core": [
        {"name": "Plank", "category": "core", "difficulty": "beginner", "secondary": ["shoulders", "glutes"], "equipment": ["bodyweight"], "duration": 30, "met": 3.8, "rating": 4.5, "tags": ["isometric", "low-impact"], "progression": ["Side Plank"]},
        {"name": "Dead Bug", "category": "core", "difficulty": "beginner", "secondary": [], "equipment": ["bodyweight"], "reps": (8, 12), "met": 3.0, "rating": 4.2, "tags": ["low-impact"]},
        {"name": "Bird Dog", "category": "core", "difficulty": "beginner", "secondary": ["back", "glutes"], "equipment": ["bodyweight"], "reps": (8, 12), "met": 3.0, "rating": 4.1, "tags": ["low-impact", "posture"]},
        {"name": "Mountain Climber", "category": "cardio", "difficulty": "beginner", "secondary": ["shoulders", "quadriceps"], "equipment": ["bodyweight"], "cardio": True, "duration": 30, "met": 8.0, "rating": 4.0, "contraindications": ["wrist pain"]},
        {"name": "Single-Leg Stand", "category": "balance", "difficulty": "beginner", "secondary": ["calves"], "equipment": ["bodyweight"], "duration": 30, "met": 2.0, "rating": 3.6, "tags": ["low-impact"]},
        {"name": "Side Plank", "category": "core", "difficulty": "intermediate", "secondary": ["shoulders", "glutes"], "equipment": ["bodyweight"], "duration": 30, "met": 3.8, "rating": 4.3, "tags": ["isometric"], "regression": ["Plank"]},
        {"name": "Russian Twist", "category": "core", "difficulty": "intermediate", "secondary": [], "equipment": ["bodyweight"], "reps": (12, 20), "met": 4.0, "rating": 3.9, "avoid": ["herniated disc"], "injury_warnings": ["lower back"]},
        {"name": "Hanging Leg Raise", "category": "core", "difficulty": "advanced", "secondary": ["forearms"], "equipment": ["pull_up_bar"], "reps": (6, 12), "met": 4.5, "rating": 4.4, "injury_warnings": ["shoulder impingement"]},
    ],

    # ==================== QUADRICEPS ====================
    "quadriceps": [
        {"name": "Bodyweight Squat", "category": "calisthenics", "difficulty": "beginner", "secondary": ["glutes", "hamstrings"], "equipment": ["bodyweight"], "compound": True, "reps": (12, 15), "met": 5.0, "rating": 4.6, "injury_warnings": ["knee"], "progression": ["Jump Squat", "Goblet Squat"]},
        {"name": "Wall Sit", "category": "calisthenics", "difficulty": "beginner", "secondary": ["glutes"], "equipment": ["bodyweight"], "duration": 30, "met": 3.5, "rating": 3.9, "tags": ["isometric", "low-impact"], "avoid": ["uncontrolled hypertension"]},
        {"name": "Reverse Lunge", "category": "calisthenics", "difficulty": "beginner", "secondary": ["glutes", "hamstrings"], "equipment": ["bodyweight"], "compound": True, "unilateral": True, "reps": (8, 12), "met": 4.0, "rating": 4.3, "injury_warnings": ["knee"]},
        {"name": "Goblet Squat", "category": "resistance", "difficulty": "beginner", "secondary": ["glutes", "core"], "equipment": ["dumbbells"], "compound": True, "reps": (8, 12), "met": 5.5, "rating": 4.7, "injury_warnings": ["knee"]},
        {"name": "Step-Up", "category": "functional", "difficulty": "beginner", "secondary": ["glutes"], "equipment": ["box"], "compound": True, "unilateral": True, "reps": (8, 12), "met": 5.0, "rating": 4.2, "injury_warnings": ["knee"]},
        {"name": "Jump Squat", "category": "calisthenics", "difficulty": "intermediate", "secondary": ["glutes", "calves"], "equipment": ["bodyweight"], "compound": True, "cardio": True, "reps": (8, 12), "met": 9.0, "rating": 4.2, "tags": ["high-impact", "plyometric"], "avoid": ["osteoporosis"], "injury_warnings": ["knee", "ankle"]},
        {"name": "Bulgarian Split Squat", "category": "resistance", "difficulty": "intermediate", "secondary": ["glutes"], "equipment": ["dumbbells", "bench"], "compound": True, "unilateral": True, "reps": (8, 12), "met": 6.0, "rating": 4.5, "injury_warnings": ["knee"]},
        {"name": "Barbell Back Squat", "category": "resistance", "difficulty": "intermediate", "secondary": ["glutes", "hamstrings", "core"], "equipment": ["barbell"], "compound": True, "reps": (5, 8), "rest": 180, "met": 6.0, "rating": 4.9, "tags": ["heavy-weight"], "avoid": ["herniated disc"], "injury_warnings": ["knee", "lower back"]},
        {"name": "Pistol Squat", "category": "calisthenics", "difficulty": "expert", "secondary": ["glutes", "core"], "equipment": ["bodyweight"], "compound": True, "unilateral": True, "reps": (3, 8), "met": 6.0, "rating": 4.3, "injury_warnings": ["knee"]},
    ],

    # ==================== HAMSTRINGS ====================
    "hamstrings": [
        {"name": "Hamstring Walkout", "category": "calisthenics", "difficulty": "beginner", "secondary": ["glutes", "core"], "equipment": ["bodyweight"], "reps": (8, 12), "met": 3.5, "rating": 3.8},
        {"name": "Bodyweight Good Morning", "category": "calisthenics", "difficulty": "beginner", "secondary": ["back", "glutes"], "equipment": ["bodyweight"], "compound": True, "reps": (12, 15), "met": 3.5, "rating": 3.7, "injury_warnings": ["lower back"]},
        {"name": "Downward Dog", "category": "yoga", "difficulty": "beginner", "secondary": ["shoulders", "calves"], "equipment": ["bodyweight"], "duration": 45, "met": 2.5, "rating": 4.0, "tags": ["mobility", "low-impact"], "avoid": ["glaucoma"]},
        {"name": "Dumbbell Romanian Deadlift", "category": "resistance", "difficulty": "beginner", "secondary": ["glutes", "back"], "equipment": ["dumbbells"], "compound": True, "reps": (8, 12), "met": 5.0, "rating": 4.6, "avoid": ["herniated disc"], "injury_warnings": ["lower back"]},
        {"name": "Single-Leg Romanian Deadlift", "category": "balance", "difficulty": "intermediate", "secondary": ["glutes", "core"], "equipment": ["bodyweight"], "compound": True, "unilateral": True, "reps": (8, 12), "met": 4.0, "rating": 4.1},
        {"name": "Stability Ball Leg Curl", "category": "resistance", "difficulty": "intermediate", "secondary": ["glutes", "core"], "equipment": ["stability_ball"], "reps": (10, 15), "met": 4.0, "rating": 4.2},
        {"name": "Nordic Curl", "category": "calisthenics", "difficulty": "advanced", "secondary": [], "equipment": ["bodyweight"], "reps": (3, 6), "rest": 150, "met": 5.0, "rating": 4.4, "injury_warnings": ["hamstring strain", "knee"]},
    ],

    # ==================== GLUTES ====================
    "glutes": [
        {"name": "Glute Bridge", "category": "calisthenics", "difficulty": "beginner", "secondary": ["hamstrings", "core"], "equipment": ["bodyweight"], "compound": True, "reps": (12, 15), "met": 3.5, "rating": 4.5, "tags": ["low-impact"], "progression": ["Single-Leg Glute Bridge"]},
        {"name": "Donkey Kick", "category": "calisthenics", "difficulty": "beginner", "secondary": ["hamstrings"], "equipment": ["bodyweight"], "reps": (12, 15), "met": 3.0, "rating": 3.8, "tags": ["low-impact"]},
        {"name": "Hip Flexor Stretch", "category": "flexibility", "difficulty": "beginner", "secondary": ["quadriceps"], "equipment": ["bodyweight"], "duration": 45, "met": 2.0, "rating": 3.9, "tags": ["mobility", "low-impact"]},
        {"name": "Banded Clamshell", "category": "rehabilitation", "difficulty": "beginner", "secondary": [], "equipment": ["resistance_bands"], "reps": (12, 20), "met": 2.5, "rating": 3.9, "tags": ["low-impact"]},
        {"name": "Single-Leg Glute Bridge", "category": "calisthenics", "difficulty": "intermediate", "secondary": ["hamstrings", "core"], "equipment": ["bodyweight"], "compound": True, "unilateral": True, "reps": (8, 12), "met": 4.0, "rating": 4.3, "regression": ["Glute Bridge"]},
        {"name": "Barbell Hip Thrust", "category": "resistance", "difficulty": "intermediate", "secondary": ["hamstrings"], "equipment": ["barbell", "bench"], "compound": True, "reps": (8, 12), "rest": 120, "met": 5.0, "rating": 4.7, "tags": ["heavy-weight"]},
        {"name": "Kettlebell Swing", "category": "functional", "difficulty": "intermediate", "secondary": ["hamstrings", "back", "core"], "equipment": ["kettlebell"], "compound": True, "cardio": True, "reps": (12, 20), "met": 9.8, "rating": 4.6, "avoid": ["herniated disc"], "injury_warnings": ["lower back"]},
    ],

    # ==================== CALVES ====================
    "calves": [
        {"name": "Calf Raise", "category": "calisthenics", "difficulty": "beginner", "secondary": [], "equipment": ["bodyweight"], "reps": (12, 20), "met": 2.8, "rating": 4.0, "progression": ["Single-Leg Calf Raise"]},
        {"name": "Dumbbell Calf Raise", "category": "resistance", "difficulty": "beginner", "secondary": [], "equipment": ["dumbbells"], "reps": (12, 15), "met": 3.0, "rating": 4.0},
        {"name": "Single-Leg Calf Raise", "category": "calisthenics", "difficulty": "intermediate", "secondary": [], "equipment": ["bodyweight"], "unilateral": True, "reps": (10, 15), "met": 3.0, "rating": 4.1, "regression": ["Calf Raise"]},
    ],

    # ==================== CARDIO ====================
    "cardio": [
        {"name": "March in Place", "category": "cardio", "difficulty": "beginner", "secondary": ["quadriceps", "calves"], "equipment": ["bodyweight"], "cardio": True, "duration": 60, "met": 3.5, "rating": 3.5, "tags": ["low-impact"]},
        {"name": "Jumping Jack", "category": "cardio", "difficulty": "beginner", "secondary": ["calves", "shoulders"], "equipment": ["bodyweight"], "cardio": True, "duration": 45, "met": 8.0, "rating": 3.8, "tags": ["high-impact"], "avoid": ["osteoporosis"], "injury_warnings": ["ankle", "knee"]},
        {"name": "High Knees", "category": "cardio", "difficulty": "beginner", "secondary": ["quadriceps", "core"], "equipment": ["bodyweight"], "cardio": True, "duration": 30, "met": 8.0, "rating": 3.7, "tags": ["high-impact"], "injury_warnings": ["knee"]},
        {"name": "Burpee", "category": "cardio", "difficulty": "intermediate", "secondary": ["chest", "quadriceps", "core"], "equipment": ["bodyweight"], "compound": True, "cardio": True, "reps": (8, 15), "met": 10.0, "rating": 4.1, "tags": ["high-impact", "plyometric"], "avoid": ["heart condition", "osteoporosis"], "injury_warnings": ["knee", "wrist"]},
    ],

    # ==================== FULL BODY / MOBILITY ====================
    "full_body": [
        {"name": "Cat-Cow Stretch", "category": "flexibility", "difficulty": "beginner", "secondary": ["back", "core"], "equipment": ["bodyweight"], "duration": 60, "met": 2.0, "rating": 4.0, "tags": ["mobility", "low-impact"]},
        {"name": "Child's Pose", "category": "yoga", "difficulty": "beginner", "secondary": ["back", "shoulders"], "equipment": ["bodyweight"], "duration": 60, "met": 1.5, "rating": 3.9, "tags": ["mobility", "low-impact"], "contraindications": ["knee pain"]},
        {"name": "Foam Roll Quads", "category": "cool_down", "difficulty": "beginner", "secondary": ["quadriceps"], "equipment": ["foam_roller"], "duration": 60, "met": 1.5, "rating": 3.8, "tags": ["recovery"]},
        {"name": "Turkish Get-Up", "category": "functional", "difficulty": "advanced", "secondary": ["shoulders", "core", "glutes"], "equipment": ["kettlebell"], "compound": True, "reps": (3, 5), "rest": 120, "met": 6.0, "rating": 4.5, "injury_warnings": ["shoulder impingement"]},
    ],
}

# Fields exposed to create/update
EDITABLE_FIELDS = [
    'name', 'description', 'instructions', 'category', 'difficulty_level', 'primary_muscle_group',
    'secondary_muscle_groups', 'equipment', 'contraindications', 'health_conditions_to_avoid',
    'injury_warnings', 'safety_notes', 'form_cues', 'video_url', 'default_sets', 'default_reps_min',
    'default_reps_max', 'default_duration_seconds', 'default_rest_seconds', 'progression_exercise_ids',
    'regression_exercise_ids', 'alternative_exercise_ids', 'calories_per_minute', 'met_value', 'tags',
    'is_compound', 'is_unilateral', 'is_bodyweight', 'is_cardio',
]

SORTABLE_FIELDS = {'name', 'category', 'difficulty_level', 'usage_count', 'average_rating', 'created_at'}

STRENGTH_GOALS = {'strength_building', 'muscle_gain'}


@dataclass
class SuitabilityProfile:
    """What the library needs to know about a user to shortlist exercises."""
    experience_level: str = 'beginner'
    available_equipment: list = field(default_factory=list)
    health_conditions: list = field(default_factory=list)
    disliked_exercises: list = field(default_factory=list)
    preferred_muscle_groups: list = field(default_factory=list)
    goal: str = 'general_fitness'


def _catalog_row(muscle, entry):
    reps = entry.get('reps')
    equipment = entry.get('equipment', ['bodyweight'])
    rating = entry.get('rating', 0.0)
    return Exercise(
        name=entry['name'],
        description=entry.get('description'),
        category=entry['category'],
        difficulty_level=entry['difficulty'],
        primary_muscle_group=muscle,
        secondary_muscle_groups=entry.get('secondary', []),
        equipment=equipment,
        contraindications=entry.get('contraindications', []),
        health_conditions_to_avoid=entry.get('avoid', []),
        injury_warnings=entry.get('injury_warnings', []),
        tags=entry.get('tags', []),
        default_sets=entry.get('sets', 3),
        default_reps_min=reps[0] if reps else None,
        default_reps_max=reps[1] if reps else None,
        default_duration_seconds=entry.get('duration'),
        default_rest_seconds=entry.get('rest', 60),
        met_value=entry.get('met'),
        is_compound=entry.get('compound', False),
        is_unilateral=entry.get('unilateral', False),
        is_bodyweight=set(equipment) <= NO_EQUIPMENT,
        is_cardio=entry.get('cardio', False),
        is_active=True,
        is_approved=True,
        created_by='system',
        approved_by='system',
        average_rating=rating,
        total_ratings=10 if rating else 0,
    )


class ExerciseLibrary:
    """Catalog queries and catalog mutations (usage, ratings, approval)."""

    # ---------- seed ----------

    def seed_catalog(self):
        """Load the built-in catalog if the table is empty. Returns the number of rows added."""
        if Exercise.query.count() > 0:
            return 0

        by_name = {}
        for muscle, entries in EXERCISES.items():
            for entry in entries:
                row = _catalog_row(muscle, entry)
                db.session.add(row)
                by_name[entry['name']] = (row, entry)
        db.session.flush()

        # Resolve progression/regression links now that ids exist
        for row, entry in by_name.values():
            row.progression_exercise_ids = [by_name[n][0].id for n in entry.get('progression', []) if n in by_name]
            row.regression_exercise_ids = [by_name[n][0].id for n in entry.get('regression', []) if n in by_name]
        db.session.commit()
        logger.info("Seeded exercise catalog with %d exercises", len(by_name))
        return len(by_name)

    # ---------- CRUD ----------

    def _validate_fields(self, data):
        if 'category' in data and data['category'] not in EXERCISE_CATEGORIES:
            raise ValidationError(f"Unknown category: {data['category']}")
        if 'difficulty_level' in data and data['difficulty_level'] not in EXPERIENCE_LEVELS:
            raise ValidationError(f"Unknown difficulty level: {data['difficulty_level']}")
        if 'primary_muscle_group' in data and data['primary_muscle_group'] not in MUSCLE_GROUPS:
            raise ValidationError(f"Unknown muscle group: {data['primary_muscle_group']}")
        equipment = set(data.get('equipment') or [])
        if data.get('is_bodyweight') and equipment - NO_EQUIPMENT:
            raise ValidationError('Bodyweight exercises cannot require equipment')

    def create(self, data, created_by=None):
        for required in ('name', 'category', 'primary_muscle_group'):
            if not data.get(required):
                raise ValidationError(f"{required} is required")
        self._validate_fields(data)
        if Exercise.query.filter(db.func.lower(Exercise.name) == data['name'].lower()).first():
            raise ConflictError(f"Exercise '{data['name']}' already exists")

        exercise = Exercise(**{k: data[k] for k in EDITABLE_FIELDS if k in data})
        exercise.created_by = str(created_by) if created_by is not None else None
        exercise.is_approved = False
        exercise.is_active = True
        db.session.add(exercise)
        db.session.commit()
        return exercise

    def get(self, exercise_id):
        exercise = db.session.get(Exercise, exercise_id)
        if not exercise:
            raise NotFoundError(f"Exercise {exercise_id} not found")
        return exercise

    def update(self, exercise_id, data):
        exercise = self.get(exercise_id)
        self._validate_fields({**exercise.to_dict(), **data})
        new_name = data.get('name')
        if new_name and new_name.lower() != exercise.name.lower():
            clash = Exercise.query.filter(db.func.lower(Exercise.name) == new_name.lower()).first()
            if clash:
                raise ConflictError(f"Exercise '{new_name}' already exists")
        for key in EDITABLE_FIELDS:
            if key in data:
                setattr(exercise, key, data[key])
        db.session.commit()
        return exercise

    def delete(self, exercise_id):
        """Soft delete: plans keep referencing the row."""
        exercise = self.get(exercise_id)
        exercise.is_active = False
        db.session.commit()
        return exercise

    # ---------- queries ----------

    def query(self, filters=None, sort_by='name', sort_order='asc', limit=20, offset=0):
        """
        Filtered, sorted, paginated catalog listing.

        Args:
            filters: dict with any of search, category, difficulty_level, primary_muscle_group,
                     muscle_group, is_compound, is_bodyweight, is_cardio, equipment (any overlap),
                     tags (any overlap), available_equipment (subset), health_conditions,
                     include_inactive
            sort_by: one of SORTABLE_FIELDS

        Returns:
            dict with exercises, total, limit, offset
        """
        filters = filters or {}
        q = Exercise.query
        if not filters.get('include_inactive'):
            q = q.filter(Exercise.is_active.is_(True))
        if filters.get('search'):
            term = f"%{filters['search']}%"
            q = q.filter(or_(Exercise.name.ilike(term), Exercise.description.ilike(term)))
        for column in ('category', 'difficulty_level', 'primary_muscle_group'):
            if filters.get(column):
                q = q.filter(getattr(Exercise, column) == filters[column])
        for flag in ('is_compound', 'is_bodyweight', 'is_cardio'):
            if filters.get(flag) is not None:
                q = q.filter(getattr(Exercise, flag).is_(bool(filters[flag])))

        if sort_by not in SORTABLE_FIELDS:
            sort_by = 'name'
        column = getattr(Exercise, sort_by)
        q = q.order_by(column.desc() if sort_order == 'desc' else column.asc(), Exercise.id)

        # JSON list filters are evaluated in Python to stay backend neutral
        rows = q.all()
        if filters.get('muscle_group'):
            rows = [e for e in rows if e.targets_muscle(filters['muscle_group'])]
        if filters.get('equipment'):
            wanted = set(filters['equipment'])
            rows = [e for e in rows if wanted & set(e.equipment or [])]
        if filters.get('tags'):
            wanted = set(filters['tags'])
            rows = [e for e in rows if wanted & set(e.tags or [])]
        if filters.get('available_equipment') is not None:
            rows = [e for e in rows if e.is_available_for_equipment(filters['available_equipment'])]
        if filters.get('health_conditions'):
            rows = [e for e in rows if e.is_safe_for_conditions(filters['health_conditions'])]

        total = len(rows)
        return {
            'exercises': rows[offset:offset + limit],
            'total': total,
            'limit': limit,
            'offset': offset,
        }

    def search(self, text, limit=20):
        term = f"%{text}%"
        return Exercise.query.filter(
            Exercise.is_active.is_(True),
            or_(Exercise.name.ilike(term), Exercise.description.ilike(term)),
        ).order_by(Exercise.usage_count.desc(), Exercise.name).limit(limit).all()

    def by_muscle_group(self, muscle_group, limit=20):
        if muscle_group not in MUSCLE_GROUPS:
            raise ValidationError(f"Unknown muscle group: {muscle_group}")
        rows = Exercise.query.filter(Exercise.is_active.is_(True)).order_by(
            Exercise.usage_count.desc(), Exercise.name
        ).all()
        return [e for e in rows if e.targets_muscle(muscle_group)][:limit]

    def by_category(self, category, limit=20):
        if category not in EXERCISE_CATEGORIES:
            raise ValidationError(f"Unknown category: {category}")
        return Exercise.query.filter_by(category=category, is_active=True).order_by(
            Exercise.average_rating.desc(), Exercise.usage_count.desc(), Exercise.name
        ).limit(limit).all()

    def suitable(self, profile, limit=None):
        """
        Active, approved exercises a user can safely do with their equipment.

        Filters: level (no exercise above the user's experience), equipment (required set
        must be a subset of what is available), health (no bidirectional substring match
        against health_conditions_to_avoid), dislikes (by name, case-insensitive).
        Order: preferred muscle groups first; for strength and muscle-gain goals compounds
        before isolation; then descending rating; then name.
        """
        disliked = {n.strip().lower() for n in (profile.disliked_exercises or [])}
        preferred = set(profile.preferred_muscle_groups or [])
        compounds_first = profile.goal in STRENGTH_GOALS

        rows = Exercise.query.filter(
            Exercise.is_active.is_(True),
            Exercise.is_approved.is_(True),
        ).all()

        candidates = [
            e for e in rows
            if e.is_suitable_for_level(profile.experience_level)
            and e.is_available_for_equipment(profile.available_equipment)
            and e.is_safe_for_conditions(profile.health_conditions)
            and e.name.lower() not in disliked
        ]

        def sort_key(e):
            return (
                0 if preferred and e.primary_muscle_group in preferred else 1,
                0 if (compounds_first and e.is_compound) else 1,
                -(e.average_rating or 0.0),
                e.name,
            )

        candidates.sort(key=sort_key)
        return candidates[:limit] if limit else candidates

    def alternatives(self, exercise_id, limit=5):
        """Explicitly linked alternatives, else same primary muscle and category."""
        exercise = self.get(exercise_id)
        linked_ids = list(exercise.alternative_exercise_ids or [])
        if linked_ids:
            linked = Exercise.query.filter(Exercise.id.in_(linked_ids), Exercise.is_active.is_(True)).all()
            if linked:
                return linked[:limit]
        return Exercise.query.filter(
            Exercise.id != exercise.id,
            Exercise.is_active.is_(True),
            Exercise.primary_muscle_group == exercise.primary_muscle_group,
        ).order_by(Exercise.average_rating.desc(), Exercise.name).limit(limit).all()

    # ---------- usage & ratings ----------

    def record_usage(self, exercise_id, commit=True):
        exercise = self.get(exercise_id)
        exercise.increment_usage()
        if commit:
            db.session.commit()
        return exercise

    def rate(self, exercise_id, rating):
        exercise = self.get(exercise_id)
        exercise.update_rating(rating)
        db.session.commit()
        return exercise

    def approve(self, exercise_id, approved_by):
        exercise = self.get(exercise_id)
        exercise.approve(approved_by)
        db.session.commit()
        logger.info("Exercise %s approved by %s", exercise.name, approved_by)
        return exercise

    def popular(self, limit=10):
        return Exercise.query.filter_by(is_active=True, is_approved=True).order_by(
            Exercise.usage_count.desc(), Exercise.average_rating.desc(), Exercise.name
        ).limit(limit).all()

    def stats(self):
        rows = Exercise.query.filter_by(is_active=True).all()
        by_category, by_difficulty, by_muscle = {}, {}, {}
        for e in rows:
            by_category[e.category] = by_category.get(e.category, 0) + 1
            by_difficulty[e.difficulty_level] = by_difficulty.get(e.difficulty_level, 0) + 1
            by_muscle[e.primary_muscle_group] = by_muscle.get(e.primary_muscle_group, 0) + 1

        most_used = sorted(rows, key=lambda e: (-(e.usage_count or 0), e.name))[:10]
        rated = [e for e in rows if (e.total_ratings or 0) >= 5]
        highest_rated = sorted(rated, key=lambda e: (-(e.average_rating or 0.0), e.name))[:10]
        return {
            'total_exercises': len(rows),
            'by_category': by_category,
            'by_difficulty': by_difficulty,
            'by_muscle_group': by_muscle,
            'most_used': [{'id': e.id, 'name': e.name, 'usage_count': e.usage_count or 0} for e in most_used],
            'highest_rated': [
                {'id': e.id, 'name': e.name, 'average_rating': round(e.average_rating, 2)} for e in highest_rated
            ],
        }


def health_conflicts(exercise, conditions):
    """Health conditions the exercise should avoid that match the user's conditions."""
    return overlapping_terms(exercise.health_conditions_to_avoid, conditions)
