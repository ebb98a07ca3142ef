"""
FitPlan - Flask API for generated and self-adapting training plans
"""

from flask import Flask, jsonify, request
from flask_cors import CORS
from datetime import datetime, timedelta
from functools import wraps
import jwt
import logging

from config import Config
from fitplan.errors import FitPlanError, PermissionDenied, ValidationError
from fitplan.models import db, User, ActivityLog, AdaptationRun
from fitplan.exercises import ExerciseLibrary, SuitabilityProfile
from fitplan.plans import FitnessPlanService
from fitplan.adaptation import engine_from_app, run_weekly_adaptation

logger = logging.getLogger(__name__)


def _flag(name):
    value = request.args.get(name)
    if value is None:
        return None
    return value.lower() in ('1', 'true', 'yes')


def _list_arg(name):
    value = request.args.get(name)
    if not value:
        return None
    return [v.strip() for v in value.split(',') if v.strip()]


def _page():
    limit = request.args.get('limit', 20, type=int)
    offset = request.args.get('offset', 0, type=int)
    if limit < 1 or limit > 100 or offset < 0:
        raise ValidationError('limit must be 1-100 and offset cannot be negative')
    return limit, offset


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    # Init extensions
    db.init_app(app)
    CORS(app)

    # Create tables and seed the built-in catalog
    with app.app_context():
        db.create_all()
        if app.config.get('SEED_EXERCISE_CATALOG'):
            ExerciseLibrary().seed_catalog()

    library = ExerciseLibrary()
    plans = FitnessPlanService(library=library)
    plans.generator.min_candidates = app.config.get('MIN_CANDIDATE_EXERCISES', 10)

    @app.errorhandler(FitPlanError)
    def handle_domain_error(error):
        return jsonify(error.to_dict()), error.status_code

    # ========== AUTH HELPERS ==========

    def token_required(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            token = request.headers.get('Authorization', '').replace('Bearer ', '')
            if not token:
                return jsonify({'error': 'Missing token'}), 401
            try:
                data = jwt.decode(token, app.config['SECRET_KEY'], algorithms=['HS256'])
            except jwt.ExpiredSignatureError:
                return jsonify({'error': 'Token expired'}), 401
            except jwt.InvalidTokenError:
                return jsonify({'error': 'Invalid token'}), 401
            current_user = db.session.get(User, data.get('user_id'))
            if not current_user or not current_user.is_active:
                return jsonify({'error': 'User not found'}), 401
            return f(current_user, *args, **kwargs)
        return decorated

    def admin_required(f):
        @wraps(f)
        def decorated(current_user, *args, **kwargs):
            if not current_user.is_admin:
                raise PermissionDenied('Admin access required')
            return f(current_user, *args, **kwargs)
        return decorated

    # ========== PLANS ==========

    @app.route('/api/plans', methods=['POST'])
    @token_required
    def create_plan(current_user):
        """Create an empty draft plan"""
        plan = plans.create_plan(current_user.id, request.get_json() or {})
        return jsonify(plan.to_dict()), 201

    @app.route('/api/plans/generate', methods=['POST'])
    @token_required
    def generate_plan(current_user):
        """Generate a complete plan with all its weeks"""
        plan = plans.generate_plan(current_user.id, request.get_json() or {})
        return jsonify(plan.to_dict(include_weeks=True)), 201

    @app.route('/api/plans', methods=['GET'])
    @token_required
    def list_plans(current_user):
        limit, offset = _page()
        filters = {
            'plan_type': request.args.get('plan_type'),
            'status': request.args.get('status'),
            'experience_level': request.args.get('experience_level'),
            'is_template': _flag('is_template'),
            'min_duration': request.args.get('min_duration', type=int),
            'max_duration': request.args.get('max_duration', type=int),
            'start_after': request.args.get('start_after'),
            'start_before': request.args.get('start_before'),
            'equipment': _list_arg('equipment'),
        }
        page = plans.list_plans(
            current_user.id, filters,
            sort_by=request.args.get('sort_by', 'created_at'),
            sort_order=request.args.get('sort_order', 'desc'),
            limit=limit, offset=offset,
        )
        page['plans'] = [p.to_dict() for p in page['plans']]
        return jsonify(page)

    @app.route('/api/plans/templates', methods=['GET'])
    @token_required
    def plan_templates(current_user):
        limit = request.args.get('limit', 20, type=int)
        templates = plans.templates(request.args.get('plan_type'), limit=limit)
        return jsonify([t.to_dict() for t in templates])

    @app.route('/api/plans/stats', methods=['GET'])
    @token_required
    def plan_stats(current_user):
        return jsonify(plans.stats(current_user.id))

    @app.route('/api/plans/<int:plan_id>', methods=['GET'])
    @token_required
    def get_plan(current_user, plan_id):
        plan = plans.get_plan(plan_id, current_user.id)
        include_weeks = request.args.get('include_weeks', 'true').lower() != 'false'
        return jsonify(plan.to_dict(include_weeks=include_weeks))

    @app.route('/api/plans/<int:plan_id>', methods=['PUT'])
    @token_required
    def update_plan(current_user, plan_id):
        plan = plans.update_plan(plan_id, current_user.id, request.get_json() or {})
        return jsonify(plan.to_dict())

    @app.route('/api/plans/<int:plan_id>', methods=['DELETE'])
    @token_required
    def delete_plan(current_user, plan_id):
        plans.delete_plan(plan_id, current_user.id)
        return jsonify({'message': 'Plan deleted'})

    @app.route('/api/plans/<int:plan_id>/<action>', methods=['POST'])
    @token_required
    def plan_lifecycle(current_user, plan_id, action):
        """activate, pause, resume, complete, cancel"""
        handlers = {
            'activate': plans.activate_plan,
            'pause': plans.pause_plan,
            'resume': plans.resume_plan,
            'complete': plans.complete_plan,
            'cancel': plans.cancel_plan,
        }
        if action not in handlers:
            return jsonify({'error': f"Unknown action: {action}"}), 404
        plan = handlers[action](plan_id, current_user.id)
        return jsonify(plan.to_dict())

    @app.route('/api/plans/<int:plan_id>/progress', methods=['POST'])
    @token_required
    def record_progress(current_user, plan_id):
        workout = plans.record_progress(plan_id, current_user.id, request.get_json() or {})
        return jsonify(workout.to_dict(include_exercises=True))

    @app.route('/api/plans/<int:plan_id>/progress', methods=['GET'])
    @token_required
    def progress_summary(current_user, plan_id):
        return jsonify(plans.progress_summary(plan_id, current_user.id))

    @app.route('/api/plans/<int:plan_id>/weeks/<int:week_number>/adapt', methods=['POST'])
    @token_required
    def adapt_week(current_user, plan_id, week_number):
        data = request.get_json() or {}
        week = plans.adapt_week(plan_id, current_user.id, week_number, data.get('adaptations', data))
        return jsonify(week.to_dict(include_workouts=True))

    @app.route('/api/plans/<int:plan_id>/validate', methods=['GET'])
    @token_required
    def validate_plan(current_user, plan_id):
        return jsonify(plans.validate_plan(plan_id, current_user.id))

    @app.route('/api/plans/<int:plan_id>/recommendations', methods=['POST'])
    @token_required
    def progression_recommendations(current_user, plan_id):
        data = request.get_json() or {}
        items = plans.progression_recommendations(
            plan_id, current_user.id, data.get('adherence_rate'), data.get('feedback')
        )
        return jsonify({'recommendations': items})

    @app.route('/api/plans/<int:plan_id>/clone', methods=['POST'])
    @token_required
    def clone_plan(current_user, plan_id):
        plan = plans.clone_plan(plan_id, current_user.id, request.get_json() or {})
        return jsonify(plan.to_dict(include_weeks=True)), 201

    # ========== SAFETY CHECKS ==========

    @app.route('/api/plans/validate-exercise', methods=['POST'])
    @token_required
    def validate_exercise_parameters(current_user):
        """Check sets/reps/weight for one exercise"""
        result = plans.validate_exercise_parameters(request.get_json() or {}, current_user)
        return jsonify(result.to_dict())

    @app.route('/api/plans/validate-exercise-for-user', methods=['POST'])
    @token_required
    def validate_exercise_for_user(current_user):
        data = request.get_json() or {}
        if data.get('exercise_id') is None:
            raise ValidationError('exercise_id is required')
        result = plans.validate_exercise_for_user(data['exercise_id'], current_user)
        return jsonify(result.to_dict())

    # ========== SESSIONS ==========

    @app.route('/api/workouts/<int:workout_id>/<action>', methods=['POST'])
    @token_required
    def workout_action(current_user, workout_id, action):
        """start, complete, skip, modify"""
        workout = plans.workout_action(workout_id, current_user.id, action, request.get_json(silent=True) or {})
        return jsonify(workout.to_dict(include_exercises=True))

    @app.route('/api/plan-exercises/<int:plan_exercise_id>/<action>', methods=['POST'])
    @token_required
    def plan_exercise_action(current_user, plan_exercise_id, action):
        """start, complete, skip, modify"""
        exercise = plans.exercise_action(
            plan_exercise_id, current_user.id, action, request.get_json(silent=True) or {}
        )
        data = exercise.to_dict()
        data['progression'] = exercise.progression_suggestion()
        return jsonify(data)

    # ========== ACTIVITY LOG ==========

    @app.route('/api/activity-logs', methods=['POST'])
    @token_required
    def log_activity(current_user):
        """Log a workout done outside the plan"""
        log = plans.log_activity(current_user.id, request.get_json(silent=True) or {})
        return jsonify(log.to_dict()), 201

    @app.route('/api/activity-logs', methods=['GET'])
    @token_required
    def list_activity(current_user):
        days = request.args.get('days', 7, type=int)
        end = datetime.utcnow()
        logs = ActivityLog.between(current_user.id, end - timedelta(days=days), end)
        return jsonify([log.to_dict() for log in logs])

    # ========== EXERCISES ==========

    @app.route('/api/exercises', methods=['GET'])
    @token_required
    def list_exercises(current_user):
        limit, offset = _page()
        filters = {
            'search': request.args.get('search'),
            'category': request.args.get('category'),
            'difficulty_level': request.args.get('difficulty'),
            'primary_muscle_group': request.args.get('primary_muscle_group'),
            'muscle_group': request.args.get('muscle_group'),
            'is_compound': _flag('compound'),
            'is_bodyweight': _flag('bodyweight'),
            'is_cardio': _flag('cardio'),
            'equipment': _list_arg('equipment'),
            'tags': _list_arg('tags'),
            'available_equipment': _list_arg('available_equipment'),
            'health_conditions': _list_arg('health_conditions'),
        }
        page = library.query(
            filters,
            sort_by=request.args.get('sort_by', 'name'),
            sort_order=request.args.get('sort_order', 'asc'),
            limit=limit, offset=offset,
        )
        page['exercises'] = [e.to_dict() for e in page['exercises']]
        return jsonify(page)

    @app.route('/api/exercises', methods=['POST'])
    @token_required
    def create_exercise(current_user):
        exercise = library.create(request.get_json() or {}, created_by=current_user.id)
        return jsonify(exercise.to_dict()), 201

    @app.route('/api/exercises/search', methods=['GET'])
    @token_required
    def search_exercises(current_user):
        text = request.args.get('q', '').strip()
        if not text:
            raise ValidationError('q is required')
        limit = request.args.get('limit', 20, type=int)
        return jsonify([e.to_dict() for e in library.search(text, limit=limit)])

    @app.route('/api/exercises/muscle-group/<muscle_group>', methods=['GET'])
    @token_required
    def exercises_by_muscle(current_user, muscle_group):
        limit = request.args.get('limit', 20, type=int)
        return jsonify([e.to_dict() for e in library.by_muscle_group(muscle_group, limit=limit)])

    @app.route('/api/exercises/category/<category>', methods=['GET'])
    @token_required
    def exercises_by_category(current_user, category):
        limit = request.args.get('limit', 20, type=int)
        return jsonify([e.to_dict() for e in library.by_category(category, limit=limit)])

    @app.route('/api/exercises/suitable', methods=['GET'])
    @token_required
    def suitable_exercises(current_user):
        """Exercises matching the caller's profile"""
        profile = SuitabilityProfile(
            experience_level=request.args.get('experience_level') or current_user.experience_level or 'beginner',
            available_equipment=_list_arg('equipment') or list(current_user.equipment or []),
            health_conditions=list(current_user.health_conditions or []),
            disliked_exercises=list(current_user.get_preference('disliked_exercises') or []),
            preferred_muscle_groups=_list_arg('muscle_groups') or [],
            goal=request.args.get('goal', 'general_fitness'),
        )
        limit = request.args.get('limit', 50, type=int)
        return jsonify([e.to_dict() for e in library.suitable(profile, limit=limit)])

    @app.route('/api/exercises/popular', methods=['GET'])
    @token_required
    def popular_exercises(current_user):
        limit = request.args.get('limit', 10, type=int)
        return jsonify([e.to_dict() for e in library.popular(limit=limit)])

    @app.route('/api/exercises/stats', methods=['GET'])
    @token_required
    def exercise_stats(current_user):
        return jsonify(library.stats())

    @app.route('/api/exercises/<int:exercise_id>', methods=['GET'])
    @token_required
    def get_exercise(current_user, exercise_id):
        return jsonify(library.get(exercise_id).to_dict())

    @app.route('/api/exercises/<int:exercise_id>', methods=['PUT'])
    @token_required
    @admin_required
    def update_exercise(current_user, exercise_id):
        return jsonify(library.update(exercise_id, request.get_json() or {}).to_dict())

    @app.route('/api/exercises/<int:exercise_id>', methods=['DELETE'])
    @token_required
    @admin_required
    def delete_exercise(current_user, exercise_id):
        library.delete(exercise_id)
        return jsonify({'message': 'Exercise deactivated'})

    @app.route('/api/exercises/<int:exercise_id>/alternatives', methods=['GET'])
    @token_required
    def exercise_alternatives(current_user, exercise_id):
        limit = request.args.get('limit', 5, type=int)
        return jsonify([e.to_dict() for e in library.alternatives(exercise_id, limit=limit)])

    @app.route('/api/exercises/<int:exercise_id>/use', methods=['POST'])
    @token_required
    def use_exercise(current_user, exercise_id):
        exercise = library.record_usage(exercise_id)
        return jsonify({'id': exercise.id, 'usage_count': exercise.usage_count})

    @app.route('/api/exercises/<int:exercise_id>/rate', methods=['POST'])
    @token_required
    def rate_exercise(current_user, exercise_id):
        data = request.get_json() or {}
        exercise = library.rate(exercise_id, data.get('rating'))
        return jsonify({
            'id': exercise.id,
            'average_rating': round(exercise.average_rating, 2),
            'total_ratings': exercise.total_ratings,
        })

    @app.route('/api/exercises/<int:exercise_id>/approve', methods=['POST'])
    @token_required
    @admin_required
    def approve_exercise(current_user, exercise_id):
        return jsonify(library.approve(exercise_id, current_user.email).to_dict())

    # ========== ADAPTATION ==========

    @app.route('/api/adaptation/trigger', methods=['POST'])
    @token_required
    def trigger_adaptation(current_user):
        """Re-adapt the caller's active plan now"""
        result = engine_from_app(app).adapt_user(current_user.id, trigger='manual')
        return jsonify(result.to_dict())

    @app.route('/api/adaptation/trigger/<int:user_id>', methods=['POST'])
    @token_required
    @admin_required
    def trigger_adaptation_for_user(current_user, user_id):
        result = engine_from_app(app).adapt_user(user_id, trigger='manual')
        return jsonify(result.to_dict())

    @app.route('/api/adaptation/batch-trigger', methods=['POST'])
    @token_required
    @admin_required
    def trigger_batch(current_user):
        summary = run_weekly_adaptation(app, trigger='manual')
        return jsonify(summary)

    @app.route('/api/adaptation/latest', methods=['GET'])
    @token_required
    def latest_adaptation(current_user):
        log = engine_from_app(app).latest(current_user.id)
        if not log:
            return jsonify({'message': 'No adaptations yet'}), 404
        return jsonify(log.to_dict())

    @app.route('/api/adaptation/history', methods=['GET'])
    @token_required
    def adaptation_history(current_user):
        limit = request.args.get('limit', 10, type=int)
        logs = engine_from_app(app).history(current_user.id, limit=limit)
        return jsonify([log.to_dict() for log in logs])

    # ========== HEALTH CHECK ==========

    @app.route('/api/health', methods=['GET'])
    def health_check():
        last_run = AdaptationRun.query.order_by(AdaptationRun.started_at.desc()).first()
        return jsonify({
            'status': 'ok',
            'timestamp': datetime.utcnow().isoformat(),
            'last_adaptation_run': last_run.started_at.isoformat() if last_run else None,
        })

    return app
