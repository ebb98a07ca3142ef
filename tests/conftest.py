import itertools
from datetime import date, datetime, timedelta

import jwt
import pytest

from config import Config
from fitplan import create_app
from fitplan.generator import PlanGenerator
from fitplan.models import db, User
from fitplan.plans import FitnessPlanService

SECRET = 'test-secret'


class FitPlanTestConfig(Config):
    TESTING = True
    SECRET_KEY = SECRET
    OPENAI_API_KEY = None
    SEED_EXERCISE_CATALOG = True
    MIN_CANDIDATE_EXERCISES = 10
    ADAPTATION_BATCH_SIZE = 1
    ADAPTATION_BATCH_PAUSE_SECONDS = 0
    ADAPTATION_MISSED_RUN_POLICY = 'skip'


@pytest.fixture
def app(tmp_path):
    # A file database so batch worker threads share it
    class _Config(FitPlanTestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'fitplan.db'}"

    app = create_app(_Config)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    counter = itertools.count(1)

    def _make(**overrides):
        n = next(counter)
        values = {
            'email': f"athlete{n}@example.com",
            'name': f"Athlete {n}",
            'birth_year': date.today().year - 30,
            'experience_level': 'beginner',
            'weight_kg': 70.0,
            'equipment': ['bodyweight'],
            'health_conditions': [],
            'physical_limitations': [],
            'injury_history': [],
            'preferences': {},
        }
        values.update(overrides)
        user = User(**values)
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def admin(make_user):
    return make_user(is_admin=True)


@pytest.fixture
def plan_params():
    return {
        'plan_type': 'general_fitness',
        'experience_level': 'beginner',
        'duration_weeks': 8,
        'workouts_per_week': 3,
        'available_equipment': ['bodyweight'],
        'deload_frequency': 4,
        'start_date': date.today().isoformat(),
    }


@pytest.fixture
def generator(app):
    return PlanGenerator(min_candidates=10)


@pytest.fixture
def service(generator):
    return FitnessPlanService(generator=generator, validator=generator.validator, library=generator.library)


@pytest.fixture
def draft_plan(user, generator, plan_params):
    return generator.generate_fitness_plan(user.id, plan_params)


@pytest.fixture
def active_plan(draft_plan, service):
    return service.activate_plan(draft_plan.id, draft_plan.user_id)


def auth_headers(user):
    token = jwt.encode(
        {'user_id': user.id, 'exp': datetime.utcnow() + timedelta(hours=1)},
        SECRET, algorithm='HS256',
    )
    return {'Authorization': f"Bearer {token}"}


@pytest.fixture
def headers(user):
    return auth_headers(user)
