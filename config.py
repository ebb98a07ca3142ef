import os

class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production')

    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL', 'sqlite:///fitplan.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Railway/Heroku style URLs
    if SQLALCHEMY_DATABASE_URI and SQLALCHEMY_DATABASE_URI.startswith('postgres://'):
        SQLALCHEMY_DATABASE_URI = SQLALCHEMY_DATABASE_URI.replace('postgres://', 'postgresql://', 1)

    # AI reasoning for adaptations (optional)
    OPENAI_API_KEY = os.environ.get('OPENAI_API_KEY')
    OPENAI_MODEL = os.environ.get('OPENAI_MODEL', 'gpt-4.1')
    AI_TIMEOUT_SECONDS = float(os.environ.get('AI_TIMEOUT_SECONDS', '20'))

    # Weekly adaptation job
    ADAPTATION_BATCH_SIZE = int(os.environ.get('ADAPTATION_BATCH_SIZE', '10'))
    ADAPTATION_BATCH_PAUSE_SECONDS = float(os.environ.get('ADAPTATION_BATCH_PAUSE_SECONDS', '1.0'))
    ADAPTATION_DAY_OF_WEEK = os.environ.get('ADAPTATION_DAY_OF_WEEK', 'mon')
    ADAPTATION_HOUR = int(os.environ.get('ADAPTATION_HOUR', '6'))
    ADAPTATION_TIMEZONE = os.environ.get('ADAPTATION_TIMEZONE', 'UTC')
    # 'skip' drops runs missed beyond the grace period, 'catch_up' runs them once on start
    ADAPTATION_MISSED_RUN_POLICY = os.environ.get('ADAPTATION_MISSED_RUN_POLICY', 'skip')
    ADAPTATION_MISFIRE_GRACE_SECONDS = int(os.environ.get('ADAPTATION_MISFIRE_GRACE_SECONDS', '3600'))

    # Generation
    MIN_CANDIDATE_EXERCISES = int(os.environ.get('MIN_CANDIDATE_EXERCISES', '10'))
    SEED_EXERCISE_CATALOG = os.environ.get('SEED_EXERCISE_CATALOG', 'true').lower() == 'true'
