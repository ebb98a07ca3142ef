from datetime import date, datetime, timedelta

import jwt

from fitplan.models import Exercise, FitnessPlan
from conftest import SECRET, auth_headers


def _generate(client, headers, plan_params, **overrides):
    return client.post('/api/plans/generate', json=dict(plan_params, **overrides), headers=headers)


def test_health_is_public(client):
    response = client.get('/api/health')
    assert response.status_code == 200
    assert response.get_json()['status'] == 'ok'
    assert response.get_json()['last_adaptation_run'] is None


def test_missing_and_bad_tokens(client, user):
    assert client.get('/api/plans').status_code == 401
    bad = {'Authorization': 'Bearer not-a-token'}
    assert client.get('/api/plans', headers=bad).get_json()['error'] == 'Invalid token'

    expired = jwt.encode({'user_id': user.id, 'exp': datetime.utcnow() - timedelta(minutes=1)},
                         SECRET, algorithm='HS256')
    response = client.get('/api/plans', headers={'Authorization': f"Bearer {expired}"})
    assert response.status_code == 401
    assert response.get_json()['error'] == 'Token expired'


def test_generate_get_and_activate(client, headers, plan_params):
    response = _generate(client, headers, plan_params)
    assert response.status_code == 201
    body = response.get_json()
    assert body['status'] == 'draft'
    assert len(body['weeks']) == 8
    assert body['weeks'][3]['week_type'] == 'deload'

    plan_id = body['id']
    fetched = client.get(f"/api/plans/{plan_id}", headers=headers).get_json()
    assert fetched['name'] == 'Beginner General Fitness Plan'

    activated = client.post(f"/api/plans/{plan_id}/activate", headers=headers)
    assert activated.status_code == 200
    assert activated.get_json()['status'] == 'active'

    listed = client.get('/api/plans?status=active', headers=headers).get_json()
    assert listed['total'] == 1


def test_error_mapping(client, headers, plan_params):
    assert client.get('/api/plans/9999', headers=headers).status_code == 404

    response = _generate(client, headers, plan_params, workouts_per_week=9)
    assert response.status_code == 400
    assert 'error' in response.get_json()

    plan_id = _generate(client, headers, plan_params).get_json()['id']
    response = client.post(f"/api/plans/{plan_id}/pause", headers=headers)
    assert response.status_code == 409

    assert client.post(f"/api/plans/{plan_id}/explode", headers=headers).status_code == 404


def test_other_users_plan_is_forbidden(client, headers, make_user, plan_params):
    plan_id = _generate(client, headers, plan_params).get_json()['id']
    stranger = auth_headers(make_user())
    assert client.get(f"/api/plans/{plan_id}", headers=stranger).status_code == 403


def test_progress_endpoint(client, headers, active_plan, user):
    workout = active_plan.get_week(1).workouts[0]
    response = client.post(f"/api/plans/{active_plan.id}/progress", headers=headers,
                           json={'workout_id': workout.id, 'intensity': 7, 'duration_minutes': 30})
    assert response.status_code == 200
    assert response.get_json()['status'] == 'completed'

    summary = client.get(f"/api/plans/{active_plan.id}/progress", headers=headers).get_json()
    assert summary['total_workouts_completed'] == 1

    logs = client.get('/api/activity-logs', headers=headers).get_json()
    assert len(logs) == 1


def test_activity_log_validation(client, headers):
    for body in ({'intensity': 'hard'}, {'intensity': 11}, {'duration_minutes': -5}, {'calories': 'many'}):
        response = client.post('/api/activity-logs', headers=headers, json=body)
        assert response.status_code == 400
        assert 'error' in response.get_json()

    response = client.post('/api/activity-logs', headers=headers,
                           json={'intensity': '7', 'duration_minutes': 45, 'calories': 300})
    assert response.status_code == 201
    assert response.get_json()['intensity'] == 7.0
    assert len(client.get('/api/activity-logs', headers=headers).get_json()) == 1


def test_validate_exercise(client, headers):
    response = client.post('/api/plans/validate-exercise', headers=headers, json={
        'exercise_name': 'Squats', 'sets': 3, 'reps': 12, 'weight': 250, 'body_weight': 70,
    })
    assert response.status_code == 200
    body = response.get_json()
    assert body['valid'] is True
    assert any(v['severity'] == 'warning' for v in body['violations'])

    response = client.post('/api/plans/validate-exercise', headers=headers,
                           json={'exercise_name': 'Squats', 'sets': 12, 'reps': 10})
    assert response.get_json()['valid'] is False


def test_exercise_modify_rejected_with_422(client, headers, draft_plan):
    exercise = draft_plan.get_week(1).workouts[0].exercises[0]
    response = client.post(f"/api/plan-exercises/{exercise.id}/modify", headers=headers,
                           json={'target_sets': 20})
    assert response.status_code == 422
    assert response.get_json()['details']['valid'] is False


def test_admin_only_routes(client, headers, admin):
    exercise = Exercise.query.filter_by(name='Plank').one()
    assert client.post(f"/api/exercises/{exercise.id}/approve", headers=headers).status_code == 403

    created = client.post('/api/exercises', headers=headers, json={
        'name': 'Chair Dip', 'category': 'calisthenics', 'primary_muscle_group': 'triceps',
        'equipment': ['bodyweight'], 'is_bodyweight': True,
    })
    assert created.status_code == 201
    assert created.get_json()['is_approved'] is False

    approved = client.post(f"/api/exercises/{created.get_json()['id']}/approve", headers=auth_headers(admin))
    assert approved.status_code == 200
    assert approved.get_json()['is_approved'] is True


def test_exercise_browsing(client, headers):
    page = client.get('/api/exercises?primary_muscle_group=core&limit=2', headers=headers).get_json()
    assert len(page['exercises']) == 2

    found = client.get('/api/exercises/search?q=push', headers=headers).get_json()
    assert any(e['name'] == 'Push-Up' for e in found)
    assert client.get('/api/exercises/search', headers=headers).status_code == 400

    suitable = client.get('/api/exercises/suitable', headers=headers).get_json()
    assert suitable and all(e['difficulty_level'] == 'beginner' for e in suitable)

    assert client.get('/api/exercises/muscle-group/wings', headers=headers).status_code == 400


def test_rate_exercise(client, headers):
    exercise = Exercise.query.filter_by(name='Glute Bridge').one()
    response = client.post(f"/api/exercises/{exercise.id}/rate", headers=headers, json={'rating': 5})
    assert response.status_code == 200
    assert response.get_json()['total_ratings'] == 11
    assert client.post(f"/api/exercises/{exercise.id}/rate", headers=headers,
                       json={'rating': 'great'}).status_code == 400


def test_adaptation_endpoints(client, headers, active_plan, admin):
    assert client.get('/api/adaptation/latest', headers=headers).status_code == 404

    response = client.post('/api/adaptation/trigger', headers=headers)
    assert response.status_code == 200
    assert response.get_json()['plan_id'] == active_plan.id

    latest = client.get('/api/adaptation/latest', headers=headers).get_json()
    assert latest['trigger'] == 'manual'
    assert len(client.get('/api/adaptation/history', headers=headers).get_json()) == 1

    assert client.post('/api/adaptation/batch-trigger', headers=headers).status_code == 403


def test_clone_via_api(client, headers, draft_plan):
    start = (date.today() + timedelta(days=3)).isoformat()
    response = client.post(f"/api/plans/{draft_plan.id}/clone", headers=headers, json={'start_date': start})
    assert response.status_code == 201
    assert response.get_json()['start_date'] == start
    assert FitnessPlan.query.count() == 2
