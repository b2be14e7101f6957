from termbook.errors import StoreError
from termbook.services import ActivityService

WIDE = {"start": "2000-01-01", "end": "2100-01-01"}


def test_health_and_request_id(client):
    r = client.get('/health')
    assert r.status_code == 200
    assert r.json() == {'status': 'ok'}
    assert r.headers['X-Request-ID']
    r = client.get('/health', headers={'X-Request-ID': 'abc123'})
    assert r.headers['X-Request-ID'] == 'abc123'


def test_category_endpoints(client):
    r = client.post('/categories', json={'category_name': 'English'})
    assert r.status_code == 201
    assert r.json()['id'] == 'english'
    assert r.json()['category_icon'] == '📝'
    assert client.post('/categories', json={'category_name': 'ENGLISH'}).status_code == 409
    assert client.post('/categories', json={'category_name': '   '}).status_code == 400
    assert client.post('/categories', json={'category_name': 'X', 'parent_id': 'nope'}).status_code == 404
    r = client.post('/categories', json={'category_name': 'Grammar', 'parent_id': 'english'})
    assert r.status_code == 201

    assert client.get('/categories/english/descendants').json() == {'id': 'english', 'descendants': ['grammar']}
    path = client.get('/categories/grammar/path').json()
    assert path == {'id': 'grammar', 'path': ['english', 'grammar'], 'breadcrumb': 'English / Grammar'}
    listed = client.get('/categories').json()
    assert [c['id'] for c in listed] == ['english', 'grammar']
    assert listed[0]['child_count'] == 1
    assert client.get('/categories/ghost').status_code == 404


def test_category_update_and_reparent(client):
    client.post('/categories', json={'category_name': 'English'})
    client.post('/categories', json={'category_name': 'Grammar', 'parent_id': 'english'})
    r = client.put('/categories/english', json={'parent_id': 'grammar'})
    assert r.status_code == 409
    r = client.put('/categories/grammar', json={'category_icon': '📘'})
    assert r.status_code == 200
    assert r.json()['parent_id'] == 'english'
    r = client.put('/categories/grammar', json={'parent_id': None})
    assert r.json()['parent_id'] is None
    assert r.json()['category_icon'] == '📘'


def test_favorite_endpoint_propagates(client):
    client.post('/categories', json={'category_name': 'c1'})
    client.post('/categories', json={'category_name': 'c2', 'parent_id': 'c1'})
    client.post('/categories', json={'category_name': 'c3', 'parent_id': 'c2'})
    r = client.put('/categories/c1/favorite', json={'is_favorite': True})
    assert r.status_code == 200
    body = r.json()
    assert body['updated_count'] == 3
    assert body['updated_ids'] == ['c1', 'c2', 'c3']
    assert body['message'] == 'added to favorites (3 categories)'
    assert all(c['is_favorite'] for c in client.get('/categories').json())
    r = client.put('/categories/c2/favorite', json={})
    assert r.json()['is_favorite'] is False
    assert r.json()['message'] == 'removed from favorites (2 categories)'
    assert client.put('/categories/ghost/favorite', json={'is_favorite': True}).status_code == 404


def test_seed_endpoint(client):
    r = client.post('/categories/seed')
    assert r.status_code == 200
    assert r.json()['created'] == 14
    assert client.post('/categories/seed').json() == {'created': 0}


def test_term_endpoints_log_add_term(client):
    client.post('/categories', json={'category_name': 'English'})
    r = client.post('/terms', json={'term': 'cat', 'meaning': '猫', 'category': 'english'})
    assert r.status_code == 201
    term = r.json()
    assert term['warning'] is None
    logs = client.get('/activity/logs', params=WIDE).json()
    assert [(log['type'], log['category']) for log in logs] == [('add_term', 'english')]
    summaries = client.get('/activity/summaries', params=WIDE).json()
    assert summaries[0]['termsAdded'] == 1

    assert client.get(f"/terms/{term['id']}").json()['meaning'] == '猫'
    assert client.get('/terms', params={'q': 'CA'}).json()[0]['id'] == term['id']
    assert client.get('/terms', params={'category': 'cloud'}).json() == []
    r = client.put(f"/terms/{term['id']}", json={'meaning': 'ねこ'})
    assert r.json()['meaning'] == 'ねこ'
    assert client.put(f"/terms/{term['id']}/favorite").json()['is_favorite'] is True
    assert client.delete('/categories/english').status_code == 409
    assert client.delete(f"/terms/{term['id']}").status_code == 200
    assert client.get(f"/terms/{term['id']}").status_code == 404
    r = client.delete('/categories/english')
    assert r.status_code == 200
    assert r.json()['reparented'] == []


def test_term_saved_with_warning_when_summary_fails(client, monkeypatch):
    client.post('/categories', json={'category_name': 'English'})

    def broken(*args, **kwargs):
        raise StoreError('summary unavailable')

    monkeypatch.setattr(ActivityService, 'update_daily_summary', broken)
    r = client.post('/terms', json={'term': 'dog', 'meaning': '犬', 'category': 'english'})
    assert r.status_code == 201
    assert 'activity was not fully recorded' in r.json()['warning']
    assert client.get(f"/terms/{r.json()['id']}").status_code == 200


def test_activity_endpoints(client):
    r = client.post('/activity', json={'type': 'study', 'category': 'applied', 'data': {'duration': 30}})
    assert r.status_code == 201
    assert r.json()['summary_updated'] is True
    client.post('/activity', json={'type': 'review', 'category': 'applied',
                                   'data': {'termId': 't1', 'term': 'cat', 'isCorrect': True}})
    summary = client.get('/activity/summaries', params=WIDE).json()[0]
    assert summary['totalStudyTime'] == 30
    assert summary['correctRate'] == 100
    assert client.get(f"/activity/summaries/{summary['date']}").json()['termsReviewed'] == 1
    assert len(client.get(f"/activity/logs/{summary['date']}").json()) == 2
    assert client.get('/activity/streak').json() == {'streak': 1}


def test_activity_errors(client):
    assert client.post('/activity', json={'type': 'quiz', 'category': 'x'}).status_code == 400
    assert client.post('/activity', json={'type': 'study', 'category': 'x', 'data': {}}).status_code == 400
    assert client.post('/activity', json={'type': 'study'}).status_code == 422
    assert client.get('/activity/summaries/2001-01-01').status_code == 404
    assert client.get('/activity/summaries/not-a-date').status_code == 400
    assert client.get('/activity/logs', params={'start': '2025-11-02', 'end': '2025-11-01'}).status_code == 400


def test_activity_partial_failure_is_202(client, monkeypatch):
    def broken(*args, **kwargs):
        raise StoreError('summary unavailable')

    monkeypatch.setattr(ActivityService, 'update_daily_summary', broken)
    r = client.post('/activity', json={'type': 'study', 'category': 'english', 'data': {'duration': 5}})
    assert r.status_code == 202
    body = r.json()
    assert body['summary_updated'] is False
    assert body['id']
    assert client.get('/activity/summaries', params=WIDE).json() == []
    assert len(client.get('/activity/logs', params=WIDE).json()) == 1


def test_study_time_and_stats_endpoints(client):
    client.post('/activity', json={'type': 'study', 'category': 'applied', 'data': {'duration': 30}})
    client.post('/activity', json={'type': 'study', 'category': 'english', 'data': {'duration': 15}})
    stats = client.get('/activity/stats').json()
    assert stats == {'streak': 1, 'weeklyStudyTime': 45, 'monthlyStudyTime': 45, 'totalStudyTime': 45}
    r = client.get('/activity/study-time', params={'category': 'applied'})
    assert r.json()['total'] == 30
    assert r.json()['byCategory'] == {'applied': 30, 'english': 15}
    assert client.get('/activity/study-time', params={'start': '2025-11-02', 'end': '2025-11-01'}).status_code == 400


def test_study_session_endpoints(client):
    client.post('/categories', json={'category_name': 'English'})
    for word, meaning in [('cat', '猫'), ('dog', '犬'), ('bird', '鳥')]:
        client.post('/terms', json={'term': word, 'meaning': meaning, 'category': 'english'})
    r = client.post('/study/sessions', json={'category': 'english'})
    assert r.status_code == 201
    state = r.json()
    session_id = state['id']
    assert state['progress'] == {'current': 1, 'total': 3, 'percentage': 33}
    assert 'meaning' not in state['card']
    state = client.post(f'/study/sessions/{session_id}/reveal').json()
    assert state['show_answer'] is True
    assert state['card']['meaning'] in ('猫', '犬', '鳥')
    for ok in (True, True, False):
        r = client.post(f'/study/sessions/{session_id}/answer', json={'is_correct': ok})
        assert r.status_code == 200
        assert r.json()['log_id']
    assert r.json()['is_complete'] is True
    assert r.json()['card'] is None
    assert client.post(f'/study/sessions/{session_id}/answer', json={'is_correct': True}).status_code == 409
    summary = client.get('/activity/summaries', params=WIDE).json()[0]
    assert summary['termsReviewed'] == 3
    assert summary['correctRate'] == 67
    assert client.delete(f'/study/sessions/{session_id}').status_code == 200
    assert client.get(f'/study/sessions/{session_id}').status_code == 404


def test_study_session_needs_terms(client):
    client.post('/categories', json={'category_name': 'English'})
    client.post('/terms', json={'term': 'cat', 'meaning': '猫', 'category': 'english'})
    assert client.post('/study/sessions', json={'favorites_only': True}).status_code == 400
    assert client.post('/study/sessions', json={'category': 'cloud'}).status_code == 400
    assert client.get('/study/sessions/unknown').status_code == 404
