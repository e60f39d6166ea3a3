"""
Tests for preset API endpoints.
"""

SETTINGS = {'style_filter': 'fuji_acros', 'aspect_ratio': '9:16', 'images_per_angle': 2}


class TestPresetsAPI:
    """Tests for /api/presets endpoints."""

    def test_list_presets_empty(self, client, test_db):
        """GET /api/presets should return an empty list on a fresh database."""
        response = client.get('/api/presets')
        assert response.status_code == 200
        assert response.get_json() == {'presets': [], 'total': 0}

    def test_create_and_get(self, client, test_db):
        response = client.post('/api/presets', json={'name': ' Moody ', 'settings': SETTINGS})
        assert response.status_code == 201
        assert response.get_json()['preset']['name'] == 'Moody'

        data = client.get('/api/presets/Moody').get_json()
        assert data == {'name': 'Moody', 'settings': SETTINGS}

    def test_duplicate_name_conflict(self, client, test_db):
        client.post('/api/presets', json={'name': 'Moody', 'settings': SETTINGS})
        response = client.post('/api/presets', json={'name': 'Moody', 'settings': {}})
        assert response.status_code == 409
        assert 'already exists' in response.get_json()['error']

    def test_overwrite(self, client, test_db):
        client.post('/api/presets', json={'name': 'Moody', 'settings': SETTINGS})
        response = client.post('/api/presets', json={'name': 'Moody', 'settings': {'style_filter': ''},
                                                     'overwrite': True})
        assert response.status_code == 201
        assert client.get('/api/presets/Moody').get_json()['settings'] == {'style_filter': ''}

    def test_validation(self, client, test_db):
        assert client.post('/api/presets', json={'settings': SETTINGS}).status_code == 400
        assert client.post('/api/presets', json={'name': 'x' * 101, 'settings': SETTINGS}).status_code == 400
        assert client.post('/api/presets', json={'name': 'Moody', 'settings': 'dark'}).status_code == 400

    def test_list_sorted(self, client, test_db):
        for name in ['bright', 'Autumn']:
            client.post('/api/presets', json={'name': name, 'settings': {}})
        data = client.get('/api/presets').get_json()
        assert [p['name'] for p in data['presets']] == ['Autumn', 'bright']
        assert data['total'] == 2

    def test_delete(self, client, test_db):
        client.post('/api/presets', json={'name': 'Moody', 'settings': SETTINGS})
        assert client.delete('/api/presets/Moody').get_json()['status'] == 'deleted'
        assert client.get('/api/presets/Moody').status_code == 404

    def test_delete_missing(self, client, test_db):
        assert client.delete('/api/presets/nothing').status_code == 404
