"""
Tests for the Flask API endpoints.
"""

import cv2
import pytest

from app import app, limiter


@pytest.fixture
def client():
    app.config['TESTING'] = True
    limiter.enabled = False
    with app.test_client() as client:
        yield client


@pytest.fixture
def micropad_path(micropad_image, tmp_path):
    path = tmp_path / 'pad.png'
    cv2.imwrite(str(path), micropad_image)
    return str(path)


class TestHealth:
    """Test cases for GET /health."""

    def test_health(self, client):
        response = client.get('/health')

        assert response.status_code == 200
        assert response.get_json()['status'] == 'healthy'

    def test_request_id_echoed(self, client):
        response = client.get('/health', headers={'X-Request-ID': 'abc-123'})
        assert response.headers['X-Request-ID'] == 'abc-123'


class TestAnalyzeMicropads:
    """Test cases for POST /analyze-micropads."""

    def test_analyzes_photo(self, client, micropad_path):
        response = client.post('/analyze-micropads', json={
            'image_paths': [micropad_path],
            'crop_card': False,
            'include_overlay': True
        })

        assert response.status_code == 200
        body = response.get_json()
        assert body['success'] is True
        data = body['data']
        assert data['samples_created'] == 1
        assert data['samples'][0]['dot_count'] == 3
        assert data['samples'][0]['ordering_image']
        assert data['results'][0]['sample_index'] == 0
        assert 'sample' not in data['results'][0]
        assert data['all_samples_valid'] is False
        assert len(data['csv'].strip().split(',')) == 12

    def test_unreadable_image_reported_per_photo(self, client, micropad_path, tmp_path):
        missing = str(tmp_path / 'missing.png')

        response = client.post('/analyze-micropads', json={
            'image_paths': [missing, micropad_path],
            'crop_card': False
        })

        assert response.status_code == 200
        data = response.get_json()['data']
        assert data['results'][0]['error_code'] == 'IMAGE_LOAD_ERROR'
        assert data['results'][1]['success'] is True
        assert data['results'][1]['image_index'] == 1
        assert data['failed_count'] == 1

    def test_missing_image_paths(self, client):
        response = client.post('/analyze-micropads', json={'normalization': 'MinMax'})

        assert response.status_code == 400
        assert response.get_json()['error_code'] == 'MISSING_PARAMETER'

    def test_empty_body(self, client):
        response = client.post('/analyze-micropads', data='', content_type='application/json')
        assert response.status_code == 400

    @pytest.mark.parametrize('payload', [
        {'image_paths': []},
        {'image_paths': 'pad.png'},
        {'image_paths': ['pad.png'], 'normalization': 'Histogram'},
        {'image_paths': ['pad.png'], 'debug': 'yes'},
        {'image_paths': ['pad.png'], 'card_paths': ['a.png', 'b.png']},
    ])
    def test_invalid_requests(self, client, payload):
        response = client.post('/analyze-micropads', json=payload)

        assert response.status_code == 400
        assert response.get_json()['error_code'] == 'INVALID_PARAMETER'


class TestClassifyEndpoint:
    """Test cases for POST /classify."""

    def test_classifies_target_rows(self, client):
        response = client.post('/classify', json={
            'reference_csv': '0,0,0,Black\n255,255,255,White\n',
            'target_csv': '10,10,10,\n250,250,250,\n',
            'dot_count': 1
        })

        assert response.status_code == 200
        data = response.get_json()['data']
        assert [s['labels'] for s in data['samples']] == [['Black'], ['White']]
        assert data['samples'][0]['matches'][0]['reference_index'] == 0
        assert data['csv'] == '10,10,10,Black\n250,250,250,White\n'

    def test_ciede2000(self, client):
        response = client.post('/classify', json={
            'reference_csv': '0,0,0,Black\n255,255,255,White\n',
            'target_csv': '20,20,20,\n',
            'dot_count': 1,
            'distance': 'CIEDE2000'
        })

        data = response.get_json()['data']
        assert data['samples'][0]['labels'] == ['Black']
        assert data['color_space'] == 'Lab'

    def test_no_valid_reference_rows(self, client):
        response = client.post('/classify', json={
            'reference_csv': '0,0,Black\n',
            'target_csv': '10,10,10,\n',
            'dot_count': 1
        })

        assert response.status_code == 400
        assert response.get_json()['error_code'] == 'INVALID_REFERENCE'

    @pytest.mark.parametrize('payload,code', [
        ({'target_csv': '1,2,3,a', 'dot_count': 1}, 'MISSING_PARAMETER'),
        ({'reference_csv': '1,2,3,a', 'target_csv': '1,2,3,a'}, 'MISSING_PARAMETER'),
        ({'reference_csv': '1,2,3,a', 'target_csv': '1,2,3,a', 'dot_count': 0}, 'INVALID_PARAMETER'),
        ({'reference_csv': '1,2,3,a', 'target_csv': '1,2,3,a', 'dot_count': True}, 'INVALID_PARAMETER'),
        ({'reference_csv': '1,2,3,a', 'target_csv': '1,2,3,a', 'dot_count': 1, 'distance': 'cosine'},
         'INVALID_PARAMETER'),
        ({'reference_csv': '1,2,3,a', 'target_csv': '1,2,3,a', 'dot_count': 1, 'color_space': 'HSV'},
         'INVALID_PARAMETER'),
    ])
    def test_invalid_requests(self, client, payload, code):
        response = client.post('/classify', json=payload)

        assert response.status_code == 400
        assert response.get_json()['error_code'] == code


class TestParseCsv:
    """Test cases for POST /parse-csv."""

    def test_parses_and_validates(self, client):
        response = client.post('/parse-csv', json={
            'csv': '1,2,3,4,5,6,a,b\n1,2,3,a\n7,8,9,10,11,12,c,c\n',
            'dot_count': 2
        })

        assert response.status_code == 200
        data = response.get_json()['data']
        assert data['sample_count'] == 2
        assert [s['valid'] for s in data['samples']] == [True, False]
        assert data['all_samples_valid'] is False
        assert data['samples'][0]['dots'][1]['rgb'] == {'r': 4.0, 'g': 5.0, 'b': 6.0}

    def test_reference_flag(self, client):
        response = client.post('/parse-csv', json={'csv': '1,2,3,a\n', 'dot_count': 1, 'reference': True})
        assert response.get_json()['data']['samples'][0]['is_reference'] is True

    def test_missing_csv(self, client):
        response = client.post('/parse-csv', json={'dot_count': 2})

        assert response.status_code == 400
        assert response.get_json()['error_code'] == 'MISSING_PARAMETER'
