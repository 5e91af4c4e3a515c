from tests.conftest import PrimaryData, RequestMaker


def test_headers(rmaker: RequestMaker, pri_data: PrimaryData):
    """Test that we set headers for content caching and security"""
    response = rmaker.make_request(path='/api/v1/hosts')

    required_headers = ('Cache-Control', 'Expires', 'Strict-Transport-Security', 'Content-Security-Policy')
    for h in required_headers:
        assert h in response.headers.keys()


def test_healthz(rmaker: RequestMaker, pri_data: PrimaryData):
    response = rmaker.make_request(path='/healthz')
    assert response.status_code == 200
    assert response.get_data(as_text=True) == 'ok'


def test_authentication_is_required(rmaker: RequestMaker, pri_data: PrimaryData):
    for path in ('/api/v1/hosts', '/api/v1/resourceGroups', '/api/v1/backupVaults', '/api/v1/processes'):
        response = rmaker.make_request(path=path)
        assert response.status_code == 401


def test_basic_auth_with_password(rmaker: RequestMaker, pri_data: PrimaryData):
    response = rmaker.make_authenticated_request(
        path='/api/v1/hosts',
        creds=dict(ext_id=pri_data.known_admin_ext_id, password=pri_data.known_admin_password)
    )
    assert response.status_code == 200
