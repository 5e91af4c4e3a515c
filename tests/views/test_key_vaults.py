import json

from tests.conftest import PrimaryData, RequestMaker

KV_PATH = '/api/v1/resourceProviders/rg1/security-services/key-vault/kv1'


def test_keys(rmaker: RequestMaker, pri_data: PrimaryData, executor):
    response = rmaker.make_authenticated_admin_request(
        method='POST', path=KV_PATH + '/keys', data=json.dumps(dict(name='backup-key', keySize=256)))
    assert response.status_code == 200
    assert response.json == dict(name='backup-key')
    assert executor.executed_lines()[-1] == 'cat > /srv/opc/kv1/keys/backup-key'

    for invalid in [dict(name='-bad', keySize=256), dict(name='k2', keySize=100), dict(name='k3', keySize='256')]:
        response = rmaker.make_authenticated_admin_request(
            method='POST', path=KV_PATH + '/keys', data=json.dumps(invalid))
        assert response.status_code == 422, invalid

    executor.add_response('ls -1 -A /srv/opc/kv1/keys', stdout='backup-key\n')
    response = rmaker.make_authenticated_admin_request(path=KV_PATH + '/keys')
    assert response.json == [dict(name='backup-key')]

    response = rmaker.make_authenticated_admin_request(method='DELETE', path=KV_PATH + '/keys/backup-key')
    assert response.status_code == 200
    assert executor.executed_lines()[-1] == 'rm -f /srv/opc/kv1/keys/backup-key'

    response = rmaker.make_authenticated_admin_request(method='DELETE', path=KV_PATH + '/keys/-bad')
    assert response.status_code == 422


def test_secrets(rmaker: RequestMaker, pri_data: PrimaryData, executor):
    response = rmaker.make_authenticated_admin_request(
        method='POST', path=KV_PATH + '/secrets', data=json.dumps(dict(name='db-password', secretValue='s3cret')))
    assert response.status_code == 200
    assert executor.executed[-1]['stdin'].endswith(b'\ns3cret')

    response = rmaker.make_authenticated_admin_request(
        method='POST', path=KV_PATH + '/secrets', data=json.dumps(dict(name='db-password', secretValue=42)))
    assert response.status_code == 422

    executor.add_response('ls -1 -A /srv/opc/kv1/secrets', stdout='db-password\n')
    executor.add_response('cat /srv/opc/kv1/secrets/db-password', stdout='s3cret')
    response = rmaker.make_authenticated_admin_request(path=KV_PATH + '/secrets')
    assert response.json == [dict(name='db-password')]

    response = rmaker.make_authenticated_admin_request(path=KV_PATH + '/secrets/db-password')
    assert response.status_code == 200
    assert response.json == dict(name='db-password', secretValue='s3cret')

    response = rmaker.make_authenticated_admin_request(path=KV_PATH + '/secrets/other')
    assert response.status_code == 404

    response = rmaker.make_authenticated_admin_request(method='DELETE', path=KV_PATH + '/secrets/db-password')
    assert response.status_code == 200
    assert executor.executed_lines()[-1] == 'rm -f /srv/opc/kv1/secrets/db-password'


def test_certificates(rmaker: RequestMaker, pri_data: PrimaryData, executor):
    response = rmaker.make_authenticated_admin_request(path=KV_PATH + '/certificates')
    assert response.json == [dict(name='web', type='server', generatedByCA=True)]

    response = rmaker.make_authenticated_admin_request(
        method='POST', path=KV_PATH + '/certificates', data=json.dumps(dict(name='alice', type='client')))
    assert response.status_code == 200
    assert response.json == dict(name='alice', type='client', generatedByCA=True)

    for invalid in [dict(name='alice', type='client'), dict(name='bob', type='ca'), dict(name='-x', type='client')]:
        response = rmaker.make_authenticated_admin_request(
            method='POST', path=KV_PATH + '/certificates', data=json.dumps(invalid))
        assert response.status_code == 422, invalid

    executor.add_response('openssl x509 -enddate', stdout='notAfter=Jan  1 00:00:00 2030 GMT\n')
    response = rmaker.make_authenticated_admin_request(path=KV_PATH + '/certificates/alice')
    assert response.status_code == 200
    assert response.json['expiryDate'] == '2030-01-01T00:00:00+00:00'

    response = rmaker.make_authenticated_admin_request(path=KV_PATH + '/certificates/nobody')
    assert response.status_code == 404

    response = rmaker.make_authenticated_admin_request(method='DELETE', path=KV_PATH + '/certificates/alice')
    assert response.status_code == 200
    response = rmaker.make_authenticated_admin_request(method='DELETE', path=KV_PATH + '/certificates/alice')
    assert response.status_code == 404


def test_ca(rmaker: RequestMaker, pri_data: PrimaryData, executor):
    response = rmaker.make_authenticated_admin_request(path=KV_PATH + '/ca')
    assert response.status_code == 200
    assert response.json == dict(commonName='ca.example.org', keySize=2048)

    response = rmaker.make_authenticated_admin_request(
        method='PUT', path=KV_PATH + '/ca', data=json.dumps(dict(commonName='new-ca', keySize=4096)))
    assert response.status_code == 200
    assert response.json == dict(commonName='new-ca', keySize=4096)
    assert 'make-cadir /srv/opc/kv1/ca' in executor.executed_lines()

    response = rmaker.make_authenticated_admin_request(
        method='PUT', path=KV_PATH + '/ca', data=json.dumps(dict(commonName='x', keySize=512)))
    assert response.status_code == 422


def test_unknown_key_vault(rmaker: RequestMaker, pri_data: PrimaryData):
    response = rmaker.make_authenticated_admin_request(
        path='/api/v1/resourceProviders/rg1/security-services/key-vault/missing/secrets')
    assert response.status_code == 404

    response = rmaker.make_authenticated_user_request(path=KV_PATH + '/secrets')
    assert response.status_code == 403
