import pytest

from opc.managers.key_vaults import (
    KeyVaultManager, KeyVaultReferenceError, create_key_vault_reference, resolve_key_vault_reference,
    parse_openssl_end_date
)
from opc.managers.remote import render_command
from opc.managers.resources import ResourceNotFoundError, request_resource_reference_by_id
from tests.conftest import PrimaryData


def test_key_vault_reference_round_trip(pri_data: PrimaryData):
    reference = create_key_vault_reference(pri_data.known_key_vault_id, 'secret', 'dav-password')
    assert reference == pri_data.known_key_vault_external_id + '/secrets/dav-password'

    kv_ref, object_type, name = resolve_key_vault_reference(reference)
    assert kv_ref.id == pri_data.known_key_vault_id
    assert object_type == 'secret'
    assert name == 'dav-password'


def test_invalid_key_vault_references(pri_data: PrimaryData):
    with pytest.raises(ValueError):
        create_key_vault_reference(pri_data.known_key_vault_id, 'password', 'x')
    with pytest.raises(ResourceNotFoundError):
        create_key_vault_reference('no-such-vault', 'key', 'x')

    with pytest.raises(KeyVaultReferenceError):
        resolve_key_vault_reference(pri_data.known_key_vault_external_id + '/passwords/x')
    with pytest.raises(ResourceNotFoundError):
        resolve_key_vault_reference('/rg1/security-services/key-vault/missing/keys/x')
    # the referenced resource must be a key vault
    with pytest.raises(ResourceNotFoundError):
        resolve_key_vault_reference(pri_data.known_file_storage_external_id + '/keys/x')


def test_provide_resource(pri_data: PrimaryData, executor):
    kv_ref = request_resource_reference_by_id(pri_data.known_key_vault_id)
    KeyVaultManager(executor).provide_resource(kv_ref)
    lines = executor.executed_lines()
    assert 'mkdir -p /srv/opc/kv1/keys' in lines
    assert 'chmod 700 /srv/opc/kv1/secrets' in lines
    assert 'chmod 700 /srv/opc/kv1/keys' in lines


def test_secrets(pri_data: PrimaryData, executor):
    kv_ref = request_resource_reference_by_id(pri_data.known_key_vault_id)
    manager = KeyVaultManager(executor)

    manager.create_secret(kv_ref, 'db-password', 's3cret')
    assert executor.executed_lines()[-1] == 'cat > /srv/opc/kv1/secrets/db-password'
    assert executor.executed[-1]['stdin'].endswith(b'\ns3cret')

    executor.add_response('cat /srv/opc/kv1/secrets/db-password', stdout='s3cret')
    reference = kv_ref.external_id + '/secrets/db-password'
    assert manager.read_secret_from_reference(reference) == 's3cret'
    with pytest.raises(KeyVaultReferenceError):
        manager.read_secret_from_reference(kv_ref.external_id + '/keys/db-password')


def test_create_key(pri_data: PrimaryData, executor):
    kv_ref = request_resource_reference_by_id(pri_data.known_key_vault_id)
    KeyVaultManager(executor).create_key(kv_ref, 'backup-key', 256)
    # password line plus 32 random bytes
    stdin = executor.executed[-1]['stdin']
    assert stdin.startswith(b'host1-password\n')
    assert len(stdin) == len(b'host1-password\n') + 32

    with pytest.raises(ValueError):
        KeyVaultManager(executor).create_key(kv_ref, 'bad', 100)


def test_certificates(pri_data: PrimaryData, executor):
    kv_ref = request_resource_reference_by_id(pri_data.known_key_vault_id)
    manager = KeyVaultManager(executor)

    manager.generate_certificate(kv_ref, 'client', 'alice')
    assert executor.executed_lines()[-1] == \
        'cd /srv/opc/kv1/ca && ./easyrsa --batch --req-cn=alice build-client-full alice nopass'
    assert manager.query_certificate(kv_ref, 'alice') == dict(name='alice', type='client', generatedByCA=True)

    with pytest.raises(ValueError):
        manager.generate_certificate(kv_ref, 'client', 'alice')
    with pytest.raises(ValueError):
        manager.generate_certificate(kv_ref, 'ca', 'bob')

    executor.add_response('openssl x509 -enddate', stdout='notAfter=Jan  1 00:00:00 2030 GMT\n')
    info = manager.read_certificate_info(kv_ref, 'alice')
    assert info['expiryDate'] == '2030-01-01T00:00:00+00:00'
    assert executor.executed_lines()[-1].endswith('/srv/opc/kv1/ca/pki/issued/alice.crt')
    assert manager.read_certificate_info(kv_ref, 'nobody') is None

    manager.revoke_certificate(kv_ref, 'alice')
    assert manager.query_certificate(kv_ref, 'alice') is None
    with pytest.raises(ResourceNotFoundError):
        manager.revoke_certificate(kv_ref, 'alice')


def test_unsafe_object_names_in_references(pri_data: PrimaryData):
    kv = pri_data.known_key_vault_external_id
    for reference in [
        kv + '/secrets/../../../../etc/shadow',
        kv + '/keys/..',
        kv + '/secrets/',
        kv + '/secrets/a/b',
    ]:
        with pytest.raises(KeyVaultReferenceError):
            resolve_key_vault_reference(reference)

    with pytest.raises(KeyVaultReferenceError):
        resolve_key_vault_reference(5)
    with pytest.raises(KeyVaultReferenceError):
        resolve_key_vault_reference(None)


def test_update_ca_config(pri_data: PrimaryData, executor):
    kv_ref = request_resource_reference_by_id(pri_data.known_key_vault_id)
    manager = KeyVaultManager(executor)
    with pytest.raises(ValueError):
        manager.update_ca_config(kv_ref, dict(commonName='x', keySize=1024))

    manager.update_ca_config(kv_ref, dict(commonName='new-ca', keySize=4096))
    assert manager.query_ca_config(kv_ref) == dict(commonName='new-ca', keySize=4096)
    lines = executor.executed_lines()
    assert 'rm -rf /srv/opc/kv1/ca' in lines
    assert 'make-cadir /srv/opc/kv1/ca' in lines


def test_create_encryption_command(pri_data: PrimaryData, executor):
    manager = KeyVaultManager(executor)
    reference = pri_data.known_key_vault_external_id + '/keys/backup-key'
    command = manager.create_encryption_command(['tar', '-cf', '-', '.'], reference)
    assert render_command(command) == (
        'tar -cf - . | gpg -z 0 --passphrase-file /srv/opc/kv1/keys/backup-key --cipher-algo AES256 '
        '--symmetric --batch --no-symkey-cache -'
    )
    with pytest.raises(KeyVaultReferenceError):
        manager.create_encryption_command(['ls'], pri_data.known_key_vault_external_id + '/secrets/backup-key')


def test_parse_openssl_end_date():
    assert parse_openssl_end_date('notAfter=Mar 15 12:30:00 2031 GMT') == '2031-03-15T12:30:00+00:00'
    with pytest.raises(ValueError):
        parse_openssl_end_date('unable to load certificate')
