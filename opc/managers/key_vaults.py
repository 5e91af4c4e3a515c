import datetime
import logging
import os
import secrets

from opc.managers.easyrsa import EasyRSAManager
from opc.managers.remote import RemoteFileSystem, Pipe
from opc.managers.resources import (
    request_config, update_or_insert_config, request_resource_reference_by_id, require_external_id,
    ResourceNotFoundError, SECURITY_SERVICES, TYPE_KEY_VAULT
)
from opc.utils import is_safe_name

OBJECT_TYPES = ('certificate', 'key', 'secret')
CERTIFICATE_TYPES = ('client', 'server')
CA_KEY_SIZES = (2048, 4096)
DEFAULT_KEY_SIZE = 256


class KeyVaultReferenceError(Exception):
    pass


def default_config():
    return dict(
        caConfig=dict(commonName='', keySize=2048),
        state=dict(certificates=[]),
    )


def create_key_vault_reference(key_vault_resource_id, object_type, object_name):
    """Build '<externalId>/<objectType>s/<objectName>' for an object in a key vault"""
    if object_type not in OBJECT_TYPES:
        raise ValueError('unknown key vault object type "%s"' % object_type)
    kv_ref = request_resource_reference_by_id(key_vault_resource_id)
    if kv_ref is None:
        raise ResourceNotFoundError('key vault %s not found' % key_vault_resource_id)
    return '%s/%ss/%s' % (kv_ref.external_id, object_type, object_name)


def resolve_key_vault_reference(reference):
    """
    Split a key vault reference into (key vault ResourceReference, object type, object name).

    Raises KeyVaultReferenceError for a malformed reference or an unsafe object name, and
    ResourceNotFoundError when the key vault does not exist.
    """
    if not isinstance(reference, str):
        raise KeyVaultReferenceError('Key vault reference must be a string, got %r' % (reference,))
    for object_type in OBJECT_TYPES:
        parts = reference.split('/%ss/' % object_type)
        if len(parts) == 2:
            if not is_safe_name(parts[1]):
                raise KeyVaultReferenceError('Invalid object name in key vault reference: %s' % reference)
            kv_ref = require_external_id(parts[0], SECURITY_SERVICES, TYPE_KEY_VAULT)
            return kv_ref, object_type, parts[1]
    raise KeyVaultReferenceError('Malformed key vault reference: %s' % reference)


class KeyVaultManager:
    def __init__(self, executor):
        self.executor = executor

    # directories

    @staticmethod
    def get_keys_dir(kv_ref):
        return os.path.join(kv_ref.storage_path, 'keys')

    @staticmethod
    def get_secrets_dir(kv_ref):
        return os.path.join(kv_ref.storage_path, 'secrets')

    @staticmethod
    def get_ca_dir(kv_ref):
        return os.path.join(kv_ref.storage_path, 'ca')

    def _fs(self, kv_ref):
        return RemoteFileSystem(self.executor, kv_ref.host_id)

    def provide_resource(self, kv_ref, tracker=None):
        fs = self._fs(kv_ref)
        fs.create_directory(self.get_keys_dir(kv_ref), mode=0o700)
        fs.create_directory(self.get_secrets_dir(kv_ref), mode=0o700)
        if tracker:
            tracker.add('Key vault directories created')

    # config

    def query_config(self, kv_ref):
        config = request_config(kv_ref.id)
        return config if config else default_config()

    def update_config(self, kv_ref, config):
        update_or_insert_config(kv_ref.id, config)

    def query_ca_config(self, kv_ref):
        return self.query_config(kv_ref)['caConfig']

    def update_ca_config(self, kv_ref, ca_config):
        """Store the CA config and recreate the CA with it"""
        if ca_config.get('keySize') not in CA_KEY_SIZES:
            raise ValueError('keySize must be one of %s' % ', '.join(str(x) for x in CA_KEY_SIZES))
        config = self.query_config(kv_ref)
        config['caConfig'] = dict(commonName=ca_config.get('commonName', ''), keySize=ca_config['keySize'])
        self.update_config(kv_ref, config)

        ca_dir = self.get_ca_dir(kv_ref)
        fs = self._fs(kv_ref)
        if fs.exists(ca_dir):
            fs.remove_directory_recursive(ca_dir)
        easyrsa = EasyRSAManager(self.executor, kv_ref.host_id)
        easyrsa.create_ca(ca_dir, config['caConfig']['commonName'], config['caConfig']['keySize'])

    # keys

    def create_key(self, kv_ref, name, key_size=DEFAULT_KEY_SIZE):
        if key_size <= 0 or key_size % 8:
            raise ValueError('key size must be a positive multiple of 8')
        value = secrets.token_bytes(key_size // 8)
        self._fs(kv_ref).write_file(os.path.join(self.get_keys_dir(kv_ref), name), value, mode=0o600)

    def query_key_names(self, kv_ref):
        return self._fs(kv_ref).list_directory(self.get_keys_dir(kv_ref))

    def delete_key(self, kv_ref, name):
        self._fs(kv_ref).remove_file(os.path.join(self.get_keys_dir(kv_ref), name))

    # secrets

    def create_secret(self, kv_ref, name, value):
        self._fs(kv_ref).write_file(os.path.join(self.get_secrets_dir(kv_ref), name), value, mode=0o600)

    def query_secret_names(self, kv_ref):
        return self._fs(kv_ref).list_directory(self.get_secrets_dir(kv_ref))

    def read_secret(self, kv_ref, name):
        return self._fs(kv_ref).read_text_file(os.path.join(self.get_secrets_dir(kv_ref), name))

    def read_secret_from_reference(self, reference):
        kv_ref, object_type, object_name = resolve_key_vault_reference(reference)
        if object_type != 'secret':
            raise KeyVaultReferenceError('Not a secret reference: %s' % reference)
        return self.read_secret(kv_ref, object_name)

    def delete_secret(self, kv_ref, name):
        self._fs(kv_ref).remove_file(os.path.join(self.get_secrets_dir(kv_ref), name))

    # certificates

    def list_certificates(self, kv_ref):
        return self.query_config(kv_ref)['state']['certificates']

    def query_certificate(self, kv_ref, name):
        return next((c for c in self.list_certificates(kv_ref) if c['name'] == name), None)

    def generate_certificate(self, kv_ref, cert_type, name):
        if cert_type not in CERTIFICATE_TYPES:
            raise ValueError('certificate type must be one of %s' % ', '.join(CERTIFICATE_TYPES))
        config = self.query_config(kv_ref)
        if any(c['name'] == name for c in config['state']['certificates']):
            raise ValueError('certificate "%s" already exists' % name)

        easyrsa = EasyRSAManager(self.executor, kv_ref.host_id)
        ca_dir = self.get_ca_dir(kv_ref)
        if cert_type == 'client':
            easyrsa.create_client_key_pair(ca_dir, name)
        else:
            easyrsa.create_server_key_pair(ca_dir, name, config['caConfig']['keySize'])

        config['state']['certificates'].append(dict(name=name, type=cert_type, generatedByCA=True))
        self.update_config(kv_ref, config)

    def query_certificate_paths(self, kv_ref, name):
        cert = self.query_certificate(kv_ref, name)
        if cert is None:
            raise ResourceNotFoundError('certificate "%s" does not exist' % name)
        return EasyRSAManager.get_cert_and_key_paths(self.get_ca_dir(kv_ref), name)

    def read_certificate_info(self, kv_ref, name):
        cert = self.query_certificate(kv_ref, name)
        if cert is None:
            return None
        paths = self.query_certificate_paths(kv_ref, name)
        out = self.executor.execute_for_stdout(
            kv_ref.host_id, ['openssl', 'x509', '-enddate', '-noout', '-in', paths['cert_path']], sudo=True)
        info = dict(cert)
        info['expiryDate'] = parse_openssl_end_date(out)
        return info

    def revoke_certificate(self, kv_ref, name):
        config = self.query_config(kv_ref)
        certificates = config['state']['certificates']
        if not any(c['name'] == name for c in certificates):
            raise ResourceNotFoundError('certificate "%s" does not exist' % name)

        EasyRSAManager(self.executor, kv_ref.host_id).revoke_certificate(self.get_ca_dir(kv_ref), name)

        config['state']['certificates'] = [c for c in certificates if c['name'] != name]
        self.update_config(kv_ref, config)
        logging.info('revoked certificate %s in %s', name, kv_ref.external_id)

    # encryption

    def create_encryption_command(self, command, encryption_key_reference):
        """Pipe the output of command through symmetric gpg encryption with the referenced key"""
        kv_ref, object_type, object_name = resolve_key_vault_reference(encryption_key_reference)
        if object_type != 'key':
            raise KeyVaultReferenceError('Invalid key reference: %s' % encryption_key_reference)
        key_path = os.path.join(self.get_keys_dir(kv_ref), object_name)
        return Pipe(command, [
            'gpg',
            '-z', '0',
            '--passphrase-file', key_path,
            '--cipher-algo', 'AES256',
            '--symmetric',
            '--batch',
            '--no-symkey-cache',
            '-',
        ])


def parse_openssl_end_date(output):
    """Parse 'notAfter=Jan  1 00:00:00 2030 GMT' into an ISO-8601 string"""
    parts = output.strip().split('=', 1)
    if len(parts) != 2:
        raise ValueError('unexpected openssl output: "%s"' % output)
    dt = datetime.datetime.strptime(parts[1].strip(), '%b %d %H:%M:%S %Y %Z')
    return dt.replace(tzinfo=datetime.timezone.utc).isoformat()
