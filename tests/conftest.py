#
# PyTest global setup and fixture file
#
import base64
import json
import os

import pytest

from opc.managers.openvpn import default_server_config
from opc.managers.process_tracker import ProcessTrackerManager, EXTENSION_KEY as PROCESS_TRACKER_EXTENSION_KEY
from opc.managers.remote import EXTENSION_KEY as EXECUTOR_EXTENSION_KEY
from opc.managers.resources import (
    BACKUP_SERVICES, SECURITY_SERVICES, FILE_SERVICES, DATABASE_SERVICES, NETWORK_SERVICES,
    TYPE_BACKUP_VAULT, TYPE_KEY_VAULT, TYPE_FILE_STORAGE, TYPE_OBJECT_STORAGE, TYPE_MARIADB, TYPE_OPENVPN_GATEWAY
)
from opc.models import db, User, Host, HostStorage, ResourceGroup, Resource, ResourceConfig

# set unittesting configuration before initializing Flask
os.environ['UNITTEST'] = '1'
from opc.app import create_app  # noqa: E402

app = create_app()

ADMIN_TOKEN = None
USER_TOKEN = None


@pytest.fixture
def pri_data():
    with app.app_context():
        # start every test with an empty process registry and a quiet executor
        app.extensions[PROCESS_TRACKER_EXTENSION_KEY] = ProcessTrackerManager(
            app.config['PROCESS_TRACKER_RETENTION_SEC'])
        app.extensions[EXECUTOR_EXTENSION_KEY].reset()
        pd = PrimaryData()
        yield pd
        db.session.remove()
        db.drop_all()


class PrimaryData:
    def __init__(self):
        db.create_all()

        self.known_admin_ext_id = 'admin@example.org'
        self.known_admin_password = 'admin'
        self.known_user_ext_id = 'user@example.org'
        self.known_user_password = 'user'

        u1 = User(self.known_admin_ext_id, self.known_admin_password, is_admin=True)
        u2 = User(self.known_user_ext_id, self.known_user_password, is_admin=False)
        u3 = User('inactive@example.org')

        # Fix user IDs to be the same for all tests, in order to reuse the same token
        # for multiple tests
        u1.id = 'u1'
        u2.id = 'u2'
        u3.id = 'u3'
        self.known_admin_id = u1.id
        self.known_user_id = u2.id
        self.known_inactive_user_id = u3.id
        db.session.add(u1)
        db.session.add(u2)
        db.session.add(u3)

        h1 = Host('host1.example.org', 'host1-password')
        h1.id = 'h1'
        self.known_host_id = h1.id
        self.known_host_name = h1.host_name
        db.session.add(h1)

        h2 = Host('host2.example.org', 'host2-password')
        h2.id = 'h2'
        self.known_host_2_id = h2.id
        db.session.add(h2)

        s1 = HostStorage(h1.id, '/srv/opc', 'btrfs')
        s1.id = 's1'
        self.known_storage_id = s1.id
        db.session.add(s1)

        s2 = HostStorage(h2.id, '/srv/opc', 'ext4')
        s2.id = 's2'
        db.session.add(s2)

        # a storage without resources
        s3 = HostStorage(h2.id, '/srv/empty', 'ext4')
        s3.id = 's3'
        self.known_empty_storage_id = s3.id
        db.session.add(s3)

        rg1 = ResourceGroup('rg1')
        rg1.id = 'rg1'
        self.known_resource_group_name = rg1.name
        db.session.add(rg1)

        rg2 = ResourceGroup('empty-group')
        rg2.id = 'rg2'
        self.known_empty_resource_group_name = rg2.name
        db.session.add(rg2)

        def add_resource(resource_id, storage_id, provider_name, resource_type, name):
            resource = Resource(rg1.id, storage_id, provider_name, resource_type, name)
            resource.id = resource_id
            db.session.add(resource)
            return resource

        add_resource('bv1', s1.id, BACKUP_SERVICES, TYPE_BACKUP_VAULT, 'vault1')
        add_resource('kv1', s1.id, SECURITY_SERVICES, TYPE_KEY_VAULT, 'kv1')
        add_resource('fs1', s1.id, FILE_SERVICES, TYPE_FILE_STORAGE, 'fs1')
        add_resource('os1', s1.id, FILE_SERVICES, TYPE_OBJECT_STORAGE, 'os1')
        add_resource('db1', s1.id, DATABASE_SERVICES, TYPE_MARIADB, 'db1')
        add_resource('vpn1', s1.id, NETWORK_SERVICES, TYPE_OPENVPN_GATEWAY, 'vpn1')
        add_resource('fs2', s2.id, FILE_SERVICES, TYPE_FILE_STORAGE, 'fs2')

        self.known_vault_id = 'bv1'
        self.known_vault_name = 'vault1'
        self.known_vault_external_id = '/rg1/backup-services/backup-vault/vault1'
        self.known_key_vault_id = 'kv1'
        self.known_key_vault_external_id = '/rg1/security-services/key-vault/kv1'
        self.known_file_storage_external_id = '/rg1/file-services/file-storage/fs1'
        self.known_remote_file_storage_external_id = '/rg1/file-services/file-storage/fs2'
        self.known_object_storage_external_id = '/rg1/file-services/object-storage/os1'
        self.known_database_external_id = '/rg1/database-services/mariadb/db1'
        self.known_gateway_name = 'vpn1'

        db.session.add(ResourceConfig('kv1', dict(
            caConfig=dict(commonName='ca.example.org', keySize=2048),
            state=dict(certificates=[dict(name='web', type='server', generatedByCA=True)]),
        )))
        db.session.add(ResourceConfig('vpn1', dict(
            domainName='vpn.example.org',
            keySize=2048,
            server=default_server_config(),
        )))

        db.session.commit()


@pytest.fixture
def client():
    return app.test_client()


@pytest.fixture
def executor():
    return app.extensions[EXECUTOR_EXTENSION_KEY]


@pytest.fixture
def rmaker(client, pri_data):
    return RequestMaker(client, pri_data)


class RequestMaker():
    def __init__(self, client, pri_data: PrimaryData):
        self.client = client
        self.pri_data = pri_data
        self.methods = {
            'GET': self.client.get,
            'POST': self.client.post,
            'PUT': self.client.put,
            'PATCH': self.client.patch,
            'DELETE': self.client.delete,
        }

    def make_request(self, method='GET', path='/', headers=None, data=None):
        if not headers:
            headers = {}

        if 'Content-Type' not in headers:
            headers['Content-Type'] = 'application/json'

        header_tuples = [(x, y) for x, y in headers.items()]
        return self.methods[method](path, headers=header_tuples, data=data, content_type='application/json')

    def get_auth_token(self, creds, headers=None):
        if not headers:
            headers = {}
        response = self.make_request('POST', '/api/v1/sessions',
                                     headers=headers,
                                     data=json.dumps(creds))
        token = '%s:' % response.json['token']
        return base64.b64encode(bytes(token.encode('ascii'))).decode('utf-8')

    def make_authenticated_request(self, method='GET', path='/', headers=None, data=None, creds=None,
                                   auth_token=None):
        assert creds is not None or auth_token is not None

        assert method in self.methods

        if not headers:
            headers = {}

        if not auth_token:
            auth_token = self.get_auth_token(creds)

        headers.update({
            'Accept': 'application/json',
            'Authorization': 'Basic %s' % auth_token,
            'token': auth_token
        })
        return self.methods[method](path, headers=headers, data=data, content_type='application/json')

    def make_authenticated_admin_request(self, method='GET', path='/', headers=None, data=None):
        global ADMIN_TOKEN
        if not ADMIN_TOKEN:
            ADMIN_TOKEN = self.get_auth_token(
                {'ext_id': self.pri_data.known_admin_ext_id, 'password': self.pri_data.known_admin_password})

        self.admin_token = ADMIN_TOKEN

        return self.make_authenticated_request(method, path, headers, data,
                                               auth_token=self.admin_token)

    def make_authenticated_user_request(self, method='GET', path='/', headers=None, data=None):
        global USER_TOKEN
        if not USER_TOKEN:
            USER_TOKEN = self.get_auth_token(creds={
                'ext_id': self.pri_data.known_user_ext_id,
                'password': self.pri_data.known_user_password,
            })
        self.user_token = USER_TOKEN
        return self.make_authenticated_request(method, path, headers, data,
                                               auth_token=self.user_token)


@pytest.fixture(name='app')
def app_fixture():
    return app
