import logging
import os as os

import flask_restful as restful
from flask import Flask
from flask_migrate import Migrate

from opc.config import TestConfig, RuntimeConfig
from opc.managers.process_tracker import ProcessTrackerManager, EXTENSION_KEY as PROCESS_TRACKER_EXTENSION_KEY
from opc.managers.remote import create_remote_command_executor, EXTENSION_KEY as EXECUTOR_EXTENSION_KEY
from opc.models import db, bcrypt
from opc.utils import init_logging

migrate = Migrate()


def create_app(test_config=None):
    app = Flask(__name__, static_url_path='')
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False

    # initialize migrations with Alembic
    migrate.init_app(app, db)

    # unit tests need a config with tweaked default values and no environment variable resolving - unit tests can be run
    # in a container that has environment set up for real
    if test_config:
        app_config = test_config
    elif os.environ.get('UNITTEST') == '1':
        app_config = TestConfig()
    else:
        app_config = RuntimeConfig()

    # set up logging
    init_logging(app_config, 'api')

    # configure flask
    app.config.from_object(app_config)

    # insert database password to SQLALCHEMY_DATABASE_URI from a separate source
    if app.config['DATABASE_PASSWORD']:
        app.config['SQLALCHEMY_DATABASE_URI'] = (app.config['SQLALCHEMY_DATABASE_URI']
                                                 .replace('__PASSWORD__', app.config['DATABASE_PASSWORD']))

    bcrypt.init_app(app)
    db.init_app(app)

    # Enable debugging SQLAlchemy queries. Level must be set as an integer, take a look at logging constants for values.
    # Hint: logging.INFO (=20) gives you SQL output for each query
    if 'SQLALCHEMY_LOGGING_LEVEL' in os.environ:
        logging.getLogger("sqlalchemy.engine").setLevel(int(os.environ.get('SQLALCHEMY_LOGGING_LEVEL')))

    # process trackers live in memory, one registry per API process
    app.extensions[PROCESS_TRACKER_EXTENSION_KEY] = ProcessTrackerManager(app.config['PROCESS_TRACKER_RETENTION_SEC'])
    app.extensions[EXECUTOR_EXTENSION_KEY] = create_remote_command_executor(app.config)

    # setup API endpoints
    init_api(app)

    @app.after_request
    def add_headers(r):
        r.headers['X-Content-Type-Options'] = 'nosniff'
        r.headers['X-XSS-Protection'] = '1; mode=block'
        r.headers['Cache-Control'] = 'no-cache, no-store, must-revalidate'
        r.headers['Pragma'] = 'no-cache'
        r.headers['Expires'] = '0'
        r.headers['Strict-Transport-Security'] = 'max-age=31536000'
        r.headers['Content-Security-Policy'] = "default-src 'none'"

        # Sometimes we need to allow additional domains in CORS during UI development.
        # Do not set this in production.
        if 'DISABLE_CORS' in os.environ and os.environ['DISABLE_CORS']:
            r.headers['Access-Control-Allow-Origin'] = '*'
            r.headers['Access-Control-Allow-Headers'] = '*, Authorization'
            r.headers['Access-Control-Allow-Methods'] = '*'

        return r

    return app


def init_api(app: Flask):
    from opc.views.backup_vaults import (
        BackupVaultList, BackupVaultView, BackupVaultDeploymentData, BackupVaultSources, BackupVaultTarget,
        BackupVaultTrigger, BackupVaultRetention
    )
    from opc.views.hosts import HostList, HostView, HostStorageList, HostStorageView
    from opc.views.key_vaults import (
        KeyVaultKeyList, KeyVaultKeyView, KeyVaultSecretList, KeyVaultSecretView, KeyVaultCertificateList,
        KeyVaultCertificateView, KeyVaultCA
    )
    from opc.views.locks import LockView, LockList
    from opc.views.openvpn_gateways import (
        OpenVPNGatewayInfo, OpenVPNGatewayClients, OpenVPNGatewayClientConfig, OpenVPNGatewayConnections,
        OpenVPNGatewayConfig
    )
    from opc.views.processes import ProcessList, ProcessView
    from opc.views.resource_groups import (
        ResourceGroupList, ResourceGroupView, ResourceList, ResourceView, ResourceLogList, ResourceLogCleanup,
        ResourceLogView
    )
    from opc.views.sessions import SessionView

    api = restful.Api(app)
    api_root = '/api/v1'
    api.add_resource(SessionView, api_root + '/sessions')
    api.add_resource(HostList, api_root + '/hosts')
    api.add_resource(HostView, api_root + '/hosts/<string:host_name>')
    api.add_resource(HostStorageList, api_root + '/hosts/<string:host_name>/storages')
    api.add_resource(HostStorageView, api_root + '/hostStorages/<string:storage_id>')
    api.add_resource(ResourceGroupList, api_root + '/resourceGroups')
    api.add_resource(ResourceGroupView, api_root + '/resourceGroups/<string:group_name>')
    api.add_resource(ResourceList, api_root + '/resourceGroups/<string:group_name>/resources')
    resource_path = (api_root + '/resourceGroups/<string:group_name>/resources/'
                     '<string:provider_name>/<string:resource_type>/<string:resource_name>')
    api.add_resource(ResourceView, resource_path)
    api.add_resource(ResourceLogList, resource_path + '/logs')
    api.add_resource(ResourceLogCleanup, api_root + '/resourceLogs', methods=['DELETE'])
    api.add_resource(ResourceLogView, api_root + '/resourceLogs/<string:log_id>')
    api.add_resource(BackupVaultList, api_root + '/backupVaults')
    api.add_resource(ProcessList, api_root + '/processes')
    api.add_resource(ProcessView, api_root + '/processes/<int:process_id>')
    api.add_resource(LockList, api_root + '/locks')
    api.add_resource(LockView, api_root + '/locks/<string:lock_id>')

    backup_vault_path = api_root + '/resourceProviders/<string:group_name>/backup-services/backup-vault/' \
                                   '<string:vault_name>'
    api.add_resource(BackupVaultView, backup_vault_path, methods=['POST'])
    api.add_resource(BackupVaultDeploymentData, backup_vault_path + '/deploymentdata')
    api.add_resource(BackupVaultSources, backup_vault_path + '/sources')
    api.add_resource(BackupVaultTarget, backup_vault_path + '/target')
    api.add_resource(BackupVaultTrigger, backup_vault_path + '/trigger')
    api.add_resource(BackupVaultRetention, backup_vault_path + '/retention')

    key_vault_path = api_root + '/resourceProviders/<string:group_name>/security-services/key-vault/' \
                                '<string:vault_name>'
    api.add_resource(KeyVaultKeyList, key_vault_path + '/keys')
    api.add_resource(KeyVaultKeyView, key_vault_path + '/keys/<string:key_name>')
    api.add_resource(KeyVaultSecretList, key_vault_path + '/secrets')
    api.add_resource(KeyVaultSecretView, key_vault_path + '/secrets/<string:secret_name>')
    api.add_resource(KeyVaultCertificateList, key_vault_path + '/certificates')
    api.add_resource(KeyVaultCertificateView, key_vault_path + '/certificates/<string:cert_name>')
    api.add_resource(KeyVaultCA, key_vault_path + '/ca')

    gateway_path = api_root + '/resourceProviders/<string:group_name>/network-services/openvpn-gateway/' \
                              '<string:gateway_name>'
    api.add_resource(OpenVPNGatewayInfo, gateway_path + '/info')
    api.add_resource(OpenVPNGatewayClients, gateway_path + '/clients')
    api.add_resource(OpenVPNGatewayClientConfig, gateway_path + '/clientconfig')
    api.add_resource(OpenVPNGatewayConnections, gateway_path + '/connections')
    api.add_resource(OpenVPNGatewayConfig, gateway_path + '/config')

    # Setup route for readiness/liveness probe check
    @app.route('/healthz')
    def healthz():
        return 'ok'
