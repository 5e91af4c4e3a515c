import flask_restful as restful

from opc.managers.key_vaults import KeyVaultManager, DEFAULT_KEY_SIZE
from opc.managers.remote import get_remote_command_executor
from opc.managers.resources import SECURITY_SERVICES, TYPE_KEY_VAULT
from opc.utils import requires_admin, is_safe_name
from opc.views.commons import auth, handles_manager_errors, get_resource_reference_or_abort, get_json_body


def get_key_vault_or_abort(group_name, vault_name):
    return get_resource_reference_or_abort(group_name, SECURITY_SERVICES, TYPE_KEY_VAULT, vault_name)


def get_manager():
    return KeyVaultManager(get_remote_command_executor())


def require_safe_name(name):
    if not is_safe_name(name or ''):
        raise ValueError('invalid name "%s"' % name)
    return name


class KeyVaultKeyList(restful.Resource):
    @auth.login_required
    @requires_admin
    def get(self, group_name, vault_name):
        ref = get_key_vault_or_abort(group_name, vault_name)
        return [dict(name=x) for x in get_manager().query_key_names(ref)]

    @auth.login_required
    @requires_admin
    @handles_manager_errors
    def post(self, group_name, vault_name):
        ref = get_key_vault_or_abort(group_name, vault_name)
        body = get_json_body()
        name = require_safe_name(body.get('name'))
        key_size = body.get('keySize', DEFAULT_KEY_SIZE)
        if not isinstance(key_size, int) or isinstance(key_size, bool):
            raise ValueError('keySize must be an integer')
        get_manager().create_key(ref, name, key_size)
        return dict(name=name)


class KeyVaultKeyView(restful.Resource):
    @auth.login_required
    @requires_admin
    @handles_manager_errors
    def delete(self, group_name, vault_name, key_name):
        ref = get_key_vault_or_abort(group_name, vault_name)
        get_manager().delete_key(ref, require_safe_name(key_name))


class KeyVaultSecretList(restful.Resource):
    @auth.login_required
    @requires_admin
    def get(self, group_name, vault_name):
        ref = get_key_vault_or_abort(group_name, vault_name)
        return [dict(name=x) for x in get_manager().query_secret_names(ref)]

    @auth.login_required
    @requires_admin
    @handles_manager_errors
    def post(self, group_name, vault_name):
        ref = get_key_vault_or_abort(group_name, vault_name)
        body = get_json_body()
        name = require_safe_name(body.get('name'))
        value = body.get('secretValue')
        if not isinstance(value, str):
            raise ValueError('secretValue must be a string')
        get_manager().create_secret(ref, name, value)
        return dict(name=name)


class KeyVaultSecretView(restful.Resource):
    @auth.login_required
    @requires_admin
    @handles_manager_errors
    def get(self, group_name, vault_name, secret_name):
        ref = get_key_vault_or_abort(group_name, vault_name)
        manager = get_manager()
        if secret_name not in manager.query_secret_names(ref):
            return 'Secret does not exist', 404
        return dict(name=secret_name, secretValue=manager.read_secret(ref, require_safe_name(secret_name)))

    @auth.login_required
    @requires_admin
    @handles_manager_errors
    def delete(self, group_name, vault_name, secret_name):
        ref = get_key_vault_or_abort(group_name, vault_name)
        get_manager().delete_secret(ref, require_safe_name(secret_name))


class KeyVaultCertificateList(restful.Resource):
    @auth.login_required
    @requires_admin
    def get(self, group_name, vault_name):
        ref = get_key_vault_or_abort(group_name, vault_name)
        return get_manager().list_certificates(ref)

    @auth.login_required
    @requires_admin
    @handles_manager_errors
    def post(self, group_name, vault_name):
        ref = get_key_vault_or_abort(group_name, vault_name)
        body = get_json_body()
        name = require_safe_name(body.get('name'))
        manager = get_manager()
        manager.generate_certificate(ref, body.get('type'), name)
        return manager.query_certificate(ref, name)


class KeyVaultCertificateView(restful.Resource):
    @auth.login_required
    @requires_admin
    @handles_manager_errors
    def get(self, group_name, vault_name, cert_name):
        ref = get_key_vault_or_abort(group_name, vault_name)
        info = get_manager().read_certificate_info(ref, cert_name)
        if info is None:
            return 'Certificate does not exist', 404
        return info

    @auth.login_required
    @requires_admin
    @handles_manager_errors
    def delete(self, group_name, vault_name, cert_name):
        ref = get_key_vault_or_abort(group_name, vault_name)
        get_manager().revoke_certificate(ref, cert_name)


class KeyVaultCA(restful.Resource):
    @auth.login_required
    @requires_admin
    def get(self, group_name, vault_name):
        ref = get_key_vault_or_abort(group_name, vault_name)
        return get_manager().query_ca_config(ref)

    @auth.login_required
    @requires_admin
    @handles_manager_errors
    def put(self, group_name, vault_name):
        ref = get_key_vault_or_abort(group_name, vault_name)
        manager = get_manager()
        manager.update_ca_config(ref, get_json_body())
        return manager.query_ca_config(ref)
