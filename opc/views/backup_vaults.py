import flask_restful as restful
from flask_restful import marshal_with, fields

from opc.managers import backup_vaults as vaults_manager
from opc.managers.resources import (
    resolve_external_id, BACKUP_SERVICES, TYPE_BACKUP_VAULT, SECURITY_SERVICES, TYPE_KEY_VAULT,
    TYPE_OBJECT_STORAGE
)
from opc.utils import requires_admin
from opc.views.commons import auth, handles_manager_errors, get_resource_reference_or_abort, get_json_body

backup_vault_list_fields = {
    'id': fields.String,
    'resourceGroupName': fields.String,
    'name': fields.String,
    'externalId': fields.String,
    'trigger': fields.Raw,
    'state': fields.Raw,
}


def get_vault_or_abort(group_name, vault_name):
    return get_resource_reference_or_abort(group_name, BACKUP_SERVICES, TYPE_BACKUP_VAULT, vault_name)


class BackupVaultList(restful.Resource):
    @auth.login_required
    @requires_admin
    @marshal_with(backup_vault_list_fields)
    def get(self):
        return vaults_manager.list_backup_vaults()


class BackupVaultView(restful.Resource):
    @auth.login_required
    @requires_admin
    def post(self, group_name, vault_name):
        """Start the backup process of the vault"""
        ref = get_vault_or_abort(group_name, vault_name)
        try:
            tracker = vaults_manager.start_backup_process(ref)
        except vaults_manager.BackupAlreadyRunningError as e:
            return '%s' % e, 409
        return dict(processId=tracker.id)


class BackupVaultDeploymentData(restful.Resource):
    @auth.login_required
    @requires_admin
    def get(self, group_name, vault_name):
        ref = get_vault_or_abort(group_name, vault_name)
        return dict(hostName=ref.host_name)


class BackupVaultSources(restful.Resource):
    @auth.login_required
    @requires_admin
    def get(self, group_name, vault_name):
        ref = get_vault_or_abort(group_name, vault_name)
        return vaults_manager.query_sources_dto(ref)

    @auth.login_required
    @requires_admin
    @handles_manager_errors
    def post(self, group_name, vault_name):
        ref = get_vault_or_abort(group_name, vault_name)
        return self._dispatch(ref, get_json_body(), add=True)

    @auth.login_required
    @requires_admin
    @handles_manager_errors
    def delete(self, group_name, vault_name):
        ref = get_vault_or_abort(group_name, vault_name)
        return self._dispatch(ref, get_json_body(), add=False)

    @auth.login_required
    @requires_admin
    @handles_manager_errors
    def put(self, group_name, vault_name):
        """Update the controller database source"""
        ref = get_vault_or_abort(group_name, vault_name)
        body = get_json_body()
        vaults_manager.update_controller_db_source(ref, body.get('enable'))
        return vaults_manager.query_sources_dto(ref)['controllerDB']

    @staticmethod
    def _dispatch(ref, body, add):
        if 'createSnapshotBeforeBackup' in body:
            external_id = body.get('externalId')
            if not external_id:
                raise ValueError('externalId is required')
            source_ref = resolve_external_id(external_id)
            if source_ref and source_ref.resource_type == TYPE_OBJECT_STORAGE:
                if add:
                    vaults_manager.add_object_storage_source(ref, external_id, body['createSnapshotBeforeBackup'])
                else:
                    vaults_manager.delete_object_storage_source(ref, external_id)
            else:
                if add:
                    vaults_manager.add_file_storage_source(ref, external_id, body['createSnapshotBeforeBackup'])
                else:
                    vaults_manager.delete_file_storage_source(ref, external_id)
        elif 'databaseName' in body:
            external_id = body.get('externalId')
            if not external_id or not body['databaseName']:
                raise ValueError('externalId and databaseName are required')
            if add:
                vaults_manager.add_database_source(ref, external_id, body['databaseName'])
            else:
                vaults_manager.delete_database_source(ref, external_id, body['databaseName'])
        else:
            kv_ref = resolve_external_id(body.get('id'))
            if kv_ref is None or kv_ref.resource_provider_name != SECURITY_SERVICES \
                    or kv_ref.resource_type != TYPE_KEY_VAULT:
                return 'Key vault not found', 404
            if add:
                vaults_manager.add_key_vault_source(ref, kv_ref.id)
            else:
                vaults_manager.delete_key_vault_source(ref, kv_ref.id)
        return vaults_manager.query_sources_dto(ref)


class BackupVaultTarget(restful.Resource):
    @auth.login_required
    @requires_admin
    @handles_manager_errors
    def get(self, group_name, vault_name):
        ref = get_vault_or_abort(group_name, vault_name)
        return vaults_manager.query_target_dto(ref)

    @auth.login_required
    @requires_admin
    @handles_manager_errors
    def put(self, group_name, vault_name):
        ref = get_vault_or_abort(group_name, vault_name)
        vaults_manager.update_target(ref, get_json_body())
        return vaults_manager.query_target_dto(ref)


class BackupVaultTrigger(restful.Resource):
    @auth.login_required
    @requires_admin
    def get(self, group_name, vault_name):
        ref = get_vault_or_abort(group_name, vault_name)
        return vaults_manager.query_config(ref)['trigger']

    @auth.login_required
    @requires_admin
    @handles_manager_errors
    def put(self, group_name, vault_name):
        ref = get_vault_or_abort(group_name, vault_name)
        vaults_manager.update_trigger(ref, get_json_body())
        return vaults_manager.query_config(ref)['trigger']


class BackupVaultRetention(restful.Resource):
    @auth.login_required
    @requires_admin
    def get(self, group_name, vault_name):
        ref = get_vault_or_abort(group_name, vault_name)
        return vaults_manager.query_config(ref)['retention']

    @auth.login_required
    @requires_admin
    @handles_manager_errors
    def put(self, group_name, vault_name):
        ref = get_vault_or_abort(group_name, vault_name)
        vaults_manager.update_retention(ref, get_json_body())
        return vaults_manager.query_config(ref)['retention']
