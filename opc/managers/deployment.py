"""Deployment and removal of resources on their hosts."""
import logging

from opc.managers.key_vaults import KeyVaultManager, default_config as default_key_vault_config
from opc.managers.openvpn import OpenVPNGatewayManager, validate_deployment_properties
from opc.managers.process_tracker import get_process_tracker_manager
from opc.managers.remote import get_remote_command_executor, RemoteFileSystem
from opc.managers.resources import (
    ResourceReference, add_resource, delete_resource, add_resource_log, update_or_insert_config,
    NETWORK_SERVICES, SECURITY_SERVICES, TYPE_KEY_VAULT, TYPE_OPENVPN_GATEWAY
)


def _is(ref, provider_name, resource_type):
    return ref.resource_provider_name == provider_name and ref.resource_type == resource_type


def deploy_resource(resource_group, storage, provider_name, resource_type, name, properties):
    """
    Register a resource and materialize it on the host of the storage. The resource stays registered
    when the deployment fails, the failure is in its resource log.
    """
    if provider_name == NETWORK_SERVICES and resource_type == TYPE_OPENVPN_GATEWAY:
        validate_deployment_properties(properties)

    resource = add_resource(resource_group, storage, provider_name, resource_type, name)
    ref = ResourceReference.from_resource(resource)
    executor = get_remote_command_executor()
    tracker = get_process_tracker_manager().create('Deployment of: %s' % ref.external_id, ref.id)
    try:
        RemoteFileSystem(executor, ref.host_id).create_directory(ref.storage_path)
        tracker.add('Created resource directory', ref.storage_path)

        if _is(ref, SECURITY_SERVICES, TYPE_KEY_VAULT):
            KeyVaultManager(executor).provide_resource(ref, tracker)
            update_or_insert_config(ref.id, default_key_vault_config())
        elif _is(ref, NETWORK_SERVICES, TYPE_OPENVPN_GATEWAY):
            OpenVPNGatewayManager(executor).deploy(ref, properties, tracker)

        tracker.add('Deployment finished')
        tracker.finish()
    except Exception as e:
        logging.warning('deployment of %s failed: %s', ref.external_id, e)
        tracker.fail(e)
        raise
    finally:
        add_resource_log(tracker)
    return resource


def delete_resource_from_host(ref):
    """Tear down a resource on its host, then remove its directory and its database records"""
    executor = get_remote_command_executor()
    tracker = get_process_tracker_manager().create('Deletion of: %s' % ref.external_id, ref.id)
    try:
        if _is(ref, NETWORK_SERVICES, TYPE_OPENVPN_GATEWAY):
            OpenVPNGatewayManager(executor).teardown(ref, tracker)
        RemoteFileSystem(executor, ref.host_id).remove_directory_recursive(ref.storage_path)
        tracker.add('Removed resource directory', ref.storage_path)
    except Exception as e:
        logging.warning('deletion of %s failed: %s', ref.external_id, e)
        tracker.fail(e)
        add_resource_log(tracker)
        raise

    delete_resource(ref.id)
    tracker.finish()
    logging.info('deleted resource %s', ref.external_id)
