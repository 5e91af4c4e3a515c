"""
Data access for resource groups, resources, resource configurations and
resource logs, plus the ResourceReference that ties a resource to its host.
"""
import datetime
import logging
import os

from opc.models import db, Resource, ResourceGroup, ResourceConfig, ResourceLog, HostStorage

BACKUP_SERVICES = 'backup-services'
NETWORK_SERVICES = 'network-services'
SECURITY_SERVICES = 'security-services'
FILE_SERVICES = 'file-services'
DATABASE_SERVICES = 'database-services'
COMPUTE_SERVICES = 'compute-services'
WEB_SERVICES = 'web-services'

TYPE_BACKUP_VAULT = 'backup-vault'
TYPE_OPENVPN_GATEWAY = 'openvpn-gateway'
TYPE_KEY_VAULT = 'key-vault'
TYPE_FILE_STORAGE = 'file-storage'
TYPE_OBJECT_STORAGE = 'object-storage'
TYPE_MARIADB = 'mariadb'

KNOWN_RESOURCE_TYPES = {
    BACKUP_SERVICES: (TYPE_BACKUP_VAULT,),
    NETWORK_SERVICES: (TYPE_OPENVPN_GATEWAY, 'dns-server', 'virtual-network'),
    SECURITY_SERVICES: (TYPE_KEY_VAULT,),
    FILE_SERVICES: (TYPE_FILE_STORAGE, TYPE_OBJECT_STORAGE),
    DATABASE_SERVICES: (TYPE_MARIADB,),
    COMPUTE_SERVICES: ('docker-container', 'virtual-machine'),
    WEB_SERVICES: ('api-gateway',),
}


class ResourceNotFoundError(Exception):
    pass


def is_known_resource_type(provider_name, resource_type):
    return resource_type in KNOWN_RESOURCE_TYPES.get(provider_name, ())


class ResourceReference:
    """Identifies a resource by id and external id, and locates it on its host"""

    def __init__(self, id, resource_group_name, resource_provider_name, resource_type, name,
                 host_id, host_name, host_storage_path):
        self.id = id
        self.resource_group_name = resource_group_name
        self.resource_provider_name = resource_provider_name
        self.resource_type = resource_type
        self.name = name
        self.host_id = host_id
        self.host_name = host_name
        self.host_storage_path = host_storage_path

    @staticmethod
    def from_resource(resource):
        storage = resource.storage
        return ResourceReference(
            id=resource.id,
            resource_group_name=resource.resource_group.name,
            resource_provider_name=resource.resource_provider_name,
            resource_type=resource.resource_type,
            name=resource.name,
            host_id=storage.host.id,
            host_name=storage.host.host_name,
            host_storage_path=storage.path,
        )

    @property
    def external_id(self):
        return '/%s/%s/%s/%s' % (
            self.resource_group_name, self.resource_provider_name, self.resource_type, self.name)

    @property
    def storage_path(self):
        return os.path.join(self.host_storage_path, self.id)

    def __repr__(self):
        return self.external_id


def request_resource_group(name):
    return ResourceGroup.query.filter_by(name=name).first()


def request_resource(resource_group_name, provider_name, resource_type, name):
    return Resource.query.join(ResourceGroup).filter(
        ResourceGroup.name == resource_group_name,
        Resource.resource_provider_name == provider_name,
        Resource.resource_type == resource_type,
        Resource.name == name,
    ).first()


def request_resource_reference(resource_group_name, provider_name, resource_type, name):
    resource = request_resource(resource_group_name, provider_name, resource_type, name)
    return ResourceReference.from_resource(resource) if resource else None


def request_resource_reference_by_id(resource_id):
    resource = db.session.get(Resource, resource_id)
    return ResourceReference.from_resource(resource) if resource else None


def resolve_external_id(external_id):
    """Resolve '/<group>/<provider>/<type>/<name>' into a ResourceReference, None when that fails"""
    if not external_id or not external_id.startswith('/'):
        return None
    parts = external_id[1:].split('/')
    if len(parts) != 4:
        return None
    return request_resource_reference(*parts)


def require_external_id(external_id, provider_name=None, resource_type=None):
    """Like resolve_external_id() but raises ResourceNotFoundError, optionally also on a type mismatch"""
    ref = resolve_external_id(external_id)
    if ref is None:
        raise ResourceNotFoundError('resource "%s" not found' % external_id)
    if provider_name and ref.resource_provider_name != provider_name:
        raise ResourceNotFoundError('resource "%s" is not of provider %s' % (external_id, provider_name))
    if resource_type and ref.resource_type != resource_type:
        raise ResourceNotFoundError('resource "%s" is not of type %s' % (external_id, resource_type))
    return ref


def add_resource(resource_group, storage: HostStorage, provider_name, resource_type, name):
    resource = Resource(resource_group.id, storage.id, provider_name, resource_type, name)
    db.session.add(resource)
    db.session.commit()
    return resource


def delete_resource(resource_id):
    ResourceConfig.query.filter_by(resource_id=resource_id).delete()
    ResourceLog.query.filter_by(resource_id=resource_id).delete()
    Resource.query.filter_by(id=resource_id).delete()
    db.session.commit()


def request_config(resource_id):
    rc = db.session.get(ResourceConfig, resource_id)
    return rc.config if rc else None


def update_or_insert_config(resource_id, config):
    rc = db.session.get(ResourceConfig, resource_id)
    if rc:
        rc.config = config
    else:
        db.session.add(ResourceConfig(resource_id, config))
    db.session.commit()


def add_resource_log(tracker):
    """Store the transcript of a finished process tracker"""
    if not tracker.resource_id:
        return None
    log = ResourceLog(
        resource_id=tracker.resource_id,
        title=tracker.title,
        status=tracker.status,
        log=tracker.full_text,
        start_ts=tracker.start_ts,
        end_ts=tracker.end_ts,
    )
    db.session.add(log)
    db.session.commit()
    return log


def request_resource_logs(resource_id):
    return ResourceLog.query.filter_by(resource_id=resource_id).order_by(ResourceLog._start_ts.desc()).all()


def delete_resource_logs_older_than(days):
    cutoff = datetime.datetime.now() - datetime.timedelta(days=days)
    num_deleted = ResourceLog.query.filter(ResourceLog._end_ts < cutoff).delete()
    db.session.commit()
    logging.info('deleted %d resource logs older than %d days', num_deleted, days)
    return num_deleted
