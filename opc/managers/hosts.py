import logging

from opc.managers.remote import get_remote_command_executor, RemoteFileSystem
from opc.models import db, Host, HostStorage


def add_host(host_name, password):
    host = Host(host_name, password)
    db.session.add(host)
    db.session.commit()
    logging.info('added host %s', host_name)
    return host


def request_host(host_name):
    return Host.query.filter_by(host_name=host_name).first()


def request_host_id(host_name):
    host = request_host(host_name)
    return host.id if host else None


def request_host_credentials(host_id):
    host = db.session.get(Host, host_id)
    return dict(host_name=host.host_name, password=host.password) if host else None


def request_hosts():
    return Host.query.order_by(Host.host_name).all()


def host_has_resources(host):
    return any(storage.resources.count() for storage in host.storages)


def delete_host(host_name):
    host = request_host(host_name)
    if not host:
        return False
    db.session.delete(host)
    db.session.commit()
    logging.info('deleted host %s', host_name)
    return True


def detect_file_system_type(host_id, path):
    fs = RemoteFileSystem(get_remote_command_executor(), host_id)
    return fs.query_file_system_type(path)


def add_host_storage(host_id, path, file_system_type=None):
    if file_system_type is None:
        file_system_type = detect_file_system_type(host_id, path)
    storage = HostStorage(host_id, path, file_system_type)
    db.session.add(storage)
    db.session.commit()
    logging.info('added storage %s on host %s, file system %s', path, host_id, file_system_type)
    return storage


def request_host_storage(storage_id):
    return db.session.get(HostStorage, storage_id)


def request_host_storage_by_path(host_id, path):
    return HostStorage.query.filter_by(host_id=host_id, path=path).first()


def request_host_storages(host_id):
    return HostStorage.query.filter_by(host_id=host_id).order_by(HostStorage.path).all()


def delete_host_storage(storage_id):
    storage = request_host_storage(storage_id)
    if not storage:
        return False
    db.session.delete(storage)
    db.session.commit()
    return True
