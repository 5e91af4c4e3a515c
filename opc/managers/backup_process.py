"""
The backup process of a backup vault.

Mounts the target, copies every configured source below it, drops the
snapshots that fell out of the retention period and unmounts again. Everything
that happens is written to a ProcessTracker, which is stored as a resource log
when the process ends.

Target layout::

    <target>/opc-bkpvltcnt-<vault id>/<source specific subdirectory>/<snapshot>
    <target>/opc-controller-database/<snapshot>
"""
import gzip
import hashlib
import logging
import os
import subprocess
import time
import uuid

from opc.managers import file_storages
from opc.managers.key_vaults import KeyVaultManager, create_key_vault_reference
from opc.managers.remote import RemoteFileSystem, Pipe, RedirectStdout
from opc.managers.resources import (
    resolve_external_id, request_resource_reference_by_id, add_resource_log,
    FILE_SERVICES, DATABASE_SERVICES, TYPE_FILE_STORAGE, TYPE_OBJECT_STORAGE, TYPE_MARIADB
)
from opc.models import db
from opc.utils import iso_timestamp, parse_iso_timestamp

FS_TYPE_BTRFS = 'btrfs'
FS_TYPE_LIMITED = 'limited'

TARGET_STORAGE_DEVICE = 'storage-device'
TARGET_WEBDAV = 'webdav'

CONTROLLER_DB_DIR = 'opc-controller-database'

SECONDS_IN_DAY = 24 * 3600


def build_backup_path(target_path, vault_id):
    return os.path.join(target_path, 'opc-bkpvltcnt-' + vault_id)


def create_snapshot_file_name(file_system_type, extension, encrypted, ts=None):
    """<ISO timestamp><extension>, or <ISO timestamp>.gpg for encrypted snapshots"""
    name = iso_timestamp(ts) + ('.gpg' if encrypted else extension)
    return replace_special_chars(file_system_type, name)


def replace_special_chars(file_system_type, name):
    if file_system_type == FS_TYPE_LIMITED:
        return name.replace(':', '_')
    return name


def parse_snapshot_timestamp(name):
    """Creation time of a snapshot from its file name, None when the name does not carry one"""
    idx = name.find('Z')
    if idx < 0:
        return None
    try:
        return parse_iso_timestamp(name[:idx + 1].replace('_', ':'))
    except ValueError:
        return None


def is_expired(snapshot_ts, retention_days, now):
    """A snapshot expires once it is older than the retention period, counted in fractional days"""
    return (now - snapshot_ts) / SECONDS_IN_DAY > retention_days


def to_file_system_type(df_type):
    return FS_TYPE_BTRFS if df_type == FS_TYPE_BTRFS else FS_TYPE_LIMITED


def hash_database_name(encryption_key_reference, database_name):
    h = hashlib.sha256()
    h.update(encryption_key_reference.encode('utf-8'))
    h.update(database_name.encode('utf-8'))
    return h.hexdigest()


def dump_controller_database(database_uri):
    """SQL dump of the database of this control plane, as bytes"""
    if database_uri.startswith('sqlite'):
        connection = db.engine.raw_connection()
        try:
            return '\n'.join(connection.driver_connection.iterdump()).encode('utf-8')
        finally:
            connection.close()
    if database_uri.startswith('postgresql'):
        return subprocess.run(
            ['pg_dump', '--no-owner', '--dbname', database_uri],
            check=True,
            stdout=subprocess.PIPE,
        ).stdout
    raise ValueError('do not know how to dump database %s' % database_uri.split(':')[0])


class MountedTarget:
    def __init__(self, path, file_system_type, mount_point=None):
        self.path = path
        self.file_system_type = file_system_type
        # set when the mount was created by us and has to be undone
        self.mount_point = mount_point


class BackupTargetMountService:
    def __init__(self, executor, host_id, tracker, mount_root):
        self.executor = executor
        self.host_id = host_id
        self.tracker = tracker
        self.mount_root = mount_root
        self.fs = RemoteFileSystem(executor, host_id)

    def _create_mount_point(self):
        mount_point = os.path.join(self.mount_root, uuid.uuid4().hex)
        self.fs.create_directory(mount_point)
        return mount_point

    def find_mount_point(self, device):
        res = self.executor.execute(self.host_id, ['findmnt', '-n', '-o', 'TARGET', '--source', device],
                                    sudo=True, check=False)
        if res.exit_code != 0:
            return None
        lines = [line.strip() for line in res.stdout.splitlines() if line.strip()]
        return lines[0] if lines else None

    def query_file_system_type(self, path):
        return to_file_system_type(self.fs.query_file_system_type(path))

    def mount(self, target, key_vault_manager):
        if target.get('type') == TARGET_WEBDAV:
            return self.mount_webdav(target, key_vault_manager)
        return self.mount_storage_device(target['storageDevicePath'])

    def mount_storage_device(self, device):
        if not device:
            raise ValueError('no storage device configured')
        mount_point = self.find_mount_point(device)
        if mount_point:
            self.tracker.add('Device', device, 'already mounted on', mount_point)
            return MountedTarget(mount_point, self.query_file_system_type(mount_point))

        mount_point = self._create_mount_point()
        self.executor.execute(self.host_id, ['mount', device, mount_point], sudo=True)
        self.tracker.add('Mounted', device, 'on', mount_point)
        return MountedTarget(mount_point, self.query_file_system_type(mount_point), mount_point=mount_point)

    def mount_webdav(self, target, key_vault_manager):
        self.tracker.add('Trying to mount webdav service', target['serverURL'], 'as user', target['userName'])
        password_ref = create_key_vault_reference(
            target['password']['keyVaultResourceId'], 'secret', target['password']['secretName'])
        password = key_vault_manager.read_secret_from_reference(password_ref)

        mount_point = self._create_mount_point()
        self.executor.execute(
            self.host_id,
            ['mount', '-t', 'davfs', target['serverURL'], mount_point],
            sudo=True,
            stdin='%s\n%s\n' % (target['userName'], password)
        )
        self.tracker.add('Mounted', target['serverURL'], 'on', mount_point)
        path = os.path.join(mount_point, target.get('rootPath', '/').lstrip('/'))
        self.fs.create_directory(path)
        return MountedTarget(path, FS_TYPE_LIMITED, mount_point=mount_point)

    def unmount(self, mounted):
        if not mounted.mount_point:
            return
        self.executor.execute(self.host_id, ['umount', mounted.mount_point], sudo=True)
        self.executor.execute(self.host_id, ['rmdir', mounted.mount_point], sudo=True)
        self.tracker.add('Device', mounted.mount_point, 'unmounted.')


class BackupProcess:
    """Runs one backup of a vault. Use run(), which never raises."""

    def __init__(self, executor, tracker, vault_ref, config, mount_root, controller_db_uri=None):
        self.executor = executor
        self.tracker = tracker
        self.vault_ref = vault_ref
        self.config = config
        self.mount_root = mount_root
        self.controller_db_uri = controller_db_uri
        self.key_vault_manager = KeyVaultManager(executor)
        self.fs = RemoteFileSystem(executor, vault_ref.host_id)
        self.encryption_key_reference = None
        self.retention_days = config['retention']['numberOfDays']

    def run(self):
        mount_service = BackupTargetMountService(
            self.executor, self.vault_ref.host_id, self.tracker, self.mount_root)
        mounted = None
        try:
            target = self.config['target']
            encryption_key = target.get('encryptionKey') if target.get('type') == TARGET_WEBDAV else None
            if encryption_key:
                self.encryption_key_reference = create_key_vault_reference(
                    encryption_key['keyVaultResourceId'], 'key', encryption_key['keyName'])

            mounted = mount_service.mount(target, self.key_vault_manager)
            self.backup_sources(mounted)
            self.delete_old_backups(mounted)
            mount_service.unmount(mounted)
            mounted = None

            self.tracker.add('Backup process finished')
            self.tracker.finish()
        except Exception as e:
            logging.exception('backup of %s failed', self.vault_ref.external_id)
            self.tracker.fail(e)
            if mounted:
                try:
                    mount_service.unmount(mounted)
                except Exception as ue:
                    logging.warning('unmounting %s failed: %s', mounted.mount_point, ue)
        finally:
            add_resource_log(self.tracker)

    # helpers

    def _encrypt(self, command):
        if not self.encryption_key_reference:
            return command
        return self.key_vault_manager.create_encryption_command(command, self.encryption_key_reference)

    def _is_on_vault_host(self, ref):
        if ref.host_id != self.vault_ref.host_id:
            self.tracker.add('ERROR!', ref.external_id, 'is not on the host of the backup vault')
            return False
        return True

    def _vault_backup_path(self, mounted):
        return build_backup_path(mounted.path, self.vault_ref.id)

    def _delete_old_single_file_snapshots(self, host_id, path, kind, now):
        fs = RemoteFileSystem(self.executor, host_id)
        if not fs.exists(path):
            return
        for name in fs.list_directory(path):
            ts = parse_snapshot_timestamp(name)
            if ts is None:
                continue
            if is_expired(ts, self.retention_days, now):
                self.tracker.add('Deleting old', kind, 'backup', name)
                fs.remove_file(os.path.join(path, name))

    # sources

    def backup_sources(self, mounted):
        sources = self.config['sources']
        for source in sources['fileStorages']:
            self.backup_file_storage(mounted, source)
        for source in sources['databases']:
            self.backup_database(mounted, source)
        for source in sources['keyVaults']:
            self.backup_key_vault(mounted, source)
        for source in sources['objectStorages']:
            self.backup_object_storage(mounted, source)
        if sources['controllerDB']['enable']:
            self.backup_controller_database(mounted)

    def backup_file_storage(self, mounted, source):
        ref = resolve_external_id(source['externalId'])
        if ref is None or ref.resource_type != TYPE_FILE_STORAGE:
            self.tracker.add('ERROR! File storage not found:', source['externalId'])
            return
        if not self._is_on_vault_host(ref):
            return
        if mounted.file_system_type == FS_TYPE_BTRFS and self.encryption_key_reference:
            raise ValueError('file storage backups can not be encrypted on btrfs targets')

        self.tracker.add('Beginning to backup FileStorage', ref.external_id)
        if source.get('createSnapshotBeforeBackup'):
            snapshot_path = file_storages.create_snapshot(self.executor, ref)
            self.tracker.add('Created snapshot', snapshot_path)

        target_dir = os.path.join(self._vault_backup_path(mounted), ref.id)
        self.fs.create_directory(target_dir)
        existing = set(self._query_target_snapshot_names(target_dir))

        snapshots_path = file_storages.get_snapshots_path(ref)
        now = self._now()
        previous = None
        for name, ts in file_storages.query_snapshots_ordered(self.executor, ref):
            if name in existing:
                previous = name
                continue
            if is_expired(ts, self.retention_days, now):
                self.tracker.add('Skipping snapshot', name, 'because it is older than the configured retention')
                continue

            source_path = os.path.join(snapshots_path, name)
            self.tracker.add('Sending snapshot', name)
            if mounted.file_system_type == FS_TYPE_BTRFS:
                send = ['btrfs', 'send']
                if previous:
                    send += ['-p', os.path.join(snapshots_path, previous)]
                send.append(source_path)
                command = Pipe(send, ['btrfs', 'receive', target_dir])
            else:
                file_name = replace_special_chars(mounted.file_system_type, name) + '.tar.gz'
                if self.encryption_key_reference:
                    file_name += '.gpg'
                command = RedirectStdout(
                    self._encrypt(Pipe(['tar', '-cf', '-', '-C', source_path, '.'], ['gzip'])),
                    os.path.join(target_dir, file_name)
                )
            self.executor.execute(ref.host_id, command, sudo=True)
            previous = name

        self.tracker.add('Finished backing up FileStorage', ref.external_id)

    def _query_target_snapshot_names(self, target_dir):
        names = []
        for file_name in self.fs.list_directory(target_dir):
            names.append(file_name.split('.tar.gz')[0].replace('_', ':'))
        return names

    def backup_database(self, mounted, source):
        ref = resolve_external_id(source['externalId'])
        if ref is None or ref.resource_provider_name != DATABASE_SERVICES or ref.resource_type != TYPE_MARIADB:
            self.tracker.add('ERROR! Database not found:', source['externalId'])
            return
        if not self._is_on_vault_host(ref):
            return

        db_name = source['databaseName']
        self.tracker.add('Beginning to backup database', db_name, 'of', ref.external_id)
        target_dir = self._database_target_dir(mounted, db_name)
        self.fs.create_directory(target_dir)
        file_name = create_snapshot_file_name(
            mounted.file_system_type, '.sql.gz', bool(self.encryption_key_reference))
        command = RedirectStdout(
            self._encrypt(Pipe(['mysqldump', '-u', 'root', db_name], ['gzip'])),
            os.path.join(target_dir, file_name)
        )
        self.executor.execute(ref.host_id, command, sudo=True)
        self.tracker.add('Finished backing up database', db_name)

    def _database_target_dir(self, mounted, db_name):
        if self.encryption_key_reference:
            dir_name = hash_database_name(self.encryption_key_reference, db_name)
        else:
            dir_name = db_name
        return os.path.join(self._vault_backup_path(mounted), dir_name)

    def backup_key_vault(self, mounted, source):
        ref = request_resource_reference_by_id(source['resourceId'])
        if ref is None:
            self.tracker.add('ERROR! Key vault not found:', source['resourceId'])
            return
        if not self._is_on_vault_host(ref):
            return

        self.tracker.add('Beginning to backup key vault', ref.external_id)
        target_dir = os.path.join(self._vault_backup_path(mounted), ref.id)
        self.fs.create_directory(target_dir)
        file_name = create_snapshot_file_name(mounted.file_system_type, '.tar', bool(self.encryption_key_reference))
        command = RedirectStdout(
            self._encrypt(['tar', '-cf', '-', '-C', ref.storage_path, '.']),
            os.path.join(target_dir, file_name)
        )
        self.executor.execute(ref.host_id, command, sudo=True)
        self.tracker.add('Finished backing up key vault', ref.external_id)

    def backup_object_storage(self, mounted, source):
        ref = resolve_external_id(source['externalId'])
        if ref is None or ref.resource_provider_name != FILE_SERVICES or ref.resource_type != TYPE_OBJECT_STORAGE:
            self.tracker.add('ERROR! Object storage not found:', source['externalId'])
            return
        if not self._is_on_vault_host(ref):
            return

        if source.get('createSnapshotBeforeBackup'):
            snapshot_path = file_storages.create_snapshot(self.executor, ref)
            self.tracker.add('Created snapshot', snapshot_path)

        self.tracker.add('Beginning to backup ObjectStorage')
        target_dir = os.path.join(self._vault_backup_path(mounted), ref.id)
        self.fs.create_directory(target_dir)
        self.executor.execute(
            ref.host_id,
            ['rsync', '--archive', '--delete', '--quiet', ref.storage_path + '/', target_dir],
            sudo=True
        )
        self.tracker.add('Finished backing up ObjectStorage')

    def backup_controller_database(self, mounted):
        if not self.controller_db_uri:
            raise ValueError('controller database backup requested but no database configured')
        self.tracker.add('Beginning to backup the controller database')
        target_dir = os.path.join(mounted.path, CONTROLLER_DB_DIR)
        self.fs.create_directory(target_dir)

        file_name = iso_timestamp() + '.sql.gz'
        if self.encryption_key_reference:
            file_name += '.gpg'
        file_name = replace_special_chars(mounted.file_system_type, file_name)

        dump = gzip.compress(dump_controller_database(self.controller_db_uri))
        command = RedirectStdout(self._encrypt(['cat']), os.path.join(target_dir, file_name))
        self.executor.execute(self.vault_ref.host_id, command, sudo=True, stdin=dump)
        self.tracker.add('Finished backing up the controller database')

    # retention

    def delete_old_backups(self, mounted):
        now = self._now()
        sources = self.config['sources']
        host_id = self.vault_ref.host_id

        for source in sources['fileStorages']:
            ref = resolve_external_id(source['externalId'])
            if ref:
                self.delete_old_file_storage_snapshots(mounted, ref, now)
        for source in sources['databases']:
            target_dir = self._database_target_dir(mounted, source['databaseName'])
            self._delete_old_single_file_snapshots(host_id, target_dir, 'database', now)
        for source in sources['keyVaults']:
            target_dir = os.path.join(self._vault_backup_path(mounted), source['resourceId'])
            self._delete_old_single_file_snapshots(host_id, target_dir, 'key vault', now)
        if sources['controllerDB']['enable']:
            target_dir = os.path.join(mounted.path, CONTROLLER_DB_DIR)
            self._delete_old_single_file_snapshots(host_id, target_dir, 'controller database', now)

    def delete_old_file_storage_snapshots(self, mounted, ref, now):
        target_dir = os.path.join(self._vault_backup_path(mounted), ref.id)
        if not self.fs.exists(target_dir):
            return
        for file_name in self.fs.list_directory(target_dir):
            ts = parse_snapshot_timestamp(file_name)
            if ts is None or not is_expired(ts, self.retention_days, now):
                continue
            self.tracker.add('Deleting old file storage backup', file_name)
            path = os.path.join(target_dir, file_name)
            if mounted.file_system_type == FS_TYPE_BTRFS:
                self.executor.execute(self.vault_ref.host_id, ['btrfs', 'subvolume', 'delete', path], sudo=True)
            else:
                self.fs.remove_file(path)

    @staticmethod
    def _now():
        return time.time()
