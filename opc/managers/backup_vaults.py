"""
Configuration of backup vaults and starting their backup processes.

The configuration of a vault is one JSON document, see default_config(). The
REST API reads and writes it piece by piece through the functions below.
"""
import copy
import datetime
import logging
import threading
import time

from flask import current_app

from opc.managers.backup_process import BackupProcess, TARGET_STORAGE_DEVICE, TARGET_WEBDAV
from opc.managers.key_vaults import create_key_vault_reference, resolve_key_vault_reference, KeyVaultReferenceError
from opc.managers.process_tracker import get_process_tracker_manager
from opc.managers.remote import get_remote_command_executor
from opc.managers.resources import (
    request_config, update_or_insert_config, request_resource_reference_by_id, add_resource_log, ResourceReference,
    BACKUP_SERVICES, TYPE_BACKUP_VAULT
)
from opc.models import Resource

TRIGGER_MANUAL = 'manual'
TRIGGER_DAILY = 'daily'
TRIGGER_WEEKLY = 'weekly'
TRIGGER_TYPES = (TRIGGER_MANUAL, TRIGGER_DAILY, TRIGGER_WEEKLY)


class BackupAlreadyRunningError(Exception):
    pass


def default_config(retention_days=30):
    return dict(
        sources=dict(
            databases=[],
            controllerDB=dict(enable=False),
            fileStorages=[],
            keyVaults=[],
            objectStorages=[],
        ),
        target=dict(type=TARGET_STORAGE_DEVICE, storageDevicePath=''),
        retention=dict(numberOfDays=retention_days),
        trigger=dict(type=TRIGGER_MANUAL),
        state=dict(lastBackupStartTs=None),
    )


def query_config(vault_ref):
    config = default_config(current_app.config['BACKUP_DEFAULT_RETENTION_DAYS'])
    stored = request_config(vault_ref.id)
    if stored:
        # documents written by older versions may lack newer sections
        for key, value in stored.items():
            if isinstance(value, dict) and isinstance(config.get(key), dict) and key != 'target':
                config[key].update(value)
            else:
                config[key] = value
    return config


def write_config(vault_ref, config):
    update_or_insert_config(vault_ref.id, config)


# sources

def _add_unique(entries, entry, key):
    for existing in entries:
        if existing[key] == entry[key]:
            existing.update(entry)
            return
    entries.append(entry)


def _remove(entries, key, value):
    return [x for x in entries if x[key] != value]


def add_file_storage_source(vault_ref, external_id, create_snapshot_before_backup):
    config = query_config(vault_ref)
    _add_unique(
        config['sources']['fileStorages'],
        dict(externalId=external_id, createSnapshotBeforeBackup=bool(create_snapshot_before_backup)),
        'externalId'
    )
    write_config(vault_ref, config)


def delete_file_storage_source(vault_ref, external_id):
    config = query_config(vault_ref)
    config['sources']['fileStorages'] = _remove(config['sources']['fileStorages'], 'externalId', external_id)
    write_config(vault_ref, config)


def add_object_storage_source(vault_ref, external_id, create_snapshot_before_backup):
    config = query_config(vault_ref)
    _add_unique(
        config['sources']['objectStorages'],
        dict(externalId=external_id, createSnapshotBeforeBackup=bool(create_snapshot_before_backup)),
        'externalId'
    )
    write_config(vault_ref, config)


def delete_object_storage_source(vault_ref, external_id):
    config = query_config(vault_ref)
    config['sources']['objectStorages'] = _remove(config['sources']['objectStorages'], 'externalId', external_id)
    write_config(vault_ref, config)


def add_database_source(vault_ref, external_id, database_name):
    config = query_config(vault_ref)
    databases = config['sources']['databases']
    if not any(x['externalId'] == external_id and x['databaseName'] == database_name for x in databases):
        databases.append(dict(externalId=external_id, databaseName=database_name))
    write_config(vault_ref, config)


def delete_database_source(vault_ref, external_id, database_name):
    config = query_config(vault_ref)
    config['sources']['databases'] = [
        x for x in config['sources']['databases']
        if not (x['externalId'] == external_id and x['databaseName'] == database_name)
    ]
    write_config(vault_ref, config)


def add_key_vault_source(vault_ref, key_vault_resource_id):
    config = query_config(vault_ref)
    _add_unique(config['sources']['keyVaults'], dict(resourceId=key_vault_resource_id), 'resourceId')
    write_config(vault_ref, config)


def delete_key_vault_source(vault_ref, key_vault_resource_id):
    config = query_config(vault_ref)
    config['sources']['keyVaults'] = _remove(config['sources']['keyVaults'], 'resourceId', key_vault_resource_id)
    write_config(vault_ref, config)


def update_controller_db_source(vault_ref, enable):
    if not isinstance(enable, bool):
        raise ValueError('enable must be a boolean')
    config = query_config(vault_ref)
    config['sources']['controllerDB'] = dict(enable=enable)
    write_config(vault_ref, config)


def query_sources_dto(vault_ref):
    """Sources as exposed by the API: key vaults are reported by external id"""
    sources = copy.deepcopy(query_config(vault_ref)['sources'])
    key_vaults = []
    for entry in sources['keyVaults']:
        kv_ref = request_resource_reference_by_id(entry['resourceId'])
        if kv_ref:
            key_vaults.append(dict(id=kv_ref.external_id))
    sources['keyVaults'] = key_vaults
    return sources


# target

def target_to_dto(target):
    if target.get('type') != TARGET_WEBDAV:
        return dict(type=TARGET_STORAGE_DEVICE, storageDevicePath=target.get('storageDevicePath', ''))

    dto = dict(
        type=TARGET_WEBDAV,
        serverURL=target['serverURL'],
        rootPath=target.get('rootPath', '/'),
        userName=target['userName'],
        passwordKeyVaultSecretReference=create_key_vault_reference(
            target['password']['keyVaultResourceId'], 'secret', target['password']['secretName']),
    )
    if target.get('encryptionKey'):
        dto['encryptionKeyKeyVaultReference'] = create_key_vault_reference(
            target['encryptionKey']['keyVaultResourceId'], 'key', target['encryptionKey']['keyName'])
    return dto


def _resolve_typed_reference(reference, object_type):
    kv_ref, ref_type, name = resolve_key_vault_reference(reference)
    if ref_type != object_type:
        raise KeyVaultReferenceError('expected a %s reference, got %s' % (object_type, reference))
    return kv_ref, name


def _optional_string(dto, key, default=None):
    value = dto.get(key)
    if value is None:
        return default
    if not isinstance(value, str):
        raise ValueError('%s must be a string' % key)
    return value


def target_from_dto(dto):
    """
    Convert the API representation of a target into the stored one. Raises ValueError and
    KeyVaultReferenceError for invalid input, ResourceNotFoundError for unknown key vaults.
    """
    target_type = dto.get('type')
    if target_type == TARGET_STORAGE_DEVICE:
        return dict(type=TARGET_STORAGE_DEVICE, storageDevicePath=_optional_string(dto, 'storageDevicePath', ''))
    if target_type != TARGET_WEBDAV:
        raise ValueError('unknown target type "%s"' % target_type)

    for key in ('serverURL', 'userName', 'passwordKeyVaultSecretReference'):
        if not _optional_string(dto, key):
            raise ValueError('%s is required for webdav targets' % key)
    root_path = _optional_string(dto, 'rootPath') or '/'
    encryption_key_reference = _optional_string(dto, 'encryptionKeyKeyVaultReference')

    kv_ref, secret_name = _resolve_typed_reference(dto['passwordKeyVaultSecretReference'], 'secret')
    target = dict(
        type=TARGET_WEBDAV,
        serverURL=dto['serverURL'],
        rootPath=root_path,
        userName=dto['userName'],
        password=dict(keyVaultResourceId=kv_ref.id, secretName=secret_name),
    )
    if encryption_key_reference:
        kv_ref, key_name = _resolve_typed_reference(encryption_key_reference, 'key')
        target['encryptionKey'] = dict(keyVaultResourceId=kv_ref.id, keyName=key_name)
    return target


def query_target_dto(vault_ref):
    return target_to_dto(query_config(vault_ref)['target'])


def update_target(vault_ref, dto):
    target = target_from_dto(dto)
    config = query_config(vault_ref)
    config['target'] = target
    write_config(vault_ref, config)


# retention and trigger

def update_retention(vault_ref, retention):
    number_of_days = retention.get('numberOfDays')
    if not isinstance(number_of_days, int) or isinstance(number_of_days, bool) or number_of_days < 1:
        raise ValueError('numberOfDays must be a positive integer')
    config = query_config(vault_ref)
    config['retention'] = dict(numberOfDays=number_of_days)
    write_config(vault_ref, config)


def _check_int_range(trigger, key, low, high):
    value = trigger.get(key)
    if not isinstance(value, int) or isinstance(value, bool) or not low <= value <= high:
        raise ValueError('%s must be an integer between %d and %d' % (key, low, high))
    return value


def validate_trigger(trigger):
    trigger_type = trigger.get('type')
    if trigger_type == TRIGGER_MANUAL:
        return dict(type=TRIGGER_MANUAL)
    if trigger_type == TRIGGER_DAILY:
        return dict(type=TRIGGER_DAILY, atHour=_check_int_range(trigger, 'atHour', 0, 23))
    if trigger_type == TRIGGER_WEEKLY:
        return dict(
            type=TRIGGER_WEEKLY,
            dayOfWeek=_check_int_range(trigger, 'dayOfWeek', 0, 6),
            atHour=_check_int_range(trigger, 'atHour', 0, 23),
        )
    raise ValueError('trigger type must be one of %s' % ', '.join(TRIGGER_TYPES))


def update_trigger(vault_ref, trigger):
    config = query_config(vault_ref)
    config['trigger'] = validate_trigger(trigger)
    write_config(vault_ref, config)


def latest_scheduled_ts(trigger, now):
    """
    The most recent point in time, at or before now, at which the trigger fires. None for manual triggers.
    Hours and weekdays are in the local time of the caller.
    """
    if trigger.get('type') not in (TRIGGER_DAILY, TRIGGER_WEEKLY):
        return None
    now_dt = datetime.datetime.fromtimestamp(now)
    candidate = now_dt.replace(hour=trigger['atHour'], minute=0, second=0, microsecond=0)
    if trigger['type'] == TRIGGER_DAILY:
        if candidate > now_dt:
            candidate -= datetime.timedelta(days=1)
    else:
        candidate -= datetime.timedelta(days=(now_dt.weekday() - trigger['dayOfWeek']) % 7)
        if candidate > now_dt:
            candidate -= datetime.timedelta(days=7)
    return candidate.timestamp()


def is_backup_due(trigger, last_backup_start_ts, now=None):
    """A backup is due when the trigger has fired since the last backup started"""
    if now is None:
        now = time.time()
    scheduled = latest_scheduled_ts(trigger, now)
    if scheduled is None:
        return False
    return last_backup_start_ts is None or last_backup_start_ts < scheduled


# vault listing and backup process

def list_backup_vaults():
    vaults = []
    query = Resource.query.filter_by(resource_provider_name=BACKUP_SERVICES, resource_type=TYPE_BACKUP_VAULT)
    for resource in query.all():
        ref = ResourceReference.from_resource(resource)
        config = query_config(ref)
        vaults.append(dict(
            id=ref.id,
            resourceGroupName=ref.resource_group_name,
            name=ref.name,
            externalId=ref.external_id,
            trigger=config['trigger'],
            state=config['state'],
        ))
    return vaults


def _run_backup_process(app, executor, tracker, vault_ref):
    with app.app_context():
        try:
            config = query_config(vault_ref)
            BackupProcess(
                executor, tracker, vault_ref, config,
                mount_root=app.config['MOUNT_ROOT'],
                controller_db_uri=app.config['SQLALCHEMY_DATABASE_URI'],
            ).run()
        except Exception as e:
            logging.exception('backup process of %s could not be run', vault_ref.external_id)
            if tracker.is_running:
                tracker.fail(e)
                add_resource_log(tracker)


def start_backup_process(vault_ref):
    """
    Start the backup of a vault in a background thread and return its tracker.
    Raises BackupAlreadyRunningError when a backup of the vault is still running.
    """
    title = 'Backup of: %s' % vault_ref.external_id
    tracker = get_process_tracker_manager().create(title, vault_ref.id, exclusive=True)
    if tracker is None:
        raise BackupAlreadyRunningError('backup of %s is already running' % vault_ref.external_id)

    config = query_config(vault_ref)
    config['state']['lastBackupStartTs'] = tracker.start_ts
    write_config(vault_ref, config)
    logging.info('starting backup of %s, process %s', vault_ref.external_id, tracker.id)

    app = current_app._get_current_object()
    thread = threading.Thread(
        target=_run_backup_process,
        args=(app, get_remote_command_executor(), tracker, vault_ref),
        daemon=True
    )
    thread.start()
    if app.config['BACKUP_PROCESS_WAIT']:
        thread.join()
    return tracker
