import logging
import os
import time
from random import randrange

from opc.client import OPCClient
from opc.config import BaseConfig
from opc.managers.backup_vaults import is_backup_due

BACKUP_VAULT_LOCK_PREFIX = 'backup-vault-'


class ControllerBase:
    def __init__(self, worker_id: str, config: BaseConfig, client: OPCClient, controller_name: str):
        self.worker_id = worker_id
        self.config = config
        self.client = client
        self.controller_name = controller_name
        self.next_check_ts = 0

    def update_next_check_ts(self, polling_interval_min, polling_interval_max):
        self.next_check_ts = time.time() + randrange(polling_interval_min, polling_interval_max + 1)

    def get_polling_interval(self, default_min, default_max):
        """
        Read the polling interval from worker environment variables, if present. If not present,
        use given controller specific default values.
        """
        polling_interval_min = int(os.getenv(f"{self.controller_name}_POLLING_INTERVAL_SEC_MIN", default_min))
        polling_interval_max = int(os.getenv(f"{self.controller_name}_POLLING_INTERVAL_SEC_MAX", default_max))
        logging.info(f"{self.controller_name}_POLLING_INTERVAL_SEC_MIN is set to {polling_interval_min}")
        logging.info(f"{self.controller_name}_POLLING_INTERVAL_SEC_MAX is set to {polling_interval_max}")
        if polling_interval_min > polling_interval_max:
            logging.warning(f"{self.controller_name}_POLLING_INTERVAL_SEC_MIN is larger than "
                            f"{self.controller_name}_POLLING_INTERVAL_SEC_MAX, using default values instead")
            return default_min, default_max
        return polling_interval_min, polling_interval_max


class BackupTriggerController(ControllerBase):
    """
    Controller that starts the scheduled backups of backup vaults
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.polling_interval_min, self.polling_interval_max = self.get_polling_interval(30, 60)

    @staticmethod
    def is_due(vault, now=None):
        return is_backup_due(vault.get('trigger', {}), vault.get('state', {}).get('lastBackupStartTs'), now)

    def process(self):
        # check the triggers in increased intervals
        if time.time() < self.next_check_ts:
            return
        self.update_next_check_ts(self.polling_interval_min, self.polling_interval_max)

        for vault in self.client.get_backup_vaults():
            if not self.is_due(vault):
                continue

            lock_id = self.client.obtain_lock(BACKUP_VAULT_LOCK_PREFIX + vault['id'], self.worker_id)
            if not lock_id:
                logging.debug('failed to acquire lock on backup vault %s, skipping', vault['id'])
                continue
            try:
                # another worker may have started the backup while we were not holding the lock
                current = next((v for v in self.client.get_backup_vaults() if v['id'] == vault['id']), None)
                if current is None or not self.is_due(current):
                    continue
                process_id = self.client.start_backup(vault['resourceGroupName'], vault['name'])
                if process_id is None:
                    logging.info('backup of %s is already running', vault['externalId'])
                else:
                    logging.info('started backup of %s, process %s', vault['externalId'], process_id)
            except Exception as e:
                logging.warning('starting backup of %s failed: %s', vault.get('externalId'), e)
            finally:
                self.client.release_lock(lock_id, self.worker_id)
