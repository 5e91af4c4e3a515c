import logging
import sys

from opc.client import OPCClient
from opc.config import RuntimeConfig
from opc.utils import init_logging
from opc.views.commons import WORKER_EXT_ID


def run_resource_log_cleanup(opc_client, logger, older_than_days):
    """Deletes resource logs that are older than the retention period"""
    logger.info('resource log cleanup starting')
    num_deleted = opc_client.delete_old_resource_logs(older_than_days)
    logger.info('%d resource logs older than %d days deleted', num_deleted, older_than_days)
    logger.info('resource log cleanup done')


if __name__ == '__main__':
    config = RuntimeConfig()
    init_logging(config, 'maintenance')
    logger = logging.getLogger()

    logger.info('maintenance starting')
    if len(sys.argv) <= 1:
        logger.warning('No maintenance tasks defined from command line')

    client = OPCClient(None, config['INTERNAL_API_BASE_URL'])
    client.login(WORKER_EXT_ID, config['SECRET_KEY'])
    try:
        if 'run_resource_log_cleanup' in sys.argv:
            run_resource_log_cleanup(client, logger, config['RESOURCE_LOG_RETENTION_DAYS'])
    except Exception as e:
        logger.critical('maintenance job exiting due to an error', exc_info=e)
        sys.exit(1)
    logger.info('maintenance finished')
