import logging
import os
import signal
from random import randrange
from time import sleep

from opc.client import OPCClient
from opc.config import RuntimeConfig
from opc.utils import init_logging
from opc.views.commons import WORKER_EXT_ID
from opc.worker.controllers import BackupTriggerController


class Worker:

    def __init__(self, conf):
        self.config = conf
        self.api_key = conf['SECRET_KEY']
        self.api_base_url = conf['INTERNAL_API_BASE_URL']
        self.client = OPCClient(None, self.api_base_url)
        self.client.login(WORKER_EXT_ID, self.api_key)
        self.id = os.environ['WORKER_ID'] if 'WORKER_ID' in os.environ.keys() else 'worker-%s' % randrange(100, 2 ** 32)
        self.terminate = False
        # wire our handler to
        # - SIGTERM for controlled shutdowns
        # - SIGALRM for emergency shutdown by watchdog
        signal.signal(signal.SIGTERM, self.handle_signals)
        signal.signal(signal.SIGALRM, self.handle_signals)

        self.backup_trigger_controller = BackupTriggerController(
            self.id, self.config, self.client, 'BACKUP_TRIGGER_CONTROLLER')

    def handle_signals(self, signum, frame):
        """
        Callback function for graceful and emergency shutdown.
        """
        logging.info('got signal %s frame %s' % (signum, frame))

        # break out of main loop as soon as work has finished
        if signum == signal.SIGTERM:
            logging.info('stopping worker')
            self.terminate = True
        # handle emergency shutdown by watchdog timer in case worker has been stuck
        if signum == signal.SIGALRM:
            logging.info('terminating worker')
            exit(signum)

    def run(self):
        logging.info('worker "%s" starting' % self.id)

        # check if we are being terminated and drop out of the loop
        while not self.terminate:
            logging.debug('worker main loop')
            # set watchdog timer
            signal.alarm(60 * 5)

            # make sure we have a fresh session
            self.client.check_and_refresh_session(WORKER_EXT_ID, self.api_key)

            # start scheduled backups
            self.backup_trigger_controller.process()

            # stop the watchdog
            signal.alarm(0)

            # sleep for a random amount to avoid synchronization between workers
            # while waiting, check for termination flag every second
            for i in range(randrange(2, 5)):
                if self.terminate:
                    break
                sleep(1)


if __name__ == '__main__':
    config = RuntimeConfig()

    init_logging(config, 'worker')

    worker = Worker(config)
    logging.getLogger().name = worker.id

    try:
        worker.run()
    except Exception as e:
        logging.critical('worker exiting due to an error', exc_info=e)

    logging.info('worker shutting down')
