#!/usr/bin/env python3
"""Start a Celery worker for import and maintenance queues."""

import warnings
import sys
from celery.bin import worker

# Containers commonly run the worker as root
warnings.filterwarnings('ignore', category=UserWarning, message='.*superuser privileges.*')
warnings.filterwarnings('ignore', category=RuntimeWarning, message='.*superuser privileges.*')

from finance_importer.workers.celery_app import celery_app

if __name__ == '__main__':
    worker_app = worker.worker(app=celery_app)

    sys.argv = [
        'celery',
        '-A', 'finance_importer.workers.celery_app.celery_app',
        'worker',
        '--loglevel=info',
        '--queues=imports,maintenance',
        '--pool=solo',
        '--without-mingle',
        '--without-gossip',
    ] + sys.argv[1:]

    worker_app.run()
