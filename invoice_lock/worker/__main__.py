import sys

from invoice_lock.worker.worker_main import main

sys.exit(main())
