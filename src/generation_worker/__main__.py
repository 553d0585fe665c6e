import sys

from generation_worker.main import main

sys.exit(main())
