import sys

from randomx_runner.cli import main

sys.exit(main())
