import sys

from gigescrow.cli import main

sys.exit(main())
