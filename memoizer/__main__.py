import sys

from memoizer.cli import main

sys.exit(main())
