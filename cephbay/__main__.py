import sys

from cephbay.cli import main

sys.exit(main())
