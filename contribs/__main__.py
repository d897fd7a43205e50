import sys

from contribs.cli import main

sys.exit(main())
