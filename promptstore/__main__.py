"""Allow ``python -m promptstore``."""

import sys

from promptstore.cli import main

sys.exit(main())
