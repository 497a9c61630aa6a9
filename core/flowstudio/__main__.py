"""Allow running as: python -m flowstudio"""

import sys

from flowstudio.cli import main

if __name__ == "__main__":
    sys.exit(main())
