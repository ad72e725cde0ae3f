import sys

from zkbridge.service import main

sys.exit(main())
