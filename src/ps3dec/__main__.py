import sys

from ps3dec.cli import main

sys.exit(main())
