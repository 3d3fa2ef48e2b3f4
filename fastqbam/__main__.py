# fastqbam/__main__.py

import sys

from fastqbam.cli import main

sys.exit(main())
