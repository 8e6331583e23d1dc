"""Run SwapFlow CLI: python -m swapflow."""

import sys

from swapflow.cli import main

sys.exit(main())
