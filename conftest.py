# Ensure tests import the flat top-level packages (core, relay, utils) from this
# directory even when the project is not installed.
import os
import sys

PROJECT_ROOT = os.path.dirname(__file__)

if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)
