"""
SKMirror -- sovereign tree mirroring.

Mirror a source tree onto a target tree across pluggable storage
backends. Encrypt on the way if you like. The engine never knows.

A smilinTux Open Source Project.
"""

import os

__version__ = "0.1.0"
__author__ = "smilinTux"

MIRROR_HOME = os.environ.get("SKMIRROR_HOME", "~/.skmirror")
