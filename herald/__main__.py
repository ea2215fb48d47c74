"""
`python -m herald …` behaves exactly like the ``bin/herald`` launcher.

argv[0] is this file here, so point ``HERALD_ROOT`` at the installation.
"""

from __future__ import annotations

from herald.launcher import run

if __name__ == "__main__":  # pragma: no cover
    run()
