"""Module entrypoint.

Allows:
    python -m dtc_launcher run studies.txt --config launcher.yaml
"""

from __future__ import annotations

from dtc_launcher.cli import main

if __name__ == "__main__":
    main()
