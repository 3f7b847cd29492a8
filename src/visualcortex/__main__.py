"""Allow ``python -m visualcortex``."""

from visualcortex.cli import main

main()
