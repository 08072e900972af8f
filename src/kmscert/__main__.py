"""Allow ``python -m kmscert``."""

from kmscert.cli.main import main

main()
