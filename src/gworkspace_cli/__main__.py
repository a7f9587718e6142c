"""Allow ``python -m gworkspace_cli``."""

from gworkspace_cli.cli.main import main

if __name__ == "__main__":
    main()
