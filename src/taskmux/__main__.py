"""Allow ``python -m taskmux``."""

from taskmux.cli import main

if __name__ == "__main__":
    main()
