"""Allow ``python -m jobdag``."""

from jobdag.cli.main import main

if __name__ == "__main__":
    main()
