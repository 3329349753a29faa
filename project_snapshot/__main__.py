"""Allow ``python -m project_snapshot``."""

from project_snapshot.cli.main import main

if __name__ == "__main__":
    main()
