"""
auditflow CLI entry point.

Usage:
    auditflow [OPTIONS] COMMAND [ARGS]...
    python -m auditflow [OPTIONS] COMMAND [ARGS]...
"""

from auditflow.cli.main import main

if __name__ == "__main__":
    main()
