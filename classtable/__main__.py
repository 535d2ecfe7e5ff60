"""
Package entry point.

Allows running the application via:

    python -m classtable

This simply forwards execution to classtable.cli.main().
"""

from classtable.cli import main

if __name__ == "__main__":
    main()
