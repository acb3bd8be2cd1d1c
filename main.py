# main.py
import sys

from src.optirollup.cli.cli import main

if __name__ == "__main__":
    sys.exit(main())
