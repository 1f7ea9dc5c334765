"""Command-line interface."""
import sys

from hepfit.main import main

if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
