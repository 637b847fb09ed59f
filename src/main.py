"""Main entry point for tasktrail.

``python src/main.py ...`` behaves like the installed ``tasktrail`` script.
"""
from cli import main

if __name__ == "__main__":
    main()
