"""subproc-supervisor entry point.

Supports: python -m subproc_supervisor
"""

from .app import main

if __name__ == "__main__":
    main()
