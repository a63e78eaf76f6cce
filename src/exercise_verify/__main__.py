"""Allow running exercise-verify as ``python -m exercise_verify``."""

from exercise_verify.cli import main

if __name__ == "__main__":
    main()
