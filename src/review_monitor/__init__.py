"""Review monitor: classifies open Gerrit changes and reports who must act next."""

__version__ = "0.1.0"
