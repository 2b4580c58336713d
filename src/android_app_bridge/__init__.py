"""Control channel between desktop tooling and an agent embedded in an Android app."""

__version__ = "0.1.0"
