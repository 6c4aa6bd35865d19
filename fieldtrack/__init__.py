"""FieldTrack - bulk component import and milestone progress tracking."""

__version__ = "0.1.0"
