"""Mini-split coordinator: run several mini-splits as one HVAC system."""

__version__ = "1.0.0"
