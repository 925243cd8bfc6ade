"""PulsePoint - turn recurring Reddit problems into scored business ideas."""

__version__ = "0.1.0"
