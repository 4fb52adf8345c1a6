"""
Sovereign - public record acquisition and prospect intelligence

Scrapes county assessor, recorder and court records plus federal
registries, resolves the people named on them into canonical entities,
and turns changes on those entities into scored prospect signals.
"""

__version__ = "0.1.0"
