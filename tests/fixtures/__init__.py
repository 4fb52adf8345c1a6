"""Test fixtures for Sovereign tests.

Provides:
- Jurisdictions without live feeds
- Sample assessor, recorder, court and insider rows
- Record model builders
"""

from .records import *
