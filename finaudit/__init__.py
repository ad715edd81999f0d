"""
finaudit - Privacy-preserving financial audit pipeline

Sends a user's weekly financial snapshot to a language-model provider and
returns a structured audit, without the provider ever seeing the real names
of the user's cards, banks, subscriptions or loans.

DESIGN PRINCIPLES:
1. Real names never leave the device; model output gets them back
2. One interface for every provider dialect
3. One active audit at a time, with explicit session objects
4. Stale conversation context is discarded when instructions change
5. Fail visibly: unparseable output is an error, not a result
"""

__version__ = "1.0.0"
__author__ = "Catalyst Cash Team"
