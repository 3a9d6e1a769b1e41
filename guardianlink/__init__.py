"""
GuardianLink - URL threat scoring and decision engine.

GuardianLink provides:
- Signal extraction from URLs and provider context
- Versioned heuristic rules with confidence decay and supervised learning
- Phase aggregation into ALLOW / WARN / BLOCK verdicts
- A fingerprinted scan cache with background scans and bounded polling
"""

__version__ = "0.3.2"
__author__ = "GuardianLink Team"
