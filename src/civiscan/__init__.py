"""
CiviScan - Event check-in core

Credential resolution, protocol-normalizing CiviCRM API client and the
scan-processing state machine used by event staff to check participants in.
"""

__version__ = "0.1.0"
