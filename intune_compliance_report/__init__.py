"""
Intune Device Compliance Report
===============================
Exports one CSV row per Intune managed device with a column for every
compliance setting evaluated anywhere in the fleet.

This tool operates in READ-ONLY mode against Microsoft Graph.
"""

__version__ = "1.0.0"
__mode__ = "READ-ONLY"
