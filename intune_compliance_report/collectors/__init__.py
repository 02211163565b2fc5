from .base import ComplianceSource
from .compliance import IntuneComplianceSource

__all__ = [
    "ComplianceSource",
    "IntuneComplianceSource",
]
