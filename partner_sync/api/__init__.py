"""
partner_sync.api - Remote API clients

HTTP clients for the PRM system of record and the learning platform.
"""

from partner_sync.api.http import RateLimitError, TransportError
from partner_sync.api.lms_api import LMSAPIError, LMSClient, MembershipResult
from partner_sync.api.prm_api import PRMAPIError, PRMClient

__all__ = [
    "LMSAPIError",
    "LMSClient",
    "MembershipResult",
    "PRMAPIError",
    "PRMClient",
    "RateLimitError",
    "TransportError",
]
