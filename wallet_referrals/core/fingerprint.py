"""
Server-observed request fingerprint extraction.

The tracker and the matcher must derive IP and user-agent identically,
otherwise a visit can never be matched back. Both go through this module.

@module fingerprint
@since 1.0.0
"""

from dataclasses import dataclass
from typing import Mapping, Optional

from wallet_referrals.core.config import settings

UNKNOWN = "unknown"

# Checked in order; the first header present wins
IP_HEADERS = ("x-forwarded-for", "cf-connecting-ip", "x-real-ip")

# Matches the pending_referral_visits.ip_address column
IP_MAX_LENGTH = 64


@dataclass(frozen=True)
class RequestMetadata:
    """Fingerprint components read from request headers."""
    ip_address: str
    user_agent: str

    @property
    def has_ip(self) -> bool:
        return self.ip_address != UNKNOWN


def get_client_ip(headers: Mapping[str, str]) -> str:
    """
    Extract the originating client IP.

    x-forwarded-for may carry a proxy chain; the first entry is the client.
    A blank first entry is treated as a missing header, so the next header
    is consulted. Values are cut to IP_MAX_LENGTH characters.

    @param headers - Case-insensitive request headers
    @returns IP string or "unknown"
    """
    forwarded_for = headers.get("x-forwarded-for")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first[:IP_MAX_LENGTH]

    for header in IP_HEADERS[1:]:
        value = headers.get(header)
        if value and value.strip():
            return value.strip()[:IP_MAX_LENGTH]

    return UNKNOWN


def truncate_user_agent(user_agent: Optional[str], max_length: Optional[int] = None) -> str:
    limit = max_length or settings.USER_AGENT_MAX_LENGTH
    return (user_agent or UNKNOWN)[:limit]


def extract_request_metadata(headers: Mapping[str, str]) -> RequestMetadata:
    """Build the fingerprint for a request from its headers."""
    return RequestMetadata(
        ip_address=get_client_ip(headers),
        user_agent=truncate_user_agent(headers.get("user-agent")),
    )
