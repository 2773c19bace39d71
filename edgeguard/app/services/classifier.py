"""Static request classification by origin country and client identity.

Both checks are pure: they only look at the request and the configured
lists, so they run first in the chain, before any store round trip.
"""

from typing import Iterable, Optional

from edgeguard.app.services.models import DenyReason, FilterDecision

COUNTRY_BLOCKED_MESSAGE = "Access from country {country} is denied."
IDENTITY_NOT_ALLOWED_MESSAGE = "Your browser or bot is not allowed."


class StaticClassifier:
    """Country block-list and identity allow-list checks.

    The identity check is an allow-list: a request passes when at least one
    configured pattern is a case-sensitive substring of its identity string.
    Patterns are literals, not regular expressions.
    """

    def __init__(
        self,
        blocked_countries: Iterable[str],
        allowed_identities: Iterable[str],
    ) -> None:
        self.blocked_countries = frozenset(c.strip().upper() for c in blocked_countries if c.strip())
        self.allowed_identities = tuple(p for p in allowed_identities if p)

    def check_country(self, country: Optional[str]) -> FilterDecision:
        # Unknown origin never denies.
        if not country:
            return FilterDecision.allow()
        code = country.strip().upper()
        if code in self.blocked_countries:
            return FilterDecision.deny(
                DenyReason.COUNTRY_BLOCKED,
                403,
                COUNTRY_BLOCKED_MESSAGE.format(country=code),
            )
        return FilterDecision.allow()

    def check_identity(self, identity: Optional[str]) -> FilterDecision:
        if identity and any(pattern in identity for pattern in self.allowed_identities):
            return FilterDecision.allow()
        return FilterDecision.deny(
            DenyReason.IDENTITY_NOT_ALLOWED,
            403,
            IDENTITY_NOT_ALLOWED_MESSAGE,
        )

    def classify(self, country: Optional[str], identity: Optional[str]) -> FilterDecision:
        """Run the country check, then the identity check."""
        decision = self.check_country(country)
        if not decision.allowed:
            return decision
        return self.check_identity(identity)
