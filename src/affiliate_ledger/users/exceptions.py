"""Referral enrolment exceptions."""


class ReferralError(Exception):
    """Base exception for referral enrolment."""


class ReferralCodeNotFoundError(ReferralError):
    """Raised when a referral code does not belong to any active user."""


class SelfReferralError(ReferralError):
    """Raised when trying to refer oneself."""


class ReferrerAlreadySetError(ReferralError):
    """Raised when a user already has a referrer; the link is set once."""


class ReferralCycleError(ReferralError):
    """Raised when the link would put a user into their own upline."""
