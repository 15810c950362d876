"""Referral service exports."""

from .referral_service import ReferralActivityService  # noqa: F401
