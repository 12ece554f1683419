"""Moderation workflow exports."""

from .cases import ModerationCaseManager, ReinstatementOutcome  # noqa: F401
