"""Activity fan-out package."""

from teamledger.activity.recorder import ActivityRecorder, actor_source, configure_logging

__all__ = ["ActivityRecorder", "actor_source", "configure_logging"]
