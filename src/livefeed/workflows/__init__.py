"""
Workflows module - Live feed pipeline and maintenance orchestration.
"""
from livefeed.workflows.maintenance import FeedMaintenance, MaintenanceState
from livefeed.workflows.pipeline import LiveFeedPipeline
from livefeed.workflows.pipeline_factory import LiveFeedApp, create_app

__all__ = [
    "FeedMaintenance",
    "MaintenanceState",
    "LiveFeedPipeline",
    "LiveFeedApp",
    "create_app",
]
