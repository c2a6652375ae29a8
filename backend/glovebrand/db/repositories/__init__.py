from glovebrand.db.repositories.branding_jobs import BrandingJobsRepository, StageUpdateResult
from glovebrand.db.repositories.queue_messages import QueueMessagesRepository

__all__ = [
    "BrandingJobsRepository",
    "QueueMessagesRepository",
    "StageUpdateResult",
]
