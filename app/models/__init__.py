from app.models.base import Base  # noqa: F401

from app.models.agent import Agent  # noqa: F401
from app.models.listing import Listing  # noqa: F401
from app.models.sync_run import SyncRunRecord  # noqa: F401
