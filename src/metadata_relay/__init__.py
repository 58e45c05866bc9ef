"""
Metadata Relay - keeps a marketplace's attribute index in sync with project indexers
"""

__version__ = "1.0.0"
__author__ = "Marketplace Team"

from .config import Config, load_config
from .models import Project, Token, MetadataMessage, IntegrityMessage, SignedMessage
from .scheduler import Scheduler, WorkerState

__all__ = [
    "Config",
    "IntegrityMessage",
    "MetadataMessage",
    "Project",
    "Scheduler",
    "SignedMessage",
    "Token",
    "WorkerState",
    "load_config",
]
