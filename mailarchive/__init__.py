"""Mail archive ingestion core.

Public API re-exported here for convenience::

    from mailarchive import ArchiveConfig, IngestionCoordinator, SqlStore
"""

from .classifier import MailingListTagger, TypeClassifier
from .config import (
    ArchiveConfig,
    MailingListRule,
    MailSourceConfig,
    PatternEntry,
    RetryConfig,
    S3Config,
    SessionConfig,
    TypeRule,
)
from .coordinator import IngestionCoordinator, check_source
from .errors import MailArchiveError, MailSourceError, SessionFatalError, StoreError
from .extractor import ContentExtractor, ExtractedContent
from .index import SessionIndex
from .models import (
    Attachment,
    ConnectionErrorKind,
    Message,
    Sensitivity,
    SessionReport,
    SessionState,
    SourceReport,
    Topic,
)
from .parser import MessageParser
from .resolver import Resolution, TopicResolver
from .similarity import similar
from .sql_store import SqlStore
from .store import InMemoryStore, Store

__all__ = [
    "ArchiveConfig",
    "Attachment",
    "ConnectionErrorKind",
    "ContentExtractor",
    "ExtractedContent",
    "InMemoryStore",
    "IngestionCoordinator",
    "MailArchiveError",
    "MailSourceConfig",
    "MailSourceError",
    "MailingListRule",
    "MailingListTagger",
    "Message",
    "MessageParser",
    "PatternEntry",
    "Resolution",
    "RetryConfig",
    "S3Config",
    "Sensitivity",
    "SessionConfig",
    "SessionFatalError",
    "SessionIndex",
    "SessionReport",
    "SessionState",
    "SourceReport",
    "SqlStore",
    "Store",
    "StoreError",
    "Topic",
    "TopicResolver",
    "TypeClassifier",
    "check_source",
    "similar",
]
