"""Persistence: automation documents, credentials and run history."""

from .store import AutomationStore, load_document_file, parse_document
from .credentials import Credential, CredentialStore
from .history import RunHistory, RunRecord

__all__ = [
    "AutomationStore",
    "load_document_file",
    "parse_document",
    "Credential",
    "CredentialStore",
    "RunHistory",
    "RunRecord",
]
