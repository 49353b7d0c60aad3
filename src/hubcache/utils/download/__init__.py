"""
Download Module for Resumable HTTP Transfers

Provides modular components for cache downloads with resume support,
throttled progress reporting, cooperative cancellation and optional
checksum verification.
"""

from .cancel_token import CancelToken
from .downloader import ProgressThrottle, TransferOutcome, TransferStatus, transfer
from .http_client import FetchResult, HttpClient
from .resume_manager import ResumeManager
from .retry_policy import RetryPolicy

__all__ = [
    'CancelToken',
    'FetchResult',
    'HttpClient',
    'ProgressThrottle',
    'ResumeManager',
    'RetryPolicy',
    'TransferOutcome',
    'TransferStatus',
    'transfer',
]
