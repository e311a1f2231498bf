"""Shared HTTP session construction."""

from __future__ import annotations

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry


def build_session(connect_retries: int = 2) -> requests.Session:
    """Session that retries connection establishment only.

    Reads and response statuses are never retried here, so a request that
    reached the server is not sent twice by the transport.
    """
    session = requests.Session()
    retry_strategy = Retry(
        total=connect_retries,
        connect=connect_retries,
        read=0,
        status=0,
        other=0,
        backoff_factor=0.5,
        allowed_methods=None,
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session
