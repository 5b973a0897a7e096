"""
Shared HTTP session for connectors that call remote APIs.
"""
from typing import Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry


def build_retrying_session(headers: Optional[Dict[str, str]] = None) -> requests.Session:
    """requests.Session that retries GETs on throttling and 5xx responses."""
    session = requests.Session()
    if headers:
        session.headers.update(headers)
    # Add retries
    retry_strategy = Retry(
        total=3,
        backoff_factor=1,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=["GET"]
    )
    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session
