from __future__ import annotations

import logging

import requests


logger = logging.getLogger(__name__)


class FetchError(Exception):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def fetch_feed(url: str, timeout_seconds: int = 30) -> str:
    if not url:
        raise FetchError("Feed URL is empty.")
    logger.info("Fetching ICS from: %s", url)
    try:
        response = requests.get(url, timeout=timeout_seconds)
    except requests.RequestException as exc:
        raise FetchError(f"Failed to fetch ICS: {exc}") from exc
    if not response.ok:
        raise FetchError(
            f"Failed to fetch ICS: {response.status_code} {response.reason}",
            status_code=response.status_code,
        )
    if not response.encoding:
        response.encoding = "utf-8"
    return response.text
