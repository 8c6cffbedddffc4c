from __future__ import annotations

import random
import time
from typing import Any

import httpx

from socialops.domain.provider_errors import RETRYABLE_STATUS_CODES, classify_status_code


AYRSHARE_API_BASE = "https://api.ayrshare.com/api"
_MAX_RETRY_ATTEMPTS = 3
_RETRY_BASE_DELAY_SECONDS = 0.25
_RETRY_MAX_DELAY_SECONDS = 2.0

_EP_PROFILE = "/profiles/profile"
_EP_PROFILES = "/profiles"
_EP_HISTORY = "/history"
_EP_POST = "/post"
_EP_POST_ANALYTICS = "/analytics/post"


class AyrshareProviderError(Exception):
    """Provider-level exception for Ayrshare integration failures."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def category(self) -> str:
        if self.status_code is not None:
            return classify_status_code(self.status_code)
        message = str(self).lower()
        if "connectivity error" in message:
            return "transient"
        if (
            "missing ayrshare api key" in message
            or "missing ayrshare profile key" in message
            or "unexpected ayrshare" in message
            or "non-json" in message
        ):
            return "terminal"
        return "unknown"

    @property
    def retryable(self) -> bool:
        return self.category == "transient"

    @property
    def not_found(self) -> bool:
        return self.status_code == 404


def _build_base_url(base_url: str | None) -> str:
    return (base_url or AYRSHARE_API_BASE).rstrip("/")


def _headers(api_key: str, profile_key: str | None = None) -> dict[str, str]:
    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
        "Accept": "application/json",
    }
    if profile_key:
        headers["Profile-Key"] = profile_key
    return headers


def _request_with_retry(
    *,
    method: str,
    url: str,
    headers: dict[str, str],
    timeout_seconds: float,
    params: dict[str, Any] | None = None,
    json_payload: dict[str, Any] | None = None,
    max_attempts: int = _MAX_RETRY_ATTEMPTS,
) -> httpx.Response:
    last_exc: httpx.HTTPError | None = None
    response: httpx.Response | None = None
    for attempt in range(1, max_attempts + 1):
        try:
            with httpx.Client(timeout=timeout_seconds) as client:
                response = client.request(
                    method=method,
                    url=url,
                    headers=headers,
                    params=params,
                    json=json_payload,
                )
        except httpx.HTTPError as exc:
            last_exc = exc
            if attempt >= max_attempts:
                raise
            delay = min(_RETRY_BASE_DELAY_SECONDS * (2 ** (attempt - 1)), _RETRY_MAX_DELAY_SECONDS)
            time.sleep(delay + random.uniform(0, delay * 0.2))
            continue

        if response.status_code in RETRYABLE_STATUS_CODES and attempt < max_attempts:
            delay = min(_RETRY_BASE_DELAY_SECONDS * (2 ** (attempt - 1)), _RETRY_MAX_DELAY_SECONDS)
            time.sleep(delay + random.uniform(0, delay * 0.2))
            continue
        return response

    if last_exc:
        raise last_exc
    assert response is not None
    return response


def _request_json(
    *,
    method: str,
    path: str,
    api_key: str | None,
    profile_key: str | None = None,
    base_url: str | None = None,
    timeout_seconds: float = 30.0,
    params: dict[str, Any] | None = None,
    json_payload: dict[str, Any] | None = None,
    max_attempts: int = _MAX_RETRY_ATTEMPTS,
) -> Any:
    if not api_key:
        raise AyrshareProviderError("Missing Ayrshare API key")

    url = f"{_build_base_url(base_url)}{path}"
    try:
        response = _request_with_retry(
            method=method,
            url=url,
            headers=_headers(api_key, profile_key),
            timeout_seconds=timeout_seconds,
            params=params,
            json_payload=json_payload,
            max_attempts=max_attempts,
        )
    except httpx.HTTPError as exc:
        raise AyrshareProviderError(f"Ayrshare connectivity error: {exc}") from exc

    if response.status_code in {401, 403}:
        raise AyrshareProviderError(
            f"Ayrshare rejected credentials (HTTP {response.status_code})",
            status_code=response.status_code,
        )
    if response.status_code == 404:
        raise AyrshareProviderError(f"Ayrshare resource not found: {path}", status_code=404)
    if response.status_code >= 400:
        raise AyrshareProviderError(
            f"Ayrshare API returned HTTP {response.status_code}: {response.text[:200]}",
            status_code=response.status_code,
        )

    try:
        return response.json()
    except ValueError as exc:
        raise AyrshareProviderError("Ayrshare returned non-JSON response") from exc


def create_profile(
    api_key: str | None,
    title: str,
    base_url: str | None = None,
    timeout_seconds: float = 30.0,
) -> dict[str, str | None]:
    """
    Create one profile. Sent exactly once per call; callers own the retry policy
    so a single provisioning attempt never fans out into several profiles.
    """
    data = _request_json(
        method="POST",
        path=_EP_PROFILE,
        api_key=api_key,
        base_url=base_url,
        timeout_seconds=timeout_seconds,
        json_payload={"title": title},
        max_attempts=1,
    )
    if not isinstance(data, dict) or not data.get("profileKey"):
        raise AyrshareProviderError("Unexpected Ayrshare create profile response")
    return {"profileKey": str(data["profileKey"]), "refId": data.get("refId")}


def list_profiles(
    api_key: str | None,
    base_url: str | None = None,
    timeout_seconds: float = 30.0,
) -> list[dict[str, Any]]:
    data = _request_json(
        method="GET",
        path=_EP_PROFILES,
        api_key=api_key,
        base_url=base_url,
        timeout_seconds=timeout_seconds,
    )
    if isinstance(data, dict) and isinstance(data.get("profiles"), list):
        return data["profiles"]
    if isinstance(data, list):
        return data
    raise AyrshareProviderError("Unexpected Ayrshare list profiles response shape")


def find_profile_ref_id(profiles: list[dict[str, Any]], profile_key: str) -> str | None:
    for profile in profiles:
        if isinstance(profile, dict) and profile.get("profileKey") == profile_key:
            ref_id = profile.get("refId")
            return str(ref_id) if ref_id else None
    return None


def get_history(
    api_key: str | None,
    profile_key: str,
    base_url: str | None = None,
    timeout_seconds: float = 15.0,
) -> list[dict[str, Any]]:
    if not profile_key:
        raise AyrshareProviderError("Missing Ayrshare profile key")
    data = _request_json(
        method="GET",
        path=_EP_HISTORY,
        api_key=api_key,
        profile_key=profile_key,
        base_url=base_url,
        timeout_seconds=timeout_seconds,
    )
    if isinstance(data, dict):
        history = data.get("history")
        return history if isinstance(history, list) else []
    if isinstance(data, list):
        return data
    raise AyrshareProviderError("Unexpected Ayrshare history response shape")


def get_post_analytics(
    api_key: str | None,
    profile_key: str,
    post_id: str,
    platforms: list[str] | None = None,
    base_url: str | None = None,
    timeout_seconds: float = 30.0,
) -> Any:
    if not profile_key:
        raise AyrshareProviderError("Missing Ayrshare profile key")
    payload: dict[str, Any] = {"id": post_id}
    if platforms:
        payload["platforms"] = platforms
    return _request_json(
        method="POST",
        path=_EP_POST_ANALYTICS,
        api_key=api_key,
        profile_key=profile_key,
        base_url=base_url,
        timeout_seconds=timeout_seconds,
        json_payload=payload,
    )


def create_post(
    api_key: str | None,
    profile_key: str,
    caption: str,
    platforms: list[str],
    schedule_date: str | None = None,
    media_urls: list[str] | None = None,
    base_url: str | None = None,
    timeout_seconds: float = 30.0,
) -> str:
    """Publish or schedule a post. Returns the new external post id."""
    if not profile_key:
        raise AyrshareProviderError("Missing Ayrshare profile key")
    payload: dict[str, Any] = {"post": caption, "platforms": platforms}
    if schedule_date:
        payload["scheduleDate"] = schedule_date
    if media_urls:
        payload["mediaUrls"] = media_urls
    data = _request_json(
        method="POST",
        path=_EP_POST,
        api_key=api_key,
        profile_key=profile_key,
        base_url=base_url,
        timeout_seconds=timeout_seconds,
        json_payload=payload,
        max_attempts=1,
    )
    external_id = None
    if isinstance(data, dict):
        posts = data.get("posts")
        if isinstance(posts, list) and posts and isinstance(posts[0], dict):
            external_id = posts[0].get("id")
        external_id = external_id or data.get("id")
    if not external_id:
        raise AyrshareProviderError("Unexpected Ayrshare create post response")
    return str(external_id)


def delete_post(
    api_key: str | None,
    profile_key: str,
    post_id: str,
    base_url: str | None = None,
    timeout_seconds: float = 30.0,
) -> bool:
    """Delete an external post. Returns False when it was already gone."""
    if not profile_key:
        raise AyrshareProviderError("Missing Ayrshare profile key")
    try:
        _request_json(
            method="DELETE",
            path=f"{_EP_POST}/{post_id}",
            api_key=api_key,
            profile_key=profile_key,
            base_url=base_url,
            timeout_seconds=timeout_seconds,
        )
    except AyrshareProviderError as exc:
        if exc.not_found:
            return False
        raise
    return True
