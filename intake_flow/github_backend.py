"""Read and write question files through GitHub's Contents API."""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

REQUEST_TIMEOUT = 10


@dataclass
class GitHubBackend:
    """Contents API wrapper bound to one repository and branch."""

    token: str
    repo: str
    branch: str = "main"
    api_url: str = "https://api.github.com"

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "Content-Type": "application/json",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _url(self, path: str) -> str:
        return f"{self.api_url.rstrip('/')}/repos/{self.repo}/contents/{path.lstrip('/')}"

    def _get(self, path: str) -> Optional[Any]:
        """Return the decoded Contents API payload for ``path`` or ``None`` on 404."""

        response = requests.get(
            self._url(path),
            headers=self._headers(),
            params={"ref": self.branch},
            timeout=REQUEST_TIMEOUT,
        )
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json()

    def read_json(self, path: str) -> Optional[Dict[str, Any]]:
        """Return the JSON document stored at ``path`` or ``None`` if missing."""

        payload = self._get(path)
        if payload is None:
            return None
        encoding = payload.get("encoding", "base64")
        if encoding != "base64":
            raise ValueError(f"Unsupported encoding: {encoding}")
        decoded = base64.b64decode(payload.get("content", "")).decode("utf-8")
        return json.loads(decoded)

    def list_directories(self, path: str) -> List[str]:
        """Return the names of sub-directories directly under ``path``."""

        payload = self._get(path)
        if not isinstance(payload, list):
            return []
        return sorted(entry["name"] for entry in payload if entry.get("type") == "dir")

    def write_json(self, path: str, data: Dict[str, Any], message: str) -> Dict[str, Any]:
        """Create or replace the JSON document at ``path``."""

        body: Dict[str, Any] = {
            "message": message,
            "branch": self.branch,
            "content": base64.b64encode(json.dumps(data, indent=2).encode("utf-8")).decode("utf-8"),
        }
        existing = self._get(path)
        if isinstance(existing, dict) and existing.get("sha"):
            body["sha"] = existing["sha"]

        response = requests.put(
            self._url(path),
            headers=self._headers(),
            json=body,
            timeout=REQUEST_TIMEOUT,
        )
        response.raise_for_status()
        return response.json()


def resolve_category_path(template: str, category_id: str, filename: str) -> str:
    """Return the remote file path for ``category_id`` using ``template``."""

    if "{category_id}" in template:
        return template.format(category_id=category_id)
    if template.endswith(".json"):
        return template
    return f"{template.rstrip('/')}/{category_id}/{filename}"


__all__ = ["GitHubBackend", "REQUEST_TIMEOUT", "resolve_category_path"]
