"""
GitHub client - pull requests through the REST API
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from core.exceptions import PullRequestError


logger = logging.getLogger(__name__)


@dataclass
class PullRequest:
    number: int
    url: str
    head: str
    base: str


class GitHubClient:
    """Minimal GitHub REST client

    Requires:
        - a token with write access to the target repository
    """

    DEFAULT_TIMEOUT = 30.0

    def __init__(
        self,
        token: str,
        api_url: str = "https://api.github.com",
        transport: Optional[httpx.BaseTransport] = None
    ):
        self.api_url = api_url.rstrip("/")
        self._client = httpx.Client(
            base_url=self.api_url,
            timeout=httpx.Timeout(self.DEFAULT_TIMEOUT, connect=10.0),
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
            transport=transport
        )

    def close(self):
        self._client.close()

    def __enter__(self) -> "GitHubClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def create_pull_request(
        self,
        repository: str,
        title: str,
        body: str,
        head: str,
        base: str
    ) -> PullRequest:
        """Open a pull request from head into base

        Raises:
            PullRequestError: on transport errors or a non-201 response
        """
        try:
            response = self._client.post(
                f"/repos/{repository}/pulls",
                json={"title": title, "body": body, "head": head, "base": base}
            )
        except httpx.HTTPError as e:
            raise PullRequestError(f"GitHub request failed: {e}") from e

        if response.status_code != 201:
            detail = response.text
            try:
                payload = response.json()
                detail = payload.get("message", detail)
                errors = payload.get("errors")
                if errors:
                    detail += f" ({errors})"
            except ValueError:
                pass
            raise PullRequestError(
                f"Pull request creation rejected ({response.status_code}): {detail}",
                status_code=response.status_code
            )

        data = response.json()
        pr = PullRequest(
            number=data["number"],
            url=data["html_url"],
            head=head,
            base=base
        )
        logger.info(f"Opened pull request #{pr.number}: {pr.url}")
        return pr
