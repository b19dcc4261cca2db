"""Source stage: resolve a branch or commit and download its tree from GitHub."""
import io
import logging
import tarfile
from pathlib import Path
from typing import Optional

import requests

from fargate_pipeline.exceptions import SourceFetchError
from fargate_pipeline.pipeline.models import SourceSnapshot

logger = logging.getLogger(__name__)


class GitHubSourceFetcher:
    """Fetches repository snapshots through the GitHub REST API."""

    def __init__(self, owner: str, repository: str, token: Optional[str] = None,
                 api_url: str = "https://api.github.com", timeout: int = 30,
                 session: Optional[requests.Session] = None):
        """Initialize the fetcher.

        Args:
            owner: Repository owner (user or organization)
            repository: Repository name
            token: Access token, resolved from the secret store by the caller
            api_url: GitHub API base URL
            timeout: Request timeout in seconds
            session: Optional pre-configured requests session
        """
        self.owner = owner
        self.repository = repository
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        })
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    @property
    def repo_url(self) -> str:
        return f"{self.api_url}/repos/{self.owner}/{self.repository}"

    def resolve_revision(self, ref: str) -> str:
        """Return the full commit SHA for a branch name or commit reference."""
        try:
            response = self.session.get(f"{self.repo_url}/commits/{ref}", timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"Failed to resolve {ref} in {self.owner}/{self.repository}: {e}")
            raise SourceFetchError(f"cannot resolve {ref}: {e}") from e
        revision = response.json().get("sha")
        if not revision:
            raise SourceFetchError(f"no commit found for {ref}")
        return revision

    def fetch(self, ref: str, workdir: str) -> SourceSnapshot:
        """Download the tree at ``ref`` into ``workdir``.

        The returned snapshot always carries the resolved commit SHA.
        """
        revision = self.resolve_revision(ref)
        logger.info(f"Fetching {self.owner}/{self.repository}@{revision[:7]}")
        try:
            response = self.session.get(f"{self.repo_url}/tarball/{revision}", timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"Failed to download {revision}: {e}")
            raise SourceFetchError(f"cannot download {revision}: {e}") from e

        target = Path(workdir) / revision
        target.mkdir(parents=True, exist_ok=True)
        try:
            with tarfile.open(fileobj=io.BytesIO(response.content), mode="r:gz") as archive:
                archive.extractall(target, filter="data")
        except (tarfile.TarError, OSError) as e:
            raise SourceFetchError(f"cannot extract {revision}: {e}") from e

        # GitHub tarballs hold a single top-level directory
        entries = [p for p in target.iterdir() if p.is_dir()]
        root = entries[0] if len(entries) == 1 else target
        logger.info(f"Source extracted to {root}")
        return SourceSnapshot(revision=revision, path=str(root))
