"""Deploy providers and bundle preparation.

``inject_image_urls`` turns a generated bundle into a deployable one by
replacing the image placeholders; the providers then publish it.
"""

import asyncio
import json
import logging
import os
import re
import shutil
import subprocess
import tempfile
import zipfile
from pathlib import Path
from typing import Optional, Sequence

from ..exceptions import ProviderError
from .base import DeployProvider, DeployResult
from .site_builder import HERO_PLACEHOLDER, SERVICE_PLACEHOLDERS


logger = logging.getLogger(__name__)

FALLBACK_HERO_IMAGE = "https://picsum.photos/seed/fallback-hero/1600/900"
FALLBACK_SERVICE_IMAGES = tuple(
    f"https://picsum.photos/seed/fallback-service-{i}/800/600" for i in (1, 2, 3)
)
MAX_SLUG_LENGTH = 48
DEFAULT_VERCEL_TIMEOUT_SECONDS = 300


def sanitize_slug(value: str) -> str:
    """URL-safe project slug: lowercase, dashes only, at most 48 characters."""
    slug = re.sub(r"[^a-z0-9-]", "-", value.lower())
    slug = re.sub(r"-+", "-", slug).strip("-")
    return slug[:MAX_SLUG_LENGTH]


def inject_image_urls(
    zip_path: str,
    hero_image_url: Optional[str],
    service_image_urls: Sequence[str],
) -> str:
    """Write a copy of the bundle with image placeholders filled in.

    Missing images are replaced by fixed fallback URLs.

    Returns:
        Path of the new ``{name}-ready.zip`` next to the source bundle.

    Raises:
        FileNotFoundError: If the bundle does not exist.
        ValueError: If the bundle has no index.html.
    """
    replacements = {HERO_PLACEHOLDER: hero_image_url or FALLBACK_HERO_IMAGE}
    for i, placeholder in enumerate(SERVICE_PLACEHOLDERS):
        url = service_image_urls[i] if i < len(service_image_urls) else None
        replacements[placeholder] = url or FALLBACK_SERVICE_IMAGES[i]

    source = Path(zip_path)
    ready_path = source.with_name(f"{source.stem}-ready.zip")

    with zipfile.ZipFile(source) as bundle:
        if "index.html" not in bundle.namelist():
            raise ValueError(f"index.html not found in bundle: {zip_path}")
        files = {name: bundle.read(name) for name in bundle.namelist() if not name.endswith("/")}

    index_html = files["index.html"].decode("utf-8")
    for placeholder, url in replacements.items():
        index_html = index_html.replace(placeholder, url)
    files["index.html"] = index_html.encode("utf-8")

    with zipfile.ZipFile(ready_path, "w", compression=zipfile.ZIP_DEFLATED) as bundle:
        for name, content in files.items():
            bundle.writestr(name, content)

    return str(ready_path)


def extract_bundle(zip_path: str, destination: str) -> None:
    """Unpack a bundle into ``destination``, refusing paths that escape it."""
    root = Path(destination).resolve()
    root.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(zip_path) as bundle:
        for member in bundle.infolist():
            if member.is_dir():
                continue
            target = (root / member.filename).resolve()
            if root not in target.parents:
                raise ValueError(f"Bundle entry escapes destination: {member.filename}")
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(bundle.read(member))


class LocalDeployProvider(DeployProvider):
    """Extracts bundles under ``demo_root`` for the API's ``/demo`` mount."""

    name = "local"

    def __init__(self, demo_root: str, public_base_url: str = "http://localhost:3000"):
        self.demo_root = demo_root
        self.public_base_url = public_base_url.rstrip("/")

    async def deploy(self, artifact_location: str, project_name: str) -> DeployResult:
        slug = sanitize_slug(project_name)
        project_dir = os.path.join(self.demo_root, slug)
        loop = asyncio.get_event_loop()
        try:
            await loop.run_in_executor(None, extract_bundle, artifact_location, project_dir)
        except (OSError, zipfile.BadZipFile, ValueError) as e:
            raise ProviderError(self.name, f"Local deploy of {artifact_location} failed: {e}") from e

        url = f"{self.public_base_url}/demo/{slug}"
        logger.info("Deployed %s to %s", artifact_location, project_dir)
        return DeployResult(url=url)


class VercelDeployProvider(DeployProvider):
    """Deploys bundles with the Vercel CLI.

    Attributes:
        token: Vercel API token.
        team_id: Optional Vercel team ID.
        scope: Optional scope (team slug).
    """

    name = "vercel"

    def __init__(
        self,
        token: Optional[str] = None,
        team_id: Optional[str] = None,
        scope: Optional[str] = None,
        timeout_seconds: int = DEFAULT_VERCEL_TIMEOUT_SECONDS,
    ):
        """Initialize the Vercel deploy provider.

        Raises:
            ValueError: If no token is provided.
        """
        if not token:
            raise ValueError(
                "Vercel token required. Set VERCEL_TOKEN environment "
                "variable or pass token parameter."
            )
        self.token = token
        self.team_id = team_id
        self.scope = scope
        self.timeout_seconds = timeout_seconds

    def _build_args(self, project_dir: str, project_name: str) -> list[str]:
        args = ["vercel", "--token", self.token]
        if self.scope:
            args.extend(["--scope", self.scope])
        elif self.team_id:
            args.extend(["--scope", self.team_id])
        args.extend(["--name", project_name, "--prod", "--yes", project_dir])
        return args

    def _run_cli(self, args: list[str]) -> subprocess.CompletedProcess:
        return subprocess.run(
            args,
            capture_output=True,
            text=True,
            timeout=self.timeout_seconds,
            env={**os.environ, "VERCEL_TOKEN": self.token},
        )

    async def deploy(self, artifact_location: str, project_name: str) -> DeployResult:
        if shutil.which("vercel") is None:
            raise ProviderError(self.name, "Vercel CLI not found. Install with: npm install -g vercel")

        slug = sanitize_slug(project_name)
        loop = asyncio.get_event_loop()
        workdir = tempfile.mkdtemp(prefix=f"deploy-{slug}-")
        try:
            await loop.run_in_executor(None, extract_bundle, artifact_location, workdir)
            try:
                result = await loop.run_in_executor(
                    None, self._run_cli, self._build_args(workdir, slug)
                )
            except subprocess.TimeoutExpired as e:
                raise ProviderError(
                    self.name, f"Deploy timed out after {self.timeout_seconds} seconds"
                ) from e
        finally:
            shutil.rmtree(workdir, ignore_errors=True)

        if result.returncode != 0:
            stderr = result.stderr.strip()
            if "unauthorized" in stderr.lower() or "not_authorized" in stderr.lower():
                raise ProviderError(self.name, f"Authentication failed: {stderr}")
            raise ProviderError(self.name, f"Deploy failed: {stderr or result.stdout.strip()}")

        url = self._parse_url(result.stdout)
        if not url:
            raise ProviderError(self.name, "Could not parse deployment URL from CLI output")
        logger.info("Deployed %s to %s", slug, url)
        return DeployResult(url=url)

    @staticmethod
    def _parse_url(stdout: str) -> Optional[str]:
        """The CLI prints the deployment URL last; newer versions print JSON."""
        for line in reversed(stdout.strip().splitlines()):
            line = line.strip()
            if line.startswith("{"):
                try:
                    url = json.loads(line).get("url")
                except json.JSONDecodeError:
                    continue
                if url:
                    return url if url.startswith("http") else f"https://{url}"
            if line.startswith("http"):
                return line
        return None
