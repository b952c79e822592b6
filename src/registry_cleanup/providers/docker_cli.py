"""Local Docker daemon provider driven through the docker CLI."""

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Optional

from ..core.types import (
    DOCKER_MANIFEST_MEDIA_TYPE,
    Manifest,
    Package,
    Referrer,
    RegistryFeature,
    RegistryType,
    Tag,
)
from ..exceptions import AuthenticationError, NotFoundError, RegistryError
from ..utils.digest import (
    calculate_digest,
    normalize_digest,
    short_digest,
    validate_digest,
)
from ..utils.validation import normalize_registry_url
from .base import BaseProvider, convert_to_manifest, parse_oci_manifest

logger = logging.getLogger(__name__)

_MISSING_IMAGE_MESSAGES = ("No such image", "image not found")


def parse_docker_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse ``2024-01-15 10:30:00 +0000 UTC`` as printed by ``docker image ls``."""
    if not value:
        return None
    try:
        return datetime.strptime(" ".join(value.split()[:3]), "%Y-%m-%d %H:%M:%S %z")
    except ValueError:
        return None


class DockerCLIProvider(BaseProvider):
    """Images held by the local Docker daemon for one registry host."""

    registry_type = RegistryType.DOCKER.value
    features = frozenset({RegistryFeature.MULTI_ARCH})

    @property
    def registry_host(self) -> str:
        return normalize_registry_url(self.registry_url)

    def image_name(self, package_name: str) -> str:
        return f"{self.registry_host}/{package_name}"

    def image_ref(self, package_name: str, reference: str) -> str:
        separator = "@" if validate_digest(reference) else ":"
        return f"{self.image_name(package_name)}{separator}{reference}"

    def registry_headers(self) -> dict[str, str]:
        return {}

    async def run_docker(self, *args: str, stdin: Optional[str] = None) -> str:
        """Run ``docker <args>`` and return stdout.

        Raises:
            NotFoundError: When docker reports a missing image
            RegistryError: On any other non-zero exit
        """
        logger.debug(f"Running docker {' '.join(args)}")
        try:
            process = await asyncio.create_subprocess_exec(
                "docker",
                *args,
                stdin=asyncio.subprocess.PIPE if stdin is not None else None,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise RegistryError(
                "docker executable not found", registry_type=self.registry_type
            ) from e

        stdout, stderr = await process.communicate(
            stdin.encode() if stdin is not None else None
        )
        if process.returncode != 0:
            message = stderr.decode(errors="replace").strip() or (
                f"docker {args[0]} exited with status {process.returncode}"
            )
            if any(text in message for text in _MISSING_IMAGE_MESSAGES):
                raise NotFoundError(message, self.registry_type)
            raise RegistryError(message, registry_type=self.registry_type)
        return stdout.decode(errors="replace")

    async def run_docker_json(self, *args: str) -> list[dict[str, Any]]:
        """Run a docker listing with ``--format '{{json .}}'``, one object per line."""
        output = await self.run_docker(*args, "--format", "{{json .}}")
        return [json.loads(line) for line in output.splitlines() if line.strip()]

    async def authenticate(self) -> None:
        username = self.config.username or self.config.owner
        password = self.config.password or self.config.token
        if username and password:
            try:
                await self.run_docker(
                    "login",
                    self.registry_host,
                    "--username",
                    username,
                    "--password-stdin",
                    stdin=password,
                )
            except RegistryError as e:
                raise AuthenticationError(
                    f"docker login to {self.registry_host} failed: {e.message}",
                    self.registry_type,
                ) from e
            logger.debug(f"Logged in to {self.registry_host} with docker login")
        self.authenticated = True

    async def _local_images(self) -> list[dict[str, Any]]:
        return await self.run_docker_json("image", "ls", "--digests")

    async def list_packages(self) -> list[Package]:
        await self.ensure_authenticated()

        prefix = f"{self.registry_host}/"
        packages: dict[str, Package] = {}
        for image in await self._local_images():
            repository = image.get("Repository", "")
            if not repository.startswith(prefix):
                continue
            name = repository[len(prefix):]
            packages.setdefault(
                name,
                Package(id=name, name=name, owner=self.config.owner),
            )
        return list(packages.values())

    async def list_tags(self, package_name: str) -> list[Tag]:
        await self.ensure_authenticated()

        image_name = self.image_name(package_name)
        tags = []
        for image in await self._local_images():
            tag = image.get("Tag")
            if image.get("Repository") != image_name or not tag or tag == "<none>":
                continue
            digest = image.get("Digest")
            if not validate_digest(digest or ""):
                try:
                    digest = (await self.get_manifest(package_name, tag)).digest
                except RegistryError as e:
                    logger.debug(
                        f"Could not get manifest for {image_name}:{tag}, "
                        f"using image ID as digest: {e}"
                    )
                    digest = normalize_digest(image.get("ID", ""))
            created_at = parse_docker_timestamp(image.get("CreatedAt"))
            tags.append(
                Tag(name=tag, digest=digest, created_at=created_at, updated_at=created_at)
            )
        return tags

    async def get_package_manifests(self, package_name: str) -> list[Manifest]:
        await self.ensure_authenticated()

        image_name = self.image_name(package_name)
        manifests: dict[str, Manifest] = {}
        for image in await self._local_images():
            if image.get("Repository") != image_name:
                continue
            digest = image.get("Digest")
            if not validate_digest(digest or "") or digest in manifests:
                continue
            manifests[digest] = Manifest(
                digest=digest,
                media_type=DOCKER_MANIFEST_MEDIA_TYPE,
                created_at=parse_docker_timestamp(image.get("CreatedAt")),
            )
        return list(manifests.values())

    async def get_manifest(self, package_name: str, reference: str) -> Manifest:
        await self.ensure_authenticated()

        output = await self.run_docker(
            "manifest", "inspect", self.image_ref(package_name, reference)
        )
        data = parse_oci_manifest(json.loads(output))
        if validate_digest(reference):
            digest = reference
        else:
            digest = calculate_digest(output.strip().encode())
        return convert_to_manifest(digest, data)

    async def delete_tag(
        self, package_name: str, tag: str, all_tags: list[str]
    ) -> None:
        await self.ensure_authenticated()

        ref = self.image_ref(package_name, tag)
        try:
            await self.run_docker("image", "rm", ref)
        except NotFoundError:
            logger.info(f"Local image {ref} already removed")
            return
        logger.info(f"Deleted local image {ref}")

    async def delete_manifest(self, package_name: str, digest: str) -> None:
        await self.ensure_authenticated()

        image_name = self.image_name(package_name)
        short_id = short_digest(digest)
        for image in await self._local_images():
            if image.get("Repository") != image_name:
                continue
            image_id = image.get("ID", "").split(":")[-1]
            if image.get("Digest") != digest and not image_id.startswith(short_id):
                continue
            tag = image.get("Tag")
            ref = f"{image_name}:{tag}" if tag and tag != "<none>" else image.get("ID", "")
            try:
                await self.run_docker("image", "rm", ref)
            except NotFoundError:
                logger.debug(f"Local image {ref} already removed")
                continue
            logger.info(f"Deleted local image {ref} (digest: {digest})")

    async def get_referrers(self, package_name: str, digest: str) -> list[Referrer]:
        return []
