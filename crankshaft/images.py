"""Listing, pulling and removing images on a Docker daemon."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any, Protocol

from crankshaft.engine import EngineClient

logger = logging.getLogger(__name__)


class _HasEngine(Protocol):
    @property
    def inner(self) -> EngineClient: ...


def _describe_update(update: Mapping[str, Any]) -> str:
    parts = []
    if update.get("id") is not None:
        parts.append(f"id: {update['id']}")
    if update.get("error") is not None:
        parts.append(f"error: {update['error']}")
    if update.get("status") is not None:
        parts.append(f"status: {update['status']}")
    if update.get("progress") is not None:
        detail = update.get("progressDetail")
        suffix = ""
        if detail is not None:
            current = detail.get("current")
            total = detail.get("total")
            suffix = f" ({'?' if current is None else current}/{'?' if total is None else total})"
        parts.append(f"progress: {update['progress']}{suffix}")
    return "; ".join(parts)


async def list_images(docker: _HasEngine) -> list[dict[str, Any]]:
    """Returns every image stored on the daemon."""
    logger.debug("listing images")
    images = await docker.inner.list_images(all=True)
    logger.debug("found %d images", len(images))

    if logger.isEnabledFor(logging.DEBUG):
        for image in images:
            tags = image.get("RepoTags") or []
            logger.debug(
                "  image: %s (tags: %s)", image.get("Id"), ", ".join(f"`{tag}`" for tag in tags)
            )
            for tag in tags:
                logger.debug("    %s", tag)

    return images


async def ensure_image(docker: _HasEngine, image: str) -> None:
    """Makes sure `image` is on the daemon, pulling it if it is not.

    An image named without a tag is pulled as `latest`.
    """
    logger.debug("ensuring image `%s` exists locally", image)
    results = await docker.inner.list_images(filters={"reference": [image]})

    if results:
        logger.debug("image `%s` exists locally", image)
        logger.debug("image SHA = %s", str(results[0].get("Id", "")).removeprefix("sha256:"))
        return

    logger.debug("image `%s` does not exist locally; attempting to pull from remote", image)
    tag = "" if ":" in image else "latest"
    async for update in docker.inner.create_image(from_image=image, tag=tag):
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("pull update: %s", _describe_update(update))


async def remove_image(docker: _HasEngine, name: str, tag: str) -> list[dict[str, Any]]:
    """Removes the image `name`; `tag` is reported in the log only."""
    logger.debug("removing image: %s (%s)", name, tag)
    items = await docker.inner.remove_image(name)

    for item in items:
        if item.get("Untagged") is not None:
            logger.debug("  untagged image: %s", item["Untagged"])
        if item.get("Deleted") is not None:
            logger.debug("  deleted image: %s", item["Deleted"])

    return items


async def remove_all_images(docker: _HasEngine) -> list[dict[str, Any]]:
    """Removes every image on the daemon, once for each of its tags."""
    logger.debug("removing all images")
    results: list[dict[str, Any]] = []

    for image in await list_images(docker):
        tasks = [
            asyncio.ensure_future(remove_image(docker, image["Id"], tag))
            for tag in image.get("RepoTags") or []
        ]
        try:
            for finished in asyncio.as_completed(tasks):
                results.extend(await finished)
        finally:
            for task in tasks:
                task.cancel()
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)

    if results:
        logger.debug("removed %d images in total", len(results))

    return results