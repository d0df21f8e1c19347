"""Image providers and the per-niche image pool.

Images are generated once per (niche, style) pool and shared by every lead
of that niche; each lead gets a deterministic pick from the pool.
"""

import asyncio
import logging
import re
from collections import OrderedDict
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

from openai import OpenAI, OpenAIError

from ..exceptions import ProviderError
from .base import AspectRatio, ImageProvider


logger = logging.getLogger(__name__)

SERVICE_IMAGES_PER_LEAD = 3
SERVICE_OFFSET_STEP = 13
PIXELS_PER_RATIO_UNIT = 160
DEFAULT_GENERATION_CONCURRENCY = 8

OPENAI_IMAGE_SIZES = {
    "16:9": "1792x1024",
    "4:3": "1792x1024",
    "1:1": "1024x1024",
}


@dataclass
class ImagePool:
    hero_images: list[str]
    service_images: list[str]


@dataclass
class LeadImages:
    hero_image_url: str
    service_image_urls: list[str]


def pool_key(niche: str, style: str) -> str:
    return f"{niche.lower().strip()}::{style.lower().strip()}"


def hash_string(value: str) -> int:
    """Stable 32-bit string hash (``h = h * 31 + ord(ch)``)."""
    h = 0
    for ch in value:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    return h


def pick_lead_images(lead_id: str, pool: ImagePool) -> LeadImages:
    """Deterministically choose a hero and three service images for a lead."""
    seed = hash_string(lead_id)
    hero = pool.hero_images[seed % len(pool.hero_images)]
    services = [
        pool.service_images[(seed + i * SERVICE_OFFSET_STEP) % len(pool.service_images)]
        for i in range(SERVICE_IMAGES_PER_LEAD)
    ]
    return LeadImages(hero_image_url=hero, service_image_urls=services)


class ImagePoolCache:
    """Bounded LRU cache of image pools keyed by (niche, style).

    Args:
        provider: Image provider used to fill a missing pool.
        hero_pool_size: Hero images per pool.
        service_pool_size: Service images per pool.
        max_entries: Pools kept before the least recently used is evicted.
        concurrency: Max concurrent ``provider.generate`` calls per pool.
    """

    def __init__(
        self,
        provider: ImageProvider,
        hero_pool_size: int = 50,
        service_pool_size: int = 100,
        max_entries: int = 32,
        concurrency: int = DEFAULT_GENERATION_CONCURRENCY,
    ):
        self.provider = provider
        self.hero_pool_size = max(1, hero_pool_size)
        self.service_pool_size = max(1, service_pool_size)
        self.max_entries = max(1, max_entries)
        self.concurrency = max(1, concurrency)
        self._pools: "OrderedDict[str, ImagePool]" = OrderedDict()
        self._locks: dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._pools)

    def __contains__(self, key: str) -> bool:
        return key in self._pools

    async def get_or_create(self, niche: str, style: str) -> ImagePool:
        key = pool_key(niche, style)
        pool = self._get(key)
        if pool is not None:
            return pool

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            pool = self._get(key)
            if pool is not None:
                return pool
            pool = await self._build(niche, style)
            self._put(key, pool)
        self._locks.pop(key, None)
        return pool

    def _get(self, key: str) -> Optional[ImagePool]:
        pool = self._pools.get(key)
        if pool is not None:
            self._pools.move_to_end(key)
        return pool

    def _put(self, key: str, pool: ImagePool) -> None:
        self._pools[key] = pool
        self._pools.move_to_end(key)
        while len(self._pools) > self.max_entries:
            evicted, _ = self._pools.popitem(last=False)
            logger.info("Evicted image pool %s", evicted)

    async def _build(self, niche: str, style: str) -> ImagePool:
        semaphore = asyncio.Semaphore(self.concurrency)

        async def generate(prompt: str, ratio: AspectRatio) -> str:
            async with semaphore:
                return await self.provider.generate(prompt, ratio)

        heroes = await asyncio.gather(*[
            generate(f"{style} {niche} hero {i}", "16:9")
            for i in range(1, self.hero_pool_size + 1)
        ])
        services = await asyncio.gather(*[
            generate(f"{style} {niche} service {i}", "4:3")
            for i in range(1, self.service_pool_size + 1)
        ])
        logger.info(
            "Built image pool %s (%d hero, %d service)",
            pool_key(niche, style),
            len(heroes),
            len(services),
        )
        return ImagePool(hero_images=list(heroes), service_images=list(services))


class PlaceholderImageProvider(ImageProvider):
    """Seeded picsum.photos URLs; no generation happens."""

    name = "placeholder"

    async def generate(self, prompt: str, aspect_ratio: AspectRatio) -> str:
        width, height = (int(part) for part in aspect_ratio.split(":"))
        seed = quote(re.sub(r"\s+", "-", prompt.lower()), safe="")
        return (
            f"https://picsum.photos/seed/{seed}/"
            f"{width * PIXELS_PER_RATIO_UNIT}/{height * PIXELS_PER_RATIO_UNIT}"
        )


class OpenAIImageProvider(ImageProvider):
    """Images generated with the OpenAI images API."""

    name = "openai"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "dall-e-3",
        timeout_seconds: int = 120,
        client: Optional[OpenAI] = None,
    ):
        """Initialize the OpenAI image provider.

        Raises:
            ValueError: If neither an API key nor a client is provided.
        """
        if client is None:
            if not api_key:
                raise ValueError(
                    "OpenAI API key required. Set OPENAI_API_KEY environment "
                    "variable or pass api_key parameter."
                )
            client = OpenAI(api_key=api_key, timeout=timeout_seconds)
        self._client = client
        self.model = model

    async def generate(self, prompt: str, aspect_ratio: AspectRatio) -> str:
        loop = asyncio.get_event_loop()
        try:
            response = await loop.run_in_executor(
                None,
                lambda: self._client.images.generate(
                    model=self.model,
                    prompt=f"Professional website photo: {prompt}",
                    size=OPENAI_IMAGE_SIZES.get(aspect_ratio, "1024x1024"),
                    n=1,
                ),
            )
        except OpenAIError as e:
            raise ProviderError(self.name, f"Image generation failed: {e}") from e

        if not response.data or not response.data[0].url:
            raise ProviderError(self.name, f"No image returned for prompt {prompt!r}")
        return response.data[0].url
