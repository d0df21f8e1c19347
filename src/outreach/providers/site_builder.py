"""Demo site bundles: a zipped index.html + style.css per lead.

The generated index.html carries ``{{HERO_IMAGE_URL}}`` and
``{{SERVICE_IMAGE_URL_n}}`` placeholders that the deploy stage fills in once
images are assigned.
"""

import asyncio
import html
import json
import logging
import os
import re
import zipfile
from typing import Optional

from openai import OpenAI, OpenAIError

from ..exceptions import ProviderError
from .base import SiteBuilder, SiteBundle, SiteContext


logger = logging.getLogger(__name__)

HERO_PLACEHOLDER = "{{HERO_IMAGE_URL}}"
SERVICE_PLACEHOLDERS = tuple(f"{{{{SERVICE_IMAGE_URL_{i}}}}}" for i in (1, 2, 3))
DEFAULT_SERVICES_MARKUP = (
    "<li>Residential service</li><li>Commercial service</li><li>Repairs and maintenance</li>"
)
DEFAULT_SUBTITLE = "Trusted local service with fast response and clear pricing."
DEFAULT_PHONE = "555-000-0000"
DEFAULT_EMAIL = "hello@example.com"
DEFAULT_BRAND_COLOR = "#0f766e"

STYLE_CSS = """:root {
  --bg: #f7f3ea;
  --text: #1f2937;
  --brand: %(brand)s;
  --surface: #ffffff;
}

* {
  box-sizing: border-box;
}

body {
  margin: 0;
  font-family: "Trebuchet MS", "Segoe UI", sans-serif;
  color: var(--text);
  background: linear-gradient(180deg, #fffaf0 0%%, var(--bg) 100%%);
}

.hero {
  position: relative;
  min-height: 60vh;
  padding: 3rem 1.5rem;
  display: grid;
  align-items: center;
  overflow: hidden;
}

.hero-content {
  position: relative;
  z-index: 2;
  max-width: 42rem;
}

.eyebrow {
  text-transform: uppercase;
  letter-spacing: 0.08em;
  margin: 0 0 0.5rem;
}

h1 {
  margin: 0;
  font-size: clamp(2rem, 5vw, 4rem);
}

.subtitle {
  font-size: 1.1rem;
  line-height: 1.6;
}

.cta-button {
  display: inline-block;
  margin-top: 1rem;
  padding: 0.8rem 1.2rem;
  color: white;
  background: var(--brand);
  border-radius: 0.5rem;
  text-decoration: none;
}

.cta-button:hover {
  filter: brightness(0.9);
}

.hero-image {
  width: 100%%;
  max-height: 320px;
  object-fit: cover;
  border-radius: 1rem;
  margin-top: 1.5rem;
}

main {
  display: grid;
  gap: 1.5rem;
  padding: 1.5rem;
  max-width: 900px;
  margin: 0 auto 2rem;
}

section {
  background: var(--surface);
  border-radius: 0.75rem;
  padding: 1.25rem;
  box-shadow: 0 10px 30px rgba(0, 0, 0, 0.08);
}

.service-gallery {
  display: grid;
  grid-template-columns: repeat(auto-fit, minmax(180px, 1fr));
  gap: 0.75rem;
  margin-top: 1rem;
}

.service-gallery img {
  width: 100%%;
  height: 140px;
  object-fit: cover;
  border-radius: 0.5rem;
}
"""


def sanitize_file_segment(value: str) -> str:
    return re.sub(r"[^a-zA-Z0-9_-]", "", value)[:64]


def render_index_html(
    context: SiteContext,
    tagline: Optional[str] = None,
    subtitle: Optional[str] = None,
) -> str:
    """Render the landing page for a lead.

    Args:
        context: Lead details.
        tagline: Eyebrow text; defaults to ``Local {city} Pros``.
        subtitle: Hero subtitle; defaults to the enrichment summary, then a
            generic line.
    """
    name = html.escape(context.business_name)
    city = html.escape(context.city)
    if context.services:
        services_markup = "\n          ".join(
            f"<li>{html.escape(service)}</li>" for service in context.services
        )
    else:
        services_markup = DEFAULT_SERVICES_MARKUP

    eyebrow = html.escape(tagline or f"Local {context.city} Pros")
    subtitle_text = html.escape(subtitle or context.summary or DEFAULT_SUBTITLE)
    gallery = "\n          ".join(
        f'<img src="{placeholder}" alt="Service example {i}" />'
        for i, placeholder in enumerate(SERVICE_PLACEHOLDERS, start=1)
    )

    return f"""<!doctype html>
<html lang="en">
  <head>
    <meta charset="UTF-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1.0" />
    <title>{name} | {city}</title>
    <link rel="stylesheet" href="./style.css" />
  </head>
  <body>
    <header class="hero">
      <div class="hero-content">
        <p class="eyebrow">{eyebrow}</p>
        <h1>{name}</h1>
        <p class="subtitle">{subtitle_text}</p>
        <a class="cta-button" href="#contact">Get a Free Estimate</a>
      </div>
      <img class="hero-image" src="{HERO_PLACEHOLDER}" alt="{name}" />
    </header>
    <main>
      <section>
        <h2>Services</h2>
        <ul class="services-list">
          {services_markup}
        </ul>
        <div class="service-gallery">
          {gallery}
        </div>
      </section>
      <section id="contact">
        <h2>Contact</h2>
        <p>Call us: {html.escape(context.phone or DEFAULT_PHONE)}</p>
        <p>Email: {html.escape(context.email or DEFAULT_EMAIL)}</p>
      </section>
    </main>
  </body>
</html>
"""


def render_style_css(brand_colors: Optional[list[str]] = None) -> str:
    brand = brand_colors[0] if brand_colors else DEFAULT_BRAND_COLOR
    return STYLE_CSS % {"brand": brand}


def write_bundle(zip_path: str, files: dict[str, str]) -> str:
    """Write ``files`` into a deflated zip at ``zip_path``."""
    os.makedirs(os.path.dirname(zip_path) or ".", exist_ok=True)
    with zipfile.ZipFile(zip_path, "w", compression=zipfile.ZIP_DEFLATED) as bundle:
        for name, content in files.items():
            bundle.writestr(name, content)
    return zip_path


class TemplateSiteBuilder(SiteBuilder):
    """Renders the static template and zips it under ``output_dir``."""

    name = "template"

    def __init__(self, output_dir: str):
        self.output_dir = output_dir

    def bundle_path(self, lead_id: str) -> str:
        return os.path.join(self.output_dir, f"{sanitize_file_segment(lead_id)}.zip")

    async def generate_site(self, context: SiteContext) -> SiteBundle:
        return await self._write(context)

    async def _write(
        self,
        context: SiteContext,
        tagline: Optional[str] = None,
        subtitle: Optional[str] = None,
    ) -> SiteBundle:
        files = {
            "index.html": render_index_html(context, tagline=tagline, subtitle=subtitle),
            "style.css": render_style_css(context.brand_colors),
        }
        zip_path = self.bundle_path(context.lead_id)
        loop = asyncio.get_event_loop()
        await loop.run_in_executor(None, write_bundle, zip_path, files)
        return SiteBundle(
            artifact_location=zip_path,
            summary=f"Generated MVP static site bundle for {context.business_name}",
        )


class CopywritingSiteBuilder(TemplateSiteBuilder):
    """Template site with a tagline and subtitle written by an OpenAI model."""

    name = "openai-copy"

    def __init__(
        self,
        output_dir: str,
        api_key: Optional[str] = None,
        model: str = "gpt-4o",
        timeout_seconds: int = 60,
        client: Optional[OpenAI] = None,
    ):
        """Initialize the copywriting site builder.

        Args:
            output_dir: Directory bundles are written to.
            api_key: OpenAI API key.
            model: Chat model used for copy.
            timeout_seconds: Request timeout in seconds.
            client: Pre-built OpenAI client (tests).

        Raises:
            ValueError: If neither an API key nor a client is provided.
        """
        super().__init__(output_dir)
        if client is None:
            if not api_key:
                raise ValueError(
                    "OpenAI API key required. Set OPENAI_API_KEY environment "
                    "variable or pass api_key parameter."
                )
            client = OpenAI(api_key=api_key, timeout=timeout_seconds)
        self._client = client
        self.model = model

    def _prompt(self, context: SiteContext) -> str:
        services = ", ".join(context.services) or "general services"
        return (
            f"Write website copy for {context.business_name}, a {context.niche} business "
            f"in {context.city}. Services: {services}. Known facts: {context.summary or 'none'}.\n"
            'Reply with JSON: {"tagline": "<max 6 words>", "subtitle": "<one sentence>"}'
        )

    async def generate_site(self, context: SiteContext) -> SiteBundle:
        loop = asyncio.get_event_loop()
        try:
            completion = await loop.run_in_executor(
                None,
                lambda: self._client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": "You write concise local business copy."},
                        {"role": "user", "content": self._prompt(context)},
                    ],
                    response_format={"type": "json_object"},
                ),
            )
        except OpenAIError as e:
            raise ProviderError(self.name, f"Copy generation failed: {e}") from e

        try:
            copy = json.loads(completion.choices[0].message.content or "{}")
        except (json.JSONDecodeError, IndexError) as e:
            raise ProviderError(self.name, f"Unparseable copy response: {e}") from e

        logger.info("Generated site copy for lead %s", context.lead_id)
        return await self._write(
            context,
            tagline=copy.get("tagline"),
            subtitle=copy.get("subtitle"),
        )
