"""Feature operations: every remote call goes through the shared Dispatcher.

Images travel in and out as data URLs (data:<mime>;base64,<payload>).
Failures of the image operations surface as FeatureError with the cause
chained; enhance_prompt never raises and falls back to a fixed suffix.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from image_studio.config import Settings
from image_studio.dispatcher import Dispatcher
from image_studio.errors import FeatureError, ImageStudioError, NoImageReturnedError
from image_studio.gemini import IMAGE_MODALITIES, GeminiClient, collect_text, first_image, text_part
from image_studio.models import Credential, InlineImage, RESTORATION_TYPES

logger = logging.getLogger(__name__)

ENHANCE_FALLBACK_SUFFIX = (
    "high quality, detailed, professional photography, 8K resolution, "
    "cinematic lighting, sharp focus"
)

_ENHANCE_TEMPLATE = """\
You are a professional AI image generation prompt engineer. Your task is to enhance the following user prompt to create better, more detailed, and higher quality images.

Rules:
1. Keep the core intent and subject of the original prompt
2. Add technical photography/art terms for better quality
3. Include lighting, composition, and style details
4. Make it more specific and descriptive
5. Add quality modifiers like "high resolution", "detailed", "professional"
6. Keep it under 200 words
7. Don't change the main subject or concept

Original prompt: "{prompt}"

Enhanced prompt:"""

_DUAL_EDIT_TEMPLATE = """\
Based on these images, create a new image that follows these instructions:

Original concept: {prompt}
Edit instructions: {instructions}

Please generate a refined version that incorporates the edits shown in the canvas image while maintaining the quality and style of the original image."""

_SINGLE_EDIT_TEMPLATE = """\
Edit this image based on the following instructions:

Original concept: {prompt}
Edit instructions: {instructions}

Please generate an edited version of this image."""

_ANALYSIS_PROMPTS = {
    "restore": """\
Analyze this old or damaged photograph in detail. Describe:
1. The main subject(s) and composition
2. Any visible damage (scratches, stains, tears, fading)
3. The time period/era it appears to be from
4. Clothing, objects, and setting
5. Lighting and mood
6. What needs to be restored

Based on your analysis, provide a detailed description for creating a perfectly restored version of this photograph.""",
    "colorize": """\
Analyze this black and white photograph in detail. Describe:
1. The main subject(s) and composition
2. The time period/era it appears to be from
3. Clothing, hairstyles, and objects visible
4. The setting and environment
5. Lighting and mood
6. What realistic colors should be applied

Based on your analysis, provide a detailed description for creating a beautifully colorized version with historically accurate colors.""",
    "enhance": """\
Analyze this photograph in detail. Describe:
1. The main subject(s) and composition
2. Current quality issues (blur, noise, poor lighting)
3. The setting and context
4. What enhancements would improve it

Based on your analysis, provide a detailed description for creating an enhanced, professional-quality version.""",
}

_GENERATION_PROMPTS = {
    "restore": """\
Based on this detailed analysis of a damaged photograph, create a fully restored, high-quality version:

{analysis}

Generate a photograph that:
- Completely removes all damage, scratches, tears, and stains
- Has perfect clarity and sharpness
- Uses natural, historically accurate colors and lighting
- Preserves the exact composition and subjects described
- Looks like a professional photograph from that era in perfect condition
- Maintains authentic period details and styling""",
    "colorize": """\
Based on this detailed analysis of a black and white photograph, create a beautifully colorized version:

{analysis}

Generate a colorized photograph that:
- Adds realistic, historically accurate colors
- Uses natural skin tones appropriate for the time period
- Applies period-correct clothing and object colors
- Maintains the original composition and mood exactly
- Looks natural and authentic, not over-saturated
- Preserves all the details and atmosphere described""",
    "enhance": """\
Based on this detailed analysis, create an enhanced, professional-quality version of this photograph:

{analysis}

Generate an enhanced photograph that:
- Has significantly improved clarity and sharpness
- Optimized lighting and contrast
- Reduced noise and improved quality
- Maintains the original composition and subjects exactly
- Looks professional and polished
- Preserves the natural character and mood""",
}


RESTORATION_DEFAULT_PROMPTS = {
    "restore": "Restore this damaged photo to its original quality",
    "colorize": "Add realistic colors to this black and white photo",
    "enhance": "Enhance this photo's quality and clarity",
}


def fallback_enhancement(prompt: str) -> str:
    return f"{prompt}, {ENHANCE_FALLBACK_SUFFIX}"


def style_strength(strength: float) -> str:
    """Wording for a 0-100 style strength slider."""
    if strength > 70:
        return "strong"
    if strength > 40:
        return "moderate"
    return "subtle"


def gemini_client_factory(http: httpx.AsyncClient, settings: Settings):
    def factory(credential: Credential) -> GeminiClient:
        return GeminiClient(credential.secret, http, settings.base_url)
    return factory


class ImageStudio:
    """Feature operations bound to one Dispatcher and one Settings."""

    def __init__(self, dispatcher: Dispatcher, settings: Settings):
        self.dispatcher = dispatcher
        self.settings = settings

    async def _generate(self, client: GeminiClient, parts: list[dict], what: str) -> str:
        response = await client.generate_content(self.settings.image_model, parts, IMAGE_MODALITIES)
        image = first_image(response)
        if image is None:
            raise NoImageReturnedError(f"No {what} data received from Gemini")
        return image.to_data_url()

    async def enhance_prompt(self, prompt: str) -> str:
        async def op(client: GeminiClient) -> str:
            response = await client.generate_content(
                self.settings.text_model, [text_part(_ENHANCE_TEMPLATE.format(prompt=prompt))],
            )
            return collect_text(response).strip()

        try:
            enhanced = await self.dispatcher.execute_with_retry("enhance-prompt", op)
        except Exception as exc:
            logger.warning("Prompt enhancement failed, using fallback: %s", exc)
            return fallback_enhancement(prompt)
        return enhanced or fallback_enhancement(prompt)

    async def generate_image(self, prompt: str, feature: str = "text-to-image") -> str:
        logger.info("Starting image generation for feature %s", feature)

        async def op(client: GeminiClient) -> str:
            return await self._generate(client, [text_part(prompt)], "image")

        try:
            return await self.dispatcher.execute_with_retry(feature, op)
        except Exception as exc:
            raise FeatureError(f"Failed to generate image: {exc}") from exc

    async def generate_image_with_style(self, prompt: str, style_prompt: str) -> str:
        return await self.generate_image(f"{prompt}, {style_prompt}", "style-transfer")

    async def edit_image(
        self,
        original_prompt: str,
        edit_instructions: str,
        original_image: Optional[str] = None,
        edited_image: Optional[str] = None,
        mask: Optional[str] = None,
    ) -> str:
        """Edit with two images (original + canvas), one image, or text only.

        Text-only edits regenerate from the combined prompt under the
        `default` feature.
        """
        if not original_image:
            try:
                return await self.generate_image(
                    f"{original_prompt}, modified: {edit_instructions}", "default",
                )
            except FeatureError as exc:
                raise FeatureError(f"Failed to edit image: {exc.__cause__ or exc}") from exc.__cause__

        try:
            if edited_image:
                parts = [
                    InlineImage.from_data_url(original_image, "original image").to_part(),
                    InlineImage.from_data_url(edited_image, "edited image").to_part(),
                ]
                if mask:
                    try:
                        parts.append(InlineImage.from_data_url(mask, "mask").to_part())
                    except ImageStudioError:
                        logger.warning("Ignoring malformed mask data")
                parts.append(text_part(_DUAL_EDIT_TEMPLATE.format(
                    prompt=original_prompt, instructions=edit_instructions)))
                what = "edited image (dual image mode)"
            else:
                parts = [
                    InlineImage.from_data_url(original_image).to_part(),
                    text_part(_SINGLE_EDIT_TEMPLATE.format(
                        prompt=original_prompt, instructions=edit_instructions)),
                ]
                what = "edited image (single image mode)"

            async def op(client: GeminiClient) -> str:
                return await self._generate(client, parts, what)

            return await self.dispatcher.execute_with_retry("canvas-editor", op)
        except Exception as exc:
            raise FeatureError(f"Failed to edit image: {exc}") from exc

    async def perform_style_transfer(self, prompt: str, reference_image: Optional[str] = None) -> str:
        parts = [text_part(prompt)]
        if reference_image:
            try:
                ref = InlineImage.from_data_url(reference_image, "reference image")
            except ImageStudioError:
                logger.warning("Ignoring malformed reference image; using text prompt only")
            else:
                parts = [
                    text_part(f"Apply the artistic style from this reference image to create: {prompt}"),
                    ref.to_part(),
                ]

        async def op(client: GeminiClient) -> str:
            return await self._generate(client, parts, "styled image")

        try:
            return await self.dispatcher.execute_with_retry("style-transfer", op)
        except Exception as exc:
            raise FeatureError(f"Failed to perform style transfer: {exc}") from exc

    async def perform_photo_restoration(
        self,
        prompt: str,
        image: str,
        restoration_type: str = "restore",
    ) -> str:
        """Analyze the photo with the vision model, then generate from the analysis.

        Both steps run inside one dispatch attempt, on the same key.
        """
        try:
            if restoration_type not in RESTORATION_TYPES:
                raise ValueError(f"Unknown restoration type: {restoration_type}")
            source = InlineImage.from_data_url(image)
            analysis_prompt = _ANALYSIS_PROMPTS[restoration_type]
            if prompt:
                analysis_prompt += f"\n\nUser requirements: {prompt}"

            async def op(client: GeminiClient) -> str:
                analysis = collect_text(await client.generate_content(
                    self.settings.vision_model, [source.to_part(), text_part(analysis_prompt)],
                ))
                if not analysis:
                    raise ImageStudioError("Failed to analyze the image")
                generation = _GENERATION_PROMPTS[restoration_type].format(analysis=analysis)
                return await self._generate(client, [text_part(generation)], "restored image")

            return await self.dispatcher.execute_with_retry("photo-restore", op)
        except Exception as exc:
            raise FeatureError(f"Failed to perform photo restoration: {exc}") from exc
