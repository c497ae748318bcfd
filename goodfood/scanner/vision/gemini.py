"""Gemini API backend for nutrition label analysis."""

from __future__ import annotations

from ..models import AnalysisSuccess, CapturedImage
from . import LabelAnalyzer, build_prompt, parse_label_response


class GeminiLabelAnalyzer(LabelAnalyzer):
    """Read nutrition labels using Google Gemini's vision capability."""

    def __init__(self, api_key: str = "", model: str = "gemini-2.0-flash") -> None:
        self._api_key = api_key
        self._model = model

    async def analyze(
        self,
        image: CapturedImage,
        code: str | None = None,
        user_id: str | None = None,
    ) -> AnalysisSuccess:
        if not self._api_key:
            raise ValueError(
                "Gemini API key is not set. "
                "Check the config file or the GEMINI_API_KEY environment variable."
            )

        try:
            import google.generativeai as genai
        except ImportError:
            raise ImportError(
                "google-generativeai SDK is required: pip install google-generativeai"
            ) from None

        genai.configure(api_key=self._api_key)
        model = genai.GenerativeModel(self._model)

        parts = [
            {"mime_type": image.mime_type, "data": image.data},
            build_prompt(code),
        ]
        response = await model.generate_content_async(parts)
        return AnalysisSuccess(product=parse_label_response(response.text, code))
