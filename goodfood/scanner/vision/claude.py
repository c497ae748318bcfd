"""Claude API backend for nutrition label analysis."""

from __future__ import annotations

from ..models import AnalysisSuccess, CapturedImage
from . import LabelAnalyzer, build_prompt, parse_label_response


class ClaudeLabelAnalyzer(LabelAnalyzer):
    """Read nutrition labels using Claude's vision capability."""

    def __init__(self, api_key: str = "", model: str = "claude-sonnet-4-5-20250929") -> None:
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
                "Anthropic API key is not set. "
                "Check the config file or the ANTHROPIC_API_KEY environment variable."
            )

        try:
            import anthropic
        except ImportError:
            raise ImportError(
                "anthropic SDK is required: pip install anthropic"
            ) from None

        content = [
            {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": image.mime_type,
                    "data": image.to_base64(),
                },
            },
            {"type": "text", "text": build_prompt(code)},
        ]

        client = anthropic.AsyncAnthropic(api_key=self._api_key)
        response = await client.messages.create(
            model=self._model,
            max_tokens=1000,
            temperature=0.2,
            messages=[{"role": "user", "content": content}],
        )

        text = response.content[0].text
        return AnalysisSuccess(product=parse_label_response(text, code))
