import base64
import logging
from typing import Any, Awaitable, Protocol

import litellm

logger = logging.getLogger(__name__)


class CallModel(Protocol):
    def __call__(
        self, model_id: str, prompt: str, image: bytes, mime_type: str
    ) -> Awaitable[Any]: ...


def build_messages(prompt: str, image: bytes, mime_type: str) -> list[dict[str, Any]]:
    encoded = base64.b64encode(image).decode("ascii")
    return [
        {
            "role": "user",
            "content": [
                {"type": "text", "text": prompt},
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:{mime_type};base64,{encoded}"},
                },
            ],
        }
    ]


class LiteLLMModelClient:
    """
    Sends one page image and prompt to the model chosen by the scheduler.

    Internal model ids (``g2.5-flash``) are mapped to litellm model names
    (``gemini/gemini-2.5-flash``); ids without a mapping are passed through.
    """

    def __init__(
        self,
        model_name_map: dict[str, str] | None = None,
        *,
        timeout: float = 120.0,
        **litellm_kwargs: Any,
    ):
        self._model_name_map = dict(model_name_map or {})
        self._timeout = timeout
        self._litellm_kwargs = litellm_kwargs

    def resolve_model(self, model_id: str) -> str:
        return self._model_name_map.get(model_id, model_id)

    async def __call__(
        self, model_id: str, prompt: str, image: bytes, mime_type: str
    ) -> Any:
        model = self.resolve_model(model_id)
        logger.debug("Calling %s (%s) with a %d byte image", model_id, model, len(image))
        return await litellm.acompletion(
            model=model,
            messages=build_messages(prompt, image, mime_type),
            timeout=self._timeout,
            # Retries are decided by the worker, after a fresh reservation
            num_retries=0,
            **self._litellm_kwargs,
        )
