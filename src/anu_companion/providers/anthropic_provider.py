import anthropic
from loguru import logger
from tenacity import retry

from anu_companion.providers.common import default_retry_kwargs, merge_consecutive_roles

_CONTINUATION_TURN = "(continuing our conversation)"


class AnthropicProvider:
    def __init__(self, api_key: str):
        self._client = anthropic.AsyncAnthropic(api_key=api_key)

    @retry(**default_retry_kwargs((
        anthropic.RateLimitError,
        anthropic.APIConnectionError,
        anthropic.APITimeoutError,
    )))
    async def create_message(
        self,
        model: str,
        max_tokens: int,
        temperature: float,
        system_prompt: str,
        messages: list[dict],
    ) -> str:
        turns = merge_consecutive_roles(messages)
        # The Messages API expects the first turn to come from the user.
        if not turns or turns[0]["role"] != "user":
            turns.insert(0, {"role": "user", "content": _CONTINUATION_TURN})

        logger.debug(f"API request: model={model}, max_tokens={max_tokens}, messages={len(turns)}")
        response = await self._client.messages.create(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system_prompt,
            messages=turns,
        )
        usage = response.usage
        logger.debug(
            f"API response: stop_reason={response.stop_reason}, "
            f"input_tokens={usage.input_tokens}, output_tokens={usage.output_tokens}"
        )
        return "".join(block.text for block in response.content if block.type == "text")
