import openai
from openai.types.chat import (
    ChatCompletionMessageParam,
    ChatCompletionSystemMessageParam,
    ChatCompletionUserMessageParam,
)


MAX_TOKENS = 1000
TIMEOUT = 30
DEFAULT_MODEL = "gpt-4"


def openai_client_factory(
    token: str | None = None,
    *,
    timeout: float = TIMEOUT,
) -> openai.AsyncClient:
    # No retries: a failed call falls back instead of waiting.
    return openai.AsyncClient(api_key=token, timeout=timeout, max_retries=0)


async def quick_chat(
    msg: str,
    *,
    system: str | None = None,
    openai_client: openai.AsyncClient | None = None,
    model: str | None = None,
    temperature: float = 0.7,
    max_tokens: int = MAX_TOKENS,
) -> str:
    openai_client = openai_client_factory() if openai_client is None else openai_client
    model = DEFAULT_MODEL if model is None else model

    messages: list[ChatCompletionMessageParam] = []
    if system:
        system_message: ChatCompletionSystemMessageParam = {
            "role": "system",
            "content": system,
        }
        messages.append(system_message)
    user_message: ChatCompletionUserMessageParam = {"role": "user", "content": msg}
    messages.append(user_message)

    resp = await openai_client.chat.completions.create(
        model=model,
        messages=messages,
        temperature=temperature,
        max_tokens=max_tokens,
    )
    if not resp.choices:
        return ""
    ans = resp.choices[0].message.content or ""
    return ans.strip()
