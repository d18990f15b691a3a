from json import loads

from openai import AsyncOpenAI
from echopages.config import LLM_BASE_URL, LLM_MODEL, OPENAI_API_KEY

# Created on first use by get_client()
client: AsyncOpenAI | None = None


def get_client() -> AsyncOpenAI:
    global client
    if client is None:
        if not OPENAI_API_KEY:
            raise ValueError("OPENAI_API_KEY is not set")
        client = AsyncOpenAI(api_key=OPENAI_API_KEY, base_url=LLM_BASE_URL)
    return client


async def chat_json(
    system_prompt: str,
    user_prompt: str,
    temperature: float = 0.3,
    model_name: str = LLM_MODEL,
) -> dict:
    """
    Ask the model for a JSON object and return it parsed.

    Raises whatever the client or json.loads raise; callers decide how to degrade.
    """
    response = await get_client().chat.completions.create(
        model=model_name,
        messages=[
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ],
        temperature=temperature,
        response_format={"type": "json_object"},
    )

    content = response.choices[0].message.content or "{}"
    result = loads(content)
    if not isinstance(result, dict):
        raise ValueError("LLM response was not a JSON object")
    return result
