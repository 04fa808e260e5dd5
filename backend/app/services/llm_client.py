"""
LLM Client Abstraction
Single entry point for all AI calls in the load estimator.
Primary: Gemini 2.5 Flash (JSON mode)
Fallback: Groq LLaMA 3.3 70B
Embeddings: Gemini embedding model (knowledge-base retrieval)
"""
import logging

import litellm

from app.agents.config import EMBEDDING_MODEL, LLM_FALLBACK_MODEL, LLM_PRIMARY_MODEL

logger = logging.getLogger("elc-llm")

# Suppress litellm verbose logging
litellm.set_verbose = False

_JSON_ONLY_INSTRUCTION = "IMPORTANT: Respond with valid JSON only."


def _with_json_instruction(messages: list) -> list:
    """Copy of messages with a JSON-only instruction on the system turn."""
    messages = [dict(m) for m in messages]
    if messages and messages[0]["role"] == "system":
        messages[0]["content"] += f"\n\n{_JSON_ONLY_INSTRUCTION}"
    else:
        messages.insert(0, {"role": "system", "content": _JSON_ONLY_INSTRUCTION})
    return messages


async def complete(
    messages: list,
    temperature: float = 0.1,
    json_mode: bool = False,
    max_tokens: int = 4096,
) -> str:
    """
    Call the primary LLM. Falls back to the secondary model on rate limit or error.
    Returns the response content string.
    """
    kwargs = {
        "messages": messages,
        "temperature": temperature,
        "max_tokens": max_tokens,
    }
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}

    try:
        response = await litellm.acompletion(model=LLM_PRIMARY_MODEL, **kwargs)
        return response.choices[0].message.content
    except litellm.RateLimitError:
        logger.warning(f"{LLM_PRIMARY_MODEL} rate limit hit, falling back to {LLM_FALLBACK_MODEL}")
    except litellm.AuthenticationError:
        logger.warning(f"{LLM_PRIMARY_MODEL} auth error, falling back to {LLM_FALLBACK_MODEL}")
    except Exception as e:
        logger.warning(f"{LLM_PRIMARY_MODEL} error ({type(e).__name__}: {e}), falling back to {LLM_FALLBACK_MODEL}")

    try:
        # Not every provider honours response_format; ask for JSON in the prompt instead
        fallback_kwargs = {k: v for k, v in kwargs.items() if k != "response_format"}
        if json_mode:
            fallback_kwargs["messages"] = _with_json_instruction(messages)
        response = await litellm.acompletion(model=LLM_FALLBACK_MODEL, **fallback_kwargs)
        return response.choices[0].message.content
    except Exception as e:
        logger.error(f"Both LLMs failed. Fallback error: {e}")
        raise RuntimeError(f"All LLM providers failed. Last error: {e}") from e


async def embed(text: str, model: str = EMBEDDING_MODEL) -> list[float]:
    """Embed a single query string. Raises on provider error; callers decide how to degrade."""
    response = await litellm.aembedding(model=model, input=[text])
    item = response.data[0]
    return list(item["embedding"] if isinstance(item, dict) else item.embedding)


class LLMClient:
    """
    Class-based wrapper around the module-level complete() / embed() functions.
    Injected into the classifier and retriever so tests can substitute fakes.
    """

    async def chat(
        self,
        messages: list,
        temperature: float = 0.1,
        json_mode: bool = False,
        max_tokens: int = 4096,
    ) -> str:
        return await complete(messages, temperature=temperature, json_mode=json_mode, max_tokens=max_tokens)

    async def embed(self, text: str) -> list[float]:
        return await embed(text)


def get_system_prompt(role: str) -> str:
    """Standard system prompts for different AI roles."""
    prompts = {
        "load_engineer": (
            "You are a senior electrical design engineer preparing connected and demand load "
            "estimates for buildings in Saudi Arabia. You apply the Saudi Electricity Company "
            "Distribution Planning Standard DPS-01 exactly: customer categories C1 to C29, load "
            "densities in VA/m², demand factors and coincident factors. You read room labels from "
            "architectural drawings, including abbreviations and Arabic names. "
            "Always return structured, precise data taken from the standard. Never invent figures."
        ),
    }
    return prompts.get(role, prompts["load_engineer"])
