"""
Text-generation backends for the LLM raid extractor.

`GeminiTextGenerator` calls Google's hosted `generateContent` REST endpoint; the
`LocalModelTextGenerator` runs a Hugging Face causal LM on this machine.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import requests

LOGGER = logging.getLogger(__name__)

DEFAULT_GEMINI_MODEL = "gemini-2.0-flash"
DEFAULT_LOCAL_MODEL_ID = "microsoft/Phi-3-mini-128k-instruct"


class LlmError(RuntimeError):
    """The generation service failed or returned an unusable response."""


class TextGenerator:
    """Interface: turn a prompt into generated text. Implementations may raise LlmError."""

    model: str

    def generate(self, prompt: str) -> str:
        raise NotImplementedError


class GeminiTextGenerator(TextGenerator):
    endpoint_template = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_GEMINI_MODEL,
        timeout: int = 60,
        max_output_tokens: int = 1024,
    ) -> None:
        if not api_key:
            raise ValueError("GeminiTextGenerator requires an API key (GEMINI_API_KEY).")
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.max_output_tokens = max_output_tokens

    def generate(self, prompt: str) -> str:
        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": 0.0,
                "maxOutputTokens": self.max_output_tokens,
            },
        }
        try:
            response = requests.post(
                self.endpoint_template.format(model=self.model),
                params={"key": self.api_key},
                json=payload,
                timeout=self.timeout,
            )
            response.raise_for_status()
            body = response.json()
        except requests.RequestException as exc:
            raise LlmError(f"Gemini request failed: {exc}") from exc
        except ValueError as exc:
            raise LlmError("Gemini returned a non-JSON response.") from exc
        candidates = body.get("candidates") or []
        if not candidates:
            raise LlmError("Gemini returned no candidates.")
        parts = (candidates[0].get("content") or {}).get("parts") or []
        if not parts or not isinstance(parts[0].get("text"), str):
            raise LlmError("Gemini response missing text.")
        return parts[0]["text"]


class LocalModelTextGenerator(TextGenerator):
    """Lightweight wrapper around a local HF model; imports torch lazily."""

    def __init__(
        self,
        model_id: str = DEFAULT_LOCAL_MODEL_ID,
        max_new_tokens: int = 400,
        repetition_penalty: float = 1.05,
    ) -> None:
        import torch
        from transformers import AutoModelForCausalLM, AutoTokenizer

        dtype = torch.bfloat16 if torch.cuda.is_available() else torch.float32
        self.model = model_id
        self.tokenizer = AutoTokenizer.from_pretrained(model_id)
        self._lm: Any = AutoModelForCausalLM.from_pretrained(
            model_id,
            torch_dtype=dtype,
            device_map="auto",
        )
        self.max_new_tokens = max_new_tokens
        self.repetition_penalty = repetition_penalty

    def generate(self, prompt: str) -> str:
        inputs = self.tokenizer(prompt, return_tensors="pt").to(self._lm.device)
        outputs = self._lm.generate(
            **inputs,
            max_new_tokens=self.max_new_tokens,
            do_sample=False,
            repetition_penalty=self.repetition_penalty,
            eos_token_id=self.tokenizer.eos_token_id,
            pad_token_id=self.tokenizer.pad_token_id,
        )
        # Only the continuation; the prompt tokens are echoed back by generate().
        generated = outputs[0][inputs["input_ids"].shape[-1]:]
        return self.tokenizer.decode(generated, skip_special_tokens=True).strip()


def build_generator(provider: str, api_key: Optional[str] = None, model: Optional[str] = None) -> TextGenerator:
    provider = (provider or "gemini").lower()
    if provider == "gemini":
        return GeminiTextGenerator(api_key or "", model=model or DEFAULT_GEMINI_MODEL)
    if provider == "local":
        return LocalModelTextGenerator(model_id=model or DEFAULT_LOCAL_MODEL_ID)
    raise ValueError(f"Unknown LLM provider '{provider}' (expected 'gemini' or 'local').")
