#!/usr/bin/env python3
# -*- coding: utf-8 -*-
from typing import Any, Dict, List, Optional

from llama_index.core.llms import (
    CompletionResponse,
    CompletionResponseGen,
    CustomLLM,
    LLMMetadata,
)
from openai import OpenAI

from .config import LLMConfig


class OpenAIChatLLM(CustomLLM):
    """Адаптер LlamaIndex CustomLLM для OpenAI-совместимого Chat Completions API.

    Оборачивает клиента OpenAI, чтобы использовать его внутри LlamaIndex
    как обычную LLM: поддерживает complete и stream_complete.
    Без system_prompt запрос состоит из одного сообщения с ролью user.
    """
    def __init__(
        self,
        base_url: str,
        api_key: str,
        model_name: str,
        temperature: float = 0.3,
        top_p: float = 0.9,
        max_tokens: int = 800,
        system_prompt: str = "",
        enable_thinking: Optional[bool] = None,
        client: Any = None,
    ) -> None:
        super().__init__()
        self._client = client or OpenAI(base_url=base_url, api_key=api_key)
        self._model = model_name
        self._temperature = float(temperature)
        self._top_p = float(top_p)
        self._max_tokens = int(max_tokens)
        self._system_prompt = system_prompt
        self._enable_thinking = enable_thinking

    @classmethod
    def from_config(cls, cfg: LLMConfig) -> "OpenAIChatLLM":
        return cls(
            base_url=cfg.base_url,
            api_key=cfg.api_key,
            model_name=cfg.model_name,
            temperature=cfg.temperature,
            top_p=cfg.top_p,
            max_tokens=cfg.max_tokens,
            system_prompt=cfg.system_prompt,
            enable_thinking=cfg.enable_thinking,
        )

    @property
    def metadata(self) -> LLMMetadata:
        return LLMMetadata(
            model_name=f"openai-compat::{self._model}",
            temperature=self._temperature,
            num_output=self._max_tokens,
        )

    def _make_messages(self, user_prompt: str) -> List[Dict[str, str]]:
        """Формирует список сообщений для Chat API (system только если задан)."""
        messages = []
        if self._system_prompt:
            messages.append({"role": "system", "content": self._system_prompt})
        messages.append({"role": "user", "content": user_prompt})
        return messages

    def _request_kwargs(self, prompt: str) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "model": self._model,
            "messages": self._make_messages(prompt),
            "temperature": self._temperature,
            "top_p": self._top_p,
            "max_tokens": self._max_tokens,
        }
        # None: параметр не передаётся (серверы без поддержки enable_thinking)
        if self._enable_thinking is not None:
            kwargs["extra_body"] = {"enable_thinking": bool(self._enable_thinking)}
        return kwargs

    def complete(self, prompt: str, formatted: bool = False, **kwargs: Any) -> CompletionResponse:
        """Синхронное получение единого текста ответа для переданного промпта."""
        resp = self._client.chat.completions.create(**self._request_kwargs(prompt))
        text = (resp.choices[0].message.content or "").strip()
        return CompletionResponse(text=text)

    def stream_complete(self, prompt: str, formatted: bool = False, **kwargs: Any) -> CompletionResponseGen:
        """Потоковая генерация: возвращает нарастающий ответ частями."""
        stream = self._client.chat.completions.create(stream=True, **self._request_kwargs(prompt))
        buffer = []
        for event in stream:
            delta = event.choices[0].delta.content if event.choices else None
            if delta:
                buffer.append(delta)
                yield CompletionResponse(text="".join(buffer), delta=delta)
