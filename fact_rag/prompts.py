#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Сборка промпта: факты + вопрос -> одна инструкция для LLM.

Чистая функция без состояния: одинаковые аргументы всегда дают
побайтно одинаковую строку.
"""

from typing import Sequence

SYSTEM_FRAMING = (
    "You are an assistant that answers questions using only the facts provided below.\n"
    "Do not use any outside knowledge.\n"
    'If the facts are not sufficient to answer the question, say exactly: '
    '"I don\'t know based on the provided information."\n'
)
FACTS_HEADER = "Facts:\n"
QUESTION_PREFIX = "Question: "


def _one_line(fact: str) -> str:
    return " ".join(line.strip() for line in fact.splitlines() if line.strip())


def format_facts(facts: Sequence[str]) -> str:
    """Нумерует факты с 1, по одному на строку (переводы строк внутри факта схлопываются)."""
    return "".join(f"{i}. {_one_line(fact)}\n" for i, fact in enumerate(facts, start=1))


def build_prompt(facts: Sequence[str], query: str) -> str:
    return f"{SYSTEM_FRAMING}\n{FACTS_HEADER}{format_facts(facts)}\n{QUESTION_PREFIX}{query}"
