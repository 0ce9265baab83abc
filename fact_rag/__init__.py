"""Ядро RAG-пайплайна по фактам.

Содержит:
- config: dataclass-конфиги и загрузка из окружения
- embeddings: провайдеры эмбеддингов (HuggingFace через LlamaIndex, OpenAI)
- factstore: хранилище фактов на SQLAlchemy (id <-> исходный текст)
- vectorstore: интерфейс векторного индекса и адаптеры Weaviate/FAISS
- llm: адаптер LlamaIndex CustomLLM для OpenAI‑совместимого Chat API
- indexer: батч фактов -> записи в хранилище + векторы в индексе
- engine: retriever, генерация ответа и цикл Chat
- prompts: сборка промпта из фактов и вопроса
- service: сборка всего пайплайна из конфигурации
"""
