"""
exam_ai_core
-----------------------------------
Adapters between the exam core and the outside world:
- OpenAI / Gemini question generators (GenerationOracle, StepOracle)
- Embedding-based curriculum alignment (AlignmentOracle)
- JSON question-bank history store (HistoryStore)
- API throttling/retry, .env settings, rich console reports
- exam_pipeline.build_exam(): the end-to-end wiring

Submodules are imported explicitly (e.g. ``from exam_ai_core.history_store
import JsonHistoryStore``) so the hosted-API clients load only when used.
"""
