# Services are imported lazily to avoid pulling in the Gemini SDK at package import.
# Import specific services where needed:
# from services.orchestrator import GenerationOrchestrator
# from services.guide_workflow import GuideWorkflow
# from services.gemini_backend import GeminiImageBackend

__all__ = []
