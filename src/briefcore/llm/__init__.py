from .service import (
    AiService,
    AiServiceError,
    MockAiService,
    build_ai_service,
    mock_score,
)

__all__ = ["AiService", "AiServiceError", "MockAiService", "build_ai_service", "mock_score"]
