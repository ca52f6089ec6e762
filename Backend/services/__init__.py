from .credit_service import CreditService, default_probability_text
from .indicator_service import calculate_indicators, altman_z_score, altman_zone
from .gemini_service import GeminiService, get_gemini_service
from .storage_service import RemoteStoreClient, NotificationType, get_remote_store
from .workflow_service import WorkflowOrchestrator

__all__ = [
    'CreditService',
    'default_probability_text',
    'calculate_indicators',
    'altman_z_score',
    'altman_zone',
    'GeminiService',
    'get_gemini_service',
    'RemoteStoreClient',
    'NotificationType',
    'get_remote_store',
    'WorkflowOrchestrator',
]
