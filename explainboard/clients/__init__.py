from explainboard.clients.gemini_client import GeminiClient
from explainboard.clients.groq_client import GroqClient
from explainboard.clients.live_transport import LiveCallbacks, LiveTransport

__all__ = ["GeminiClient", "GroqClient", "LiveCallbacks", "LiveTransport"]
