from reco.api.routes.chat import router as chat
from reco.api.routes.conversations import router as conversations
from reco.api.routes.demo import router as demo
from reco.api.routes.health import router as health
from reco.api.routes.research import router as research
from reco.api.routes.reviews import router as reviews

__all__ = ["chat", "conversations", "demo", "health", "research", "reviews"]
