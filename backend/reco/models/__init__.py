from .review import Review
from .chat import Conversation, ConversationStatus, Message, MessageRole
from .research import ResearchSession, ResearchStatus
from .app_metadata import AppMetadata
