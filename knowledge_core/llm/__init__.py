from .base import GenerativeClient, LLMError
from .openai_client import OpenAIChatClient
