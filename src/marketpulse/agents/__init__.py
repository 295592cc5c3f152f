from marketpulse.agents.gateway import LLMGateway, LLMResponse, ProviderConfig

__all__ = ["LLMGateway", "LLMResponse", "ProviderConfig"]
