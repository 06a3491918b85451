"""Services package."""
from services.pipedream import PipedreamClient, get_pipedream_client
from services.token_manager import TokenManager, get_token_manager

__all__ = ["PipedreamClient", "get_pipedream_client", "TokenManager", "get_token_manager"]
