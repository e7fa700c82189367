"""Application settings."""

import os
from typing import Optional
from pydantic import BaseModel


class Settings(BaseModel):
    """Application configuration settings."""

    # Clinical data service (falls back to the bundled sample practice when unset)
    clinical_api_url: Optional[str] = None
    clinical_api_token: Optional[str] = None
    fixture_dir: str = "data/sample_practice"

    # Collaborator call policy
    collaborator_timeout: float = 10.0  # seconds per call
    collaborator_max_attempts: int = 3
    collaborator_backoff: float = 0.5  # seconds, doubled per attempt

    # LLM Provider settings
    llm_provider: str = "openai"  # "openai" or "anthropic"
    llm_model: Optional[str] = None

    # API Keys
    openai_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None

    # Memory settings
    memory_enabled: bool = True
    db_path: str = "data/conversations.db"
    window_turns: int = 4  # K: turns kept verbatim
    summary_threshold: int = 6  # T: turns condensed per summary
    background_summarization: bool = False
    recall_limit: int = 5

    # Agent loop settings
    max_iterations: int = 5
    retry_budget: int = 2

    # Extraction settings
    combined_name_mode: str = "token"  # "token" or "greedy"

    # Logging
    verbose: bool = False

    def __init__(self, **data):
        # Auto-load secrets and endpoints from environment if not provided
        if "openai_api_key" not in data or data["openai_api_key"] is None:
            data["openai_api_key"] = os.environ.get("OPENAI_API_KEY")

        if "anthropic_api_key" not in data or data["anthropic_api_key"] is None:
            data["anthropic_api_key"] = os.environ.get("ANTHROPIC_API_KEY")

        if "clinical_api_url" not in data or data["clinical_api_url"] is None:
            data["clinical_api_url"] = os.environ.get("CLINICAL_API_URL")

        if "clinical_api_token" not in data or data["clinical_api_token"] is None:
            data["clinical_api_token"] = os.environ.get("CLINICAL_API_TOKEN")

        super().__init__(**data)

    def get_llm_api_key(self) -> Optional[str]:
        """Get the API key for the configured LLM provider."""
        if self.llm_provider == "openai":
            return self.openai_api_key
        elif self.llm_provider == "anthropic":
            return self.anthropic_api_key
        return None
