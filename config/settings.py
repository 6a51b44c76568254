from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Literal, Optional

MockMode = Literal["API", "MOCK"]


class Settings(BaseSettings):
    """
    Main configuration class for the content pipeline.
    Loads values from environment variables or a .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # --- Generation Provider Settings ---
    # The base URL for the Ollama server (e.g., http://localhost:11434)
    ollama_url: str = Field(default="http://localhost:11434", validation_alias="OLLAMA_URL")
    # The specific model name to use for every stage
    ollama_model: str = Field(default="llama3.1:8b", validation_alias="OLLAMA_MODEL")
    # Client-side ceiling for a single generation call (seconds)
    provider_timeout_seconds: float = Field(default=300.0, validation_alias="PROVIDER_TIMEOUT_SECONDS")

    # --- Token Budget Settings ---
    # Total context window shared by every prompt
    token_budget_max: int = Field(default=200000, validation_alias="TOKEN_BUDGET_MAX")
    # Reserved allocations that dynamic content can never use
    reserved_system_prompt: int = Field(default=3000, validation_alias="RESERVED_SYSTEM_PROMPT")
    reserved_tool_definitions: int = Field(default=8000, validation_alias="RESERVED_TOOL_DEFINITIONS")
    reserved_user_context: int = Field(default=500, validation_alias="RESERVED_USER_CONTEXT")
    reserved_response_buffer: int = Field(default=4000, validation_alias="RESERVED_RESPONSE_BUFFER")
    # Budget for the assembled customer context block
    context_token_budget: int = Field(default=3000, validation_alias="CONTEXT_TOKEN_BUDGET")

    # --- Retry Settings ---
    retry_max_retries: int = Field(default=3, validation_alias="RETRY_MAX_RETRIES")
    retry_base_delay_ms: int = Field(default=1000, validation_alias="RETRY_BASE_DELAY_MS")
    retry_max_delay_ms: int = Field(default=10000, validation_alias="RETRY_MAX_DELAY_MS")

    # --- Circuit Breaker Settings ---
    # Consecutive failures before a dependency is cut off
    circuit_failure_threshold: int = Field(default=5, validation_alias="CIRCUIT_FAILURE_THRESHOLD")
    # Cooldown before a trial call is let through (milliseconds)
    circuit_reset_timeout_ms: int = Field(default=60000, validation_alias="CIRCUIT_RESET_TIMEOUT_MS")

    # --- Mock Settings ---
    # API = always call providers, MOCK = always canned, PER_TOGGLE = per-stage flags below
    mock_all_stages: Literal["API", "MOCK", "PER_TOGGLE"] = Field(default="API", validation_alias="MOCK_ALL_STAGES")
    mock_research_stage: MockMode = Field(default="API", validation_alias="MOCK_RESEARCH_STAGE")
    mock_foundations_stage: MockMode = Field(default="API", validation_alias="MOCK_FOUNDATIONS_STAGE")
    mock_skeleton_stage: MockMode = Field(default="API", validation_alias="MOCK_SKELETON_STAGE")
    mock_writing_stage: MockMode = Field(default="API", validation_alias="MOCK_WRITING_STAGE")
    mock_humanity_check_stage: MockMode = Field(default="API", validation_alias="MOCK_HUMANITY_CHECK_STAGE")
    mock_visuals_stage: MockMode = Field(default="API", validation_alias="MOCK_VISUALS_STAGE")
    # Simulated latency for canned responses (milliseconds)
    mock_delay_min_ms: int = Field(default=0, validation_alias="MOCK_DELAY_MIN_MS")
    mock_delay_max_ms: int = Field(default=0, validation_alias="MOCK_DELAY_MAX_MS")
    # Record real responses so they can be replayed later
    mock_capture_responses: bool = Field(default=False, validation_alias="MOCK_CAPTURE_RESPONSES")
    mock_capture_dir: str = Field(default="./logs/captured-responses", validation_alias="MOCK_CAPTURE_DIR")
    # Directory holding <stage>.<variant>.json canned responses
    mock_data_dir: Optional[str] = Field(default=None, validation_alias="MOCK_DATA_DIR")

    # --- Logging Settings ---
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_json: bool = Field(default=True, validation_alias="LOG_JSON")

    def stage_mock_mode(self, stage_id: str) -> str:
        """Per-stage toggle for a stage id, API when the stage has none."""
        toggles = {
            "research": self.mock_research_stage,
            "foundations": self.mock_foundations_stage,
            "skeleton": self.mock_skeleton_stage,
            "writing": self.mock_writing_stage,
            "humanity_check": self.mock_humanity_check_stage,
            "visuals": self.mock_visuals_stage,
        }
        return toggles.get(stage_id, "API")


def load_settings(**overrides) -> Settings:
    """Build settings from the environment, applying explicit overrides on top."""
    return Settings(**overrides)
