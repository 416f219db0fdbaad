from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    provider_api_base: str = ""
    provider_auth_token: str = ""
    provider_request_timeout: float = 30.0
    provider_page_limit: int = 1000

    checkpoint_storage_path: str = "state"
    database_url: str = "sqlite:///./devops_lifecycle.db"

    poll_interval_seconds: float = 2.0
    bootstrap_timeout_seconds: float = 60.0
    bootstrap_poll_seconds: float = 2.0

    # "per_tier" or "pipeline_only"
    stage_sweep_mode: str = "per_tier"

    deploy_tag_key: str = "devops_tooling_deployID"
    project_tag_key: str = "devops_tooling_projectOCID"

    workspace_root: str = "."
    resources_dir: str = ".devops"
    folder_config_file: str = ".vscode/devops.json"


@lru_cache
def get_settings() -> Settings:
    return Settings()
