from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {"env_prefix": "NETAPP_", "case_sensitive": False}

    # App
    environment: str = "development"
    debug: bool = True
    app_name: str = "Network Analysis Service"
    json_logs: bool = False
    cors_origins: str = "http://localhost:3000,http://localhost:5173"

    # Redis (Celery broker and result backend)
    redis_url: str = "redis://localhost:6379/0"
    job_result_expires_s: int = 86400

    # Analysis defaults applied when a request does not set them
    default_grid_code: str = "iec_default"
    default_max_workers: int = 1


settings = Settings()
