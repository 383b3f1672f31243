from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import model_validator


class Settings(BaseSettings):
    """
    Main configuration for the GreenOps FinOps engine.
    Uses Pydantic-Settings for environment variable parsing from .env.
    """
    APP_NAME: str = "GreenOps FinOps Engine"
    VERSION: str = "0.1.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"  # local, development, staging, production
    TESTING: bool = False

    # Project that runs BigQuery jobs and hosts the billing / carbon exports
    GCP_QUERY_PROJECT_ID: str = "greenops-ai-dashboard"

    # Ordered candidate locations for the Cloud Billing export table.
    # Probed in order; the first one that answers wins for the whole run.
    BILLING_EXPORT_TABLE_TEMPLATES: list[str] = [
        "{query_project}.billing_export.gcp_billing_export_v1_{account_id}",
        "{query_project}.finops_reports.gcp_billing_export_v1_{account_id}",
        "{query_project}.billing_data.gcp_billing_export_v1_{account_id}",
        "{query_project}.all_billing_data.gcp_billing_export_resource_v1_{account_id}",
    ]
    CARBON_FOOTPRINT_TABLE_TEMPLATE: str = "{query_project}.carbon_footprint.carbon_footprint"

    # Fan-out limits and per-call timeout
    EXTERNAL_CALL_TIMEOUT_SECONDS: float = 30.0
    MAX_CONCURRENT_ACCOUNTS: int = 5
    MAX_CONCURRENT_PROJECT_LOOKUPS: int = 10

    # Aggregation windows and result sizes
    COST_HISTORY_MONTHS: int = 3
    TOP_PROJECTS_LIMIT: int = 20
    TOP_SERVICES_LIMIT: int = 15
    MAX_COST_RECORDS: int = 50000
    BASE_CURRENCY: str = "USD"

    # Transient Google API failures only (503 / deadline); 1 disables retries
    GCP_TRANSIENT_RETRY_ATTEMPTS: int = 3

    USERINFO_URL: str = "https://www.googleapis.com/oauth2/v2/userinfo"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True
    )

    @model_validator(mode='after')
    def validate_engine_config(self) -> 'Settings':
        """Fail fast on settings that would make every run degrade silently."""
        if self.TESTING:
            return self

        if not self.BILLING_EXPORT_TABLE_TEMPLATES:
            raise ValueError("BILLING_EXPORT_TABLE_TEMPLATES must contain at least one template.")

        for template in self.BILLING_EXPORT_TABLE_TEMPLATES:
            if "{account_id}" not in template:
                raise ValueError(f"Billing export template '{template}' must contain '{{account_id}}'.")

        if self.EXTERNAL_CALL_TIMEOUT_SECONDS <= 0:
            raise ValueError("EXTERNAL_CALL_TIMEOUT_SECONDS must be positive.")

        if self.MAX_CONCURRENT_ACCOUNTS < 1 or self.MAX_CONCURRENT_PROJECT_LOOKUPS < 1:
            raise ValueError("Concurrency limits must be at least 1.")

        if self.COST_HISTORY_MONTHS < 1:
            raise ValueError("COST_HISTORY_MONTHS must be at least 1.")

        return self


@lru_cache
def get_settings():
    """Returns a singleton instance of the application settings."""
    return Settings()
