"""
Pydantic Settings — centralized configuration loaded from environment variables.
"""

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── Backend service ───────────────────────
    BACKEND_API_BASE_URL: str = "http://localhost:5000"
    BACKEND_API_KEY: str = ""
    TRANSPORT_TIMEOUT_SECONDS: float = 30.0

    # ── Orchestration ─────────────────────────
    DEPENDENT_CONCURRENCY: int = Field(default=4, ge=1)
    PERSIST_BENEFICIARIES: bool = False

    # ── Relationship caps (per policy) ────────
    SPOUSE_LIMIT: int = Field(default=1, ge=0)
    CHILD_LIMIT: int = Field(default=6, ge=0)
    EXTENDED_FAMILY_LIMIT: int = Field(default=10, ge=0)

    # ── Default coverage percentages ──────────
    SPOUSE_COVERAGE: int = Field(default=100, ge=0, le=100)
    CHILD_COVERAGE: int = Field(default=75, ge=0, le=100)
    EXTENDED_FAMILY_COVERAGE: int = Field(default=50, ge=0, le=100)

    # ── Wizard ────────────────────────────────
    WIZARD_LAYOUT: str = "split"
    POLICY_NUMBER_PREFIX: str = "CS"

    # ── Application ───────────────────────────
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    model_config = {"env_file": ["../.env", ".env"], "extra": "ignore"}

    @property
    def relationship_limits(self) -> dict[str, int]:
        """Caps keyed by relationship category."""
        return {
            "spouse": self.SPOUSE_LIMIT,
            "child": self.CHILD_LIMIT,
            "extended_family": self.EXTENDED_FAMILY_LIMIT,
        }

    @property
    def coverage_defaults(self) -> dict[str, int]:
        """Default policy coverage keyed by relationship category."""
        return {
            "spouse": self.SPOUSE_COVERAGE,
            "child": self.CHILD_COVERAGE,
            "extended_family": self.EXTENDED_FAMILY_COVERAGE,
        }


settings = Settings()
