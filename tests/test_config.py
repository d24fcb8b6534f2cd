"""Settings validation."""
import pytest
from pydantic import ValidationError

from mobifaktura.core.config import PLACEHOLDER_JWT_SECRET, Settings


class TestJwtSecret:
    @pytest.mark.parametrize("app_env", ["production", "prod", "staging"])
    def test_placeholder_rejected_outside_local(self, app_env) -> None:
        with pytest.raises(ValidationError, match="JWT_SECRET"):
            Settings(APP_ENV=app_env, JWT_SECRET=PLACEHOLDER_JWT_SECRET, DATABASE_URL="sqlite://")

    def test_placeholder_allowed_locally(self) -> None:
        settings = Settings(APP_ENV="local", JWT_SECRET=PLACEHOLDER_JWT_SECRET, DATABASE_URL="sqlite://")
        assert settings.JWT_SECRET == PLACEHOLDER_JWT_SECRET

    def test_real_secret_accepted_in_production(self) -> None:
        settings = Settings(APP_ENV="production", JWT_SECRET="s3cr3t-from-vault", DATABASE_URL="sqlite://")
        assert settings.is_production


class TestDatabaseUrl:
    def test_built_from_components(self) -> None:
        settings = Settings(
            DATABASE_URL=None,
            DB_USER="mobi",
            DB_PASSWORD="p@ss word",
            DB_HOST="db",
            DB_PORT=5433,
            DB_NAME="faktury",
        )
        assert settings.database_url == "postgresql://mobi:p%40ss+word@db:5433/faktury"
