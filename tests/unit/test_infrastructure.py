"""
Unit tests for configuration, errors, security helpers, scheduling and the CLI
"""
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from cryptography.fernet import Fernet, InvalidToken
from jose import JWTError
from pydantic import ValidationError as PydanticValidationError

from storefront.api.middleware.error_handler import error_response
from storefront.auth.jwt_manager import JWTManager
from storefront.cli import main
from storefront.monitoring.prometheus_metrics import PrometheusMetrics, normalize_endpoint
from storefront.security.encryption import CredentialEncryptor
from storefront.services.channel_credentials import (
    MASK,
    decrypt_channel_credentials,
    encrypt_channel_credentials,
    mask_channel_credentials,
)
from storefront.services.scheduler import (
    COMMISSION_APPROVAL_JOB_ID,
    MARKETPLACE_SYNC_JOB_ID,
    SchedulingService,
)
from storefront.utils.config import (
    ApplicationConfig,
    SchedulerConfig,
    SellbriteConfig,
    StorefrontConfig,
    validate_configuration,
)
from storefront.utils.dates import isoformat, parse_datetime
from storefront.utils.exceptions import (
    APIError,
    AuthenticationError,
    ConfigurationError,
    ConflictError,
    DatabaseError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
    SellbriteAPIError,
    ValidationError,
    handle_api_error,
)
from storefront.utils.sanitize import is_http_url, sanitize_input, sanitize_list, sanitize_optional


class TestConfiguration:
    """Settings models and validation summary"""

    def test_scheduler_validators(self):
        with pytest.raises(PydanticValidationError):
            SchedulerConfig(marketplace_sync_interval_minutes=0)
        with pytest.raises(PydanticValidationError):
            SchedulerConfig(commission_approval_hour=24)
        assert SchedulerConfig(commission_approval_hour=0).commission_approval_hour == 0

    def test_log_level_normalized(self):
        assert ApplicationConfig(log_level="debug").log_level == "DEBUG"
        with pytest.raises(PydanticValidationError):
            ApplicationConfig(log_level="chatty")

    def test_sellbrite_base_url(self):
        assert SellbriteConfig(base_url="https://api.sellbrite.com/").base_url == "https://api.sellbrite.com"
        with pytest.raises(PydanticValidationError):
            SellbriteConfig(base_url="ftp://example.com")

    def test_cors_origins_split(self):
        config = StorefrontConfig(cors_origins="https://shop.example.com, https://admin.example.com")
        assert config.app.cors_origins == ["https://shop.example.com", "https://admin.example.com"]

    def test_validate_configuration_hides_secrets(self):
        result = validate_configuration()

        assert result["valid"] is True
        assert result["warnings"] == []
        assert result["summary"]["security"]["has_secret_key"] is True
        assert result["summary"]["database"]["backend"] == "sqlite"
        assert "test-secret-key" not in json.dumps(result)


class TestExceptions:
    """Exception details and upstream error mapping"""

    def test_details(self):
        assert ValidationError("bad", field="rate", value=-1).details == {"field": "rate", "value": "-1"}
        assert NotFoundError("missing", resource="order", resource_id=5).details == {
            "resource": "order", "resource_id": "5"
        }
        assert RateLimitError("slow down", retry_after=10).status_code == 429
        assert str(ConflictError("dup", {"slug": "x"})) == "dup | Details: {'slug': 'x'}"

    @staticmethod
    def _response(status_code, body=None, text=""):
        response = MagicMock()
        response.status_code = status_code
        response.text = text
        response.headers = {}
        if body is None:
            response.json.side_effect = ValueError("no json")
        else:
            response.json.return_value = body
        return response

    def test_rejected_credentials_message(self):
        with pytest.raises(SellbriteAPIError, match="rejected credentials") as exc_info:
            handle_api_error(self._response(403, {"error": "forbidden"}), "/v1/orders",
                             error_class=SellbriteAPIError, provider="Sellbrite")

        assert exc_info.value.endpoint == "/v1/orders"
        assert exc_info.value.response_data == {"error": "forbidden"}

    def test_server_error_keeps_text(self):
        with pytest.raises(APIError, match="server error") as exc_info:
            handle_api_error(self._response(503, text="maintenance"))

        assert exc_info.value.response_data == "maintenance"


class TestErrorResponses:
    """Exception to HTTP status mapping"""

    @pytest.mark.parametrize("exc, status_code, error", [
        (ValidationError("bad input"), 400, "Validation Error"),
        (AuthenticationError("no token"), 401, "Authentication Error"),
        (PermissionDeniedError("program disabled"), 403, "Forbidden"),
        (NotFoundError("missing"), 404, "Not Found"),
        (ConflictError("duplicate"), 409, "Conflict"),
        (SellbriteAPIError("rejected", status_code=401), 502, "API Error"),
        (APIError("unavailable", status_code=503), 503, "API Error"),
        (APIError("no status"), 502, "API Error"),
        (ConfigurationError("missing key"), 500, "Configuration Error"),
        (RuntimeError("boom"), 500, "Internal Server Error"),
    ])
    def test_status_mapping(self, exc, status_code, error):
        response = error_response(exc)

        assert response.status_code == status_code
        assert json.loads(response.body)["error"] == error

    def test_database_errors_are_generic(self):
        body = json.loads(error_response(DatabaseError("UNIQUE constraint failed: secret", table="x")).body)
        assert body["message"] == "A database error occurred"


class TestChannelCredentials:
    """Stored credential encryption"""

    def test_encrypt_mask_decrypt(self):
        stored = encrypt_channel_credentials({"apiKey": "k1", "apiSecret": "s1", "sellerId": "S-1"})

        assert stored["apiKey"].startswith("enc:")
        assert stored["sellerId"] == "S-1"
        assert encrypt_channel_credentials(stored) == stored
        assert mask_channel_credentials(stored) == {"apiKey": MASK, "apiSecret": MASK, "sellerId": "S-1"}
        assert decrypt_channel_credentials(stored) == {"apiKey": "k1", "apiSecret": "s1", "sellerId": "S-1"}

    def test_empty(self):
        assert encrypt_channel_credentials({}) is None
        assert mask_channel_credentials(None) is None
        assert decrypt_channel_credentials(None) == {}

    def test_bad_token(self):
        with pytest.raises(ConfigurationError):
            decrypt_channel_credentials({"apiSecret": "enc:garbage"})

    def test_key_rotation(self):
        old_key, new_key = Fernet.generate_key().decode(), Fernet.generate_key().decode()
        token = CredentialEncryptor(master_key=old_key).encrypt("sb-secret")

        rotating = CredentialEncryptor(master_key=new_key, secondary_key=old_key)
        assert rotating.decrypt(token) == "sb-secret"

        rotated = rotating.rotate(token)
        assert CredentialEncryptor(master_key=new_key).decrypt(rotated) == "sb-secret"
        with pytest.raises(InvalidToken):
            CredentialEncryptor(master_key=Fernet.generate_key().decode()).decrypt(rotated)


class TestTokens:
    """Bearer token issue and verification"""

    def test_claims(self):
        manager = JWTManager(secret_key="unit-test-key")
        payload = manager.verify_token(manager.create_access_token("u-9", "admin", email="a@example.com"))

        assert payload["sub"] == "u-9"
        assert payload["role"] == "admin"
        assert payload["email"] == "a@example.com"
        assert "name" not in payload

    def test_wrong_type_rejected(self):
        manager = JWTManager(secret_key="unit-test-key")
        token = manager.create_access_token("u-9", "customer", additional_claims={"type": "refresh"})

        with pytest.raises(JWTError):
            manager.verify_token(token)

    def test_wrong_secret_rejected(self):
        token = JWTManager(secret_key="one").create_access_token("u-9", "customer")

        with pytest.raises(JWTError):
            JWTManager(secret_key="two").verify_token(token)


class TestHelpers:
    """Sanitizing and date parsing"""

    def test_sanitize_input(self):
        assert sanitize_input('<script>alert(1)</script><b onclick="x()">Hi</b> ') == "Hi"
        assert sanitize_input('<img src=x onerror="steal()">') == ""
        assert sanitize_input("x" * 20, max_length=5) == "xxxxx"
        assert sanitize_input(None) == ""
        assert sanitize_optional("<i></i>") is None
        assert sanitize_list(["blog", "<b></b>", " social "]) == ["blog", "social"]

    def test_is_http_url(self):
        assert is_http_url("https://janes-filters.example.com/reviews")
        assert not is_http_url("javascript:alert(1)")
        assert not is_http_url("example.com")

    def test_parse_datetime(self):
        assert parse_datetime("2025-01-15T10:30:00Z") == datetime(2025, 1, 15, 10, 30)
        assert parse_datetime("2025-01-15T12:30:00+02:00") == datetime(2025, 1, 15, 10, 30)
        assert parse_datetime("2025-01-15") == datetime(2025, 1, 15)
        assert parse_datetime(datetime(2025, 1, 15, 3, tzinfo=timezone(timedelta(hours=-5)))) == datetime(2025, 1, 15, 8)
        assert parse_datetime("") is None

        with pytest.raises(ValidationError):
            parse_datetime("yesterday", field="since")

    def test_isoformat(self):
        assert isoformat(datetime(2025, 1, 15, 10, 30)) == "2025-01-15T10:30:00Z"
        assert isoformat(None) is None


class TestMonitoring:
    """Metrics collection"""

    def test_normalize_endpoint(self):
        assert normalize_endpoint("/api/v1/marketplaces/orders/mp_mpch_1_111-22/events") == \
            "/api/v1/marketplaces/orders/{order_id}/events"
        assert normalize_endpoint(f"/api/v1/admin/affiliates/aff_{'a' * 32}") == "/api/v1/admin/affiliates/{id}"
        assert normalize_endpoint("/api/v1/marketplaces/tax-states/12") == "/api/v1/marketplaces/tax-states/{id}"

    def test_sync_metrics_exported(self):
        metrics = PrometheusMetrics()
        metrics.track_sync_run("amazon", "success", 1.5, imported=3, errors=1)
        metrics.track_affiliate_conversion(12.5, attributed=True)

        exported = metrics.export().decode()
        assert 'storefront_marketplace_sync_runs_total{platform="amazon",status="success"} 1.0' in exported
        assert 'storefront_marketplace_orders_total{platform="amazon",outcome="imported"} 3.0' in exported
        assert "storefront_affiliate_commission_total 12.5" in exported


class TestScheduler:
    """Job registration"""

    def test_register_jobs(self):
        service = SchedulingService(SchedulerConfig(marketplace_sync_interval_minutes=30, commission_approval_hour=4))
        service.register_jobs()

        status = service.get_status()
        assert status["running"] is False
        assert sorted(job["id"] for job in status["jobs"]) == sorted(
            [MARKETPLACE_SYNC_JOB_ID, COMMISSION_APPROVAL_JOB_ID]
        )

    def test_job_outcomes_recorded(self):
        service = SchedulingService(SchedulerConfig())

        service._job_executed_listener(MagicMock(job_id=MARKETPLACE_SYNC_JOB_ID))
        service._job_error_listener(MagicMock(job_id=COMMISSION_APPROVAL_JOB_ID, exception=RuntimeError("db down")))

        assert service.last_results[MARKETPLACE_SYNC_JOB_ID]["status"] == "success"
        assert service.last_results[COMMISSION_APPROVAL_JOB_ID]["error"] == "db down"


class TestCLI:
    """Command-line entry point"""

    def test_generate_key(self, capsys):
        assert main(["generate-key"]) == 0
        Fernet(capsys.readouterr().out.strip().splitlines()[-1].encode())

    def test_config_validate(self, capsys):
        assert main(["config", "validate"]) == 0
        assert "Configuration is valid" in capsys.readouterr().out

    def test_create_token(self, capsys):
        from storefront.auth import verify_token

        assert main(["create-token", "admin-7", "--role", "admin"]) == 0
        payload = verify_token(capsys.readouterr().out.strip().splitlines()[-1])
        assert payload["sub"] == "admin-7"
        assert payload["role"] == "admin"

    def test_config_reload_picks_up_new_encryption_key(self, monkeypatch):
        from storefront.security import get_encryptor

        original = get_encryptor().master_key
        rotated = Fernet.generate_key().decode()
        monkeypatch.setenv("ENCRYPTION_MASTER_KEY", rotated)
        try:
            assert main(["config", "reload"]) == 0
            assert get_encryptor().master_key == rotated
        finally:
            monkeypatch.setenv("ENCRYPTION_MASTER_KEY", original)
            main(["config", "reload"])

        assert get_encryptor().master_key == original

    def test_no_command(self, capsys):
        assert main([]) == 1
