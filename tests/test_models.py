"""Tests for models and the error taxonomy."""
import httpx
import pytest

from multipart_uploader.errors import (
    BackendError,
    PartUploadError,
    ProtocolError,
    TransientError,
    ValidationError,
    error_kind,
    is_retryable,
    request_not_sent,
)
from multipart_uploader.models import (
    MB,
    ChecksumPolicy,
    FilePart,
    PartResult,
    RetryPolicy,
    SessionState,
    UploadConfig,
    UploadResult,
    UploadSession,
    UploadStatus,
)


class TestUploadConfig:
    def test_defaults(self):
        config = UploadConfig()
        assert config.part_size == 8 * MB
        assert config.min_part_size == 5 * MB
        assert config.max_parts == 10_000
        assert config.checksum_policy is ChecksumPolicy.AT_START
        assert config.effective_checksum_band == 20
        assert config.api_retry == RetryPolicy(4, 0.4, 10.0)

    def test_band_only_for_checksum_at_start(self):
        config = UploadConfig(checksum_policy=ChecksumPolicy.AT_COMPLETE)
        assert config.effective_checksum_band == 0

    def test_frozen(self):
        config = UploadConfig()
        with pytest.raises(AttributeError):
            config.part_size = 1

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"min_concurrency": 0},
            {"min_concurrency": 4, "max_concurrency": 2},
            {"checksum_band": 100},
        ],
    )
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            UploadConfig(**kwargs)

    def test_with_overrides_ignores_none(self):
        config = UploadConfig().with_overrides(part_size=16 * MB, max_concurrency=None)
        assert config.part_size == 16 * MB
        assert config.max_concurrency == 8

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("UPLOADER_PART_SIZE", str(10 * MB))
        monkeypatch.setenv("UPLOADER_MAX_CONCURRENCY", "12")
        monkeypatch.setenv("UPLOADER_API_TIMEOUT", "5.5")
        monkeypatch.setenv("UPLOADER_CHECKSUM_POLICY", "Complete")
        monkeypatch.setenv("UPLOADER_CHECKSUM_ALGORITHM", "blake3")
        monkeypatch.setenv("UPLOADER_MIN_CONCURRENCY", "")

        config = UploadConfig.from_env()

        assert config.part_size == 10 * MB
        assert config.max_concurrency == 12
        assert config.min_concurrency == 2
        assert config.api_timeout == 5.5
        assert config.checksum_policy is ChecksumPolicy.AT_COMPLETE
        assert config.checksum_algorithm == "blake3"

    def test_from_env_bad_value(self, monkeypatch):
        monkeypatch.setenv("UPLOADER_PART_SIZE", "big")
        with pytest.raises(ValueError):
            UploadConfig.from_env()


class TestUploadSession:
    def test_total_parts(self):
        assert UploadSession("a", 25 * MB, 10 * MB).total_parts == 3
        assert UploadSession("a", 0, 10 * MB).total_parts == 1

    def test_forward_only(self):
        session = UploadSession("a", 10, 10)
        session.advance(SessionState.STARTED)
        session.advance(SessionState.UPLOADING)

        with pytest.raises(ValueError):
            session.advance(SessionState.STARTED)

        session.advance(SessionState.FAILED)
        assert session.is_terminal
        with pytest.raises(ValueError, match="already failed"):
            session.advance(SessionState.COMPLETED)

    def test_ids_assigned_once(self):
        session = UploadSession("a", 10, 10)
        session.assign_ids("f", "u")
        with pytest.raises(ProtocolError):
            session.assign_ids("f2", "u2")


class TestResults:
    def test_ok(self):
        session = UploadSession("a.bin", 10, 10, file_id="f", upload_id="u")
        session.parts = [PartResult(1, "e1")]

        result = UploadResult.ok(session, {"done": True})

        assert result.success
        assert result.status is UploadStatus.COMPLETED
        assert (result.file_id, result.upload_id, result.parts) == ("f", "u", 1)
        assert result.payload == {"done": True}
        assert result.error is None

    def test_fail(self):
        result = UploadResult.fail("a.bin", "quota exceeded", "backend")
        assert not result.success
        assert result.error == "quota exceeded"
        assert result.error_kind == "backend"
        assert result.file_id is None

    def test_part_payload(self):
        assert PartResult(3, "abc").to_payload() == {"PartNumber": 3, "ETag": "abc"}

    def test_file_part_size(self):
        assert FilePart(part_number=2, start=100, end=250).size == 150


class TestErrors:
    @pytest.mark.parametrize(
        "exc,kind,retryable",
        [
            (ValidationError("x"), "validation", False),
            (TransientError("x", status_code=502), "transient", True),
            (ProtocolError("x"), "protocol", False),
            (BackendError("x"), "backend", False),
            (httpx.ConnectError("refused"), "transient", True),
            (TimeoutError(), "transient", True),
            (httpx.ReadTimeout("slow"), "transient", True),
            (KeyError("file_id"), "upload", False),
            (ValueError("bad value"), "upload", False),
        ],
    )
    def test_classification(self, exc, kind, retryable):
        assert error_kind(exc) == kind
        assert is_retryable(exc) is retryable

    def test_part_error_wraps_cause(self):
        err = PartUploadError(4, BackendError("denied"))
        assert err.part_number == 4
        assert err.kind == "backend"
        assert "Part 4" in str(err)
        assert not is_retryable(err)

    def test_part_error_wrapping_foreign_cause(self):
        assert PartUploadError(1, httpx.ReadError("reset")).kind == "transient"
        assert PartUploadError(1, RuntimeError("bug")).kind == "upload"

    @pytest.mark.parametrize(
        "exc,expected",
        [
            (httpx.ConnectError("refused"), True),
            (httpx.ConnectTimeout("slow handshake"), True),
            (httpx.ReadTimeout("no response"), False),
            (TransientError("bad gateway", status_code=502), False),
            (BackendError("NoSuchUpload"), False),
        ],
    )
    def test_request_not_sent(self, exc, expected):
        assert request_not_sent(exc) is expected
