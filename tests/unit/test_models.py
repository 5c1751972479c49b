"""
Unit tests for value objects and configuration.

These tests verify plain domain logic without touching external services
(no API calls, no database, no subprocesses).

Testing philosophy:
- Test behavior, not implementation
- Each test should have a clear "given/when/then" structure
- Use descriptive names that explain what we're testing
"""

import pytest

from src.config.settings import Settings
from src.core.analysis.models import (
    ChunkAlert,
    ChunkAnalysis,
    LabelResult,
    PersonResult,
    Severity,
)
from src.infrastructure.video import InspectionError
from src.infrastructure.video.processor import parse_frame_rate, parse_ffprobe_output


# ---------------------------------------------------------------------------
# Analysis Models
# ---------------------------------------------------------------------------

class TestSeverity:
    """Severities are ordered from low to critical."""

    def test_rank_order(self):
        ranks = [s.rank for s in (Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL)]
        assert ranks == sorted(ranks)
        assert len(set(ranks)) == 4


class TestChunkAnalysis:
    """Tests for the serialised chunk analysis."""

    def test_empty_analysis_serialises_defaults(self):
        data = ChunkAnalysis().to_dict()

        assert data["personDetection"] == {"detectedPersons": [], "totalCount": 0}
        assert data["crowdAnalysis"] == {"density": "low", "riskLevel": "normal"}
        assert data["alerts"] == []

    def test_keys_are_camel_case(self):
        """The dashboard reads these keys directly."""
        analysis = ChunkAnalysis(
            labels=[LabelResult("Crowd", 0.9, "people")],
            persons=[PersonResult("t1", 0.8), PersonResult(None, None)],
            alerts=[ChunkAlert("CROWD_WARNING", "High crowd density detected", "warning")],
            crowd_density="medium",
        )

        data = analysis.to_dict()

        assert analysis.person_count == 2
        assert data["labels"] == [{"description": "Crowd", "confidence": 0.9, "category": "people"}]
        assert data["personDetection"]["detectedPersons"][0] == {
            "trackId": "t1", "confidence": 0.8, "attributes": [],
        }
        assert data["personDetection"]["totalCount"] == 2
        assert data["alerts"][0]["type"] == "CROWD_WARNING"
        assert set(data) == {
            "labels", "personDetection", "objectTracking", "textDetections",
            "crowdAnalysis", "alerts", "summary",
        }


# ---------------------------------------------------------------------------
# FFprobe Parsing
# ---------------------------------------------------------------------------

def ffprobe_output(**stream_overrides):
    stream = {
        "codec_type": "video",
        "codec_name": "h264",
        "width": 1280,
        "height": 720,
        "r_frame_rate": "30000/1001",
        "duration": "9.9",
    }
    stream.update(stream_overrides)
    return {
        "streams": [{"codec_type": "audio", "codec_name": "aac"}, stream],
        "format": {"duration": "10.010000"},
    }


class TestFFprobeParsing:
    """Chunks are inspected to spot truncated segments."""

    @pytest.mark.parametrize("value, expected", [
        ("30/1", 30.0),
        ("25", 25.0),
        ("0/0", 0.0),
    ])
    def test_frame_rate(self, value, expected):
        assert parse_frame_rate(value) == expected

    def test_ntsc_frame_rate(self):
        assert parse_frame_rate("30000/1001") == pytest.approx(29.97, abs=0.01)

    def test_uses_video_stream_and_format_duration(self):
        info = parse_ffprobe_output(ffprobe_output(), file_size_bytes=2048)

        assert info.codec == "h264"
        assert info.resolution == "1280x720"
        assert info.duration_seconds == pytest.approx(10.01)
        assert info.file_size_bytes == 2048

    def test_falls_back_to_stream_duration(self):
        output = ffprobe_output()
        output["format"] = {}

        assert parse_ffprobe_output(output, 0).duration_seconds == pytest.approx(9.9)

    def test_no_video_stream(self):
        """An audio-only file is not a usable chunk."""
        with pytest.raises(InspectionError, match="No video stream"):
            parse_ffprobe_output({"streams": [{"codec_type": "audio"}]}, 0)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

def make_settings(**overrides):
    return Settings(_env_file=None, **overrides)


class TestSettings:

    def test_lists_are_parsed(self):
        settings = make_settings(
            api_keys=" key-a, key-b ,,",
            cors_origins="https://a.example, https://b.example",
            chunk_analysis_features="label_detection, person_detection",
        )

        assert settings.api_keys_list == ["key-a", "key-b"]
        assert settings.cors_origins_list == ["https://a.example", "https://b.example"]
        assert settings.chunk_analysis_features_list == ["LABEL_DETECTION", "PERSON_DETECTION"]

    def test_wildcard_cors(self):
        assert make_settings(cors_origins="*").cors_origins_list == ["*"]

    def test_upload_limit_in_bytes(self):
        assert make_settings(max_upload_size_mb=2).max_upload_size_bytes == 2 * 1024 * 1024

    def test_notification_channels_need_every_credential(self):
        partial = make_settings(twilio_account_sid="AC1", twilio_auth_token="tok", email_host="smtp.example.com")
        full = make_settings(
            twilio_account_sid="AC1",
            twilio_auth_token="tok",
            twilio_phone_number="+15550100",
            email_host="smtp.example.com",
            email_user="alerts",
            email_pass="secret",
        )

        assert not partial.twilio_configured
        assert not partial.email_configured
        assert full.twilio_configured
        assert full.email_configured

    def test_mock_modes_need_nothing(self):
        settings = make_settings(gcs_mock_mode=True, firebase_mock_mode=True, google_ai_mock_mode=True)

        assert settings.validate_required_fields() == []

    def test_real_services_list_missing_fields(self):
        settings = make_settings(
            gcs_mock_mode=False,
            firebase_mock_mode=False,
            google_ai_mock_mode=False,
            gcloud_project_id="",
            firebase_database_url="",
            firebase_project_id="",
            firebase_private_key="",
            firebase_client_email="",
            firebase_credentials_file=None,
        )

        assert settings.validate_required_fields() == [
            "GCLOUD_PROJECT_ID",
            "FIREBASE_DATABASE_URL",
            "FIREBASE_PROJECT_ID",
            "FIREBASE_PRIVATE_KEY",
            "FIREBASE_CLIENT_EMAIL",
        ]

    def test_credentials_file_replaces_key_fields(self):
        settings = make_settings(
            gcs_mock_mode=True,
            google_ai_mock_mode=True,
            firebase_mock_mode=False,
            firebase_database_url="https://heimdall.firebaseio.com",
            firebase_credentials_file="service-account.json",
        )

        assert settings.validate_required_fields() == []
