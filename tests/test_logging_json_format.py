import io
import json
from contextlib import redirect_stderr

import pytest

from mistakebook.logging import configure_logging, logger


@pytest.fixture()
def captured_logs():
    """Route log output to a buffer for the duration of a test.

    basicConfig が生成する StreamHandler は作成時点の sys.stderr を保持するため、
    差し替えた stderr の中で再設定し、終了後に元の stderr で再設定する。
    """

    buffer = io.StringIO()
    with redirect_stderr(buffer):
        configure_logging()
        yield buffer
    configure_logging()


def _json_lines(buffer: io.StringIO, event: str) -> list[dict]:
    records = []
    for line in buffer.getvalue().splitlines():
        if f'"event": "{event}"' in line:
            records.append(json.loads(line))
    return records


def test_log_lines_are_json_with_timestamp_and_level(captured_logs):
    logger.info("mistake_reviewed", mistake_id="mk:1", success=True)

    (record,) = _json_lines(captured_logs, "mistake_reviewed")
    assert record["level"] == "info"
    assert record["mistake_id"] == "mk:1"
    assert record["success"] is True
    assert "timestamp" in record


def test_non_ascii_is_not_escaped(captured_logs):
    logger.info("variation_created", tag="变式练习")

    assert "变式练习" in captured_logs.getvalue()


def test_sensitive_values_are_masked(captured_logs):
    logger.info(
        "token_check",
        api_key="sk-1234567890abcdef",
        password="short",
        nested={"auth_token": "abcdefghijklmnop"},
    )

    (record,) = _json_lines(captured_logs, "token_check")
    assert record["api_key"] == "sk-1…cdef"
    assert record["password"] == "***"
    assert record["nested"]["auth_token"] == "abcd…mnop"


def test_long_image_payloads_are_truncated(captured_logs):
    logger.info("mistake_created", image_data="data:image/png;base64," + "A" * 5000)

    (record,) = _json_lines(captured_logs, "mistake_created")
    assert len(record["image_data"]) < 600
    assert record["image_data"].endswith("chars)")


def test_request_complete_is_logged_with_request_id(client, captured_logs):
    client.get("/healthz", headers={"X-Request-ID": "rid-42"})

    lines = _json_lines(captured_logs, "request_complete")
    assert lines
    assert lines[-1]["path"] == "/healthz"
    assert lines[-1]["status_code"] == 200
    assert lines[-1]["request_id"] == "rid-42"
