"""Logging configuration and error reporter tests"""
from structlog.testing import capture_logs

from observability import StructlogErrorReporter, configure_logging
from pipeline.errors import MappingUnresolved
from pipeline.status_mapper import map_gateway_status


def test_module_loggers_follow_configured_level():
    """Loggers created at import pick up the level configured afterwards"""

    try:
        configure_logging("ERROR")
        with capture_logs() as quiet:
            map_gateway_status("weird")

        configure_logging("DEBUG")
        with capture_logs() as loud:
            map_gateway_status("weird")
    finally:
        configure_logging()

    assert quiet == []
    assert [entry["event"] for entry in loud] == ["unknown_gateway_status"]
    assert loud[0]["component"] == "status_mapper"
    assert loud[0]["log_level"] == "warning"


def test_reporter_logs_at_requested_severity_with_error_context():
    """A warning report is one warning event carrying the error's context"""

    reporter = StructlogErrorReporter()

    with capture_logs() as logs:
        reporter.report(
            MappingUnresolved("No product mapping for combination", program_id="prog_1", tier_id="tier_50k"),
            order_number="10042",
            severity="warning",
        )

    assert len(logs) == 1
    assert logs[0]["event"] == "error_reported"
    assert logs[0]["log_level"] == "warning"
    assert logs[0]["error_type"] == "MappingUnresolved"
    assert logs[0]["program_id"] == "prog_1"
    assert logs[0]["order_number"] == "10042"
