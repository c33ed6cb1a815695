import logging

from nudge_engine.telemetry import emit_metric


def test_emit_metric_logs_structured_fields(caplog):
    with caplog.at_level(logging.INFO, logger="nudge_engine.metrics"):
        emit_metric("push.failed", channel="web", root_cause="network")

    [record] = caplog.records
    assert record.metric_name == "push.failed"
    assert record.metric_value == 1.0
    assert record.metric_tags == {"channel": "web", "root_cause": "network"}
