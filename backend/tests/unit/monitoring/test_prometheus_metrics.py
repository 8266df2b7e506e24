from booking_engine.monitoring.prometheus_metrics import REGISTRY, prometheus_metrics


def _sample(name: str, labels: dict) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


def test_refund_counter_by_method_and_trigger() -> None:
    labels = {"method": "credits", "trigger": "automatic"}
    before = _sample("booking_engine_refunds_total", labels)

    prometheus_metrics.record_refund("credits", "automatic")

    assert _sample("booking_engine_refunds_total", labels) == before + 1


def test_exposition_includes_domain_counters() -> None:
    prometheus_metrics.record_booking_outcome("book_lesson", "committed")

    output = prometheus_metrics.get_metrics().decode()

    assert "booking_engine_booking_outcomes_total" in output
    assert prometheus_metrics.get_content_type().startswith("text/plain")
