from advisory_engine.services.metrics import MetricsFacade


def test_stage_latency_and_fallback_rates():
    facade = MetricsFacade()
    facade.record_stage("roster", 100.0)
    facade.record_stage("roster", 300.0, success=False)
    facade.record_stage("persona_set", 50.0, fallback=True)

    latency = facade.get_latency_distributions()
    assert latency["roster"]["p50"] == 200.0
    assert facade.get_fallback_rates() == {"roster": 0.0, "persona_set": 1.0}


def test_counters_and_quality():
    facade = MetricsFacade()
    facade.increment("cache_hits", "roster")
    facade.increment("cache_hits", "roster", amount=2)
    facade.record_qc(score=50.0, total_claims=4, hallucinated=1, corrected=True)
    facade.record_qc(score=100.0, total_claims=0, hallucinated=0, corrected=False)

    assert facade.get_counters() == {"cache_hits": {"roster": 3}}
    assert facade.get_quality_metrics() == {
        "avg_score": 75.0,
        "hallucination_rate": 0.25,
        "correction_rate": 0.5,
    }

    snapshot = facade.snapshot()
    assert snapshot["timestamp"].endswith("Z")
    facade.reset()
    assert facade.get_counters() == {}
