from datetime import datetime, timedelta, timezone

import numpy as np
import pytest

from nudge_engine.insights import (
    ReminderOutcome,
    benchmark_models,
    build_training_table,
    collect_reminder_outcomes,
    train_best_model,
)
from nudge_engine.schema import DeadlineReminderState, TrackedItem
from nudge_engine.simulation import simulate_reminder_history

BASE = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)


def sample_outcomes():
    outcomes = []
    for index in range(8):
        due = BASE + timedelta(days=index)
        completed = index % 2 == 0
        outcomes.append(
            ReminderOutcome(
                TrackedItem(f"a{index}", f"Task {index}", due, "high" if completed else "low"),
                DeadlineReminderState(
                    f"a{index}",
                    reminder_count=1 + index % 3,
                    last_reminder_at=due + timedelta(hours=2 + index),
                    last_confirmation_at=due + timedelta(hours=3 + index),
                    last_confirmed_completed=completed,
                ),
            )
        )
    return outcomes


def test_build_training_table_smoke():
    X, y, feature_names = build_training_table(sample_outcomes())
    assert X.shape == (8, len(feature_names))
    assert list(y) == [1, 0, 1, 0, 1, 0, 1, 0]
    assert "reminder_hour" in feature_names
    assert "priority=critical" in feature_names
    assert X[0, feature_names.index("rolling_completion_rate")] == 0.5


def test_empty_history():
    X, y, names = build_training_table([])
    assert X.shape == (0, 0)
    assert names == []
    assert benchmark_models(X, y)["best_model"] is None


def test_benchmark_models_smoke():
    X, y, _ = build_training_table(sample_outcomes())
    report = benchmark_models(X, y, seed=42)

    assert report["best_model"] in report["models"]
    for name in ("LogisticRegression", "RandomForest", "GradientBoosting"):
        roc_auc = report["models"][name]["holdout"]["roc_auc"]
        assert 0.0 <= roc_auc <= 1.0
    assert [entry["model"] for entry in report["ranking"]][0] == report["best_model"]
    assert len(report["ranking"]) == 3
    assert report["baseline_accuracy"] == 0.5


def test_training_needs_both_replies():
    X, y, _ = build_training_table(sample_outcomes())
    with pytest.raises(ValueError):
        train_best_model(X, np.ones_like(y))

    model, report = train_best_model(X, y)
    assert model.predict(X).shape == y.shape
    assert report["best_model"] in report["models"]


@pytest.mark.asyncio
async def test_simulated_history_feeds_the_benchmark():
    store = await simulate_reminder_history(n_items=12, days=4, seed=7)
    outcomes = await collect_reminder_outcomes(store)

    assert outcomes
    assert all(outcome.state.reminder_count >= 1 for outcome in outcomes)
    X, y, names = build_training_table(outcomes)
    assert X.shape == (len(outcomes), len(names))
