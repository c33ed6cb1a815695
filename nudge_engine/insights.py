"""Offline benchmark: do reminded items end up confirmed complete?

Every tracked item that received at least one reminder becomes one training
instance. The label is the user's last explicit confirmation, so the table
only learns from what the user said, never from reminder counts alone.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

import numpy as np
from sklearn.ensemble import GradientBoostingClassifier, RandomForestClassifier
from sklearn.linear_model import LogisticRegression
from sklearn.metrics import accuracy_score, f1_score, roc_auc_score
from sklearn.model_selection import StratifiedKFold, cross_validate, train_test_split
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler

from nudge_engine.schema import PRIORITIES, DeadlineReminderState, TrackedItem
from nudge_engine.store import RuntimeStore

_OVERDUE_BUCKETS = ("<3", "3-24", "24-72", ">72")


@dataclass
class ReminderOutcome:
    item: TrackedItem
    state: DeadlineReminderState


def _bucket_overdue(hours_overdue: float) -> str:
    if hours_overdue < 3:
        return "<3"
    if hours_overdue < 24:
        return "3-24"
    if hours_overdue <= 72:
        return "24-72"
    return ">72"


async def collect_reminder_outcomes(store: RuntimeStore) -> list[ReminderOutcome]:
    """Pair every reminded item with its reminder state."""

    states = {state.item_id: state for state in await store.get_all_reminder_states()}
    outcomes = []
    for item in await store.list_items(escalate=False):
        state = states.get(item.id)
        if state is not None and state.reminder_count > 0 and state.last_reminder_at is not None:
            outcomes.append(ReminderOutcome(item, state))
    return outcomes


def _reminded_at(outcome: ReminderOutcome) -> datetime:
    return outcome.state.last_reminder_at or outcome.item.due_at


def build_training_table(outcomes: list[ReminderOutcome]) -> tuple[np.ndarray, np.ndarray, list[str]]:
    """Build a deterministic (X, y, feature_names) table ordered by reminder time."""

    ordered = sorted(
        (outcome for outcome in outcomes if outcome.state.last_reminder_at is not None),
        key=lambda outcome: (_reminded_at(outcome), outcome.item.id),
    )
    if not ordered:
        return np.empty((0, 0)), np.array([], dtype=int), []

    feature_names = ["reminder_hour", "reminder_weekday", "reminder_count", "rolling_completion_rate"]
    feature_names += [f"overdue_bucket={bucket}" for bucket in _OVERDUE_BUCKETS]
    feature_names += [f"priority={priority}" for priority in PRIORITIES]

    rows: list[list[float]] = []
    labels: list[int] = []
    completions = 0

    for seen, outcome in enumerate(ordered):
        reminded_at = _reminded_at(outcome)
        hours_overdue = max(0.0, (reminded_at - outcome.item.due_at).total_seconds() / 3600.0)
        bucket = _bucket_overdue(hours_overdue)
        rolling = (completions / seen) if seen else 0.5

        row = [
            float(reminded_at.hour),
            float(reminded_at.weekday()),
            float(outcome.state.reminder_count),
            float(rolling),
        ]
        row.extend(1.0 if bucket == name else 0.0 for name in _OVERDUE_BUCKETS)
        row.extend(1.0 if outcome.item.priority == priority else 0.0 for priority in PRIORITIES)

        label = 1 if outcome.state.last_confirmed_completed else 0
        rows.append(row)
        labels.append(label)
        completions += label

    return np.asarray(rows, dtype=float), np.asarray(labels, dtype=int), feature_names


METRICS = ("roc_auc", "f1", "accuracy")


def _logistic(seed: int) -> Any:
    return Pipeline(
        [
            ("scaler", StandardScaler()),
            ("clf", LogisticRegression(max_iter=1000, class_weight="balanced", random_state=seed)),
        ]
    )


def _forest(seed: int) -> Any:
    return RandomForestClassifier(
        n_estimators=100, min_samples_leaf=3, class_weight="balanced", random_state=seed
    )


def _boosting(seed: int) -> Any:
    return GradientBoostingClassifier(max_depth=2, n_estimators=50, random_state=seed)


CANDIDATE_MODELS: dict[str, Callable[[int], Any]] = {
    "LogisticRegression": _logistic,
    "RandomForest": _forest,
    "GradientBoosting": _boosting,
}


def _flat_scores(y: np.ndarray) -> dict[str, dict[str, float]]:
    """CV stand-in when one reply dominates too heavily to fold."""
    majority = float(np.mean(y == np.bincount(y).argmax()))
    return {
        "roc_auc": {"mean": 0.5, "std": 0.0},
        "f1": {"mean": 0.0, "std": 0.0},
        "accuracy": {"mean": majority, "std": 0.0},
    }


def _cross_validated(model: Any, X: np.ndarray, y: np.ndarray, seed: int) -> dict[str, dict[str, float]]:
    counts = np.bincount(y, minlength=2)
    if int(counts.min()) < 2:
        return _flat_scores(y)

    cv = StratifiedKFold(n_splits=min(5, int(counts.min())), shuffle=True, random_state=seed)
    scores = cross_validate(model, X, y, cv=cv, scoring=list(METRICS))
    return {
        metric: {"mean": float(scores[f"test_{metric}"].mean()), "std": float(scores[f"test_{metric}"].std())}
        for metric in METRICS
    }


def _holdout(
    model: Any, X_train: np.ndarray, y_train: np.ndarray, X_test: np.ndarray, y_test: np.ndarray
) -> dict:
    if len(np.unique(y_train)) < 2:
        # nothing to fit; every held-out reminder gets the only reply seen
        y_pred = np.full(len(y_test), y_train[0])
        y_score = y_pred.astype(float)
    else:
        model.fit(X_train, y_train)
        y_pred = model.predict(X_test)
        y_score = model.predict_proba(X_test)[:, 1]

    auc = float(roc_auc_score(y_test, y_score)) if len(np.unique(y_test)) > 1 else 0.5
    return {
        "roc_auc": auc,
        "f1": float(f1_score(y_test, y_pred, zero_division=0)),
        "accuracy": float(accuracy_score(y_test, y_pred)),
    }


def benchmark_models(X: np.ndarray, y: np.ndarray, seed: int = 42) -> dict:
    """Compare candidate classifiers on how well they predict a ``complete`` reply.

    Each model gets cross-validated scores on the training split and scores on
    a held-out quarter. ``baseline_accuracy`` is what always guessing the most
    common reply would score; a useful model has to beat it.
    """

    if len(X) == 0 or len(y) == 0:
        return {"models": {}, "ranking": [], "best_model": None, "baseline_accuracy": None}

    counts = np.bincount(y, minlength=2)
    stratify = y if int(counts.min()) >= 2 and len(y) >= 4 else None
    X_train, X_test, y_train, y_test = train_test_split(
        X, y, test_size=0.25, random_state=seed, stratify=stratify
    )

    models = {
        name: {
            "cv": _cross_validated(factory(seed), X_train, y_train, seed),
            "holdout": _holdout(factory(seed), X_train, y_train, X_test, y_test),
        }
        for name, factory in CANDIDATE_MODELS.items()
    }
    ranking = sorted(
        models,
        key=lambda name: (models[name]["cv"]["roc_auc"]["mean"], models[name]["holdout"]["roc_auc"]),
        reverse=True,
    )
    return {
        "models": models,
        "ranking": [
            {
                "model": name,
                "cv_roc_auc": models[name]["cv"]["roc_auc"]["mean"],
                "holdout_roc_auc": models[name]["holdout"]["roc_auc"],
            }
            for name in ranking
        ],
        "best_model": ranking[0],
        "baseline_accuracy": float(counts.max() / len(y)),
    }


def train_best_model(X: np.ndarray, y: np.ndarray, seed: int = 42) -> tuple[Any, dict]:
    """Refit the top-ranked model on the full table."""

    if len(np.unique(y)) < 2:
        raise ValueError("Reminder history needs both replies before a model can be trained")

    report = benchmark_models(X, y, seed=seed)
    model = CANDIDATE_MODELS[report["best_model"]](seed)
    model.fit(X, y)
    return model, report
