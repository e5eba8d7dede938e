"""Tests for the SHGAT recommender."""

import json

import numpy as np
import pytest

from toolweave.domain.exceptions import IncompatibleSnapshot
from toolweave.domain.models import TrainingExample
from toolweave.learning.shgat import SHGAT, SHGATConfig, bce_with_logit, sigmoid

DIM = 16


def vec(seed: int) -> np.ndarray:
    vector = np.random.default_rng(seed).standard_normal(DIM)
    return vector / np.linalg.norm(vector)


def build_model(config: SHGATConfig, with_neighbourhood: bool = True) -> SHGAT:
    """Model with five tools; parse_json's neighbours are read_file and write_file."""
    neighbours = {
        "parse_json": ["read_file", "write_file"],
        "read_file": ["parse_json"],
        "write_file": ["parse_json"],
    }
    model = SHGAT(
        config,
        neighbourhood=(lambda node_id: neighbours.get(node_id, []))
        if with_neighbourhood
        else None,
    )
    for seed, node_id in enumerate(("read_file", "parse_json", "write_file", "grep", "fetch")):
        model.register_node(node_id, vec(100 + seed))
    return model


def example(candidate: str = "parse_json", outcome: float = 1.0) -> TrainingExample:
    return TrainingExample(
        intent_embedding=tuple(vec(1)),
        context_tools=("read_file",),
        candidate_id=candidate,
        outcome=outcome,
    )


def with_param(model: SHGAT, name: str, index: tuple[int, ...], delta: float) -> SHGAT:
    """Copy of ``model`` with one parameter entry shifted by ``delta``."""
    snapshot = model.export_params()
    array = np.asarray(snapshot["params"][name])
    array[index] += delta
    snapshot["params"][name] = array.tolist()
    shifted = build_model(model.config)
    shifted.import_params(snapshot)
    return shifted


class TestConfig:
    def test_heads_must_divide_hidden(self):
        with pytest.raises(ValueError, match="divisible"):
            SHGATConfig(embedding_dim=DIM, hidden_dim=10, num_heads=3)

    def test_dimensions_positive(self):
        with pytest.raises(ValueError):
            SHGATConfig(embedding_dim=0)

    def test_head_dim(self, small_shgat_config):
        assert small_shgat_config.head_dim == 4


class TestScoring:
    """Tests for score and predict."""

    def test_register_rejects_wrong_shape(self, small_shgat_config):
        model = SHGAT(small_shgat_config)
        with pytest.raises(ValueError, match="shape"):
            model.register_node("x", [0.0, 1.0])

    def test_intent_shape_checked(self, small_shgat_config):
        model = build_model(small_shgat_config)
        with pytest.raises(ValueError, match="intent"):
            model.score([1.0, 0.0], [], ["grep"])

    def test_score_sorted_and_complete(self, small_shgat_config):
        model = build_model(small_shgat_config)
        ranked = model.score(vec(1), ["read_file"], ["grep", "parse_json", "write_file"])

        assert {node_id for node_id, _ in ranked} == {"grep", "parse_json", "write_file"}
        scores = [score for _, score in ranked]
        assert scores == sorted(scores, reverse=True)

    def test_unknown_candidate_still_scores(self, small_shgat_config):
        model = build_model(small_shgat_config)
        ranked = model.score(vec(1), [], ["never_registered"])
        assert ranked[0][0] == "never_registered"
        assert np.isfinite(ranked[0][1])

    def test_same_seed_same_scores(self, small_shgat_config):
        a = build_model(small_shgat_config).score(vec(1), ["read_file"], ["parse_json", "grep"])
        b = build_model(small_shgat_config).score(vec(1), ["read_file"], ["parse_json", "grep"])
        assert a == b

    def test_neighbourhood_changes_score(self, small_shgat_config):
        """Attention over neighbours contributes to the candidate's score."""
        with_attention = build_model(small_shgat_config)
        without = build_model(small_shgat_config, with_neighbourhood=False)
        a = with_attention.predict(vec(1), [], "parse_json")
        b = without.predict(vec(1), [], "parse_json")
        assert a != pytest.approx(b)

    def test_registration_during_scoring_is_not_seen(self, small_shgat_config):
        """A scorer works on the features as they were when it started."""
        model = SHGAT(small_shgat_config)

        def neighbourhood(node_id: str) -> list[str]:
            if not model.has_node("late"):
                model.register_node("late", vec(99))
            return ["late"]

        model.set_neighbourhood(neighbourhood)
        model.register_node("parse_json", vec(101))
        reference = SHGAT(small_shgat_config)
        reference.register_node("parse_json", vec(101))

        scored = model.score(vec(1), [], ["parse_json"])

        assert model.has_node("late")
        assert dict(scored) == pytest.approx(dict(reference.score(vec(1), [], ["parse_json"])))

    def test_node_ids_snapshot_survives_registration(self, small_shgat_config):
        model = build_model(small_shgat_config)
        features = model._features
        model.register_node("zip", vec(7))
        assert "zip" not in features
        assert "zip" in model.node_ids

    def test_predict_is_probability(self, small_shgat_config):
        p = build_model(small_shgat_config).predict(vec(1), ["read_file"], "parse_json")
        assert 0.0 < p < 1.0

    def test_stable_helpers(self):
        assert sigmoid(0.0) == 0.5
        assert sigmoid(-1000.0) == pytest.approx(0.0)
        assert bce_with_logit(0.0, 1.0) == pytest.approx(np.log(2.0))
        assert np.isfinite(bce_with_logit(-1000.0, 1.0))


class TestTraining:
    """Tests for online updates."""

    @pytest.mark.parametrize(
        "name,index",
        [
            ("bias", (0,)),
            ("context_weight", (0,)),
            ("head_weights", (1,)),
            ("W_intent", (3, 5)),
            ("W_node", (0, 0)),
            ("W_node", (7, 11)),
        ],
    )
    def test_gradient_matches_finite_difference(self, small_shgat_config, name, index):
        """Analytic gradients agree with central differences."""
        model = build_model(small_shgat_config)
        sample = example()
        h = 1e-6

        analytic = model.gradients(sample)[name][index]
        numeric = (
            with_param(model, name, index, h).loss(sample)
            - with_param(model, name, index, -h).loss(sample)
        ) / (2 * h)

        assert analytic == pytest.approx(numeric, rel=1e-4, abs=1e-7)

    def test_training_never_increases_loss(self, small_shgat_config):
        model = build_model(small_shgat_config)
        sample = example()
        losses = [model.train_on_example(sample) for _ in range(20)]

        assert all(later <= earlier + 1e-12 for earlier, later in zip(losses, losses[1:]))
        assert model.loss(sample) < losses[0]
        assert model.update_count > 0

    def test_success_raises_prediction(self, small_shgat_config):
        model = build_model(small_shgat_config)
        before = model.predict(vec(1), ["read_file"], "parse_json")
        for _ in range(30):
            model.train_on_example(example(outcome=1.0))
        assert model.predict(vec(1), ["read_file"], "parse_json") > before

    def test_failure_lowers_prediction(self, small_shgat_config):
        model = build_model(small_shgat_config)
        before = model.predict(vec(1), ["read_file"], "grep")
        for _ in range(30):
            model.train_on_example(example("grep", outcome=0.0))
        assert model.predict(vec(1), ["read_file"], "grep") < before

    def test_td_error(self, small_shgat_config):
        model = build_model(small_shgat_config)
        sample = example(outcome=1.0)
        expected = 1.0 - model.predict(vec(1), ["read_file"], "parse_json")
        assert model.td_error(sample) == pytest.approx(expected)


class TestSnapshots:
    """Tests for export_params / import_params."""

    def test_snapshot_is_json_serializable(self, small_shgat_config):
        snapshot = build_model(small_shgat_config).export_params()
        assert json.loads(json.dumps(snapshot)) == snapshot

    def test_round_trip_restores_scores(self, small_shgat_config):
        trained = build_model(small_shgat_config)
        for _ in range(5):
            trained.train_on_example(example())
        fresh = build_model(
            SHGATConfig(embedding_dim=DIM, hidden_dim=8, num_heads=2, seed=99)
        )

        fresh.import_params(json.loads(json.dumps(trained.export_params())))

        candidates = ["parse_json", "grep", "write_file"]
        restored = dict(fresh.score(vec(1), ["read_file"], candidates))
        original = dict(trained.score(vec(1), ["read_file"], candidates))
        assert restored == pytest.approx(original)

    def test_unknown_format_rejected(self, small_shgat_config):
        snapshot = build_model(small_shgat_config).export_params()
        snapshot["format"] = "something.else"
        with pytest.raises(IncompatibleSnapshot, match="format"):
            SHGAT(small_shgat_config).import_params(snapshot)

    def test_dimension_mismatch_rejected(self, small_shgat_config):
        snapshot = build_model(small_shgat_config).export_params()
        other = SHGAT(SHGATConfig(embedding_dim=DIM, hidden_dim=16, num_heads=2))
        with pytest.raises(IncompatibleSnapshot, match="hidden_dim"):
            other.import_params(snapshot)

    def test_shape_mismatch_rejected(self, small_shgat_config):
        snapshot = build_model(small_shgat_config).export_params()
        snapshot["params"]["head_weights"] = [1.0]
        with pytest.raises(IncompatibleSnapshot, match="head_weights"):
            SHGAT(small_shgat_config).import_params(snapshot)

    def test_failed_import_keeps_weights(self, small_shgat_config):
        model = build_model(small_shgat_config)
        before = model.export_params()
        snapshot = model.export_params()
        del snapshot["params"]["bias"]

        with pytest.raises(IncompatibleSnapshot, match="missing"):
            model.import_params(snapshot)
        assert model.export_params() == before
