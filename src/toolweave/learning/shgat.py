"""
SHGAT: multi-head attention scorer over the hyperedge/sequence neighbourhood.

Given an intent embedding, the tools already used in this run and a set of
candidate tools or capabilities, scores each candidate by letting the
projected intent attend over the candidate's neighbourhood (members of the
hyperedges it shares plus its sequence neighbours in the graph).

Per head k (head width d = hidden_dim / num_heads):

    q_k   = (W_intent · intent)_k
    N_k   = (W_node · e(n))_k                for each neighbour n
    a     = softmax(N_k · q_k / sqrt(d))
    z_k   = (W_node · e(c))_k + a · N_k
    s_k   = q_k · z_k / sqrt(d)

    logit = sum_k head_weights[k] s_k + context_weight s_ctx + bias

with s_ctx the scaled dot product of the projected mean context feature and
the projected candidate. A candidate without neighbours or without a
registered feature still scores (the attention message is zero).

Parameters are replaced wholesale on every update (copy-on-write), so a
concurrent scorer always reads one consistent set of weights.
"""

import logging
import math
from collections.abc import Callable, Iterable, Sequence
from dataclasses import asdict, dataclass
from typing import Any

import numpy as np

from toolweave.domain.exceptions import IncompatibleSnapshot
from toolweave.domain.models import TrainingExample

logger = logging.getLogger(__name__)

SNAPSHOT_FORMAT = "toolweave.shgat"
SNAPSHOT_VERSION = 1

Params = dict[str, np.ndarray]
Features = dict[str, np.ndarray]
Neighbourhood = Callable[[str], Iterable[str]]


@dataclass(frozen=True)
class SHGATConfig:
    """Configuration for the SHGAT scorer."""

    embedding_dim: int = 1024
    hidden_dim: int = 64
    num_heads: int = 4
    learning_rate: float = 0.05  # Initial step of the backtracking line search
    l2_lambda: float = 1e-4
    max_grad_norm: float = 5.0
    max_line_search_steps: int = 8
    max_neighbours: int = 32
    seed: int = 0

    def __post_init__(self) -> None:
        if self.embedding_dim <= 0 or self.hidden_dim <= 0 or self.num_heads <= 0:
            raise ValueError("embedding_dim, hidden_dim and num_heads must be > 0")
        if self.hidden_dim % self.num_heads != 0:
            raise ValueError(
                f"hidden_dim ({self.hidden_dim}) must be divisible by "
                f"num_heads ({self.num_heads})"
            )
        if self.learning_rate <= 0:
            raise ValueError("learning_rate must be > 0")

    @property
    def head_dim(self) -> int:
        return self.hidden_dim // self.num_heads


@dataclass(frozen=True)
class _Forward:
    """Intermediate values of one forward pass, kept for backprop."""

    logit: float
    intent: np.ndarray
    candidate: np.ndarray
    context: np.ndarray | None
    neighbours: np.ndarray | None  # (m, D) raw features
    hq: np.ndarray  # (K, d)
    hc: np.ndarray  # (H,)
    hn: np.ndarray | None  # (K, m, d)
    hx: np.ndarray | None  # (H,)
    alpha: np.ndarray | None  # (K, m)
    z: np.ndarray  # (K, d)
    head_scores: np.ndarray  # (K,)
    context_score: float


def sigmoid(x: float) -> float:
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    ex = math.exp(x)
    return ex / (1.0 + ex)


def bce_with_logit(logit: float, target: float) -> float:
    """Binary cross-entropy of sigmoid(logit) against target, computed stably."""
    return max(logit, 0.0) - logit * target + math.log1p(math.exp(-abs(logit)))


def _softmax_rows(x: np.ndarray) -> np.ndarray:
    shifted = x - x.max(axis=1, keepdims=True)
    exp = np.exp(shifted)
    return exp / exp.sum(axis=1, keepdims=True)


class SHGAT:
    """Hypergraph attention recommender with online updates."""

    def __init__(
        self,
        config: SHGATConfig | None = None,
        neighbourhood: Neighbourhood | None = None,
    ) -> None:
        """
        Args:
            config: Model dimensions and optimiser settings
            neighbourhood: Callable returning the neighbour ids of a node
                (hyperedge co-members and graph neighbours). None means
                every candidate is scored without attention.
        """
        self.config = config or SHGATConfig()
        self._neighbourhood = neighbourhood
        self._features: Features = {}
        self._params: Params = self._init_params()
        self.update_count = 0

    def _init_params(self) -> Params:
        cfg = self.config
        rng = np.random.default_rng(cfg.seed)
        scale = 1.0 / math.sqrt(cfg.embedding_dim)
        return {
            "W_intent": rng.normal(0.0, scale, (cfg.hidden_dim, cfg.embedding_dim)),
            "W_node": rng.normal(0.0, scale, (cfg.hidden_dim, cfg.embedding_dim)),
            "head_weights": np.ones(cfg.num_heads),
            "context_weight": np.ones(1),
            "bias": np.zeros(1),
        }

    def set_neighbourhood(self, neighbourhood: Neighbourhood | None) -> None:
        self._neighbourhood = neighbourhood

    # ------------------------------------------------------------------
    # Node features
    # ------------------------------------------------------------------

    def register_node(self, node_id: str, embedding: Sequence[float] | np.ndarray) -> None:
        """Register (or replace) the feature vector of a tool or capability."""
        vector = np.asarray(embedding, dtype=np.float64)
        if vector.shape != (self.config.embedding_dim,):
            raise ValueError(
                f"feature for '{node_id}' has shape {vector.shape}, "
                f"expected ({self.config.embedding_dim},)"
            )
        # Copy-on-write: scorers iterating the previous dict never see it change
        self._features = {**self._features, node_id: vector}

    def has_node(self, node_id: str) -> bool:
        return node_id in self._features

    @property
    def node_ids(self) -> list[str]:
        return sorted(self._features)

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def score(
        self,
        intent_embedding: Sequence[float] | np.ndarray,
        context_tools: Sequence[str],
        candidate_ids: Iterable[str],
    ) -> list[tuple[str, float]]:
        """Rank candidates by raw score, highest first, ties by id."""
        params, features = self._params, self._features
        intent = self._as_intent(intent_embedding)
        context = self._context_vector(features, context_tools)
        scored = [
            (
                candidate_id,
                self._forward(params, features, intent, context, candidate_id).logit,
            )
            for candidate_id in set(candidate_ids)
        ]
        return sorted(scored, key=lambda item: (-item[1], item[0]))

    def predict(
        self,
        intent_embedding: Sequence[float] | np.ndarray,
        context_tools: Sequence[str],
        candidate_id: str,
    ) -> float:
        """Success probability of one candidate."""
        features = self._features
        forward = self._forward(
            self._params,
            features,
            self._as_intent(intent_embedding),
            self._context_vector(features, context_tools),
            candidate_id,
        )
        return sigmoid(forward.logit)

    def _as_intent(self, intent_embedding: Sequence[float] | np.ndarray) -> np.ndarray:
        intent = np.asarray(intent_embedding, dtype=np.float64)
        if intent.shape != (self.config.embedding_dim,):
            raise ValueError(
                f"intent embedding has shape {intent.shape}, "
                f"expected ({self.config.embedding_dim},)"
            )
        return intent

    def _context_vector(
        self, features: Features, context_tools: Sequence[str]
    ) -> np.ndarray | None:
        known = [features[t] for t in context_tools if t in features]
        if not known:
            return None
        return np.mean(known, axis=0)

    def _neighbour_features(
        self, features: Features, candidate_id: str
    ) -> np.ndarray | None:
        if self._neighbourhood is None:
            return None
        ids = sorted(
            {
                n
                for n in self._neighbourhood(candidate_id)
                if n != candidate_id and n in features
            }
        )[: self.config.max_neighbours]
        if not ids:
            return None
        return np.stack([features[n] for n in ids])

    def _forward(
        self,
        params: Params,
        features: Features,
        intent: np.ndarray,
        context: np.ndarray | None,
        candidate_id: str,
    ) -> _Forward:
        cfg = self.config
        heads, width = cfg.num_heads, cfg.head_dim
        scale = 1.0 / math.sqrt(width)

        candidate = features.get(candidate_id)
        if candidate is None:
            candidate = np.zeros(cfg.embedding_dim)
        neighbours = self._neighbour_features(features, candidate_id)

        hq = (params["W_intent"] @ intent).reshape(heads, width)
        hc = params["W_node"] @ candidate

        if neighbours is not None:
            hn = (neighbours @ params["W_node"].T).reshape(-1, heads, width)
            hn = hn.transpose(1, 0, 2)
            alpha = _softmax_rows(np.einsum("kmd,kd->km", hn, hq) * scale)
            message = np.einsum("km,kmd->kd", alpha, hn)
        else:
            hn = None
            alpha = None
            message = np.zeros((heads, width))

        z = hc.reshape(heads, width) + message
        head_scores = np.einsum("kd,kd->k", hq, z) * scale

        if context is not None:
            hx = params["W_node"] @ context
            context_score = float(hx @ hc) / math.sqrt(cfg.hidden_dim)
        else:
            hx = None
            context_score = 0.0

        logit = float(
            params["head_weights"] @ head_scores
            + params["context_weight"][0] * context_score
            + params["bias"][0]
        )
        return _Forward(
            logit=logit,
            intent=intent,
            candidate=candidate,
            context=context,
            neighbours=neighbours,
            hq=hq,
            hc=hc,
            hn=hn,
            hx=hx,
            alpha=alpha,
            z=z,
            head_scores=head_scores,
            context_score=context_score,
        )

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def _loss(self, params: Params, forward: _Forward, target: float, weight: float) -> float:
        l2 = 0.5 * self.config.l2_lambda * (
            float(np.sum(params["W_intent"] ** 2)) + float(np.sum(params["W_node"] ** 2))
        )
        return weight * bce_with_logit(forward.logit, target) + l2

    def _backward(
        self, params: Params, f: _Forward, target: float, weight: float
    ) -> Params:
        cfg = self.config
        heads, width, hidden = cfg.num_heads, cfg.head_dim, cfg.hidden_dim
        scale = 1.0 / math.sqrt(width)

        g = weight * (sigmoid(f.logit) - target)
        grads: Params = {
            "head_weights": g * f.head_scores,
            "context_weight": np.array([g * f.context_score]),
            "bias": np.array([g]),
        }

        d_scores = g * params["head_weights"]
        d_hq = d_scores[:, None] * f.z * scale
        d_z = d_scores[:, None] * f.hq * scale
        d_w_node = np.zeros_like(params["W_node"])

        if f.hn is not None and f.alpha is not None and f.neighbours is not None:
            d_hn = f.alpha[:, :, None] * d_z[:, None, :]
            d_alpha = np.einsum("kmd,kd->km", f.hn, d_z)
            d_logits = f.alpha * (
                d_alpha - (f.alpha * d_alpha).sum(axis=1, keepdims=True)
            )
            d_hn += d_logits[:, :, None] * f.hq[:, None, :] * scale
            d_hq += np.einsum("km,kmd->kd", d_logits, f.hn) * scale
            d_hn_flat = d_hn.transpose(1, 0, 2).reshape(-1, hidden)
            d_w_node += d_hn_flat.T @ f.neighbours

        d_hc = d_z.reshape(hidden).copy()
        if f.hx is not None and f.context is not None:
            d_context = g * params["context_weight"][0] / math.sqrt(hidden)
            d_hc += d_context * f.hx
            d_w_node += np.outer(d_context * f.hc, f.context)

        d_w_node += np.outer(d_hc, f.candidate)
        grads["W_node"] = d_w_node + cfg.l2_lambda * params["W_node"]
        grads["W_intent"] = (
            np.outer(d_hq.reshape(hidden), f.intent) + cfg.l2_lambda * params["W_intent"]
        )
        return grads

    def _clip(self, grads: Params) -> Params:
        norm = math.sqrt(sum(float(np.sum(g**2)) for g in grads.values()))
        if norm <= self.config.max_grad_norm or norm == 0.0:
            return grads
        factor = self.config.max_grad_norm / norm
        return {name: g * factor for name, g in grads.items()}

    def gradients(self, example: TrainingExample, weight: float = 1.0) -> Params:
        """Unclipped gradient of the weighted loss for one example."""
        params, features = self._params, self._features
        forward = self._forward(
            params,
            features,
            self._as_intent(example.intent_embedding),
            self._context_vector(features, example.context_tools),
            example.candidate_id,
        )
        return self._backward(params, forward, example.outcome, weight)

    def loss(self, example: TrainingExample, weight: float = 1.0) -> float:
        params, features = self._params, self._features
        forward = self._forward(
            params,
            features,
            self._as_intent(example.intent_embedding),
            self._context_vector(features, example.context_tools),
            example.candidate_id,
        )
        return self._loss(params, forward, example.outcome, weight)

    def train_on_example(self, example: TrainingExample, weight: float = 1.0) -> float:
        """One gradient step on a single example.

        The step is chosen by backtracking from ``learning_rate``; a step
        that would increase the loss is never applied, so repeated training
        on the same example never makes it worse.

        Callers must hold the training lock (see TrainingCoordinator).

        Returns:
            Loss before the update
        """
        params, features = self._params, self._features
        intent = self._as_intent(example.intent_embedding)
        context = self._context_vector(features, example.context_tools)
        forward = self._forward(params, features, intent, context, example.candidate_id)
        loss_before = self._loss(params, forward, example.outcome, weight)
        grads = self._clip(self._backward(params, forward, example.outcome, weight))

        step = self.config.learning_rate
        for _ in range(self.config.max_line_search_steps):
            trial = {name: params[name] - step * grads[name] for name in params}
            trial_forward = self._forward(
                trial, features, intent, context, example.candidate_id
            )
            if self._loss(trial, trial_forward, example.outcome, weight) <= loss_before:
                self._params = trial
                self.update_count += 1
                break
            step /= 2.0
        else:
            logger.debug(
                "No descent step found for candidate '%s'", example.candidate_id
            )
        return loss_before

    def td_error(self, example: TrainingExample) -> float:
        """Outcome minus predicted success probability."""
        return example.outcome - self.predict(
            example.intent_embedding, example.context_tools, example.candidate_id
        )

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def export_params(self) -> dict[str, Any]:
        """JSON-serializable snapshot of config and weights.

        Node features are not part of the snapshot; they are re-registered
        from capability and tool records.
        """
        params = self._params
        return {
            "format": SNAPSHOT_FORMAT,
            "version": SNAPSHOT_VERSION,
            "config": asdict(self.config),
            "params": {name: params[name].tolist() for name in sorted(params)},
        }

    def import_params(self, snapshot: dict[str, Any]) -> None:
        """Load weights from a snapshot produced by export_params.

        Callers must hold the training lock (see TrainingCoordinator.load_snapshot).

        Raises:
            IncompatibleSnapshot: On unknown format/version, different model
                dimensions or mismatched parameter shapes
        """
        if snapshot.get("format") != SNAPSHOT_FORMAT:
            raise IncompatibleSnapshot(f"Unknown snapshot format {snapshot.get('format')!r}")
        if snapshot.get("version") != SNAPSHOT_VERSION:
            raise IncompatibleSnapshot(
                f"Unsupported snapshot version {snapshot.get('version')!r}"
            )
        config = snapshot.get("config", {})
        for key in ("embedding_dim", "hidden_dim", "num_heads"):
            if config.get(key) != getattr(self.config, key):
                raise IncompatibleSnapshot(
                    f"Snapshot {key}={config.get(key)} does not match "
                    f"model {key}={getattr(self.config, key)}"
                )

        current = self._params
        raw = snapshot.get("params", {})
        loaded: Params = {}
        for name, value in current.items():
            if name not in raw:
                raise IncompatibleSnapshot(f"Snapshot is missing parameter '{name}'")
            array = np.asarray(raw[name], dtype=np.float64)
            if array.shape != value.shape:
                raise IncompatibleSnapshot(
                    f"Parameter '{name}' has shape {array.shape}, expected {value.shape}"
                )
            loaded[name] = array
        self._params = loaded
