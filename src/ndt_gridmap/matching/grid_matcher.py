"""
NDT Grid Matcher

Newton-based registration of a source point cloud against an NDT grid built
from a destination point cloud.

Each iteration:
1. Transforms the source points by the current pose
2. Looks up the Distribution of every transformed point
3. Accumulates the non-normalized Gaussian score, its gradient and the
   negated Hessian with respect to the pose parameters
4. Loads the Hessian diagonal with ``max(H) - min(H)`` and solves
   ``H delta = gradient`` with a rank-tolerant least-squares solver
5. Stops when every translation and rotation step is below its epsilon or
   the iteration cap is reached
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, Union

import numpy as np

from ..maps.gridmap import GridMap
from ..preprocessing.loader import PointCloud
from ..utils.config import AppConfig, MatcherConfig
from ..utils.logging import setup_logger
from ..utils.transform import (
    angle_from_rotation_2d,
    euler_from_rotation,
    make_transform,
    rotation_2d,
    rotation_3d,
    translation_transform,
)

logger = setup_logger(__name__)


class InvalidInputError(ValueError):
    """Raised when the destination cloud has a non-positive extent along some axis."""


class MatchState(str, Enum):
    INIT = "init"
    ITERATING = "iterating"
    CONVERGED = "converged"
    MAX_ITERATIONS_REACHED = "max_iterations_reached"


@dataclass
class MatchResult:
    """
    Result of a grid matching run.

    Attributes:
        score: Sum of non-normalized densities of the contributing source
            points in the last sweep
        transform: (D+1)x(D+1) transform mapping source points into the
            destination frame
        iterations: Number of Newton steps taken
        state: Terminal state (CONVERGED or MAX_ITERATIONS_REACHED)
        ill_conditioned_iterations: Steps whose linear solve was rank
            deficient or exceeded the condition limit
        contributing_points: Points that contributed in the last sweep
    """

    score: float
    transform: np.ndarray
    iterations: int
    state: MatchState
    ill_conditioned_iterations: int = 0
    contributing_points: int = 0

    @property
    def converged(self) -> bool:
        return self.state == MatchState.CONVERGED


CloudLike = Union[PointCloud, np.ndarray]


def _as_cloud(cloud: CloudLike) -> PointCloud:
    return cloud if isinstance(cloud, PointCloud) else PointCloud.from_array(cloud)


class GridMatcher:
    """
    Shared Newton loop; subclasses define the pose parametrisation.

    The pose vector is ``[translation (D), angles (A)]``.
    """

    dim: int = 0
    n_angles: int = 0

    def __init__(
        self,
        resolution: Union[float, Tuple[float, ...]] = 1.0,
        max_iterations: int = 100,
        convergence_translation_epsilon: float = 1e-4,
        convergence_rotation_epsilon_deg: float = 0.1,
        min_sample: float = 1e-3,
        condition_limit: float = 1e12,
    ):
        """
        Initialize matcher parameters.

        Args:
            resolution: Grid resolution of the destination map (scalar or per axis).
            max_iterations: Maximum number of Newton iterations.
            convergence_translation_epsilon: Translation step below which the
                pose is considered converged.
            convergence_rotation_epsilon_deg: Rotation step (degrees) below which
                the pose is considered converged.
            min_sample: Non-normalized density at or below which a point is ignored.
            condition_limit: Condition number above which a solve is reported
                as ill-conditioned.
        """
        self.resolution = np.broadcast_to(np.asarray(resolution, dtype=np.float64), (self.dim,)).copy()
        if np.any(self.resolution <= 0.0):
            raise ValueError(f"Resolution must be strictly positive, got {self.resolution}")
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self.max_iterations = int(max_iterations)
        self.convergence_translation_epsilon = float(convergence_translation_epsilon)
        # Store rotation epsilon in radians for internal use
        self.convergence_rotation_epsilon_rad = float(np.deg2rad(convergence_rotation_epsilon_deg))
        self.min_sample = float(min_sample)
        self.condition_limit = float(condition_limit)

        self.map: Optional[GridMap] = None
        self.state: MatchState = MatchState.INIT

    @classmethod
    def from_config(cls, config: Union[AppConfig, MatcherConfig]) -> "GridMatcher":
        cfg = config.matcher if isinstance(config, AppConfig) else config
        return cls(
            resolution=cfg.resolution,
            max_iterations=cfg.max_iterations,
            convergence_translation_epsilon=cfg.convergence_translation_epsilon,
            convergence_rotation_epsilon_deg=cfg.convergence_rotation_epsilon_deg,
            min_sample=cfg.min_sample,
            condition_limit=cfg.condition_limit,
        )

    # ------------------------------------------------------------------
    # Pose parametrisation (subclass hooks)
    # ------------------------------------------------------------------

    def pose_from_transform(self, transform: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def transform_from_pose(self, pose: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def rotation_derivatives(self, angles: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Derivatives of the rotation matrix with respect to the pose angles.

        Returns:
            Tuple of (first (A, D, D), second (A, A, D, D)).
        """
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Map construction
    # ------------------------------------------------------------------

    def build_map(self, destination: CloudLike) -> GridMap:
        """
        Build the static destination map.

        Raises:
            InvalidInputError: If the destination extent is not strictly
                positive along every axis.
        """
        dst = _as_cloud(destination)
        if dst.dimension != self.dim:
            raise ValueError(f"{type(self).__name__} expects {self.dim}-D points, got {dst.dimension}-D")

        extent = dst.range
        if np.any(extent <= 0.0):
            raise InvalidInputError(
                f"Destination point cloud extent must be positive in every axis, got {extent.tolist()}"
            )

        size = tuple(int(np.ceil(r / res)) + 1 for r, res in zip(extent, self.resolution))
        gridmap = GridMap(translation_transform(dst.min), self.resolution, size, kind="static")
        gridmap.insert_cloud(dst.valid_points)
        logger.debug("Built destination map: %s", gridmap)
        self.map = gridmap
        return gridmap

    # ------------------------------------------------------------------
    # Newton step
    # ------------------------------------------------------------------

    def _lookup(self, gridmap: GridMap, points: np.ndarray):
        """Mean and inverse covariance of the Distribution behind every point."""
        indices, valid = gridmap.to_bundle_indices(points)
        selected = np.nonzero(valid)[0]
        if selected.size == 0:
            return selected, np.empty((0, self.dim)), np.empty((0, self.dim, self.dim))

        uniq, inv = np.unique(indices[selected], axis=0, return_inverse=True)
        inv = inv.ravel()
        means = np.zeros((len(uniq), self.dim))
        inverse_covariances = np.zeros((len(uniq), self.dim, self.dim))
        usable = np.zeros(len(uniq), dtype=bool)
        for k, index in enumerate(uniq):
            bundle = gridmap.get_bundle(tuple(int(v) for v in index))
            if bundle is None:
                continue
            # Members of one bundle carry identical statistics; use the first
            distribution = bundle[0]
            if not gridmap.expand_distribution(distribution) or not distribution.valid:
                continue
            usable[k] = True
            means[k] = distribution.mean
            inverse_covariances[k] = distribution.inverse_covariance

        keep = usable[inv]
        return selected[keep], means[inv[keep]], inverse_covariances[inv[keep]]

    def accumulate(
        self,
        gridmap: GridMap,
        source_points: np.ndarray,
        pose: np.ndarray,
    ) -> Tuple[float, np.ndarray, np.ndarray, int]:
        """
        Score, gradient and negated Hessian of the NDT score at ``pose``.

        Args:
            gridmap: Destination map
            source_points: (M, D) valid source points
            pose: Current pose vector

        Returns:
            Tuple of (score, gradient (P,), hessian (P, P), contributing point count).
        """
        d = self.dim
        n_params = d + self.n_angles
        gradient = np.zeros(n_params)
        hessian = np.zeros((n_params, n_params))

        transform = self.transform_from_pose(pose)
        rotation = transform[:d, :d]
        transformed = source_points @ rotation.T + transform[:d, d]

        selected, means, inverse_covariances = self._lookup(gridmap, transformed)
        if selected.size == 0:
            return 0.0, gradient, hessian, 0

        q = transformed[selected] - means
        q_icov = np.einsum("ni,nij->nj", q, inverse_covariances)
        s = np.exp(-0.5 * np.einsum("ni,ni->n", q_icov, q))

        contributing = s > self.min_sample
        if not np.any(contributing):
            return 0.0, gradient, hessian, 0
        s = s[contributing]
        q_icov = q_icov[contributing]
        inverse_covariances = inverse_covariances[contributing]
        src = source_points[selected][contributing]
        n = len(s)

        first, second = self.rotation_derivatives(pose[d:])

        # Jacobian of the transformed point w.r.t. [translation, angles]: (n, D, P)
        jacobian = np.zeros((n, d, n_params))
        jacobian[:, :, :d] = np.eye(d)
        for k in range(self.n_angles):
            jacobian[:, :, d + k] = src @ first[k].T

        # a_k = q^T S^-1 J_k
        a = np.einsum("ni,nik->nk", q_icov, jacobian)
        gradient -= np.einsum("n,nk->k", s, a)

        terms = -a[:, :, None] * a[:, None, :]
        terms += np.einsum("nij,nil,nlk->njk", jacobian, inverse_covariances, jacobian)
        for j in range(self.n_angles):
            for k in range(self.n_angles):
                terms[:, d + j, d + k] += np.einsum("ni,ni->n", q_icov, src @ second[j, k].T)
        hessian += np.einsum("n,njk->jk", s, terms)

        return float(s.sum()), gradient, hessian, n

    def _solve(self, hessian: np.ndarray, gradient: np.ndarray) -> Tuple[np.ndarray, bool]:
        """Diagonal loading plus rank-tolerant solve of ``H delta = g``."""
        loaded = hessian.copy()
        off = loaded.max() - loaded.min()
        loaded[np.diag_indices_from(loaded)] += off

        delta, _, rank, singular_values = np.linalg.lstsq(loaded, gradient, rcond=None)
        ill_conditioned = rank < loaded.shape[0]
        if not ill_conditioned and singular_values[-1] > 0.0:
            ill_conditioned = singular_values[0] / singular_values[-1] > self.condition_limit
        return delta, bool(ill_conditioned)

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def match(
        self,
        destination: CloudLike,
        source: CloudLike,
        prior_transform: Optional[np.ndarray] = None,
    ) -> MatchResult:
        """
        Align ``source`` against ``destination``.

        Args:
            destination: Reference cloud the grid is built from (N x D).
            source: Cloud to align (M x D).
            prior_transform: Initial (D+1)x(D+1) transform or None for identity.

        Returns:
            MatchResult with the final transform and score.

        Raises:
            InvalidInputError: If the destination extent is degenerate.
        """
        self.state = MatchState.INIT
        src = _as_cloud(source)
        if src.dimension != self.dim:
            raise ValueError(f"{type(self).__name__} expects {self.dim}-D points, got {src.dimension}-D")

        build_start = time.time()
        gridmap = self.build_map(destination)
        logger.info(
            "Starting NDT matching with %d source points against %d bundles (built in %.4f s).",
            int(src.mask.sum()),
            gridmap.bundle_count,
            time.time() - build_start,
        )

        if prior_transform is None:
            pose = np.zeros(self.dim + self.n_angles)
        else:
            pose = self.pose_from_transform(np.asarray(prior_transform, dtype=np.float64))

        source_points = src.valid_points
        score = 0.0
        contributing = 0
        ill_conditioned_iterations = 0
        iteration = 0
        self.state = MatchState.ITERATING
        match_start = time.time()

        while self.state == MatchState.ITERATING:
            score, gradient, hessian, contributing = self.accumulate(gridmap, source_points, pose)
            if contributing == 0:
                logger.warning("No source point contributed at iteration %d; pose is left unchanged.", iteration + 1)

            delta, ill_conditioned = self._solve(hessian, gradient)
            if ill_conditioned:
                ill_conditioned_iterations += 1
                logger.debug("Iteration %d: Hessian solve is ill-conditioned.", iteration + 1)
            pose = pose + delta
            iteration += 1

            trans_step = np.abs(delta[: self.dim])
            rot_step = np.abs(delta[self.dim:])
            logger.debug(
                "Iteration %d: score=%.6f, points=%d, |dt|=%.6e, |dr|=%.6e rad",
                iteration,
                score,
                contributing,
                float(trans_step.max()),
                float(rot_step.max()),
            )

            if (
                np.all(trans_step < self.convergence_translation_epsilon)
                and np.all(rot_step < self.convergence_rotation_epsilon_rad)
            ):
                self.state = MatchState.CONVERGED
                logger.info("NDT matching converged after %d iterations.", iteration)
            elif iteration >= self.max_iterations:
                self.state = MatchState.MAX_ITERATIONS_REACHED
                logger.info("NDT matching did not converge after %d iterations.", self.max_iterations)

        if ill_conditioned_iterations:
            logger.warning(
                "%d of %d Newton steps had an ill-conditioned Hessian.",
                ill_conditioned_iterations,
                iteration,
            )

        transform = self.transform_from_pose(pose)
        logger.info(
            "NDT matching finished in %.4f s (%d iterations). Score: %.6f",
            time.time() - match_start,
            iteration,
            score,
        )
        return MatchResult(
            score=score,
            transform=transform,
            iterations=iteration,
            state=self.state,
            ill_conditioned_iterations=ill_conditioned_iterations,
            contributing_points=contributing,
        )


class GridMatcher2D(GridMatcher):
    """Planar matcher over the pose ``(x, y, phi)``."""

    dim = 2
    n_angles = 1

    def pose_from_transform(self, transform: np.ndarray) -> np.ndarray:
        if transform.shape != (3, 3):
            raise ValueError(f"Expected 3x3 transform, got {transform.shape}")
        return np.array([transform[0, 2], transform[1, 2], angle_from_rotation_2d(transform[:2, :2])])

    def transform_from_pose(self, pose: np.ndarray) -> np.ndarray:
        return make_transform(rotation_2d(pose[2]), pose[:2])

    def rotation_derivatives(self, angles: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        s, c = np.sin(angles[0]), np.cos(angles[0])
        first = np.array([[[-s, -c], [c, -s]]])
        second = np.array([[[[-c, s], [-s, -c]]]])
        return first, second


def _axis_rotation_derivatives(angle: float, axis: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Elementary rotation about ``axis`` and its first two derivatives."""
    s, c = np.sin(angle), np.cos(angle)
    i, j = [a for a in range(3) if a != axis]
    if axis == 1:
        # Ry: the sine above the diagonal is positive
        i, j = j, i
    r = np.zeros((3, 3))
    dr = np.zeros((3, 3))
    d2r = np.zeros((3, 3))
    r[axis, axis] = 1.0
    r[i, i], r[i, j], r[j, i], r[j, j] = c, -s, s, c
    dr[i, i], dr[i, j], dr[j, i], dr[j, j] = -s, -c, c, -s
    d2r[i, i], d2r[i, j], d2r[j, i], d2r[j, j] = -c, s, -s, -c
    return r, dr, d2r


class GridMatcher3D(GridMatcher):
    """Spatial matcher over the pose ``(x, y, z, roll, pitch, yaw)``."""

    dim = 3
    n_angles = 3

    # Rotation is Rz(yaw) @ Ry(pitch) @ Rx(roll); angles are ordered (roll, pitch, yaw)
    _PRODUCT_ORDER = (2, 1, 0)

    def pose_from_transform(self, transform: np.ndarray) -> np.ndarray:
        if transform.shape != (4, 4):
            raise ValueError(f"Expected 4x4 transform, got {transform.shape}")
        roll, pitch, yaw = euler_from_rotation(transform[:3, :3])
        return np.array([transform[0, 3], transform[1, 3], transform[2, 3], roll, pitch, yaw])

    def transform_from_pose(self, pose: np.ndarray) -> np.ndarray:
        return make_transform(rotation_3d(pose[3], pose[4], pose[5]), pose[:3])

    def rotation_derivatives(self, angles: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        factors = [_axis_rotation_derivatives(float(angles[k]), k) for k in range(3)]

        def product(orders):
            out = np.eye(3)
            for k in self._PRODUCT_ORDER:
                out = out @ factors[k][orders[k]]
            return out

        first = np.empty((3, 3, 3))
        second = np.empty((3, 3, 3, 3))
        for j in range(3):
            orders = [0, 0, 0]
            orders[j] += 1
            first[j] = product(orders)
            for k in range(3):
                orders2 = list(orders)
                orders2[k] += 1
                second[j, k] = product(orders2)
        return first, second


def create_matcher(dimension: int, **kwargs) -> GridMatcher:
    """Matcher for 2-D or 3-D point clouds."""
    if dimension == 2:
        return GridMatcher2D(**kwargs)
    if dimension == 3:
        return GridMatcher3D(**kwargs)
    raise ValueError(f"Only 2-D and 3-D matching is supported, got {dimension}")
