"""
SE(3) rigid body poses for extrinsic calibration.

Convention: T_CL = [R_CL, t_CL] maps a point from the LiDAR frame L into the
camera frame C: p_C = R_CL @ p_L + t_CL. Composition: T_AC = T_AB @ T_BC.

Representations:
- redundant (storage/composition): unit quaternion (qx, qy, qz, qw) followed
  by translation (tx, ty, tz), 7 scalars
- minimal (optimization): tangent vector (rho_x, rho_y, rho_z, omega_x,
  omega_y, omega_z), translation block first

Updates go through Pose.retract, which right-multiplies the exponential of a
tangent vector: T' = T @ exp(delta).
"""

import math
from typing import Optional, Tuple

import numpy as np
from scipy.spatial.transform import Rotation

from camlidar_nid.core.exceptions import ManifoldConstraintViolation

# Below this angle exp/log use series expansions
SMALL_ANGLE: float = 1e-8
UNIT_NORM_TOLERANCE: float = 1e-9


def skew(v: np.ndarray) -> np.ndarray:
    """Skew-symmetric matrix from 3-vector (hat operator)."""
    return np.array([
        [0.0, -v[2], v[1]],
        [v[2], 0.0, -v[0]],
        [-v[1], v[0], 0.0]
    ], dtype=float)


def _left_jacobian(omega: np.ndarray) -> np.ndarray:
    """SO(3) left Jacobian V, so that t = V @ rho in the SE(3) exponential."""
    theta = np.linalg.norm(omega)
    K = skew(omega)
    if theta < SMALL_ANGLE:
        return np.eye(3) + 0.5 * K
    return (np.eye(3)
            + (1.0 - math.cos(theta)) / theta ** 2 * K
            + (theta - math.sin(theta)) / theta ** 3 * (K @ K))


def _left_jacobian_inverse(omega: np.ndarray) -> np.ndarray:
    theta = np.linalg.norm(omega)
    K = skew(omega)
    if theta < SMALL_ANGLE:
        return np.eye(3) - 0.5 * K
    half = 0.5 * theta
    coeff = (1.0 - half * math.cos(half) / math.sin(half)) / theta ** 2
    return np.eye(3) - 0.5 * K + coeff * (K @ K)


class Pose:
    """
    Rigid transform stored as a unit quaternion plus a translation.

    Instances are treated as immutable: every operation returns a new Pose.
    """

    __slots__ = ("_quat", "_t")

    def __init__(self, quaternion=(0.0, 0.0, 0.0, 1.0), translation=(0.0, 0.0, 0.0)):
        q = np.asarray(quaternion, dtype=float).reshape(-1)
        t = np.asarray(translation, dtype=float).reshape(-1)
        if q.shape != (4,) or t.shape != (3,):
            raise ManifoldConstraintViolation(
                message=f"Pose needs a 4-quaternion and 3-translation, got {q.shape} and {t.shape}"
            )
        norm = np.linalg.norm(q)
        if not np.all(np.isfinite(q)) or not np.all(np.isfinite(t)) or norm < 1e-12:
            raise ManifoldConstraintViolation(
                message="Pose parameters must be finite with a non-zero quaternion",
                details={"quaternion": q.tolist(), "translation": t.tolist()}
            )
        q = q / norm
        # Canonical hemisphere keeps the 7-vector unique
        if q[3] < 0:
            q = -q
        self._quat = q
        self._t = t.copy()
        self._quat.setflags(write=False)
        self._t.setflags(write=False)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def identity(cls) -> 'Pose':
        return cls()

    @classmethod
    def from_Rt(cls, R: np.ndarray, t: np.ndarray) -> 'Pose':
        R = np.array(R, dtype=float)
        if R.shape != (3, 3) or not np.allclose(R @ R.T, np.eye(3), atol=1e-6) \
                or np.linalg.det(R) <= 0:
            raise ManifoldConstraintViolation(
                message="Rotation matrix must be orthonormal with determinant +1"
            )
        return cls(Rotation.from_matrix(R).as_quat(), t)

    @classmethod
    def from_matrix(cls, T: np.ndarray) -> 'Pose':
        T = np.asarray(T, dtype=float)
        if T.shape != (4, 4):
            raise ManifoldConstraintViolation(message=f"Expected 4x4 matrix, got {T.shape}")
        return cls.from_Rt(T[:3, :3], T[:3, 3])

    @classmethod
    def from_params(cls, params: np.ndarray) -> 'Pose':
        """From [tx, ty, tz, rx, ry, rz] (translation + rotation vector)."""
        params = np.array(params, dtype=float).reshape(-1)
        return cls(Rotation.from_rotvec(params[3:6]).as_quat(), params[:3])

    @classmethod
    def from_parameters(cls, parameters: np.ndarray) -> 'Pose':
        """From the redundant 7-vector [qx, qy, qz, qw, tx, ty, tz]."""
        parameters = np.asarray(parameters, dtype=float).reshape(-1)
        if parameters.shape != (7,):
            raise ManifoldConstraintViolation(
                message=f"Expected 7 pose parameters, got {parameters.shape}"
            )
        return cls(parameters[:4], parameters[4:])

    @classmethod
    def exp(cls, xi: np.ndarray) -> 'Pose':
        """Exponential map se(3) -> SE(3) for xi = [rho, omega]."""
        xi = np.array(xi, dtype=float).reshape(-1)
        if xi.shape != (6,) or not np.all(np.isfinite(xi)):
            raise ManifoldConstraintViolation(
                message="Tangent vector must be a finite 6-vector",
                details={"tangent": np.atleast_1d(xi).tolist()}
            )
        rho, omega = xi[:3], xi[3:]
        return cls(Rotation.from_rotvec(omega).as_quat(), _left_jacobian(omega) @ rho)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def quaternion(self) -> np.ndarray:
        """Unit quaternion (qx, qy, qz, qw)."""
        return self._quat

    @property
    def translation(self) -> np.ndarray:
        return self._t

    @property
    def rotation(self) -> Rotation:
        return Rotation.from_quat(np.array(self._quat))

    @property
    def rotation_matrix(self) -> np.ndarray:
        return self.rotation.as_matrix()

    def matrix(self) -> np.ndarray:
        T = np.eye(4)
        T[:3, :3] = self.rotation_matrix
        T[:3, 3] = self._t
        return T

    def to_Rt(self) -> Tuple[np.ndarray, np.ndarray]:
        return self.rotation_matrix, self._t.copy()

    def parameters(self) -> np.ndarray:
        """Redundant 7-vector [qx, qy, qz, qw, tx, ty, tz]."""
        return np.concatenate([self._quat, self._t])

    def to_params(self) -> np.ndarray:
        """[tx, ty, tz, rx, ry, rz] (translation + rotation vector)."""
        return np.concatenate([self._t, self.rotation.as_rotvec()])

    def euler_degrees(self, seq: str = 'ZYX') -> np.ndarray:
        return self.rotation.as_euler(seq, degrees=True)

    # ------------------------------------------------------------------
    # Group operations
    # ------------------------------------------------------------------

    # Rotations act through matrix products: the stored arrays and
    # Frame.points are read-only, which Rotation.apply rejects.
    def inverse(self) -> 'Pose':
        R_inv = self.rotation.inv()
        return Pose(R_inv.as_quat(), -(R_inv.as_matrix() @ self._t))

    def compose(self, other: 'Pose') -> 'Pose':
        R = self.rotation
        t = R.as_matrix() @ np.asarray(other.translation, dtype=float) + self._t
        return Pose((R * other.rotation).as_quat(), t)

    def __matmul__(self, other: 'Pose') -> 'Pose':
        return self.compose(other)

    def transform_points(self, points: np.ndarray) -> np.ndarray:
        """Apply the transform to an (N, 3) array (or a single 3-vector)."""
        points = np.asarray(points, dtype=float)
        return points @ self.rotation_matrix.T + self._t

    def log(self) -> np.ndarray:
        """Logarithm map SE(3) -> se(3) as [rho, omega]."""
        omega = self.rotation.as_rotvec()
        return np.concatenate([_left_jacobian_inverse(omega) @ self._t, omega])

    def retract(self, delta: np.ndarray) -> 'Pose':
        """
        Apply a tangent-space step: T @ exp(delta).

        Raises:
            ManifoldConstraintViolation: delta is not a finite 6-vector. The
                returned pose otherwise always has a unit quaternion.
        """
        return self.compose(Pose.exp(delta))

    def local(self, other: 'Pose') -> np.ndarray:
        """Tangent vector delta such that self.retract(delta) == other."""
        return self.inverse().compose(other).log()

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def is_valid(self, tolerance: float = UNIT_NORM_TOLERANCE) -> bool:
        return (bool(np.all(np.isfinite(self._quat)) and np.all(np.isfinite(self._t)))
                and abs(np.linalg.norm(self._quat) - 1.0) < tolerance)

    def rotation_distance_deg(self, other: 'Pose') -> float:
        """Angle of the relative rotation between two poses, in degrees."""
        return float(np.degrees((self.rotation.inv() * other.rotation).magnitude()))

    def translation_distance(self, other: 'Pose') -> float:
        return float(np.linalg.norm(self._t - other.translation))

    def is_close(self, other: 'Pose', rotation_tol_deg: float = 1e-6,
                 translation_tol: float = 1e-9) -> bool:
        return (self.rotation_distance_deg(other) <= rotation_tol_deg
                and self.translation_distance(other) <= translation_tol)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Pose):
            return NotImplemented
        return bool(np.array_equal(self._quat, other._quat) and np.array_equal(self._t, other._t))

    def __hash__(self) -> int:
        return hash((self._quat.tobytes(), self._t.tobytes()))

    def __repr__(self) -> str:
        q = ", ".join(f"{v:.6f}" for v in self._quat)
        t = ", ".join(f"{v:.6f}" for v in self._t)
        return f"Pose(quaternion=[{q}], translation=[{t}])"


def pose_from_dict(data: dict, default: Optional[Pose] = None) -> Pose:
    """
    Build a pose from a config mapping.

    Accepted layouts:
    - {matrix: 4x4}
    - {translation: [x, y, z], quaternion: [qx, qy, qz, qw]}
    - {translation: [x, y, z], rotvec: [rx, ry, rz]}
    - {translation: [x, y, z], euler_deg: [z, y, x]} (ZYX sequence)
    """
    if not data:
        if default is not None:
            return default
        raise ManifoldConstraintViolation(message="No pose given")
    if 'matrix' in data:
        return Pose.from_matrix(np.array(data['matrix'], dtype=float))
    t = np.array(data.get('translation', [0.0, 0.0, 0.0]), dtype=float)
    if 'quaternion' in data:
        return Pose(np.array(data['quaternion'], dtype=float), t)
    if 'rotvec' in data:
        return Pose(Rotation.from_rotvec(np.array(data['rotvec'], dtype=float)).as_quat(), t)
    if 'euler_deg' in data:
        return Pose(Rotation.from_euler('ZYX', data['euler_deg'], degrees=True).as_quat(), t)
    return Pose(translation=t)
