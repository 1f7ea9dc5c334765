"""
Kinematics helpers for collision events.

Collections are per-event particle lists, given either as jagged awkward
arrays or as regular 2D numpy arrays of shape (n_events, n_particles).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import awkward as ak
import numpy as np

from hepfit.utils import is_awkward

if TYPE_CHECKING:
    import numpy.typing as npt


@dataclass(frozen=True)
class Resonance:
    name: str
    mass: float  # GeV
    label: str


# Known resonances visible in the opposite-charge dimuon spectrum
DIMUON_RESONANCES: tuple[Resonance, ...] = (
    Resonance("eta", 0.548, r"$\eta$"),
    Resonance("rho_omega", 0.782, r"$\rho,\omega$"),
    Resonance("phi", 1.019, r"$\phi$"),
    Resonance("jpsi", 3.097, r"$J/\psi$"),
    Resonance("psi2s", 3.686, r"$\psi'$"),
    Resonance("upsilon", 9.460, r"$\Upsilon$"),
    Resonance("z", 91.188, r"$Z$"),
)


def _sum_per_event(values: Any) -> npt.NDArray[np.float64]:
    if is_awkward(values):
        return ak.to_numpy(ak.sum(values, axis=-1)).astype(np.float64)
    return np.sum(values, axis=-1, dtype=np.float64)


def invariant_mass(pt: Any, eta: Any, phi: Any, mass: Any) -> npt.NDArray[np.float64]:
    """
    Invariant mass of the summed four-momenta of each event's collection.

    Args:
        pt: Transverse momenta.
        eta: Pseudorapidities.
        phi: Azimuthal angles.
        mass: Rest masses.

    Returns:
        One invariant mass per event.
    """
    px = pt * np.cos(phi)
    py = pt * np.sin(phi)
    pz = pt * np.sinh(eta)
    energy = np.sqrt(px * px + py * py + pz * pz + mass * mass)

    e_sum = _sum_per_event(energy)
    px_sum = _sum_per_event(px)
    py_sum = _sum_per_event(py)
    pz_sum = _sum_per_event(pz)

    m2 = e_sum * e_sum - px_sum * px_sum - py_sum * py_sum - pz_sum * pz_sum
    return np.sqrt(np.maximum(m2, 0.0))


def delta_phi(phi1: Any, phi2: Any) -> Any:
    """Azimuthal difference wrapped to [-pi, pi)."""
    return (phi1 - phi2 + np.pi) % (2.0 * np.pi) - np.pi
