from __future__ import annotations

from dataclasses import dataclass, asdict, field
from typing import Any, Dict, List, Optional, Tuple
import json
import numpy as np


def default_tolerance(dtype=np.float64, exponent: float = 11 / 16) -> float:
    """eps(dtype)**exponent; the exponent was tuned empirically for PN inspirals."""
    return float(np.finfo(dtype).eps ** exponent)


@dataclass(frozen=True)
class SolverParams:
    # scipy.integrate OdeSolver class name
    method: str = "DOP853"
    # None => default_tolerance(dtype, tolerance_exponent)
    rtol: Optional[float] = None
    atol: Optional[float] = None
    tolerance_exponent: float = 11 / 16
    max_step: float = float('inf')
    first_step: Optional[float] = None

    # forward/backward time bound, in units of the leading-order time to merger
    horizon_factor: float = 4.0

    # raise HorizonExhausted instead of reporting the "horizon" stop reason
    raise_on_horizon: bool = False


@dataclass(frozen=True)
class BinaryParams:
    # masses in units where G = c = 1
    M1: float
    M2: float
    Omega_i: float
    chi1: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    chi2: Tuple[float, float, float] = (0.0, 0.0, 0.0)

    # first output frequency (backward leg when < Omega_i) and end frequency
    Omega_1: Optional[float] = None
    Omega_e: Optional[float] = None

    # initial orbital-frame rotor (w, x, y, z)
    R_i: Tuple[float, float, float, float] = (1.0, 0.0, 0.0, 0.0)

    # dimensionless tidal deformabilities; a lone neutron star is body 2
    Lambda1: float = 0.0
    Lambda2: float = 0.0

    @property
    def M(self) -> float:
        return float(self.M1 + self.M2)


@dataclass(frozen=True)
class EvolutionParams:
    approximant: str = "TaylorT1"
    # half-integer PN order, None => every implemented term
    pn_order: Optional[float] = None
    check_up_down_instability: bool = True
    quiet: bool = True
    # 0 => keep the solver's own steps
    saves_per_orbit: int = 0


@dataclass(frozen=True)
class ParallelParams:
    workers: int = 0  # 0 => use os.cpu_count()
    chunksize: int = 1


@dataclass(frozen=True)
class BatchConfig:
    runs: List[BinaryParams]
    evolution: EvolutionParams = EvolutionParams()
    solver: SolverParams = SolverParams()
    parallel: ParallelParams = ParallelParams()
    out_dir: str = "out_runs"
    tags: Dict[str, Any] = field(default_factory=dict)


def solver_tolerances(solver: SolverParams, M: float, n_vars: int, dtype=np.float64):
    """(rtol, atol) for a state of n_vars entries and total mass M.

    The absolute tolerance on the two masses is scaled to the spacing of M
    so that tiny horizon absorption rates do not dominate the error norm.
    """
    tol = default_tolerance(dtype, solver.tolerance_exponent)
    rtol = tol if solver.rtol is None else float(solver.rtol)
    if solver.atol is not None:
        return rtol, float(solver.atol)
    atol = np.full(n_vars, tol)
    atol[:2] = float(np.spacing(np.asarray(M, dtype=dtype)) ** solver.tolerance_exponent)
    return rtol, atol


def _dataclass_from_dict(cls, d: Dict[str, Any]):
    kwargs = {}
    for f in cls.__dataclass_fields__.values():  # type: ignore
        if f.name not in d:
            continue
        val = d[f.name]
        if f.name == 'max_step' and val is None:
            val = float('inf')
        if isinstance(val, list) and f.name in ('chi1', 'chi2', 'R_i'):
            val = tuple(float(x) for x in val)
        kwargs[f.name] = val
    return cls(**kwargs)  # type: ignore


def batch_config_from_dict(d: Dict[str, Any]) -> BatchConfig:
    d = dict(d)
    d["runs"] = [_dataclass_from_dict(BinaryParams, r) for r in d.get("runs", [])]
    if "evolution" in d:
        d["evolution"] = _dataclass_from_dict(EvolutionParams, d["evolution"])
    if "solver" in d:
        d["solver"] = _dataclass_from_dict(SolverParams, d["solver"])
    if "parallel" in d:
        d["parallel"] = _dataclass_from_dict(ParallelParams, d["parallel"])
    return _dataclass_from_dict(BatchConfig, d)


def load_batch_config(path: str) -> BatchConfig:
    with open(path, "r", encoding="utf-8") as f:
        d = json.load(f)
    return batch_config_from_dict(d)


def to_json(obj: Any, path: str) -> None:
    d = asdict(obj)
    if d.get("max_step") == float('inf'):
        d["max_step"] = None
    if isinstance(d.get("solver"), dict) and d["solver"].get("max_step") == float('inf'):
        d["solver"]["max_step"] = None
    with open(path, "w", encoding="utf-8") as f:
        json.dump(d, f, indent=2)
