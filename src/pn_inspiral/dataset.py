from __future__ import annotations

import logging
import os
import time
from concurrent.futures import ProcessPoolExecutor
from dataclasses import asdict
from typing import Any, Dict, List, Tuple

import numpy as np
import pandas as pd
from tqdm import tqdm

from .config import BatchConfig, BinaryParams, EvolutionParams, SolverParams
from .errors import InspiralError
from .evolution import orbital_evolution

logger = logging.getLogger(__name__)


def _set_thread_env():
    # Avoid oversubscription when also using multiple processes.
    os.environ.setdefault("OMP_NUM_THREADS", "1")
    os.environ.setdefault("OPENBLAS_NUM_THREADS", "1")
    os.environ.setdefault("MKL_NUM_THREADS", "1")


def _flatten(prefix: str, d: Dict[str, Any]) -> Dict[str, Any]:
    row = {}
    for k, v in d.items():
        if isinstance(v, (tuple, list)):
            for j, x in enumerate(v):
                row[f"{prefix}_{k}_{j}"] = x
        else:
            row[f"{prefix}_{k}"] = v
    return row


def run_one(index: int,
            binary: BinaryParams,
            evolution: EvolutionParams,
            solver: SolverParams) -> dict:
    """Evolve one binary and return a flat dict for tabular storage."""
    start = time.time()
    row: Dict[str, Any] = {"index": int(index), "error": ""}
    try:
        res = orbital_evolution(
            binary.M1, binary.M2, binary.chi1, binary.chi2, binary.Omega_i,
            Omega_1=binary.Omega_1,
            Omega_e=binary.Omega_e,
            R_i=binary.R_i,
            Lambda1=binary.Lambda1,
            Lambda2=binary.Lambda2,
            approximant=evolution.approximant,
            pn_order=evolution.pn_order,
            solver=solver,
            check_up_down_instability=evolution.check_up_down_instability,
            quiet=evolution.quiet,
            saves_per_orbit=evolution.saves_per_orbit,
        )
    except InspiralError as e:
        # bad parameters for this run only; the rest of the batch continues
        logger.warning("run %d failed: %s", index, e)
        row["error"] = f"{type(e).__name__}: {e}"
        res = None

    if res is not None:
        fwd, bwd = res.forward, res.backward
        row.update({
            "stop_reason": fwd.stop_reason,
            "graceful": bool(fwd.event.graceful),
            "stop_reason_backward": "" if bwd is None else bwd.stop_reason,
            "graceful_backward": True if bwd is None else bool(bwd.event.graceful),
            "n_samples": int(res.t.size),
            "t_start": float(res.t[0]),
            "t_end": float(res.t[-1]),
            "v_start": float(res["v"][0]),
            "v_end": float(res["v"][-1]),
            "Phi_end": float(res["Phi"][-1]),
            "n_orbits": float((res["Phi"][-1] - res["Phi"][0]) / (2 * np.pi)),
            "domain_errors": int(fwd.domain_errors + (0 if bwd is None else bwd.domain_errors)),
        })
    row["runtime_sec"] = float(time.time() - start)

    # parameters (flatten)
    row.update(_flatten("binary", asdict(binary)))
    row.update(_flatten("evolution", asdict(evolution)))
    return row


def _worker(task: Tuple[int, BinaryParams, EvolutionParams, SolverParams]) -> dict:
    return run_one(*task)


def run_batch(config: BatchConfig, progress: bool = True, save: bool = False) -> pd.DataFrame:
    """Run every binary in config.runs; one row per run, in input order.

    With parallel.workers == 1 the runs are done in this process. With
    save=True the table is also written to <out_dir>/runs.csv.
    """
    tasks = [(i, b, config.evolution, config.solver) for i, b in enumerate(config.runs)]
    workers = config.parallel.workers or (os.cpu_count() or 4)
    chunksize = max(1, int(config.parallel.chunksize))

    rows: List[dict] = []
    if workers == 1:
        for task in tqdm(tasks, total=len(tasks), disable=not progress):
            rows.append(_worker(task))
    else:
        _set_thread_env()
        with ProcessPoolExecutor(max_workers=workers) as ex:
            it = ex.map(_worker, tasks, chunksize=chunksize)
            for row in tqdm(it, total=len(tasks), disable=not progress):
                rows.append(row)

    df = pd.DataFrame(rows)
    for k, v in config.tags.items():
        df[f"tag_{k}"] = v

    if save:
        os.makedirs(config.out_dir, exist_ok=True)
        out_csv = os.path.join(config.out_dir, "runs.csv")
        tmp_csv = out_csv + ".tmp"
        df.to_csv(tmp_csv, index=False)
        os.replace(tmp_csv, out_csv)
        logger.info("saved %s", out_csv)
    return df
