import os

import numpy as np
import pandas as pd

from pn_inspiral.config import BatchConfig, BinaryParams, EvolutionParams, ParallelParams, SolverParams
from pn_inspiral.dataset import run_batch, run_one
from pn_inspiral.state import omega_of_v


def small_batch(out_dir):
    M = 1.2
    runs = [
        BinaryParams(1.0, 0.2, omega_of_v(0.3, M), Omega_e=omega_of_v(0.35, M)),
        BinaryParams(1.0, 0.2, omega_of_v(0.3, M), chi1=(0.0, 0.0, 0.5),
                     Omega_1=omega_of_v(0.29, M), Omega_e=omega_of_v(0.32, M)),
        # Omega_1 above Omega_i
        BinaryParams(1.0, 0.2, omega_of_v(0.3, M), Omega_1=omega_of_v(0.31, M)),
    ]
    return BatchConfig(
        runs=runs,
        evolution=EvolutionParams(pn_order=0),
        parallel=ParallelParams(workers=1),
        out_dir=str(out_dir),
        tags={"study": "smoke"},
    )


def test_run_one_row():
    binary = BinaryParams(1.0, 0.2, omega_of_v(0.3, 1.2), Omega_e=omega_of_v(0.31, 1.2))
    row = run_one(0, binary, EvolutionParams(pn_order=0), SolverParams())
    assert row["error"] == ""
    assert row["stop_reason"] == "v_end" and row["graceful"]
    assert np.isclose(row["v_end"], 0.31, atol=1e-8)
    assert row["binary_chi1_2"] == 0.0, "tuples are flattened per component"
    assert row["evolution_pn_order"] == 0
    assert row["runtime_sec"] >= 0


def test_run_batch_in_process(tmp_path):
    cfg = small_batch(tmp_path / "out")
    df = run_batch(cfg, progress=False, save=True)
    assert isinstance(df, pd.DataFrame)
    assert list(df["index"]) == [0, 1, 2], "rows keep the input order"
    assert list(df["stop_reason"][:2]) == ["v_end", "v_end"]
    assert df["stop_reason_backward"][1] == "v_1"
    assert df["error"][0] == "" and df["error"][1] == ""
    assert df["error"][2].startswith("ConfigurationError")
    assert (df["tag_study"] == "smoke").all()
    assert os.path.exists(os.path.join(cfg.out_dir, "runs.csv"))
    saved = pd.read_csv(os.path.join(cfg.out_dir, "runs.csv"))
    assert len(saved) == 3
