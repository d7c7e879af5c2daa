# scripts/plot_trajectory.py

import argparse
from pathlib import Path
import pandas as pd
import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt


def plot_trajectory(df: pd.DataFrame, columns, title: str, out_path: Path) -> Path:
    missing = set(columns) - set(df.columns)
    if missing:
        raise ValueError(f"Missing columns: {missing}")

    fig, ax1 = plt.subplots(figsize=(8, 4.5))
    for col in columns:
        ax1.plot(df["time"], df[col], linewidth=2, label=col)
    ax1.set_xlabel("Time")
    ax1.set_ylabel("Members")
    ax1.legend(loc="best")

    # Shade the in-effect intervention combination
    if "interventions" in df.columns and df["interventions"].nunique() > 1:
        ax2 = ax1.twinx()
        ax2.step(df["time"], df["interventions"], where="post", color="grey", alpha=0.5)
        ax2.set_ylabel("Intervention combination", color="grey")

    plt.title(title)
    fig.tight_layout()

    out_path.parent.mkdir(parents=True, exist_ok=True)
    plt.savefig(out_path, dpi=200)
    plt.close(fig)
    return out_path


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "--run",
        required=True,
        help="Path to run directory containing trajectory.csv"
    )
    parser.add_argument(
        "--columns",
        nargs="+",
        default=None,
        help="Columns to plot (default: every class count column)"
    )
    parser.add_argument(
        "--out",
        default=None,
        help="Output PNG path (default: <run>/trajectory.png)"
    )
    args = parser.parse_args()

    run_dir = Path(args.run)
    ts_path = run_dir / "trajectory.csv"

    if not ts_path.exists():
        raise FileNotFoundError(f"Missing trajectory.csv in {run_dir}")

    df = pd.read_csv(ts_path)

    columns = args.columns or [
        c for c in df.columns
        if c not in ("time", "time_index", "interventions") and ":" not in c
    ]
    out_path = Path(args.out) if args.out else run_dir / "trajectory.png"
    plot_trajectory(df, columns, run_dir.parent.name.replace("_", " "), out_path)

    print(f"Saved figure -> {out_path}")


if __name__ == "__main__":
    main()
