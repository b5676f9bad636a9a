"""
Example: Comparison of Registration Strategies (DLL vs NDT vs ICP)

This script registers the same scans, from the same perturbed initial
guesses, with the three interchangeable strategies of the localizer:

    - DLL: direct Gauss-Newton against a 3D distance field
           (no correspondences; one trilinear lookup per point)
    - NDT: Newton-style optimization of the Normal Distributions Transform
           score over per-voxel Gaussians
    - ICP: point-to-point ICP with KD-tree nearest neighbors and a closed-form
           yaw + translation step

All of them estimate (x, y, z, yaw) with roll and pitch held fixed, and are
compared on accuracy, success rate and computation time.

Run from repository root:
    python -m examples.example_method_comparison
    python -m examples.example_method_comparison --trials 50 --perturbation 0.3
"""

import argparse
import time
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
from tqdm import tqdm

from directloc.grid import DistanceField
from directloc.localization import filter_range
from directloc.registration import PoseEstimate, SolveStatus, make_aligner, ndt_score, wrap_angle
from directloc.sim import make_room_map, simulate_scan

METHODS = ["dll", "ndt", "icp"]
COLORS = {"dll": "b", "ndt": "g", "icp": "r"}

# Walls off the 1 m NDT voxel boundaries
MAP_OFFSET = np.array([0.37, 0.41, 0.23])


def setup_scenario(n_trials, perturbation, seed=42):
    """
    Build the map and draw (truth, scan, initial guess) triples.

    Returns:
        Tuple of (map_points, truths, scans, guesses).
    """
    print("\n--- Setting up scenario ---")
    rng = np.random.default_rng(seed)
    map_points = make_room_map((8.0, 6.0, 3.0), spacing=0.05) + MAP_OFFSET

    truths = np.column_stack([
        rng.uniform(1.5, 6.5, n_trials) + MAP_OFFSET[0],
        rng.uniform(1.5, 4.5, n_trials) + MAP_OFFSET[1],
        np.full(n_trials, 0.5 + MAP_OFFSET[2]),
        rng.uniform(-np.pi, np.pi, n_trials),
    ])
    scans = [
        filter_range(simulate_scan(map_points, pose, n_points=3000, noise_std=0.01, rng=rng), 1.0, 100.0)
        for pose in tqdm(truths, desc="Simulating scans", unit="scan")
    ]
    offsets = rng.normal(0.0, 1.0, size=(n_trials, 4)) * [perturbation, perturbation, 0.3 * perturbation, 0.3 * perturbation]
    guesses = truths + offsets

    print(f"Map points: {len(map_points)}")
    print(f"Trials: {n_trials}")
    print(f"Initial error (mean): {np.mean(np.linalg.norm(offsets[:, :3], axis=1)):.3f} m, "
          f"{np.degrees(np.mean(np.abs(offsets[:, 3]))):.2f} deg")
    return map_points, truths, scans, guesses


def run_method(method, field, map_points, truths, scans, guesses):
    """Register every scan with one strategy and collect the errors."""
    print(f"\n--- Running {method.upper()} ---")
    start_time = time.time()
    aligner = make_aligner(method, field=field, map_points=map_points)
    setup_time = time.time() - start_time

    translation_errors = []
    yaw_errors = []
    statuses = []
    estimates = []
    start_time = time.time()
    for truth, scan, guess in tqdm(
        zip(truths, scans, guesses), desc=f"{method.upper()} registration", unit="scan", total=len(truths)
    ):
        result = aligner.solve(scan, PoseEstimate.from_array(guess))
        estimate = result.pose.to_array()
        translation_errors.append(np.linalg.norm(estimate[:3] - truth[:3]))
        yaw_errors.append(abs(wrap_angle(estimate[3] - truth[3])))
        statuses.append(result.status)
        estimates.append(estimate)
    elapsed_time = time.time() - start_time
    if method == "ndt":
        scores = [
            ndt_score(scan, aligner.ndt_map, estimate, aligner.voxel_size)
            for scan, estimate in zip(scans, estimates)
        ]
        print(f"Mean NDT score at estimate: {np.mean(scores):.3f}")

    translation_errors = np.array(translation_errors)
    success = translation_errors < 0.05
    print(f"Setup time: {setup_time:.3f} s")
    print(f"Mean time per scan: {1000 * elapsed_time / len(truths):.1f} ms")
    print(f"Converged: {statuses.count(SolveStatus.CONVERGED)} / {len(statuses)}")
    print(f"Success (< 5 cm): {np.sum(success)} / {len(success)}")
    print(f"Median translation error: {np.median(translation_errors):.4f} m")
    return {
        "translation_errors": translation_errors,
        "yaw_errors": np.array(yaw_errors),
        "success_rate": float(np.mean(success)),
        "time_per_scan": elapsed_time / len(truths),
        "setup_time": setup_time,
    }


def plot_comparison(results, output_file):
    fig, axes = plt.subplots(1, 2, figsize=(14, 6))

    ax = axes[0]
    for method in METHODS:
        errors = np.sort(results[method]["translation_errors"])
        cdf = np.arange(1, len(errors) + 1) / len(errors)
        ax.plot(errors, cdf, COLORS[method], linewidth=2, label=method.upper())
    ax.set_xscale("log")
    ax.set_xlabel("Translation Error [m]", fontsize=12)
    ax.set_ylabel("CDF", fontsize=12)
    ax.set_title("Cumulative Distribution of Errors", fontsize=14, fontweight="bold")
    ax.legend(fontsize=10)
    ax.grid(True, alpha=0.3)

    ax = axes[1]
    times = [1000 * results[m]["time_per_scan"] for m in METHODS]
    bars = ax.bar([m.upper() for m in METHODS], times,
                  color=[COLORS[m] for m in METHODS], alpha=0.7, edgecolor="black")
    ax.set_ylabel("Time per Scan [ms]", fontsize=12)
    ax.set_title("Computational Cost", fontsize=14, fontweight="bold")
    ax.grid(True, alpha=0.3, axis="y")
    for bar, t in zip(bars, times):
        ax.text(bar.get_x() + bar.get_width() / 2.0, bar.get_height(),
                f"{t:.1f} ms", ha="center", va="bottom", fontsize=10)

    plt.tight_layout()
    output_file.parent.mkdir(parents=True, exist_ok=True)
    plt.savefig(output_file, dpi=150, bbox_inches="tight")
    print(f"[OK] Plot saved as: {output_file}")


def main():
    parser = argparse.ArgumentParser(description="Compare DLL, NDT and ICP registration")
    parser.add_argument("--trials", type=int, default=30, help="Number of scans (default: 30)")
    parser.add_argument(
        "--perturbation", type=float, default=0.2,
        help="Initial horizontal error std in meters (default: 0.2)",
    )
    parser.add_argument("--seed", type=int, default=42, help="Random seed (default: 42)")
    args = parser.parse_args()

    overall_start = time.time()

    print("=" * 70)
    print("REGISTRATION STRATEGY COMPARISON")
    print("=" * 70)

    map_points, truths, scans, guesses = setup_scenario(args.trials, args.perturbation, args.seed)

    print("\n--- Building distance field ---")
    start_time = time.time()
    field = DistanceField.from_points(map_points, resolution=0.1, margin=0.5)
    field_time = time.time() - start_time
    print(f"{field} built in {field_time:.2f} s")

    results = {
        method: run_method(method, field, map_points, truths, scans, guesses)
        for method in METHODS
    }
    results["dll"]["setup_time"] += field_time

    print("\n" + "=" * 70)
    print(f"{'Method':<8} {'Success':<10} {'Median [m]':<12} {'Median yaw [deg]':<18} {'ms/scan':<10} {'Setup [s]':<10}")
    print("=" * 70)
    for method in METHODS:
        r = results[method]
        print(f"{method.upper():<8} {100 * r['success_rate']:<10.1f} "
              f"{np.median(r['translation_errors']):<12.4f} "
              f"{np.degrees(np.median(r['yaw_errors'])):<18.3f} "
              f"{1000 * r['time_per_scan']:<10.1f} {r['setup_time']:<10.3f}")
    print("=" * 70)

    plot_comparison(results, Path("examples/figs/method_comparison.png"))

    overall_time = time.time() - overall_start
    print("\n" + "=" * 70)
    print("COMPARISON COMPLETED")
    print("=" * 70)
    print(f"Total execution time: {overall_time:.2f} seconds")
    print("=" * 70)


if __name__ == "__main__":
    main()
