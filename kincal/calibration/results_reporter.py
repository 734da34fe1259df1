"""Calibration results reporter: renders kinematic calibration results and validation stats."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

import numpy as np

from kincal.calibration.optimizer import KinematicCalibrationResult
from kincal.calibration.validation import Stats
from kincal.kinematics.transforms import euler_zyx

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_CORRELATION_THRESHOLD = 0.5
DH_COLUMNS = ("a", "alpha", "d", "theta")
TRANSFORM_FIELDS = ("camera_mount_to_camera", "target_mount_to_target", "camera_base_to_target_base")


def _fmt_matrix(M: np.ndarray, indent: str = "  ") -> list[str]:
    return [indent + " ".join(f"{v:+10.4f}" for v in row) for row in np.atleast_2d(M)]


def _dh_rows(offsets: np.ndarray) -> np.ndarray:
    return np.asarray(offsets, dtype=np.float64).reshape(-1, len(DH_COLUMNS))


# ---------------------------------------------------------------------------
# Reporter
# ---------------------------------------------------------------------------

class CalibrationReporter:

    def __init__(self, correlation_threshold: float = DEFAULT_CORRELATION_THRESHOLD):
        self.correlation_threshold = correlation_threshold

    # ---- Plain text ----

    def generate_text(self, result: KinematicCalibrationResult) -> str:
        lines: list[str] = []
        _a = lines.append

        _a(f"Calibration {'did' if result.converged else 'did not'} converge")
        # sqrt of cost per residual ~ RMS residual, in mixed m / rad units
        _a(f"Initial cost per observation: {np.sqrt(result.initial_cost_per_obs):.6g}")
        _a(f"Final cost per observation: {np.sqrt(result.final_cost_per_obs):.6g}")
        _a("")

        for name in TRANSFORM_FIELDS:
            T = getattr(result, name)
            _a(name.replace("_", " ").capitalize())
            lines.extend(_fmt_matrix(T))
            ez, ey, ex = euler_zyx(T)
            _a(f"  Euler ZYX: {ez:+.4f} {ey:+.4f} {ex:+.4f}")
            _a("")

        for label, offsets in (
            ("Camera chain DH offsets", result.camera_chain_dh_offsets),
            ("Target chain DH offsets", result.target_chain_dh_offsets),
        ):
            _a(f"{label} ({' '.join(DH_COLUMNS)})")
            rows = _dh_rows(offsets)
            if rows.size:
                lines.extend(_fmt_matrix(rows))
            else:
                _a("  (no joints)")
            _a("")

        _a(result.covariance.format_correlation_coeff_above_threshold(self.correlation_threshold))
        return "\n".join(lines)

    # ---- Stats ----

    @staticmethod
    def format_stats(stats: Stats) -> str:
        return "\n".join([
            f"Position Difference Mean: {stats.pos_mean:.6g}",
            f"Position Difference Std. Dev.: {stats.pos_stdev:.6g}",
            f"Orientation Difference Mean: {stats.rot_mean:.6g}",
            f"Orientation Difference Std. Dev.: {stats.rot_stdev:.6g}",
        ])

    @staticmethod
    def format_percent_diff(baseline: Stats, calibrated: Stats) -> str:
        diff = baseline.percent_diff(calibrated)
        return "\n".join([
            f"Position: {diff['position']:.2f}%",
            f"Position Std. Dev.: {diff['position_stdev']:.2f}%",
            f"Orientation: {diff['orientation']:.2f}%",
            f"Orientation Std. Dev.: {diff['orientation_stdev']:.2f}%",
        ])

    # ---- Markdown report ----

    def generate_markdown(
        self,
        result: KinematicCalibrationResult,
        stats: Optional[Stats] = None,
        baseline: Optional[Stats] = None,
    ) -> str:
        lines: list[str] = []
        _a = lines.append

        _a("# Kinematic Calibration Report")
        _a(f"**Date:** {datetime.now().isoformat()}")
        _a("")

        # -- Summary --
        _a("## Summary")
        _a("")
        _a(f"- **Converged:** {'yes' if result.converged else 'no'}")
        _a(f"- **Solver:** {result.status_message} ({result.iterations} evaluations)")
        _a(f"- **Free parameters:** {result.num_free_parameters}")
        _a(f"- **Residuals:** {result.num_residuals}")
        _a(f"- **Initial cost per observation:** {result.initial_cost_per_obs:.4e}")
        _a(f"- **Final cost per observation:** {result.final_cost_per_obs:.4e}")
        _a("")

        # -- DH offsets --
        _a("## DH Parameter Offsets")
        _a("")
        for label, offsets in (
            ("Camera chain", result.camera_chain_dh_offsets),
            ("Target chain", result.target_chain_dh_offsets),
        ):
            rows = _dh_rows(offsets)
            _a(f"### {label}")
            _a("")
            if not rows.size:
                _a("_No joints._")
                _a("")
                continue
            _a("| Joint | a | alpha | d | theta |")
            _a("|-------|---|-------|---|-------|")
            for i, row in enumerate(rows):
                _a(f"| {i} | " + " | ".join(f"{v:+.6f}" for v in row) + " |")
            _a("")

        # -- Transforms --
        _a("## Transforms")
        _a("")
        for name in TRANSFORM_FIELDS:
            _a(f"### {name}")
            _a("")
            _a("```")
            lines.extend(_fmt_matrix(getattr(result, name), indent=""))
            _a("```")
            _a("")

        # -- Validation --
        if stats is not None:
            _a("## Validation")
            _a("")
            _a("| Metric | Mean | Std. Dev. |")
            _a("|--------|------|-----------|")
            _a(f"| Position (m) | {stats.pos_mean:.4e} | {stats.pos_stdev:.4e} |")
            _a(f"| Orientation (rad) | {stats.rot_mean:.4e} | {stats.rot_stdev:.4e} |")
            _a("")
            if baseline is not None:
                diff = baseline.percent_diff(stats)
                _a("### Improvement over baseline")
                _a("")
                for key, value in diff.items():
                    _a(f"- **{key}:** {value:.2f}%")
                _a("")

        # -- Correlations --
        _a("## Parameter Correlations")
        _a("")
        pairs = result.covariance.correlation_coeff_above_threshold(self.correlation_threshold)
        if pairs:
            _a("| Parameter | Parameter | Correlation |")
            _a("|-----------|-----------|-------------|")
            for a, b, c in pairs:
                _a(f"| {a} | {b} | {c:+.4f} |")
        else:
            _a(f"No parameter pairs with |correlation| > {self.correlation_threshold}.")
        _a("")

        return "\n".join(lines)

    # ---- JSON report ----

    def generate_json(self, result: KinematicCalibrationResult, stats: Optional[Stats] = None) -> dict:
        cov = result.covariance
        data = {
            "converged": result.converged,
            "initial_cost_per_obs": result.initial_cost_per_obs,
            "final_cost_per_obs": result.final_cost_per_obs,
            "iterations": result.iterations,
            "status_message": result.status_message,
            "num_residuals": result.num_residuals,
            "num_free_parameters": result.num_free_parameters,
            "camera_chain_dh_offsets": np.asarray(result.camera_chain_dh_offsets).tolist(),
            "target_chain_dh_offsets": np.asarray(result.target_chain_dh_offsets).tolist(),
            "covariance": {
                "labels": list(cov.labels),
                "matrix": cov.matrix.tolist(),
                "standard_deviations": cov.standard_deviations().tolist(),
            },
            "correlations_above_threshold": [
                {"a": a, "b": b, "correlation": c}
                for a, b, c in cov.correlation_coeff_above_threshold(self.correlation_threshold)
            ],
        }
        for name in TRANSFORM_FIELDS:
            data[name] = np.asarray(getattr(result, name)).tolist()
        if stats is not None:
            data["validation"] = {
                "pos_mean": stats.pos_mean,
                "pos_stdev": stats.pos_stdev,
                "rot_mean": stats.rot_mean,
                "rot_stdev": stats.rot_stdev,
            }
        return data

    # ---- Save ----

    def save_report(
        self,
        result: KinematicCalibrationResult,
        output_dir: str,
        stats: Optional[Stats] = None,
        baseline: Optional[Stats] = None,
    ) -> tuple[str, str]:
        """Write report.md and report.json into ``output_dir``; returns both paths."""
        out = Path(output_dir)
        out.mkdir(parents=True, exist_ok=True)

        md_path = out / "report.md"
        md_path.write_text(self.generate_markdown(result, stats, baseline))

        json_path = out / "report.json"
        with open(json_path, "w") as f:
            json.dump(self.generate_json(result, stats), f, indent=2)

        logger.info("Saved calibration report to %s", out)
        return str(md_path), str(json_path)
