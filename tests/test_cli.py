"""
Integration tests for the regrider command line.

Tests:
- Exit code 1 on conflicting or missing options
- Successful gbpTrees and VELOCIraptor runs
- YAML config files and command-line overrides
- Nonzero exit and no output for truncated, malformed or non-divisible inputs
"""

import subprocess
import sys

import h5py
import numpy as np
import pytest
import yaml

from regrider.__main__ import main
from regrider.gbptrees import (
    HEADER_DTYPE,
    GbpTreesHeader,
    encode_name,
    read_grid,
    write_gbptrees,
)


def run_cli(*args):
    """Run CLI command and return result."""
    result = subprocess.run(
        [sys.executable, "-m", "regrider"] + list(args),
        capture_output=True,
        text=True,
    )
    return result


@pytest.fixture
def gbptrees_file(tmp_path):
    header = GbpTreesHeader(n_cell=(4, 4, 4), box_size=(10.0, 10.0, 10.0), n_grids=1, ma_scheme=0)
    path = tmp_path / "grids.bin"
    write_gbptrees(path, header, [("rho", np.ones((4, 4, 4), dtype=np.float32))])
    return path


class TestOptionErrors:
    """Option validation happens before any I/O."""

    def test_both_inputs(self, tmp_path, capsys):
        """Test that selecting both input formats is rejected."""
        code = main(["-g", "a.bin", "-v", "b.hdf5", "-d", "2", "-o", str(tmp_path / "o")])
        assert code == 1
        assert "Not both" in capsys.readouterr().err

    def test_missing_dim(self, gbptrees_file, tmp_path, capsys):
        """Test that a missing target dimension is rejected."""
        code = main(["-g", str(gbptrees_file), "-o", str(tmp_path / "o.bin")])
        assert code == 1
        assert "dimension" in capsys.readouterr().err

    def test_missing_input(self, tmp_path):
        """Test that a missing input file option is rejected."""
        assert main(["-d", "2", "-o", str(tmp_path / "o.bin")]) == 1

    def test_missing_output(self, gbptrees_file):
        """Test that a missing output option is rejected."""
        assert main(["-g", str(gbptrees_file), "-d", "2"]) == 1

    def test_nonexistent_input(self, tmp_path, capsys):
        """Test that a nonexistent input path is reported before processing."""
        code = main(["-g", str(tmp_path / "nope.bin"), "-d", "2", "-o", str(tmp_path / "o.bin")])
        assert code == 1
        assert "not found" in capsys.readouterr().err

    def test_invalid_dim(self, gbptrees_file, tmp_path):
        """Test that a zero target dimension fails validation."""
        assert main(["-g", str(gbptrees_file), "-d", "0", "-o", str(tmp_path / "o.bin")]) == 1


class TestRuns:
    """End-to-end runs."""

    def test_gbptrees(self, gbptrees_file, tmp_path, capsys):
        """Test a gbpTrees regrid from the command line."""
        out = tmp_path / "grids_2.bin"
        code = main(["-g", str(gbptrees_file), "-d", "2", "-o", str(out), "--threads", "1"])

        assert code == 0
        assert "Wrote" in capsys.readouterr().out
        header, values = read_grid(out, "rho")
        assert header.n_cell == (2, 2, 2)
        np.testing.assert_allclose(values, 1.0, rtol=1e-5)

    def test_velociraptor(self, tmp_path):
        """Test a VELOCIraptor regrid from the command line."""
        path = tmp_path / "snap.hdf5"
        with h5py.File(path, "w") as f:
            f.create_group("Header").attrs["BoxSize"] = 25.0
            params = f.create_group("Parameters")
            params.attrs["DensityGrids:grid_dim"] = "8"
            params.attrs["Snapshots:grid_dim"] = "8"
            grids = f.create_group("PartType1/Grids")
            for name in ("Vx", "Vy", "Vz", "Density"):
                grids.create_dataset(name, data=np.ones((8, 8, 8), dtype=np.float32))
        out = tmp_path / "snap_4.hdf5"

        code = main(["-v", str(path), "-d", "4", "-o", str(out), "--filter", "k_top_hat", "--quiet"])
        assert code == 0
        with h5py.File(out, "r") as f:
            assert f["PartType1/Grids/Density"].shape == (4, 4, 4)
            assert f["Parameters"].attrs["DensityGrids:grid_dim"] == "4"

    def test_config_file_with_override(self, gbptrees_file, tmp_path):
        """Test that command-line values override the YAML config."""
        out = tmp_path / "from_config.bin"
        config_path = tmp_path / "regrid.yaml"
        with open(config_path, "w") as f:
            yaml.dump(
                {
                    "input_format": "gbptrees",
                    "input_path": str(gbptrees_file),
                    "output_path": str(out),
                    "new_dim": 3,
                    "filter_type": "gaussian",
                },
                f,
            )

        # new_dim 3 does not divide 4; the command line value wins
        code = main(["-c", str(config_path), "-d", "2", "--quiet"])
        assert code == 0
        header, _ = read_grid(out, "rho")
        assert header.n_cell == (2, 2, 2)

    def test_non_divisible_dim_fails(self, gbptrees_file, tmp_path):
        """Test that a non-divisible dimension exits 1 without output."""
        out = tmp_path / "o.bin"
        assert main(["-g", str(gbptrees_file), "-d", "3", "-o", str(out), "--quiet"]) == 1
        assert not out.exists()

    def test_truncated_input_fails(self, tmp_path):
        """Test that a truncated archive exits 1 without output."""
        header = GbpTreesHeader(n_cell=(4, 4, 4), box_size=(1.0, 1.0, 1.0), n_grids=2, ma_scheme=0)
        path = tmp_path / "short.bin"
        path.write_bytes(header.to_bytes() + encode_name("rho") + np.zeros(64, "<f4").tobytes())
        out = tmp_path / "o.bin"

        assert main(["-g", str(path), "-d", "2", "-o", str(out), "--quiet"]) == 1
        assert not out.exists()

    def test_invalid_gbptrees_header_fails(self, tmp_path, capsys):
        """Test that a header with a zero cell count is reported, not raised."""
        path = tmp_path / "bad.bin"
        raw = np.zeros(1, dtype=HEADER_DTYPE)
        raw["n_cell"] = (0, 4, 4)
        raw["box_size"] = (1.0, 1.0, 1.0)
        path.write_bytes(raw.tobytes())
        out = tmp_path / "o.bin"

        assert main(["-g", str(path), "-d", "2", "-o", str(out), "--quiet"]) == 1
        assert "Invalid gbpTrees header" in capsys.readouterr().err
        assert not out.exists()

    @pytest.mark.parametrize(
        "grid_dim, shape, message",
        [
            ("eight", (8, 8, 8), "not an integer"),
            ("8", (8, 8, 4), "has shape"),
        ],
    )
    def test_invalid_velociraptor_file_fails(self, tmp_path, capsys, grid_dim, shape, message):
        """Test that malformed VELOCIraptor content is reported, not raised."""
        path = tmp_path / "snap.hdf5"
        with h5py.File(path, "w") as f:
            f.create_group("Header").attrs["BoxSize"] = 25.0
            f.create_group("Parameters").attrs["DensityGrids:grid_dim"] = grid_dim
            grids = f.create_group("PartType1/Grids")
            for name in ("Vx", "Vy", "Vz", "Density"):
                grids.create_dataset(name, data=np.ones(shape, dtype=np.float32))
        out = tmp_path / "o.hdf5"

        assert main(["-v", str(path), "-d", "4", "-o", str(out), "--quiet"]) == 1
        assert message in capsys.readouterr().err
        assert not out.exists()


class TestSubprocess:
    """python -m regrider as a separate process."""

    def test_help(self):
        """Test that --help lists the input options."""
        result = run_cli("--help")
        assert result.returncode == 0
        assert "--gbptrees" in result.stdout

    def test_conflicting_inputs_exit_code(self):
        """Test the exit code of conflicting inputs in a separate process."""
        result = run_cli("-g", "a.bin", "-v", "b.hdf5", "-d", "2", "-o", "out.bin")
        assert result.returncode == 1

    def test_run(self, gbptrees_file, tmp_path):
        """Test a full regrid through python -m regrider."""
        out = tmp_path / "grids_2.bin"
        result = run_cli("-g", str(gbptrees_file), "-d", "2", "-o", str(out))
        assert result.returncode == 0, result.stderr
        assert out.exists()
