"""
Tests for the shared regrid steps.

Validates:
- Filter scale from box size and target dimension
- regrid_field: reset, filter, decimate and debug output
- atomic_output: replacement on success, cleanup on failure, file modes
"""

import logging
import os
import stat

import numpy as np
import pytest

from regrider.grid import Grid
from regrider.kernels import FilterType
from regrider.layout import Layout
from regrider.regrid import atomic_output, regrid_field, smoothing_radius


@pytest.fixture
def umask_022():
    """Run a test under umask 022 and restore the previous umask."""
    previous = os.umask(0o022)
    yield
    os.umask(previous)


def file_mode(path):
    return stat.S_IMODE(os.stat(path).st_mode)


class TestRegridField:
    """Test suite for smoothing_radius and regrid_field."""

    def test_smoothing_radius(self):
        """Test that R is half the new cell size by default."""
        assert smoothing_radius((100.0, 100.0, 100.0), 50) == 1.0
        assert smoothing_radius((62.5, 1.0, 1.0), 2, factor=1.0) == 31.25

    def test_grid_reused_across_fields(self):
        """Test that a decimated grid is reset to the input size for the next field."""
        grid = Grid((8, 8, 8), (10.0, 10.0, 10.0), n_threads=1)
        for level in (1.0, -4.0):
            values = np.full((8, 8, 8), level, dtype=np.float32)
            sampled = regrid_field(grid, values, (8, 8, 8), (4, 4, 4), FilterType.GAUSSIAN, 1.0)

            assert sampled.shape == (4, 4, 4)
            np.testing.assert_allclose(sampled, level, rtol=1e-5)
            assert grid.dimensions == (4, 4, 4)
            assert grid.layout is Layout.REAL

    def test_debug_dump_only_at_debug_level(self, caplog):
        """Test that the sample dump is only produced when DEBUG is enabled."""
        grid = Grid((4, 4, 4), (1.0, 1.0, 1.0), n_threads=1)
        values = np.ones((4, 4, 4), dtype=np.float32)

        with caplog.at_level(logging.INFO, logger="regrider"):
            regrid_field(grid, values, (4, 4, 4), (2, 2, 2), FilterType.REAL_TOP_HAT, 0.1)
        assert not any("First 10 elements" in r.message for r in caplog.records)

        caplog.clear()
        with caplog.at_level(logging.DEBUG, logger="regrider"):
            regrid_field(grid, values, (4, 4, 4), (2, 2, 2), FilterType.REAL_TOP_HAT, 0.1)
        assert sum("First 10 elements" in r.message for r in caplog.records) == 2


class TestAtomicOutput:
    """Test suite for atomic_output."""

    def test_replaces_on_success(self, tmp_path):
        """Test that the target appears only after the block completes."""
        target = tmp_path / "out.bin"
        with atomic_output(target) as tmp:
            tmp.write_bytes(b"data")
            assert not target.exists()

        assert target.read_bytes() == b"data"
        assert list(tmp_path.iterdir()) == [target]

    def test_cleans_up_on_failure(self, tmp_path):
        """Test that a failing block leaves neither target nor temp file."""
        target = tmp_path / "out.bin"
        with pytest.raises(RuntimeError):
            with atomic_output(target) as tmp:
                tmp.write_bytes(b"partial")
                raise RuntimeError("boom")

        assert list(tmp_path.iterdir()) == []

    def test_new_file_follows_umask(self, tmp_path, umask_022):
        """Test that a new output gets 0o666 masked by the umask."""
        target = tmp_path / "out.bin"
        with atomic_output(target) as tmp:
            tmp.write_bytes(b"data")

        assert file_mode(target) == 0o644

    def test_existing_file_keeps_mode(self, tmp_path, umask_022):
        """Test that replacing a file keeps its permissions."""
        target = tmp_path / "out.bin"
        target.write_bytes(b"old")
        os.chmod(target, 0o640)

        with atomic_output(target) as tmp:
            tmp.write_bytes(b"new")

        assert target.read_bytes() == b"new"
        assert file_mode(target) == 0o640
