"""Tests for the FFT-based convolution operator.

Uses the dot-product test to verify adjoint correctness:
    ⟨H(x), y⟩ = ⟨x, H^T(y)⟩

for random x (object space) and y (data space), including cropped data
regions and explicit offsets.
"""

import numpy as np
import pytest
import torch

from fftdeconv import (
    ConfigurationError,
    Convolution,
    IncorrectSpaceError,
    Job,
    ShapedSpace,
    State,
    UninitializedOperatorError,
    build_convolution,
    make_fft_convolver,
)
from fftdeconv.conv import FFTEngine, check_offsets, output_offset, psf_shifts


def dot_product_test(
    forward,
    adjoint,
    x_shape: tuple,
    y_shape: tuple,
    dtype: torch.dtype = torch.float64,
    rtol: float = 1e-10,
) -> tuple[float, float, float]:
    """Verify adjoint correctness via dot-product test.

    Returns:
        Tuple of (lhs, rhs, relative_error)
    """
    torch.manual_seed(42)
    x = torch.randn(x_shape, dtype=dtype)
    y = torch.randn(y_shape, dtype=dtype)

    lhs = torch.sum(forward(x).double() * y.double()).item()
    rhs = torch.sum(x.double() * adjoint(y).double()).item()

    rel_error = abs(lhs - rhs) / (0.5 * (abs(lhs) + abs(rhs)) + 1e-12)

    assert rel_error < rtol, (
        f"Dot-product test failed: ⟨Hx, y⟩ = {lhs:.12e}, ⟨x, H^T y⟩ = {rhs:.12e}, "
        f"relative error = {rel_error:.2e} (tolerance = {rtol:.2e})"
    )
    return lhs, rhs, rel_error


def random_psf(shape, dtype=torch.float64):
    torch.manual_seed(7)
    return torch.rand(shape, dtype=dtype)


def make_operator(obj_shape, dat_shape, psf_shape, dtype=torch.float64, offset=None):
    obj = ShapedSpace(obj_shape, dtype)
    dat = ShapedSpace(dat_shape, dtype)
    conv = Convolution(obj, dat, offset)
    conv.set_psf(random_psf(psf_shape), normalize=True)
    return conv


CASES = [
    # (object shape, data shape, psf shape)
    ((32,), (32,), (5,)),
    ((32,), (21,), (7,)),
    ((16, 20), (16, 20), (3, 5)),
    ((16, 20), (10, 13), (5, 4)),
    ((8, 10, 12), (8, 10, 12), (3, 3, 3)),
    ((8, 10, 12), (5, 7, 8), (4, 3, 5)),
]


class TestAdjoint:
    """Dot-product tests for all ranks and precisions."""

    @pytest.mark.parametrize("obj_shape,dat_shape,psf_shape", CASES)
    def test_adjoint_float64(self, obj_shape, dat_shape, psf_shape):
        conv = make_operator(obj_shape, dat_shape, psf_shape)
        dot_product_test(conv, conv.adjoint, obj_shape, dat_shape)

    @pytest.mark.parametrize("obj_shape,dat_shape,psf_shape", CASES)
    def test_adjoint_float32(self, obj_shape, dat_shape, psf_shape):
        conv = make_operator(obj_shape, dat_shape, psf_shape, dtype=torch.float32)
        dot_product_test(
            conv, conv.adjoint, obj_shape, dat_shape, dtype=torch.float32, rtol=1e-4
        )

    def test_adjoint_with_offset(self):
        """Data region in a corner of the object."""
        conv = make_operator((16, 20), (10, 13), (5, 5), offset=(6, 0))
        assert conv.offsets == (6, 0)
        dot_product_test(conv, conv.adjoint, (16, 20), (10, 13))

    def test_adjoint_psf_center(self):
        """Off-center PSF reference point."""
        obj = ShapedSpace((24,), torch.float64)
        conv = Convolution(obj, ShapedSpace((17,), torch.float64))
        conv.set_psf(random_psf((6,)), center=(1,))
        dot_product_test(conv, conv.adjoint, (24,), (17,))

    def test_make_fft_convolver(self):
        """The (C, C_adj) convenience pair."""
        kernel = torch.zeros(64, 64, dtype=torch.float64)
        kernel[0, 0] = 1.0
        kernel[0, 1] = 0.5
        kernel[1, 0] = 0.5
        kernel[1, 1] = 0.25

        C, C_adj = make_fft_convolver(kernel, dtype=torch.float64, normalize=True)
        lhs, rhs, rel_error = dot_product_test(C, C_adj, x_shape=(64, 64), y_shape=(64, 64))
        print(f"2D FFT convolver: ⟨Cx, y⟩={lhs:.10e}, ⟨x, C^T y⟩={rhs:.10e}, err={rel_error:.2e}")


class TestConvolutionValues:
    """Direct results against explicit computations."""

    @pytest.mark.parametrize("shape", [(12,), (6, 9), (4, 5, 6)])
    def test_identity_psf(self, shape):
        """A unit impulse PSF leaves the object unchanged."""
        space = ShapedSpace(shape, torch.float64)
        conv = Convolution(space)
        conv.set_psf(np.ones((1,) * len(shape)))
        torch.manual_seed(0)
        x = torch.randn(shape, dtype=torch.float64)
        assert torch.allclose(conv(x), x, atol=1e-12)
        assert torch.allclose(conv.adjoint(x), x, atol=1e-12)

    def test_identity_centered_impulse(self):
        """Impulse at the center of a 3x3 PSF."""
        psf = np.zeros((3, 3))
        psf[1, 1] = 1.0
        conv = Convolution(ShapedSpace((7, 8)))
        conv.set_psf(psf)
        x = torch.arange(56, dtype=torch.float64).reshape(7, 8)
        assert torch.allclose(conv(x), x, atol=1e-10)

    def test_identity_cropped(self):
        """Identity PSF with cropping extracts the centered data region."""
        conv = Convolution(ShapedSpace((8, 10)), ShapedSpace((4, 4)))
        conv.set_psf(np.ones((1, 1)))
        x = torch.arange(80, dtype=torch.float64).reshape(8, 10)
        assert conv.offsets == (2, 3)
        assert torch.allclose(conv(x), x[2:6, 3:7], atol=1e-10)

    def test_adjoint_cropped_zero_pads(self):
        """The adjoint of a cropped identity writes the data in a zero object."""
        conv = Convolution(ShapedSpace((8, 10)), ShapedSpace((4, 4)), offset=(1, 5))
        conv.set_psf(np.ones((1, 1)))
        y = torch.ones(4, 4, dtype=torch.float64)
        z = conv.adjoint(y)
        expected = torch.zeros(8, 10, dtype=torch.float64)
        expected[1:5, 5:9] = 1.0
        assert torch.allclose(z, expected, atol=1e-12)

    def test_shift_psf(self):
        """An impulse one sample after the center shifts the object by one."""
        conv = Convolution(ShapedSpace((10,)))
        conv.set_psf(np.array([0.0, 0.0, 1.0]))
        x = torch.arange(10, dtype=torch.float64)
        assert torch.allclose(conv(x), torch.roll(x, 1), atol=1e-12)

    def test_explicit_cyclic_convolution_1d(self):
        """Compare with the definition of the cyclic convolution."""
        n = 11
        psf = np.array([0.1, 0.5, 0.2, 0.3])
        c = len(psf) // 2
        rng = np.random.default_rng(3)
        x = rng.standard_normal(n)

        expected = np.zeros(n)
        for i in range(n):
            for j, h in enumerate(psf):
                expected[i] += h * x[(i - (j - c)) % n]

        conv = Convolution(ShapedSpace((n,)))
        conv.set_psf(psf)
        result = conv(torch.from_numpy(x))
        np.testing.assert_allclose(result.numpy(), expected, atol=1e-12)

    def test_normalized_psf_preserves_flat(self):
        conv = Convolution(ShapedSpace((9, 9)))
        conv.set_psf(np.ones((3, 3)), normalize=True)
        x = torch.full((9, 9), 2.5, dtype=torch.float64)
        assert torch.allclose(conv(x), x, atol=1e-12)

    def test_linearity(self):
        conv = make_operator((16, 20), (10, 13), (5, 4))
        torch.manual_seed(1)
        x1 = torch.randn(16, 20, dtype=torch.float64)
        x2 = torch.randn(16, 20, dtype=torch.float64)
        lhs = conv(2.0 * x1 - 3.0 * x2)
        rhs = 2.0 * conv(x1) - 3.0 * conv(x2)
        assert torch.allclose(lhs, rhs, atol=1e-10)

    def test_apply_into_destination(self):
        conv = make_operator((16,), (9,), (3,))
        x = torch.ones(16, dtype=torch.float64)
        dst = torch.empty(9, dtype=torch.float64)
        out = conv.apply(x, dst, job=Job.DIRECT)
        assert out is dst
        assert torch.allclose(dst, torch.ones(9, dtype=torch.float64), atol=1e-12)

    def test_push_convolve_pull(self):
        """The three-step protocol matches apply."""
        conv = make_operator((12, 12), (8, 8), (3, 3))
        torch.manual_seed(2)
        x = torch.randn(12, 12, dtype=torch.float64)
        conv.push(x)
        conv.convolve()
        y = conv.pull()
        assert torch.allclose(y, conv(x), atol=1e-12)

    def test_float32(self):
        obj = ShapedSpace((10, 10), torch.float32)
        conv = Convolution(obj)
        conv.set_psf(np.ones((1, 1)))
        x = torch.rand(10, 10)
        y = conv(x)
        assert y.dtype == torch.float32
        assert conv.complex_dtype == torch.complex64
        assert torch.allclose(y, x, atol=1e-5)


class TestPsfAndMtf:
    """PSF installation and the lazily computed MTF."""

    def test_state_and_lazy_mtf(self):
        conv = Convolution(ShapedSpace((8, 8)))
        assert conv.state is State.UNINITIALIZED
        conv.set_psf(np.ones((3, 3)), normalize=True)
        assert conv.state is State.READY
        assert not conv._mtf_valid
        assert conv.elapsed_time_in_fft == 0.0
        conv(torch.zeros(8, 8, dtype=torch.float64))
        assert conv._mtf_valid

    def test_new_psf_invalidates_mtf(self):
        conv = Convolution(ShapedSpace((8,)))
        conv.set_psf(np.ones(1))
        x = torch.arange(8, dtype=torch.float64)
        assert torch.allclose(conv(x), x, atol=1e-12)
        conv.set_psf(np.array([0.0, 0.0, 1.0]))
        assert not conv._mtf_valid
        assert torch.allclose(conv(x), torch.roll(x, 1), atol=1e-12)

    def test_fft_centered_psf(self):
        """Reinstalling the FFT-centered PSF gives the same operator."""
        conv1 = make_operator((12, 10), (12, 10), (3, 5))
        conv2 = Convolution(ShapedSpace((12, 10)))
        conv2.set_psf(conv1.psf, fft_centered=True)
        torch.manual_seed(3)
        x = torch.randn(12, 10, dtype=torch.float64)
        assert torch.allclose(conv1(x), conv2(x), atol=1e-12)

    def test_fft_centered_psf_requiring_grad(self):
        conv1 = make_operator((12, 10), (12, 10), (3, 5))
        psf = conv1.psf.clone().requires_grad_(True)
        conv2 = Convolution(ShapedSpace((12, 10)))
        conv2.set_psf(psf, fft_centered=True, normalize=True)
        assert not conv2.psf.requires_grad
        torch.manual_seed(3)
        x = torch.randn(12, 10, dtype=torch.float64)
        out = conv2(x)
        assert not out.requires_grad
        assert torch.allclose(conv1(x), out, atol=1e-12)
        assert psf.grad is None

    def test_set_mtf(self):
        conv1 = make_operator((12, 10), (6, 6), (3, 5))
        conv2 = Convolution(ShapedSpace((12, 10)), ShapedSpace((6, 6)))
        conv2.set_mtf(conv1.mtf)
        assert conv2.state is State.READY
        torch.manual_seed(4)
        x = torch.randn(12, 10, dtype=torch.float64)
        assert torch.allclose(conv1(x), conv2(x), atol=1e-12)

    def test_psf_center_is_origin(self):
        """The PSF reference sample lands at index 0."""
        psf = np.zeros((3, 5))
        psf[1, 2] = 1.0
        conv = Convolution(ShapedSpace((8, 8)))
        conv.set_psf(psf)
        assert conv.psf[0, 0] == 1.0
        assert conv.psf.sum() == 1.0

    def test_normalization_in_double(self):
        psf = np.full((4, 4), 3.0, dtype=np.float32)
        conv = Convolution(ShapedSpace((8, 8), torch.float32))
        conv.set_psf(psf, normalize=True)
        assert conv.psf.dtype == torch.float32
        assert abs(float(conv.psf.sum()) - 1.0) < 1e-6

    def test_zero_sum_psf_raises(self):
        conv = Convolution(ShapedSpace((8,)))
        with pytest.raises(ValueError, match="normalize"):
            conv.set_psf(np.array([1.0, -1.0]), normalize=True)

    def test_psf_too_large(self):
        conv = Convolution(ShapedSpace((8, 8)))
        with pytest.raises(ConfigurationError, match="PSF too large"):
            conv.set_psf(np.ones((9, 3)))

    def test_psf_rank_mismatch(self):
        conv = Convolution(ShapedSpace((8, 8)))
        with pytest.raises(ConfigurationError, match="rank"):
            conv.set_psf(np.ones(3))

    def test_fft_centered_wrong_space(self):
        conv = Convolution(ShapedSpace((8, 8)))
        with pytest.raises(IncorrectSpaceError):
            conv.set_psf(torch.ones(4, 4, dtype=torch.float64), fft_centered=True)

    def test_psf_shifts(self):
        assert psf_shifts((8, 8), (3, 3)) == (-4, -4)
        assert psf_shifts((8,), (4,), (0,)) == (-2,)


class TestConfigurationErrors:
    """Invalid spaces, offsets and jobs."""

    def test_unsupported_rank(self):
        space = ShapedSpace((2, 2, 2, 2))
        with pytest.raises(ConfigurationError, match="1D, 2D and 3D"):
            build_convolution(space)

    def test_unsupported_dtype(self):
        space = ShapedSpace((8,), torch.int32)
        with pytest.raises(ConfigurationError, match="float32 and float64"):
            Convolution(space)

    def test_mixed_precision(self):
        with pytest.raises(ConfigurationError, match="element type"):
            Convolution(ShapedSpace((8,), torch.float64), ShapedSpace((8,), torch.float32))

    def test_rank_mismatch(self):
        with pytest.raises(ConfigurationError, match="rank"):
            Convolution(ShapedSpace((8, 8)), ShapedSpace((8,)))

    def test_data_larger_than_object(self):
        with pytest.raises(ConfigurationError, match="larger"):
            Convolution(ShapedSpace((8, 8)), ShapedSpace((8, 9)))

    def test_offset_bounds(self):
        obj = ShapedSpace((10, 12))
        dat = ShapedSpace((4, 5))
        conv = Convolution(obj, dat, offset=(6, 7))
        assert conv.offsets == (6, 7)
        with pytest.raises(ConfigurationError, match="out of range"):
            Convolution(obj, dat, offset=(7, 0))
        with pytest.raises(ConfigurationError, match="out of range"):
            Convolution(obj, dat, offset=(0, -1))
        with pytest.raises(ConfigurationError, match="coordinate"):
            Convolution(obj, dat, offset=(0,))

    def test_uninitialized(self):
        conv = Convolution(ShapedSpace((8,)))
        with pytest.raises(UninitializedOperatorError):
            conv(torch.zeros(8, dtype=torch.float64))

    def test_inverse_not_implemented(self):
        conv = make_operator((8,), (8,), (3,))
        x = torch.zeros(8, dtype=torch.float64)
        with pytest.raises(NotImplementedError):
            conv.apply(x, job=Job.INVERSE)
        with pytest.raises(NotImplementedError):
            conv.apply(x, job="inverse_adjoint")

    def test_wrong_space(self):
        conv = make_operator((8, 8), (6, 6), (3, 3))
        with pytest.raises(IncorrectSpaceError):
            conv(torch.zeros(6, 6, dtype=torch.float64))
        with pytest.raises(IncorrectSpaceError):
            conv(torch.zeros(8, 8, dtype=torch.float32))
        with pytest.raises(IncorrectSpaceError):
            conv.adjoint(torch.zeros(8, 8, dtype=torch.float64))


class TestOffsets:
    def test_default_offsets(self):
        assert check_offsets((8, 10), (4, 4)) == (2, 3)
        assert check_offsets((9,), (4,)) == (2,)
        assert check_offsets((5, 5, 5), (5, 5, 5)) == (0, 0, 0)

    def test_output_offset_row_major(self):
        assert output_offset((8, 10), (4, 4)) == 23
        assert output_offset((8, 10), (4, 4), (0, 6)) == 6
        assert output_offset((4, 5, 6), (2, 2, 2), (1, 2, 3)) == 1 * 30 + 2 * 6 + 3


class TestFFTEngine:
    def test_round_trip(self):
        torch.manual_seed(5)
        z = torch.randn(6, 10, dtype=torch.complex128)
        ref = z.clone()
        engine = FFTEngine((6, 10), torch.complex128)
        engine.forward(z)
        engine.inverse(z)
        assert torch.allclose(z, ref, atol=1e-12)

    def test_unscaled_inverse(self):
        z = torch.zeros(8, dtype=torch.complex128)
        z[0] = 1.0
        engine = FFTEngine((8,), torch.complex128)
        engine.forward(z)
        engine.inverse(z, scale=False)
        assert torch.isclose(z[0].real, torch.tensor(8.0, dtype=torch.float64))

    def test_wrong_type(self):
        engine = FFTEngine((8,), torch.complex64)
        with pytest.raises(ConfigurationError):
            engine.forward(torch.zeros(8, dtype=torch.complex128))


class TestTimers:
    def test_elapsed_and_reset(self):
        conv = make_operator((16, 20), (10, 13), (5, 4))
        assert conv.elapsed_time == 0.0
        assert conv.elapsed_time_in_fft == 0.0
        torch.manual_seed(6)
        x = torch.randn(16, 20, dtype=torch.float64)
        conv.apply(x)
        conv.adjoint(conv(x))
        assert conv.elapsed_time > 0.0
        assert conv.elapsed_time_in_fft > 0.0
        assert conv.elapsed_time_in_fft <= conv.elapsed_time
        conv.reset_timers()
        assert conv.elapsed_time == 0.0
        assert conv.elapsed_time_in_fft == 0.0
