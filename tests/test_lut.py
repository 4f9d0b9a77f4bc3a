"""
Tests for LUT construction and noise.

Run with: pytest tests/test_lut.py -v
"""

import numpy as np
import pytest


def _samples(n=20, seed=0):
    from prosail_hybrid.inversion.sampling import ParameterDistribution, sample_parameters

    dist = ParameterDistribution.from_tables({'a': 0, 'b': 0}, {'a': 1, 'b': 2})
    return sample_parameters(dist, n, random_state=seed)


class TestBandSelection:
    """Test resolving band names and indices."""

    def test_none_selects_all(self):
        from prosail_hybrid.inversion.lut import resolve_band_indices
        assert resolve_band_indices(None, ['x', 'y', 'z']) == [0, 1, 2]

    def test_names_and_indices(self):
        from prosail_hybrid.inversion.lut import resolve_band_indices

        assert resolve_band_indices(['z', 'x'], ['x', 'y', 'z']) == [2, 0]
        assert resolve_band_indices([1, 'z'], ['x', 'y', 'z']) == [1, 2]
        assert resolve_band_indices([np.int64(0)], ['x', 'y', 'z']) == [0]

    def test_invalid_selections(self):
        from prosail_hybrid.errors import ConfigurationError
        from prosail_hybrid.inversion.lut import resolve_band_indices

        with pytest.raises(ConfigurationError):
            resolve_band_indices(['w'], ['x', 'y', 'z'])
        with pytest.raises(ConfigurationError):
            resolve_band_indices([3], ['x', 'y', 'z'])
        with pytest.raises(ConfigurationError):
            resolve_band_indices([], ['x', 'y', 'z'])


class TestBuildLUT:
    """Test simulating the reflectance table."""

    def test_rows_follow_samples(self, affine_simulator):
        from prosail_hybrid.inversion.lut import build_lut

        samples = _samples()
        lut = build_lut(samples, affine_simulator)

        assert lut.reflectance.shape == (20, 3)
        assert lut.band_names == ('b1', 'b2', 'b3')
        np.testing.assert_allclose(lut.reflectance[5], affine_simulator(samples.row(5)))

    def test_parallel_matches_serial(self, affine_simulator):
        from joblib import parallel_config
        from prosail_hybrid.inversion.lut import build_lut

        samples = _samples()
        serial = build_lut(samples, affine_simulator)
        with parallel_config(backend='threading'):
            parallel = build_lut(samples, affine_simulator, n_jobs=2)
        np.testing.assert_allclose(serial.reflectance, parallel.reflectance)

    def test_numbered_band_names_without_simulator_names(self):
        from prosail_hybrid.inversion.lut import build_lut

        lut = build_lut(_samples(n=3), lambda p: np.array([p['a'], p['b']]))
        assert lut.band_names == ('band_1', 'band_2')

    def test_inconsistent_spectra_rejected(self):
        from prosail_hybrid.errors import ConfigurationError
        from prosail_hybrid.inversion.lut import build_lut

        def ragged(params):
            return np.ones(2 if params['a'] < 0.5 else 3)

        with pytest.raises(ConfigurationError):
            build_lut(_samples(n=50), ragged)


class TestNoise:
    """Test noisy LUT generation."""

    @pytest.mark.parametrize('noise_type', ['relative', 'absolute'])
    def test_zero_noise_is_identity(self, affine_simulator, noise_type):
        from prosail_hybrid.inversion.lut import apply_noise, build_lut

        lut = build_lut(_samples(), affine_simulator)
        noisy = apply_noise(lut, noise_level=0.0, noise_type=noise_type, random_state=0)
        np.testing.assert_array_equal(noisy.reflectance, lut.reflectance)

    def test_base_lut_untouched(self, affine_simulator):
        from prosail_hybrid.inversion.lut import apply_noise, build_lut

        lut = build_lut(_samples(), affine_simulator)
        before = lut.reflectance.copy()
        noisy = apply_noise(lut, ['b2'], noise_level=0.1, random_state=0)

        np.testing.assert_array_equal(lut.reflectance, before)
        assert noisy.reflectance.shape == (20, 1)
        assert noisy.band_names == ('b2',)
        assert not np.allclose(noisy.reflectance[:, 0], lut.reflectance[:, 1])

    def test_relative_noise_keeps_zero(self):
        from prosail_hybrid.inversion.lut import ReflectanceLUT, apply_noise

        lut = ReflectanceLUT(np.zeros((100, 2)), ('x', 'y'))
        noisy = apply_noise(lut, noise_level=0.5, noise_type='relative', random_state=0)
        assert np.all(noisy.reflectance == 0)

    def test_absolute_noise_level(self):
        from prosail_hybrid.inversion.lut import ReflectanceLUT, apply_noise

        lut = ReflectanceLUT(np.full((20000, 1), 0.3), ('x',))
        noisy = apply_noise(lut, noise_level=0.02, noise_type='absolute', random_state=0)
        assert abs(np.std(noisy.reflectance - 0.3) - 0.02) < 0.001

    def test_invalid_noise_options(self, affine_simulator):
        from prosail_hybrid.errors import ConfigurationError
        from prosail_hybrid.inversion.lut import apply_noise, build_lut

        lut = build_lut(_samples(), affine_simulator)
        with pytest.raises(ConfigurationError):
            apply_noise(lut, noise_type='multiplicative')
        with pytest.raises(ConfigurationError):
            apply_noise(lut, noise_level=-0.1)

    def test_per_target_luts(self, affine_simulator):
        from prosail_hybrid.inversion.lut import build_lut, make_noisy_luts

        lut = build_lut(_samples(), affine_simulator)
        noisy = make_noisy_luts(lut, ['a', 'b'],
                                band_selection={'a': ['b1', 'b3']},
                                noise_levels={'a': 0.0, 'b': 0.05},
                                random_state=0)

        assert noisy['a'].band_indices == (0, 2)
        np.testing.assert_array_equal(noisy['a'].reflectance, lut.reflectance[:, [0, 2]])
        assert noisy['b'].band_names == ('b1', 'b2', 'b3')
        assert noisy['b'].noise_level == 0.05


class TestLUTTables:
    """Test the parameter/reflectance text tables."""

    def test_tables_written_and_read(self, tmp_path, affine_simulator):
        from prosail_hybrid.inversion.lut import (
            PARAMETER_TABLE, REFLECTANCE_TABLE, build_lut, load_lut_tables, save_lut_tables)

        samples = _samples()
        lut = build_lut(samples, affine_simulator)
        parms_path, refl_path = save_lut_tables(samples, lut, tmp_path)

        assert parms_path.name == PARAMETER_TABLE
        assert refl_path.name == REFLECTANCE_TABLE
        assert refl_path.read_text().splitlines()[0].split('\t') == ['b1', 'b2', 'b3']

        loaded_samples, loaded_lut = load_lut_tables(tmp_path)
        assert loaded_samples.names == ('a', 'b')
        np.testing.assert_allclose(loaded_samples.values, samples.values, rtol=5e-3, atol=1e-3)
        np.testing.assert_allclose(loaded_lut.reflectance, lut.reflectance, rtol=1e-4)


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
