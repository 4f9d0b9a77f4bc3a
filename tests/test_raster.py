"""
Tests for block-wise raster application.

Run with: pytest tests/test_raster.py -v
"""

import logging

import numpy as np
import pytest


def _bundle(regressor_cls, targets=('lai',), n_models=2, band_names=('b1', 'b2', 'b3')):
    from prosail_hybrid.inversion.models import EnsembleModel, HybridModelBundle

    rng = np.random.default_rng(0)
    bundle = HybridModelBundle()
    for target in targets:
        models = []
        for i in range(n_models):
            X = rng.random((10, len(band_names)))
            models.append(regressor_cls().fit(X, np.full(10, float(i))))
        bundle.add(EnsembleModel(target=target, models=models,
                                 n_features=len(band_names), band_names=band_names))
    return bundle


def _read(path):
    from prosail_hybrid.utils.envi_io import ENVIBlockReader

    with ENVIBlockReader(path) as reader:
        return reader.read()[:, :, 0]


class TestApplyToRaster:
    """Test mean/std raster generation."""

    def test_outputs_match_in_memory_prediction(self, tmp_path, envi_raster, reflectance_cube,
                                                counting_regressor):
        from prosail_hybrid.inversion.prediction import predict_ensemble
        from prosail_hybrid.inversion.raster import apply_to_raster

        bundle = _bundle(counting_regressor)
        result = apply_to_raster(envi_raster, bundle, tmp_path / 'out', block_rows=2)
        mean_path, std_path = result.outputs['lai']

        assert result.complete
        assert mean_path.name == 'scene_lai'
        assert std_path.name == 'scene_lai_STD'

        pixels = reflectance_cube.reshape(-1, 3).astype(float)
        selected = pixels[:, 0] > 0
        expected = predict_ensemble(bundle['lai'], pixels[selected] / 10000)

        mean = _read(mean_path).ravel()
        std = _read(std_path).ravel()
        assert np.all(np.isnan(mean[~selected]))
        assert np.all(np.isnan(std[~selected]))
        np.testing.assert_allclose(mean[selected], expected.mean, rtol=1e-6)
        np.testing.assert_allclose(std[selected], expected.std, rtol=1e-6)

    def test_block_size_does_not_change_result(self, tmp_path, envi_raster, counting_regressor):
        from prosail_hybrid.inversion.raster import apply_to_raster

        bundle = _bundle(counting_regressor)
        one = apply_to_raster(envi_raster, bundle, tmp_path / 'one', block_rows=7)
        many = apply_to_raster(envi_raster, bundle, tmp_path / 'many', block_rows=3)

        np.testing.assert_array_equal(_read(one.outputs['lai'][0]), _read(many.outputs['lai'][0]))
        np.testing.assert_array_equal(_read(one.outputs['lai'][1]), _read(many.outputs['lai'][1]))

    def test_output_headers(self, tmp_path, envi_raster, counting_regressor):
        from prosail_hybrid.inversion.raster import apply_to_raster
        from prosail_hybrid.utils.envi_io import find_header_path, read_envi_header

        result = apply_to_raster(envi_raster, _bundle(counting_regressor, targets=('lai', 'CHL')),
                                 tmp_path, block_rows=4)

        for target in ('lai', 'CHL'):
            for path in result.outputs[target]:
                header = read_envi_header(find_header_path(path))
                assert header['band names'] == [target]
                assert header['lines'] == 7
                assert header['samples'] == 5
                assert header['bands'] == 1
                assert header['data type'] == 4

    def test_all_zero_mask(self, tmp_path, envi_raster, counting_regressor):
        from prosail_hybrid.inversion.raster import apply_to_raster
        from prosail_hybrid.utils.envi_io import write_envi

        mask = write_envi(tmp_path / 'mask', np.zeros((7, 5), dtype=np.uint8))
        result = apply_to_raster(envi_raster, _bundle(counting_regressor), tmp_path / 'out',
                                 mask_path=mask, block_rows=2)

        assert counting_regressor.predict_calls == 0
        assert np.all(np.isnan(_read(result.outputs['lai'][0])))
        assert np.all(np.isnan(_read(result.outputs['lai'][1])))

    def test_mask_selects_pixels(self, tmp_path, envi_raster, counting_regressor):
        from prosail_hybrid.inversion.raster import apply_to_raster
        from prosail_hybrid.utils.envi_io import write_envi

        mask_data = np.zeros((7, 5), dtype=np.uint8)
        mask_data[2:4, 1:3] = 1
        # The mask wins over the no-data test on the first band
        mask_data[0, 0] = 1
        mask = write_envi(tmp_path / 'mask', mask_data)

        result = apply_to_raster(envi_raster, _bundle(counting_regressor), tmp_path / 'out',
                                 mask_path=mask)
        mean = _read(result.outputs['lai'][0])

        assert np.array_equal(~np.isnan(mean), mask_data == 1)

    def test_missing_mask_falls_back(self, tmp_path, envi_raster, counting_regressor, caplog):
        from prosail_hybrid.inversion.raster import apply_to_raster

        bundle = _bundle(counting_regressor)
        with caplog.at_level(logging.WARNING):
            masked = apply_to_raster(envi_raster, bundle, tmp_path / 'a',
                                     mask_path=tmp_path / 'no_such_mask')
        auto = apply_to_raster(envi_raster, bundle, tmp_path / 'b')

        assert 'automatic mask' in caplog.text
        np.testing.assert_array_equal(_read(masked.outputs['lai'][0]), _read(auto.outputs['lai'][0]))

    def test_mask_dimension_mismatch(self, tmp_path, envi_raster, counting_regressor):
        from prosail_hybrid.errors import ConfigurationError
        from prosail_hybrid.inversion.raster import apply_to_raster
        from prosail_hybrid.utils.envi_io import write_envi

        mask = write_envi(tmp_path / 'mask', np.ones((6, 5), dtype=np.uint8))
        with pytest.raises(ConfigurationError):
            apply_to_raster(envi_raster, _bundle(counting_regressor), tmp_path / 'out',
                            mask_path=mask)

    def test_progress_steps(self, tmp_path, envi_raster, counting_regressor):
        from prosail_hybrid.inversion.raster import apply_to_raster

        steps = []
        apply_to_raster(envi_raster, _bundle(counting_regressor, targets=('lai', 'CHL'), n_models=3),
                        tmp_path, block_rows=2,
                        progress=lambda step, total, target: steps.append((step, total, target)))

        # 4 blocks x 3 members x 2 targets
        assert [s[0] for s in steps] == list(range(1, 25))
        assert all(s[1] == 24 for s in steps)
        assert steps[0][2] == 'lai' and steps[-1][2] == 'CHL'

    def test_band_selection_by_name(self, tmp_path, envi_raster, reflectance_cube,
                                    counting_regressor):
        from prosail_hybrid.inversion.raster import apply_to_raster

        bundle = _bundle(counting_regressor, n_models=1, band_names=('b3', 'b2'))
        result = apply_to_raster(envi_raster, bundle, tmp_path, block_rows=7)
        mean = _read(result.outputs['lai'][0])

        # Auto mask tests the first selected band (b3), which has no zeros
        expected = reflectance_cube[:, :, [2, 1]].sum(axis=2) / 10000
        np.testing.assert_allclose(mean, expected, rtol=1e-6)

    def test_band_count_mismatch(self, tmp_path, envi_raster, counting_regressor):
        from prosail_hybrid.errors import ConfigurationError
        from prosail_hybrid.inversion.raster import apply_to_raster

        bundle = _bundle(counting_regressor)
        with pytest.raises(ConfigurationError):
            apply_to_raster(envi_raster, bundle, tmp_path, band_selection={'lai': ['b1', 'b2']})

    def test_bands_named_by_wavelength(self, tmp_path, reflectance_cube, counting_regressor):
        from prosail_hybrid.errors import ConfigurationError
        from prosail_hybrid.inversion.raster import apply_to_raster
        from prosail_hybrid.utils.envi_io import write_envi

        raster = write_envi(tmp_path / 's2', reflectance_cube, wavelengths=[560, 665, 842],
                            band_names=['B3', 'B4', 'B8'])
        bundle = _bundle(counting_regressor, band_names=('560', '665', '842'))

        with pytest.raises(ConfigurationError):
            apply_to_raster(raster, bundle, tmp_path / 'header_names')

        by_wavelength = apply_to_raster(raster, bundle, tmp_path / 'wl', wavelength_band_names=True)
        explicit = apply_to_raster(raster, bundle, tmp_path / 'explicit',
                                   raster_band_names=['560', '665', '842'])
        np.testing.assert_array_equal(_read(by_wavelength.outputs['lai'][0]),
                                      _read(explicit.outputs['lai'][0]))

    def test_wavelength_names_need_wavelengths(self, tmp_path, envi_raster, counting_regressor):
        from prosail_hybrid.errors import ConfigurationError
        from prosail_hybrid.inversion.raster import apply_to_raster

        with pytest.raises(ConfigurationError):
            apply_to_raster(envi_raster, _bundle(counting_regressor), tmp_path,
                            wavelength_band_names=True)

    def test_missing_raster(self, tmp_path, counting_regressor):
        from prosail_hybrid.errors import MissingResourceError
        from prosail_hybrid.inversion.raster import apply_to_raster

        with pytest.raises(MissingResourceError):
            apply_to_raster(tmp_path / 'nothing', _bundle(counting_regressor), tmp_path)

    def test_fail_fast(self, tmp_path, envi_raster, failing_regressor):
        from prosail_hybrid.inversion.raster import apply_to_raster

        with pytest.raises(RuntimeError):
            apply_to_raster(envi_raster, _bundle(failing_regressor), tmp_path)

    def test_best_effort_continues(self, tmp_path, envi_raster, counting_regressor,
                                   failing_regressor):
        from prosail_hybrid.inversion.models import HybridModelBundle
        from prosail_hybrid.inversion.raster import apply_to_raster

        bundle = HybridModelBundle()
        bundle.add(_bundle(failing_regressor, targets=('CHL',))['CHL'])
        bundle.add(_bundle(counting_regressor, targets=('lai',))['lai'])

        result = apply_to_raster(envi_raster, bundle, tmp_path, fail_fast=False)

        assert not result.complete
        assert 'prediction exploded' in result.failed['CHL']
        assert 'lai' in result.outputs
        assert result.outputs['lai'][0].exists()


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
