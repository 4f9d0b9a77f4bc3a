"""
Tests for the command-line entry points.

Run with: pytest tests/test_cli.py -v
"""

import numpy as np
import pytest


@pytest.fixture
def isolated_home(tmp_path, monkeypatch):
    """Keep user config files and environment overrides out of the tests."""
    home = tmp_path / 'home'
    home.mkdir()
    monkeypatch.setenv('HOME', str(home))
    monkeypatch.chdir(tmp_path)
    for var in ('PROSAIL_HYBRID_MEMORY_LIMIT', 'PROSAIL_HYBRID_N_JOBS',
                'PROSAIL_HYBRID_N_SAMPLES', 'PROSAIL_HYBRID_SCALE_FACTOR'):
        monkeypatch.delenv(var, raising=False)
    return home


class TestConfigCLI:
    """Test prosail-hybrid-config."""

    def test_show(self, isolated_home, capsys):
        import yaml
        from prosail_hybrid.cli import config_cli

        config_cli(['--show'])
        shown = yaml.safe_load(capsys.readouterr().out)

        assert shown['sampling']['n_samples'] == 2000
        assert shown['training']['targets'] == ['lai']

    def test_init_creates_file_once(self, isolated_home, capsys):
        from prosail_hybrid.cli import config_cli

        config_cli(['--init'])
        path = isolated_home / '.prosail_hybrid' / 'config.yaml'
        assert path.exists()

        config_cli(['--init'])
        assert 'already exists' in capsys.readouterr().out


class TestApplyCLI:
    """Test prosail-hybrid-apply."""

    def test_apply(self, tmp_path, isolated_home, envi_raster, counting_regressor):
        from prosail_hybrid.cli import apply_cli
        from prosail_hybrid.inversion.models import EnsembleModel, HybridModelBundle

        X = np.random.default_rng(0).random((10, 3))
        bundle = HybridModelBundle()
        bundle.add(EnsembleModel(target='lai', n_features=3, band_names=('b1', 'b2', 'b3'),
                                 models=[counting_regressor().fit(X, np.zeros(10))]))
        models = bundle.save(tmp_path / 'models.joblib')

        apply_cli([str(envi_raster), str(models), str(tmp_path / 'out'), '--block-rows', '3'])

        assert (tmp_path / 'out' / 'scene_lai').exists()
        assert (tmp_path / 'out' / 'scene_lai_STD.hdr').exists()

    def test_wavelength_named_models_on_sentinel_header(self, tmp_path, isolated_home,
                                                        reflectance_cube, counting_regressor):
        from prosail_hybrid.cli import apply_cli
        from prosail_hybrid.inversion.models import EnsembleModel, HybridModelBundle
        from prosail_hybrid.utils.envi_io import write_envi

        raster = write_envi(tmp_path / 's2', reflectance_cube, wavelengths=[560, 665, 842],
                            band_names=['B3', 'B4', 'B8'])
        X = np.random.default_rng(0).random((10, 3))
        bundle = HybridModelBundle()
        bundle.add(EnsembleModel(target='lai', n_features=3, band_names=('560', '665', '842'),
                                 models=[counting_regressor().fit(X, np.zeros(10))]))
        models = bundle.save(tmp_path / 'models.joblib')

        with pytest.raises(SystemExit) as info:
            apply_cli([str(raster), str(models), str(tmp_path / 'header')])
        assert info.value.code == 1

        apply_cli([str(raster), str(models), str(tmp_path / 'wl'), '--wavelength-names'])
        assert (tmp_path / 'wl' / 's2_lai').exists()

        apply_cli([str(raster), str(models), str(tmp_path / 'named'),
                   '--band-names', '560', '665', '842'])
        assert (tmp_path / 'named' / 's2_lai_STD').exists()

    def test_missing_bundle_exits(self, tmp_path, isolated_home, envi_raster):
        from prosail_hybrid.cli import apply_cli

        with pytest.raises(SystemExit) as info:
            apply_cli([str(envi_raster), str(tmp_path / 'none.joblib'), str(tmp_path / 'out')])
        assert info.value.code == 1


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
