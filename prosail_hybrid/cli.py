"""
Command-line interface for PROSAIL hybrid inversion.

Usage:
    prosail-hybrid-train models/lai.joblib --targets lai CHL --wavelengths 490 560 665 705 740 783 842 865
    prosail-hybrid-apply scene_reflectance models/lai.joblib results/ --mask scene_mask
    prosail-hybrid-apply S2_scene models/lai.joblib results/ --wavelength-names
    prosail-hybrid-config --show
"""

import sys
import logging
import argparse
from pathlib import Path


def _configure_logging(verbose: bool = False):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s | %(levelname)s | %(message)s',
        datefmt='%H:%M:%S'
    )


def train_cli(argv=None):
    """Train hybrid models from PROSAIL simulations."""
    parser = argparse.ArgumentParser(
        prog='prosail-hybrid-train',
        description='Train PROSAIL hybrid inversion models',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  prosail-hybrid-train models.joblib --targets lai
  prosail-hybrid-train models.joblib --targets lai CHL --samples 5000 --models 10
  prosail-hybrid-train models.joblib --config hybrid.yaml --lut-dir lut/
        """
    )

    parser.add_argument('output', help='Output model bundle (.joblib)')
    parser.add_argument('--config', '-c', default=None, help='YAML configuration file')
    parser.add_argument('--targets', '-t', nargs='+', default=None,
                        help='Variables to estimate (default: from config)')
    parser.add_argument('--samples', '-n', type=int, default=None,
                        help='Number of LUT samples')
    parser.add_argument('--models', '-m', type=int, default=None,
                        help='Ensemble size per variable')
    parser.add_argument('--no-replacement', action='store_true',
                        help='Disjoint subsets instead of bootstrap')
    parser.add_argument('--wavelengths', nargs='+', type=float, default=None,
                        help='Sensor band centers in nm (default: 1 nm PROSAIL output)')
    parser.add_argument('--fwhm', nargs='+', type=float, default=None,
                        help='Sensor band FWHM in nm')
    parser.add_argument('--lut-dir', default=None,
                        help='Directory for the parameter/reflectance tables')
    parser.add_argument('--seed', type=int, default=None, help='Random seed')
    parser.add_argument('--jobs', '-j', type=int, default=None, help='Parallel workers')
    parser.add_argument('--verbose', '-v', action='store_true', help='Verbose output')

    args = parser.parse_args(argv)
    _configure_logging(args.verbose)
    logger = logging.getLogger(__name__)

    from prosail_hybrid.errors import HybridInversionError
    from prosail_hybrid.forward.simulator import ProsailSimulator
    from prosail_hybrid.inversion.pipeline import train_hybrid_inversion
    from prosail_hybrid.utils.config import load_config

    try:
        config = load_config(args.config)
        options = config.training_options()
        if args.targets:
            options.targets = tuple(args.targets)
            default_noise = float(config.get('training', 'noise_level'))
            for target in options.targets:
                options.noise_levels.setdefault(target, default_noise)
        if args.samples:
            options.n_samples = args.samples
        if args.models:
            options.n_models = args.models
        if args.no_replacement:
            options.with_replacement = False
        if args.seed is not None:
            options.random_seed = args.seed
        if args.jobs:
            options.n_jobs = args.jobs

        simulator = ProsailSimulator(wavelengths=args.wavelengths, fwhm=args.fwhm,
                                     sail_version=options.sail_version)
        bundle = train_hybrid_inversion(simulator, options,
                                        distribution=config.parameter_distribution(),
                                        output_dir=args.lut_dir,
                                        band_names=simulator.band_names)
        bundle.save(args.output)
    except HybridInversionError as e:
        logger.error(str(e))
        sys.exit(1)

    logger.info(f"Models written to: {args.output}")


def apply_cli(argv=None):
    """Apply trained hybrid models to an ENVI raster."""
    parser = argparse.ArgumentParser(
        prog='prosail-hybrid-apply',
        description='Apply PROSAIL hybrid inversion models to an ENVI raster',
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument('raster', help='ENVI reflectance raster')
    parser.add_argument('models', help='Model bundle written by prosail-hybrid-train')
    parser.add_argument('output_dir', help='Directory for mean/std rasters')
    parser.add_argument('--mask', default=None, help='ENVI mask (1 = process)')
    parser.add_argument('--scale-factor', type=float, default=None,
                        help='Raster value for reflectance 1.0 (default: from config)')
    parser.add_argument('--block-rows', type=int, default=None,
                        help='Lines per block (default: from available memory)')
    bands = parser.add_mutually_exclusive_group()
    bands.add_argument('--band-names', nargs='+', default=None,
                       help='Raster band names, in band order (default: from header)')
    bands.add_argument('--wavelength-names', action='store_true',
                       help='Match bands by header wavelength, e.g. 560')
    parser.add_argument('--best-effort', action='store_true',
                        help='Continue with remaining variables when one fails')
    parser.add_argument('--config', '-c', default=None, help='YAML configuration file')
    parser.add_argument('--verbose', '-v', action='store_true', help='Verbose output')

    args = parser.parse_args(argv)
    _configure_logging(args.verbose)
    logger = logging.getLogger(__name__)

    from prosail_hybrid.errors import HybridInversionError
    from prosail_hybrid.inversion.models import HybridModelBundle
    from prosail_hybrid.inversion.raster import apply_to_raster
    from prosail_hybrid.utils.config import load_config

    try:
        config = load_config(args.config)
        bundle = HybridModelBundle.load(args.models)
        result = apply_to_raster(
            args.raster, bundle, args.output_dir,
            band_selection=config.get('training', 'band_selection') or None,
            raster_band_names=args.band_names,
            mask_path=args.mask,
            scale_factor=args.scale_factor or config.scale_factor,
            block_rows=args.block_rows or config.get('raster', 'block_rows'),
            fail_fast=not args.best_effort,
            memory_limit_gb=config.memory_limit_gb,
            wavelength_band_names=args.wavelength_names,
        )
    except HybridInversionError as e:
        logger.error(str(e))
        sys.exit(1)

    for target, (mean_path, std_path) in result.outputs.items():
        logger.info(f"{target}: {mean_path} / {std_path}")
    if result.failed:
        logger.error(f"Failed variables: {', '.join(result.failed)}")
        sys.exit(2)


def config_cli(argv=None):
    """Configuration management CLI."""
    parser = argparse.ArgumentParser(
        prog='prosail-hybrid-config',
        description='PROSAIL Hybrid Inversion Configuration',
    )

    parser.add_argument('--show', action='store_true',
                        help='Show current configuration')
    parser.add_argument('--init', action='store_true',
                        help='Create config file template')
    parser.add_argument('--check', action='store_true',
                        help='Check dependencies')

    args = parser.parse_args(argv)

    from prosail_hybrid.utils.config import load_config, default_config_paths

    config = load_config()

    if args.show:
        import yaml
        print(yaml.safe_dump(config.as_dict(), default_flow_style=False, sort_keys=False))

    elif args.init:
        config_path = default_config_paths()[0]
        if config_path.exists():
            print(f"Config already exists: {config_path}")
        else:
            config.save(config_path)
            print(f"Created config: {config_path}")

    elif args.check:
        print("Dependency Check")
        print("=" * 40)

        from prosail_hybrid.utils.memory import get_total_memory, get_available_memory
        print(f"Total Memory: {get_total_memory():.1f} GB")
        print(f"Available: {get_available_memory():.1f} GB")
        print(f"Config Limit: {config.memory_limit_gb:.1f} GB")
        print()

        packages = ['numpy', 'sklearn', 'joblib', 'yaml', 'psutil', 'prosail']
        print("Python Packages:")
        for pkg in packages:
            try:
                mod = __import__(pkg)
                version = getattr(mod, '__version__', 'installed')
                print(f"  {pkg}: {version}")
            except ImportError:
                print(f"  {pkg}: NOT INSTALLED")

    else:
        parser.print_help()


def main():
    """Main entry point - dispatch on script name."""
    script_name = Path(sys.argv[0]).stem
    if 'apply' in script_name:
        apply_cli()
    elif 'config' in script_name:
        config_cli()
    elif 'train' in script_name:
        train_cli()
    else:
        print("PROSAIL Hybrid Inversion")
        print()
        print("Commands:")
        print("  prosail-hybrid-train   - Train hybrid models")
        print("  prosail-hybrid-apply   - Apply models to a raster")
        print("  prosail-hybrid-config  - Configuration management")
        print()
        print("Use --help with any command for details.")


if __name__ == '__main__':
    main()
