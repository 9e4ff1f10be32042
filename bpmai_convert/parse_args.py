import argparse
import os

from dotenv import load_dotenv

from .config import ENGINES, MODES, ConversionConfig, load_config


load_dotenv()


def _env_flag(name):
    value = os.getenv(name)
    if value is None:
        return None
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def parse_args(argv=None):
    """Parse command line arguments of the conversion run."""
    parser = argparse.ArgumentParser(description='Convert Signavio JSON models to BPMN 2.0 XML')

    parser.add_argument('--config', type=str, default=os.getenv('BPMAI_CONFIG'),
                        help='TOML or JSON configuration file')
    parser.add_argument('--write_config', type=str, default=None,
                        help='Write the effective configuration to this TOML or JSON file and exit')

    # Data arguments
    parser.add_argument('--source_dir', type=str, default=os.getenv('BPMAI_SOURCE_DIR'),
                        help='Directory containing the Signavio models')
    parser.add_argument('--dest_dir', type=str, default=os.getenv('BPMAI_DEST_DIR'),
                        help='Directory receiving the converted models')
    parser.add_argument('--index_path', type=str, default=os.getenv('BPMAI_INDEX_PATH'),
                        help='CSV index to load, or to write when it does not exist yet')
    parser.add_argument('--metadata_marker', type=str, default=os.getenv('BPMAI_METADATA_MARKER'),
                        help='Substring identifying metadata sidecar files')

    # Selection arguments
    parser.add_argument('--mode', type=str, choices=MODES, default=os.getenv('BPMAI_MODE'),
                        help='full: mirror the whole tree; filtered: convert indexed models only')
    parser.add_argument('--language', dest='language_filter', type=str,
                        default=os.getenv('BPMAI_LANGUAGE'),
                        help='Natural language of the models to convert (filtered mode)')
    parser.add_argument('--prefix', dest='prefix_filter', type=str,
                        default=os.getenv('BPMAI_PREFIX'),
                        help='Modelling language prefix, e.g. bpmn20 (filtered mode)')
    parser.add_argument('--coarse_resume', action='store_true', default=_env_flag('BPMAI_COARSE_RESUME'),
                        help='Skip top-level directories that already have an output mirror')

    # Engine arguments
    parser.add_argument('--engine', type=str, choices=ENGINES, default=os.getenv('BPMAI_ENGINE'),
                        help='Transformation engine')
    parser.add_argument('--engine_command', type=str, default=os.getenv('BPMAI_ENGINE_COMMAND'),
                        help='External converter command for the command engine')

    # Logging arguments
    parser.add_argument('--log_level', type=str, default=os.getenv('BPMAI_LOG_LEVEL'),
                        help='Console log level')
    parser.add_argument('--log_file', type=str, default=os.getenv('BPMAI_LOG_FILE'),
                        help='Optional log file (always DEBUG)')
    parser.add_argument('--no_progress', dest='show_progress', action='store_false', default=None,
                        help='Disable progress bars')

    return parser.parse_args(argv)


def parse_index_args(argv=None):
    """Parse command line arguments of the index builder."""
    parser = argparse.ArgumentParser(description='Build and query the BPMAI model index')
    parser.add_argument('--models_dir', type=str, default=os.getenv('BPMAI_SOURCE_DIR'),
                        help='Flat directory of models and metadata sidecars')
    parser.add_argument('--index_path', type=str, default=os.getenv('BPMAI_INDEX_PATH', 'bpmai_index.csv'),
                        help='CSV index file')
    parser.add_argument('--rebuild', action='store_true',
                        help='Rebuild the index even if the index file exists')
    parser.add_argument('--metadata_marker', type=str, default=os.getenv('BPMAI_METADATA_MARKER', '.meta.json'),
                        help='Substring identifying metadata sidecar files')
    parser.add_argument('--language', type=str, default=os.getenv('BPMAI_LANGUAGE', 'en'),
                        help='Natural language to count models for')
    parser.add_argument('--prefix', dest='prefixes', action='append', default=None,
                        help='Modelling language prefix to count (repeatable)')
    parser.add_argument('--log_level', type=str, default=os.getenv('BPMAI_LOG_LEVEL', 'INFO'),
                        help='Console log level')
    args = parser.parse_args(argv)
    if not args.prefixes:
        args.prefixes = ['bpmn20', 'UMLUseCase', 'UML22Class']
    return args


def config_from_args(args) -> ConversionConfig:
    """Defaults, then the config file, then flags and environment variables."""
    config = ConversionConfig()
    if args.config:
        config = config.merged(load_config(args.config))
    overrides = {k: v for k, v in vars(args).items() if k not in ('config', 'write_config')}
    if not overrides.get('coarse_resume'):
        overrides['coarse_resume'] = None
    return config.merged(overrides).validate()
