"""
Batch conversion script

Converts a Signavio model collection into BPMN 2.0 XML, either by mirroring the
whole directory tree (full mode) or by converting the indexed models of one
language and modelling language (filtered mode).
"""

from loguru import logger

from bpmai_convert.config import save_config
from bpmai_convert.converter import TreeConverter
from bpmai_convert.engine import create_engine
from bpmai_convert.parse_args import config_from_args, parse_args
from bpmai_convert.utils import setup_logging


def main(argv=None):
    """Main conversion function."""
    args = parse_args(argv)
    config = config_from_args(args)
    setup_logging(config.log_level, config.log_file)
    if args.write_config:
        save_config(config.to_dict(), args.write_config)
        logger.info(f"Configuration written to {args.write_config}")
        return None
    logger.info(f"Converting {config.source_dir} -> {config.dest_dir} ({config.mode} mode)")

    converter = TreeConverter(
        config.source_dir,
        config.dest_dir,
        engine=create_engine(config.engine, config.engine_command),
        metadata_marker=config.metadata_marker,
        output_extension=config.output_extension,
        companion_extension=config.companion_extension,
        coarse_resume=config.coarse_resume,
        show_progress=config.show_progress,
    )

    if config.mode == 'filtered':
        stats = converter.run_filtered(
            index_path=config.index_path,
            prefix=config.prefix_filter,
            language=config.language_filter,
        )
    else:
        stats = converter.run_full()
    return stats


if __name__ == '__main__':
    main()
